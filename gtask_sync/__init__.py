"""
gtask_sync - Incremental task synchronization to Google Tasks.

Mirrors a local collection of task records into a Google Tasks list through
a rate-limited, quota-constrained API without re-sending unchanged data.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
