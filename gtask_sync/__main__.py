"""
Entry point for running gtask_sync as a module.

Usage:
    python -m gtask_sync --help
    python -m gtask_sync auth --account work
    python -m gtask_sync sync --account work
"""

from gtask_sync.cli import cli

if __name__ == "__main__":
    cli()
