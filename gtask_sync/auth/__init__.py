"""
gtask_sync.auth - OAuth credential handling
"""

from gtask_sync.auth.google_auth import (
    AuthenticationError,
    GoogleAuth,
    ReconnectRequiredError,
)

__all__ = ["GoogleAuth", "AuthenticationError", "ReconnectRequiredError"]
