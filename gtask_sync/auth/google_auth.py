"""
OAuth2 credential gate for Google Tasks.

Provides OAuth 2.0 authentication with support for:
- Any number of named accounts, one token file per account
- Silent token refresh before each sync
- Secure credential storage in the configuration directory
- Distinguishing "reconnect required" (revoked grant) from other failures
"""

import json
import logging
import re
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from gtask_sync.api.tasks_api import TasksAPI
from gtask_sync.utils.paths import resolve_config_dir

SCOPES = ["https://www.googleapis.com/auth/tasks"]

CLIENT_SECRETS_FILE = "credentials.json"

ACCOUNT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.@-]{1,64}$")

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when authentication fails or credentials are invalid."""

    pass


class ReconnectRequiredError(AuthenticationError):
    """Raised when the stored grant is missing or revoked; the user must reconnect."""

    pass


class GoogleAuth:
    """
    OAuth2 credential manager for named Google accounts.

    Attributes:
        config_dir: Directory holding the client secrets and token files
        credentials_path: Path to the OAuth client secrets file

    Usage:
        auth = GoogleAuth()
        auth.authenticate("work")                    # interactive, once
        api = auth.get_authenticated_client("work")  # silent afterwards
    """

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = resolve_config_dir(config_dir)
        self.credentials_path = self.config_dir / CLIENT_SECRETS_FILE

    @staticmethod
    def validate_account_id(account_id: str) -> None:
        """
        Raises:
            ValueError: If the id cannot be used as part of a file name
        """
        if not isinstance(account_id, str) or not ACCOUNT_ID_PATTERN.match(account_id):
            raise ValueError(
                f"Invalid account_id {account_id!r}. Use letters, digits, "
                "'.', '_', '-' or '@' (max 64 characters)"
            )

    def token_path(self, account_id: str) -> Path:
        self.validate_account_id(account_id)
        return self.config_dir / f"token_{account_id}.json"

    def _load_credentials(self, account_id: str) -> Credentials | None:
        token_path = self.token_path(account_id)
        if not token_path.exists():
            logger.debug(f"No token file found for {account_id}")
            return None

        try:
            creds: Credentials = Credentials.from_authorized_user_file(
                str(token_path), SCOPES
            )
            return creds
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Invalid token file for {account_id}: {e}")
            return None

    def _save_credentials(self, account_id: str, creds: Credentials) -> None:
        if not self.config_dir.exists():
            self.config_dir.mkdir(parents=True, mode=0o700)
        token_path = self.token_path(account_id)
        token_path.write_text(creds.to_json())
        token_path.chmod(0o600)
        logger.debug(f"Saved credentials for {account_id}")

    def get_credentials(self, account_id: str) -> Credentials:
        """
        Return valid credentials, refreshing them silently if needed.

        Raises:
            ReconnectRequiredError: No token, no refresh token, or the grant
                was revoked
            AuthenticationError: Refresh failed for another reason
        """
        creds = self._load_credentials(account_id)
        if creds is None:
            raise ReconnectRequiredError(f"Account {account_id} is not connected")

        if creds.valid:
            return creds

        if not creds.refresh_token:
            raise ReconnectRequiredError(
                f"No refresh token stored for {account_id}; reconnect the account"
            )

        try:
            creds.refresh(Request())
        except RefreshError as e:
            logger.warning(f"Token refresh rejected for {account_id}: {e}")
            raise ReconnectRequiredError(
                f"Google rejected the stored grant for {account_id}; "
                "reconnect the account"
            ) from e
        except Exception as e:
            raise AuthenticationError(
                f"Failed to refresh credentials for {account_id}: {e}"
            ) from e

        self._save_credentials(account_id, creds)
        logger.debug(f"Refreshed credentials for {account_id}")
        return creds

    def get_authenticated_client(self, account_id: str) -> TasksAPI:
        """Return a Tasks API client for the account (no user interaction)."""
        return TasksAPI(self.get_credentials(account_id))

    def authenticate(self, account_id: str, force_reauth: bool = False) -> Credentials:
        """
        Authenticate an account, running the browser flow when needed.

        Raises:
            FileNotFoundError: If the OAuth client secrets file is missing
            AuthenticationError: If the flow fails
        """
        self.validate_account_id(account_id)

        if not force_reauth:
            try:
                creds = self.get_credentials(account_id)
                logger.info(f"Using existing credentials for {account_id}")
                return creds
            except AuthenticationError:
                pass

        if not self.credentials_path.exists():
            raise FileNotFoundError(
                f"OAuth credentials file not found: {self.credentials_path}\n"
                "Download your OAuth client credentials from Google Cloud "
                "Console and save them to this location."
            )

        logger.info(f"Starting OAuth flow for {account_id}")
        try:
            flow = InstalledAppFlow.from_client_secrets_file(
                str(self.credentials_path), SCOPES
            )
            new_creds: Credentials = flow.run_local_server(port=0)
        except Exception as e:
            logger.error(f"Authentication failed for {account_id}: {e}")
            raise AuthenticationError(
                f"Failed to authenticate {account_id}: {e}"
            ) from e

        self._save_credentials(account_id, new_creds)
        logger.info(f"Successfully authenticated {account_id}")
        return new_creds

    def is_authenticated(self, account_id: str) -> bool:
        try:
            self.get_credentials(account_id)
        except AuthenticationError:
            return False
        return True

    def clear_credentials(self, account_id: str) -> bool:
        """
        Remove the stored token for an account.

        Returns:
            True if a token was removed
        """
        token_path = self.token_path(account_id)
        if token_path.exists():
            token_path.unlink()
            logger.info(f"Cleared credentials for {account_id}")
            return True
        return False

    def list_accounts(self) -> list[str]:
        """Account ids with a stored token file."""
        if not self.config_dir.exists():
            return []
        return sorted(
            path.stem[len("token_") :] for path in self.config_dir.glob("token_*.json")
        )
