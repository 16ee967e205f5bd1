"""Gmail send-scope credentials: cached token, silent refresh, one-time consent."""

from __future__ import annotations

import logging
from pathlib import Path

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from imessage_sync.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.send"]


def authenticate(
    credentials_path: Path, token_path: Path, *, interactive: bool = True
) -> Credentials:
    """Return usable credentials, refreshing or re-consenting as needed.

    The background service runs with ``interactive=False``: it never opens a
    browser, so a missing or revoked token is an ``AuthenticationError`` and
    the cycle falls back to simulation.
    """
    creds = _load_cached(token_path)
    if creds is not None and creds.valid:
        return creds

    if creds is not None and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
        except Exception as e:
            logger.warning("Could not refresh Gmail token: %s", e)
        else:
            _save_token(creds, token_path)
            return creds

    if not interactive:
        raise AuthenticationError(
            f"No valid Gmail token at {token_path}. "
            "Run 'test-email' once from a terminal to authorize."
        )
    return _consent(credentials_path, token_path)


def build_gmail_service(creds: Credentials) -> Resource:
    return build("gmail", "v1", credentials=creds)


def _load_cached(token_path: Path) -> Credentials | None:
    if not token_path.exists():
        return None
    try:
        return Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except Exception as e:
        logger.warning("Ignoring unreadable token cache %s: %s", token_path, e)
        return None


def _consent(credentials_path: Path, token_path: Path) -> Credentials:
    if not credentials_path.exists():
        raise AuthenticationError(
            f"OAuth client secret not found at {credentials_path}. "
            "Create a Desktop OAuth client in Google Cloud Console and save its JSON there."
        )

    logger.info("Opening browser to authorize Gmail sending...")
    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
        creds = flow.run_local_server(port=0)
    except Exception as e:
        raise AuthenticationError(f"Gmail authorization failed: {e}") from e

    _save_token(creds, token_path)
    logger.info("Gmail authorized, token cached at %s", token_path)
    return creds


def _save_token(creds: Credentials, token_path: Path) -> None:
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
