"""Gmail OAuth authentication and API service construction."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from front_gmail_migration.config.settings import GmailSettings
from front_gmail_migration.errors import AuthError

logger = logging.getLogger(__name__)

SCOPES: list[str] = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.labels",
]


class GmailCredentialsError(AuthError):
    """Raised when no usable Gmail token is available without user interaction."""


def load_credentials(*, settings: GmailSettings, interactive: bool) -> Credentials:
    """Load or refresh Gmail OAuth credentials.

    Args:
        settings: Gmail settings containing credentials/token paths.
        interactive: Whether a browser consent flow may be started.

    Returns:
        Validated OAuth credentials.

    Raises:
        ValueError: If the token or client file paths are invalid.
        GmailCredentialsError: If no valid token exists and ``interactive`` is False.
    """
    token_file: Path = settings.token_file.expanduser().resolve()
    if token_file.exists() and not token_file.is_file():
        raise ValueError(
            "token_file is not a file: "
            f"{token_file}. Set MIG_GMAIL__TOKEN_FILE to a file path, "
            "e.g. /absolute/path/to/gmail-token.json",
        )

    creds: Credentials | None = None
    if token_file.exists():
        try:
            if token_file.stat().st_size == 0:
                logger.warning("Token file exists but is empty (token_file=%s)", token_file)
            else:
                creds = Credentials.from_authorized_user_file(  # type: ignore[no-untyped-call]
                    str(token_file),
                    scopes=SCOPES,
                )
        except (OSError, ValueError, json.JSONDecodeError) as exc:
            logger.warning(
                "Failed to load token file (token_file=%s, error=%r)",
                token_file,
                exc,
            )
            creds = None

    if creds is not None and creds.valid:
        return creds

    if creds is not None and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())  # type: ignore[no-untyped-call]
        except RefreshError as exc:
            if not interactive:
                raise GmailCredentialsError(
                    f"Gmail token refresh was rejected ({exc}). Run `gmail-auth` again.",
                ) from exc
            logger.warning("Token refresh failed; starting consent flow: %r", exc)
        else:
            _write_token_file(token_file, creds)
            return creds

    if not interactive:
        raise GmailCredentialsError(
            f"No valid Gmail token at {token_file}. Run `front-gmail-migration gmail-auth` first.",
        )

    client_file = settings.credentials_file.expanduser().resolve()
    if not client_file.is_file():
        raise ValueError(
            f"credentials_file does not exist: {client_file}. "
            "Download a 'Desktop app' OAuth client JSON and set MIG_GMAIL__CREDENTIALS_FILE.",
        )
    _check_client_kind(client_file)

    flow = InstalledAppFlow.from_client_secrets_file(str(client_file), SCOPES)
    creds = flow.run_local_server(port=0)
    _write_token_file(token_file, creds)
    return creds


def _check_client_kind(path: Path) -> None:
    """Reject OAuth client files created for web applications.

    Raises:
        ValueError: If the JSON describes a 'Web application' client.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return
    if isinstance(data, dict) and "installed" not in data and "web" in data:
        raise ValueError(
            "OAuth client JSON looks like a 'Web application' client. "
            "Create a 'Desktop app' (Installed app) OAuth client in Google Cloud Console, "
            "download its JSON, and point MIG_GMAIL__CREDENTIALS_FILE to that file.",
        )


def _write_token_file(path: Path, creds: Credentials) -> None:
    """Persist OAuth credentials to disk.

    Args:
        path: Target token file.
        creds: OAuth credentials to serialize.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(creds.to_json(), encoding="utf-8")  # type: ignore[no-untyped-call]


def build_service(settings: GmailSettings, *, interactive: bool = False) -> Any:
    """Return an authorized Gmail API service object.

    Raises:
        GmailCredentialsError: If no token is usable and ``interactive`` is False.
    """
    creds = load_credentials(settings=settings, interactive=interactive)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)
