"""Logging configuration: JSON lines or rich console output."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from front_gmail_migration.config.settings import LoggingSettings

_STANDARD_RECORD_KEYS: frozenset[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__,
) | {"message", "asctime"}

_QUIET_LOGGERS: dict[str, int] = {
    "googleapiclient.discovery": logging.WARNING,
    "googleapiclient.discovery_cache": logging.ERROR,
    "google_auth_oauthlib": logging.WARNING,
    "urllib3": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra=`` fields attached to a record, JSON-safe."""
    fields: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_RECORD_KEYS or key.startswith("_"):
            continue
        try:
            json.dumps(value)
        except TypeError:
            value = str(value)
        fields[key] = value
    return fields


class JsonLogFormatter(logging.Formatter):
    """Formatter that emits one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: Log record to format.

        Returns:
            JSON string representation.
        """
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="milliseconds",
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def resolve_level(name: str | None) -> int:
    """Map a level name such as ``"debug"`` to its numeric value (INFO if unknown)."""
    level = logging.getLevelName((name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(*, settings: LoggingSettings, console: Console | None = None) -> None:
    """Configure root logging for CLI runs.

    Args:
        settings: Logging settings (minimum level and JSON/human output).
        console: Rich console shared with progress output, for human logs.
    """
    level = resolve_level(settings.level)

    handler: logging.Handler
    if settings.json_logs:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonLogFormatter())
    else:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter(fmt="%(name)s: %(message)s"))
    handler.setLevel(level)

    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, quiet_level))
