"""Front conversation → migration item mapping and Gmail label sanitization."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime

from front_gmail_migration.models.front import FrontConversation
from front_gmail_migration.models.migration import MigrationItem
from front_gmail_migration.models.types import FrontConversationStatus, FrontMessageType

logger = logging.getLogger(__name__)

LABEL_NAMESPACE = "Front"
STATUS_LABEL_ARCHIVED = f"{LABEL_NAMESPACE}/Status/Archived"
STATUS_LABEL_INBOX = f"{LABEL_NAMESPACE}/Status/Inbox"
NO_SUBJECT = "(no subject)"

# Gmail system label names a user label may not take. IMPORTANT is left out:
# tags named "Important" stay "Front/Important".
RESERVED_LABEL_NAMES: frozenset[str] = frozenset(
    {"INBOX", "SPAM", "TRASH", "UNREAD", "STARRED", "SENT", "DRAFT"},
)

_PATH_DELIMITER_RE = re.compile(r"[/\\]")
_LEADING_MARKER_RE = re.compile(r"^[\s^]+")
_KNOWN_STATUSES: frozenset[str] = frozenset(status.value for status in FrontConversationStatus)


class LabelNameError(ValueError):
    """Raised when a tag name cannot become a Gmail label."""


def _sanitize_segment(name: str) -> str:
    """Apply the delimiter, marker and reserved-name rules to a bare name."""
    sanitized = _PATH_DELIMITER_RE.sub("-", name)
    sanitized = _LEADING_MARKER_RE.sub("", sanitized).strip()
    if sanitized.upper() in RESERVED_LABEL_NAMES:
        sanitized = f"{LABEL_NAMESPACE}-{sanitized}"
    return sanitized


def sanitize_label(name: str) -> str:
    """Turn a Front tag name into a namespaced Gmail label name.

    ``/`` and ``\\`` become ``-``, leading ``^`` markers are dropped, names
    equal to a Gmail system label get a ``Front-`` prefix, and the result is
    nested under ``Front/``. Applying it twice gives the same result.

    Args:
        name: Raw tag name.

    Returns:
        Sanitized label name.

    Raises:
        LabelNameError: If nothing usable remains.
    """
    prefix = f"{LABEL_NAMESPACE}/"
    stripped = name.strip()
    remainder = stripped[len(prefix) :] if stripped.startswith(prefix) else stripped
    segment = _sanitize_segment(remainder)
    if not segment:
        raise LabelNameError(f"Tag name {name!r} is empty after sanitization")
    return f"{prefix}{segment}"


def status_labels(*, is_archived: bool) -> tuple[str, str]:
    """Return ``(label_to_add, label_to_remove)`` for an archive state."""
    if is_archived:
        return STATUS_LABEL_ARCHIVED, STATUS_LABEL_INBOX
    return STATUS_LABEL_INBOX, STATUS_LABEL_ARCHIVED


def clean_message_id(value: str | None) -> str | None:
    """Strip whitespace and one surrounding ``<``/``>`` pair from a Message-ID."""
    if value is None:
        return None
    cleaned = value.strip()
    if cleaned.startswith("<"):
        cleaned = cleaned[1:]
    if cleaned.endswith(">"):
        cleaned = cleaned[:-1]
    cleaned = cleaned.strip()
    return cleaned or None


def map_conversation(conversation: FrontConversation) -> MigrationItem:
    """Map a Front conversation to a migration item. Pure; no I/O.

    Args:
        conversation: Conversation as fetched from Front.

    Returns:
        Normalized MigrationItem.
    """
    labels: list[str] = []
    seen: set[str] = set()
    for tag in conversation.tags:
        try:
            label = sanitize_label(tag.name)
        except LabelNameError as exc:
            logger.warning("Dropping tag on conversation %s: %s", conversation.id, exc)
            continue
        key = label.casefold()
        if key in seen:
            continue
        seen.add(key)
        labels.append(label)

    if conversation.status not in _KNOWN_STATUSES:
        logger.debug(
            "Conversation %s has unknown status %r; treating as not archived",
            conversation.id,
            conversation.status,
        )
    is_archived = conversation.status == FrontConversationStatus.archived.value

    participants: set[str] = set()
    rfc_message_id: str | None = None
    for message in conversation.messages:
        if message.type != FrontMessageType.email.value:
            continue
        if message.from_ is not None and message.from_.handle:
            participants.add(message.from_.handle.strip().lower())
        for recipient in message.recipients:
            if recipient.handle:
                participants.add(recipient.handle.strip().lower())
        if rfc_message_id is None:
            rfc_message_id = clean_message_id(message.header_message_id)

    subject = (conversation.subject or "").strip() or NO_SUBJECT

    return MigrationItem(
        front_conversation_id=conversation.id,
        subject=subject,
        is_archived=is_archived,
        labels=tuple(labels),
        rfc_message_id=rfc_message_id,
        participants=frozenset(participants),
        created_at=datetime.fromtimestamp(conversation.created_at, tz=UTC),
    )
