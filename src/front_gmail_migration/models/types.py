"""Shared enums and lightweight Pydantic models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from front_gmail_migration.models.base import AppModel


class FrontConversationStatus(StrEnum):
    """Conversation statuses reported by the Front API."""

    archived = "archived"
    unarchived = "unarchived"
    deleted = "deleted"
    spam = "spam"


class FrontMessageType(StrEnum):
    """Front message channel types that matter for matching."""

    email = "email"
    sms = "sms"
    custom = "custom"


class GmailLabelType(StrEnum):
    """Gmail label kinds."""

    system = "system"
    user = "user"


class GmailSystemLabelId(StrEnum):
    """Gmail system label identifiers used by the migration."""

    inbox = "INBOX"


class MatchMethod(StrEnum):
    """How a Front conversation was correlated with Gmail."""

    message_id = "message-id"
    none = "none"


class ReportAction(StrEnum):
    """Per-item outcome written to the audit report."""

    applied = "applied"
    dry_run = "dry_run"
    skipped = "skipped"
    no_match = "no_match"
    failed = "failed"


class SummaryReport(AppModel):
    """Summarized migration run written next to the CSV report."""

    created_at: datetime
    dry_run: bool
    aborted: bool = False
    report_path: str | None = None
    counts: dict[str, int] = Field(default_factory=dict)
