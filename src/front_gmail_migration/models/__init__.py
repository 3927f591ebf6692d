"""Validated domain models (Pydantic)."""

from __future__ import annotations

from front_gmail_migration.models.front import (
    FrontConversation,
    FrontInbox,
    FrontMessage,
    FrontRecipient,
    FrontTag,
)
from front_gmail_migration.models.migration import (
    MigrationItem,
    ReportRow,
    RunResult,
    RunStatistics,
)
from front_gmail_migration.models.types import (
    FrontConversationStatus,
    FrontMessageType,
    GmailLabelType,
    GmailSystemLabelId,
    MatchMethod,
    ReportAction,
    SummaryReport,
)

__all__ = [
    "FrontConversation",
    "FrontConversationStatus",
    "FrontInbox",
    "FrontMessage",
    "FrontMessageType",
    "FrontRecipient",
    "FrontTag",
    "GmailLabelType",
    "GmailSystemLabelId",
    "MatchMethod",
    "MigrationItem",
    "ReportAction",
    "ReportRow",
    "RunResult",
    "RunStatistics",
    "SummaryReport",
]
