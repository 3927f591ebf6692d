"""Pydantic models and counters used during a migration run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from pydantic import Field

from front_gmail_migration.models.base import AppModel
from front_gmail_migration.models.types import MatchMethod, ReportAction


class MigrationItem(AppModel):
    """Normalized view of one Front conversation."""

    front_conversation_id: str = Field(min_length=1)
    subject: str
    is_archived: bool
    labels: tuple[str, ...] = ()
    rfc_message_id: str | None = None
    participants: frozenset[str] = frozenset()
    created_at: datetime


class ReportRow(AppModel):
    """One audit row per item per run."""

    front_conversation_id: str
    subject: str
    created_at: datetime
    is_archived: bool
    match_method: MatchMethod
    gmail_results: int = Field(default=0, ge=0)
    gmail_message_id: str | None = None
    thread_id: str | None = None
    labels_to_add: tuple[str, ...] = ()
    labels_to_remove: tuple[str, ...] = ()
    action: ReportAction
    reason: str | None = None


@dataclass
class RunStatistics:
    """Aggregate counters for a run; only the orchestrator loop mutates them."""

    total: int = 0
    processed: int = 0
    matched: int = 0
    labeled: int = 0
    status_archived: int = 0
    status_inbox: int = 0
    no_match: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        """Return the counters keyed by name."""
        return {
            "total": self.total,
            "processed": self.processed,
            "matched": self.matched,
            "labeled": self.labeled,
            "status_archived": self.status_archived,
            "status_inbox": self.status_inbox,
            "no_match": self.no_match,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass
class RunResult:
    """Outcome of a migration run."""

    stats: RunStatistics
    rows: list[ReportRow] = field(default_factory=list)
    dry_run: bool = True
    aborted: bool = False
    report_path: Path | None = None
    summary_path: Path | None = None
