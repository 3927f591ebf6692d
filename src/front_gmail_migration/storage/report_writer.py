"""CSV audit report and JSON run summary writer."""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from front_gmail_migration.mapping.mapper import NO_SUBJECT
from front_gmail_migration.models.migration import ReportRow, RunStatistics
from front_gmail_migration.models.types import SummaryReport

logger = logging.getLogger(__name__)

REPORT_PREFIX = "migration-report"
SUMMARY_PREFIX = "migration-summary"

REPORT_COLUMNS: tuple[str, ...] = (
    "frontConversationId",
    "subject",
    "createdAt",
    "isArchived",
    "matchMethod",
    "gmailResults",
    "gmailMessageId",
    "threadId",
    "labelsToAdd",
    "labelsToRemove",
    "action",
    "reason",
)


def file_timestamp(moment: datetime) -> str:
    """Return an ISO-8601 UTC timestamp safe for file names.

    Example: ``2024-05-01T12:30:45.123Z`` becomes ``2024-05-01T12-30-45-123Z``.
    """
    utc = moment.astimezone(UTC)
    iso = utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def _iso(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def row_to_fields(row: ReportRow) -> list[str]:
    """Flatten a report row into CSV fields, in column order."""
    return [
        row.front_conversation_id,
        row.subject or NO_SUBJECT,
        _iso(row.created_at),
        "true" if row.is_archived else "false",
        row.match_method.value,
        str(row.gmail_results),
        row.gmail_message_id or "",
        row.thread_id or "",
        ";".join(row.labels_to_add),
        ";".join(row.labels_to_remove),
        row.action.value,
        row.reason or "",
    ]


def render_csv(rows: Sequence[ReportRow]) -> str:
    """Render rows as CSV with every field quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(REPORT_COLUMNS)
    for row in rows:
        writer.writerow(row_to_fields(row))
    return buffer.getvalue()


class ReportWriter:
    """Persist the per-item decision trail of a run."""

    def __init__(self, *, reports_dir: Path) -> None:
        """Initialize the writer.

        Args:
            reports_dir: Directory receiving report files.
        """
        self._reports_dir = reports_dir

    @property
    def reports_dir(self) -> Path:
        """Return the report directory."""
        return self._reports_dir

    def write_csv(self, rows: Sequence[ReportRow], *, now: datetime | None = None) -> Path:
        """Write the CSV report for a run.

        Args:
            rows: Report rows in processing order.
            now: Timestamp used in the file name (defaults to the current time).

        Returns:
            Path of the written file.
        """
        moment = now or datetime.now(tz=UTC)
        self._reports_dir.mkdir(parents=True, exist_ok=True)
        path = self._reports_dir / f"{REPORT_PREFIX}-{file_timestamp(moment)}.csv"
        path.write_text(render_csv(rows), encoding="utf-8")
        return path

    def write_summary(
        self,
        stats: RunStatistics,
        *,
        dry_run: bool,
        aborted: bool,
        report_path: Path | None,
        now: datetime | None = None,
    ) -> Path:
        """Write the JSON run summary.

        Returns:
            Path of the written file.
        """
        moment = now or datetime.now(tz=UTC)
        summary = SummaryReport(
            created_at=moment,
            dry_run=dry_run,
            aborted=aborted,
            report_path=str(report_path) if report_path is not None else None,
            counts=stats.as_dict(),
        )
        self._reports_dir.mkdir(parents=True, exist_ok=True)
        path = self._reports_dir / f"{SUMMARY_PREFIX}-{file_timestamp(moment)}.json"
        path.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
        return path
