"""Sequential orchestration of a Front → Gmail metadata migration run."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from typing import TypeVar, cast

from front_gmail_migration.config.settings import MigrationSettings
from front_gmail_migration.errors import AuthError, MigrationError
from front_gmail_migration.gmail.target import BlockedWriteError, ThreadMatch
from front_gmail_migration.mapping.mapper import (
    STATUS_LABEL_ARCHIVED,
    STATUS_LABEL_INBOX,
    map_conversation,
    status_labels,
)
from front_gmail_migration.models.migration import (
    MigrationItem,
    ReportRow,
    RunResult,
    RunStatistics,
)
from front_gmail_migration.models.types import MatchMethod, ReportAction
from front_gmail_migration.protocols import SourceReader, TargetReader, TargetWriter
from front_gmail_migration.storage.report_writer import ReportWriter

logger = logging.getLogger(__name__)

T = TypeVar("T")

REASON_MISSING_IDENTIFIER = "missing identifier"
REASON_SKIP_ARCHIVED = "skip_archived=true"

ProgressSink = Callable[[RunStatistics], None]

# Errors that end the whole run instead of failing a single item.
_FATAL_ERRORS: tuple[type[BaseException], ...] = (AuthError, BlockedWriteError)


class LabelReconcileError(MigrationError):
    """Raised when the Gmail label taxonomy could not be prepared."""


def iter_batches(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``.

    Args:
        items: Items in processing order.
        size: Batch size (>= 1).

    Yields:
        Lists covering every item exactly once, in order.

    Raises:
        ValueError: If ``size`` is not positive.
    """
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def required_labels(items: Sequence[MigrationItem]) -> list[str]:
    """Return every label name the run needs, first-seen order, both status labels last."""
    names: list[str] = []
    seen: set[str] = set()
    for name in [label for item in items for label in item.labels] + [
        STATUS_LABEL_ARCHIVED,
        STATUS_LABEL_INBOX,
    ]:
        key = name.casefold()
        if key not in seen:
            seen.add(key)
            names.append(name)
    return names


class MigrationOrchestrator:
    """Drives fetch → map → reconcile → batch → mutate → report."""

    def __init__(
        self,
        *,
        source: SourceReader,
        target: TargetReader,
        settings: MigrationSettings,
        report_writer: ReportWriter | None = None,
        on_progress: ProgressSink | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            source: Front reader.
            target: Gmail client; must be writable unless ``settings.dry_run``.
            settings: Run configuration.
            report_writer: Destination for the audit report (None to skip).
            on_progress: Best-effort callback invoked after every item.
            sleep: Awaitable sleep used between batches.

        Raises:
            ValueError: If a live run is requested with a read-only target.
        """
        self._source = source
        self._target = target
        self._s = settings
        self._report_writer = report_writer
        self._on_progress = on_progress
        self._sleep = sleep

        self._writer: TargetWriter | None = None
        if not settings.dry_run:
            if target.read_only:
                raise ValueError("A live run requires a writable Gmail client (read_only=False).")
            self._writer = cast(TargetWriter, target)

    @property
    def dry_run(self) -> bool:
        """Return True when no Gmail write may happen."""
        return self._writer is None

    async def run(self) -> RunResult:
        """Run the migration once over a snapshot of Front conversations.

        Returns:
            RunResult with counters, report rows and report paths.

        Raises:
            AuthError: If either system rejects the credentials.
            LabelReconcileError: If labels could not be created in live mode.
            BlockedWriteError: If a write reached a read-only client.
        """
        stats = RunStatistics()
        rows: list[ReportRow] = []

        logger.info(
            "Migration starting (dry_run=%s, batch_size=%d, skip_archived=%s, inbox=%s)",
            self.dry_run,
            self._s.batch_size,
            self._s.skip_archived,
            self._s.inbox_id or "all",
        )
        if self.dry_run:
            logger.warning("DRY RUN MODE - no changes will be made to Gmail")

        try:
            items = await self._load_items()
            stats.total = len(items)
            await self._reconcile_labels(items)
            await self._process_batches(items, stats=stats, rows=rows)
        except Exception:
            logger.error(
                "Migration aborted after %d of %d items; flushing partial report",
                stats.processed,
                stats.total,
            )
            self._persist(stats=stats, rows=rows, aborted=True)
            raise

        self._log_summary(stats)
        return self._persist(stats=stats, rows=rows, aborted=False)

    async def _load_items(self) -> list[MigrationItem]:
        """Fetch every conversation and map it, preserving provider order."""
        logger.info("Fetching conversations from Front...")
        conversations = await self._source.list_all(
            inbox_id=self._s.inbox_id,
            hydrate_messages=self._s.hydrate_messages,
        )
        logger.info("Found %d conversations in Front", len(conversations))
        return [map_conversation(conversation) for conversation in conversations]

    async def _reconcile_labels(self, items: Sequence[MigrationItem]) -> None:
        """Make sure every needed label exists before any item is touched."""
        names = required_labels(items)
        if self._writer is None:
            logger.info(
                "[DRY RUN] Would create/verify %d labels in Gmail: %s",
                len(names),
                ", ".join(names),
            )
            return

        logger.info("Creating/verifying %d labels in Gmail...", len(names))
        try:
            label_map = await self._writer.ensure_labels(names)
        except _FATAL_ERRORS:
            raise
        except Exception as exc:
            raise LabelReconcileError(f"Failed to prepare Gmail labels: {exc}") from exc
        logger.info("Labels ready: %s", ", ".join(label_map))

    async def _process_batches(
        self,
        items: Sequence[MigrationItem],
        *,
        stats: RunStatistics,
        rows: list[ReportRow],
    ) -> None:
        """Process batches one after another, pausing between them."""
        batches = list(iter_batches(items, self._s.batch_size))
        for index, batch in enumerate(batches):
            logger.info("Processing batch %d/%d (%d items)", index + 1, len(batches), len(batch))
            for item in batch:
                rows.append(await self._process_item(item, stats=stats))
                stats.processed += 1
                self._emit_progress(stats)
            if index < len(batches) - 1 and self._s.batch_delay_s > 0:
                await self._sleep(self._s.batch_delay_s)

    async def _process_item(self, item: MigrationItem, *, stats: RunStatistics) -> ReportRow:
        """Decide and (in live mode) apply the outcome for a single item."""
        if not item.rfc_message_id:
            logger.debug("Skipping (missing Message-ID): %s", item.subject)
            stats.skipped += 1
            return _row(
                item,
                match_method=MatchMethod.none,
                action=ReportAction.skipped,
                reason=REASON_MISSING_IDENTIFIER,
            )

        if self._s.skip_archived and item.is_archived:
            logger.debug("Skipping archived conversation: %s", item.subject)
            stats.skipped += 1
            return _row(
                item,
                match_method=MatchMethod.message_id,
                action=ReportAction.skipped,
                reason=REASON_SKIP_ARCHIVED,
            )

        match: ThreadMatch | None = None
        try:
            logger.debug("Looking up Gmail by Message-ID: %s", item.rfc_message_id)
            match = await self._target.find_by_message_id(item.rfc_message_id)
            if match is None:
                logger.debug("No Gmail match found for: %s", item.subject)
                stats.no_match += 1
                return _row(item, match_method=MatchMethod.message_id, action=ReportAction.no_match)

            stats.matched += 1
            status_add, status_remove = status_labels(is_archived=item.is_archived)
            labels_to_add = (*item.labels, status_add)
            labels_to_remove = (status_remove,)

            if self._writer is None:
                logger.info(
                    "[DRY RUN] Would update thread %s: add=%s remove=%s",
                    match.thread_id,
                    ", ".join(labels_to_add),
                    ", ".join(labels_to_remove),
                )
                return _row(
                    item,
                    match_method=MatchMethod.message_id,
                    action=ReportAction.dry_run,
                    match=match,
                    labels_to_add=labels_to_add,
                    labels_to_remove=labels_to_remove,
                )

            add_ids = self._resolve_label_ids(labels_to_add, item=item)
            remove_ids = self._resolve_label_ids(labels_to_remove, item=item)
            await self._writer.modify_thread(match.thread_id, add_ids, remove_ids)

            stats.labeled += len(add_ids)
            if item.is_archived:
                stats.status_archived += 1
            else:
                stats.status_inbox += 1
            logger.debug("Applied %d labels to thread %s", len(add_ids), match.thread_id)
            return _row(
                item,
                match_method=MatchMethod.message_id,
                action=ReportAction.applied,
                match=match,
                labels_to_add=labels_to_add,
                labels_to_remove=labels_to_remove,
            )
        except _FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.error(
                "Failed to process conversation %s (%s): %r",
                item.front_conversation_id,
                item.subject,
                exc,
            )
            stats.failed += 1
            return _row(
                item,
                match_method=MatchMethod.message_id,
                action=ReportAction.failed,
                match=match,
                reason=str(exc) or exc.__class__.__name__,
            )

    def _resolve_label_ids(self, names: Sequence[str], *, item: MigrationItem) -> list[str]:
        """Map label names to cached ids, skipping (and logging) unknown names."""
        ids: list[str] = []
        for name in names:
            label_id = self._target.cached_label_id(name)
            if label_id is None:
                logger.warning(
                    "Label %r not in cache; skipping it for conversation %s",
                    name,
                    item.front_conversation_id,
                )
                continue
            ids.append(label_id)
        return ids

    def _emit_progress(self, stats: RunStatistics) -> None:
        """Send the running counters to the progress sink, ignoring its failures."""
        if self._on_progress is None:
            return
        try:
            self._on_progress(stats)
        except Exception as exc:
            logger.warning("Progress sink failed: %r", exc)

    def _persist(self, *, stats: RunStatistics, rows: list[ReportRow], aborted: bool) -> RunResult:
        """Write the report files; write failures are logged, not raised."""
        result = RunResult(stats=stats, rows=list(rows), dry_run=self.dry_run, aborted=aborted)
        if self._report_writer is None:
            return result
        try:
            result.report_path = self._report_writer.write_csv(result.rows)
            logger.info("CSV report written to %s", result.report_path)
            result.summary_path = self._report_writer.write_summary(
                stats,
                dry_run=self.dry_run,
                aborted=aborted,
                report_path=result.report_path,
            )
        except OSError as exc:
            logger.error("Failed to write migration report: %r", exc)
        return result

    def _log_summary(self, stats: RunStatistics) -> None:
        """Log the final counters."""
        logger.info(
            "Migration summary: total=%d processed=%d matched=%d labeled=%d "
            "archived/inbox=%d/%d no_match=%d skipped=%d failed=%d",
            stats.total,
            stats.processed,
            stats.matched,
            stats.labeled,
            stats.status_archived,
            stats.status_inbox,
            stats.no_match,
            stats.skipped,
            stats.failed,
        )


def _row(
    item: MigrationItem,
    *,
    match_method: MatchMethod,
    action: ReportAction,
    match: ThreadMatch | None = None,
    labels_to_add: Sequence[str] = (),
    labels_to_remove: Sequence[str] = (),
    reason: str | None = None,
) -> ReportRow:
    """Build a report row for ``item``."""
    return ReportRow(
        front_conversation_id=item.front_conversation_id,
        subject=item.subject,
        created_at=item.created_at,
        is_archived=item.is_archived,
        match_method=match_method,
        gmail_results=match.result_count if match is not None else 0,
        gmail_message_id=match.message_id if match is not None else None,
        thread_id=match.thread_id if match is not None else None,
        labels_to_add=tuple(labels_to_add),
        labels_to_remove=tuple(labels_to_remove),
        action=action,
        reason=reason,
    )
