"""Gmail label reconciliation and thread mutation with a read-only guard."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import httplib2
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from front_gmail_migration.config.settings import AppSettings
from front_gmail_migration.errors import AuthError, MigrationError, RemoteApiError, is_retryable
from front_gmail_migration.gmail.auth import build_service
from front_gmail_migration.gmail.labels import GmailLabel, GmailLabelCache, GmailLabelError
from front_gmail_migration.models.types import GmailSystemLabelId
from front_gmail_migration.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

MAX_BATCH_MODIFY_IDS = 1000

RATE_LIMIT_REASONS: frozenset[str] = frozenset(
    {"rateLimitExceeded", "userRateLimitExceeded", "backendError"},
)


class GmailApiError(RemoteApiError):
    """Raised for failed Gmail API calls."""


class GmailAuthError(AuthError):
    """Raised when Gmail rejects or cannot refresh the OAuth credentials."""


class BlockedWriteError(MigrationError):
    """Raised when a mutating call is attempted on a read-only client."""


@dataclass(frozen=True)
class ThreadMatch:
    """Result of an exact Message-ID lookup."""

    message_id: str
    thread_id: str
    result_count: int = 1


class GmailTargetClient:
    """Rate-limited Gmail client for label reconciliation and label mutation.

    The label cache is owned by the instance. Every mutating method raises
    ``BlockedWriteError`` when the client was built with ``read_only=True``.
    """

    def __init__(
        self,
        *,
        service: Any,
        read_only: bool,
        user_id: str = "me",
        concurrency: int = 5,
        retry: RetryPolicy | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            service: Gmail API service object.
            read_only: Block every mutating call when True.
            user_id: Target Gmail user identifier (email or "me").
            concurrency: Maximum number of in-flight API calls.
            retry: Backoff policy for transient failures.
        """
        self._service = service
        self._read_only = read_only
        self._user_id = user_id
        self._sem = asyncio.Semaphore(concurrency)
        self._retry = retry or RetryPolicy()
        self._labels = GmailLabelCache()
        self._label_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: AppSettings, *, read_only: bool) -> GmailTargetClient:
        """Create a target client using configured OAuth settings.

        Args:
            settings: Application settings.
            read_only: Block every mutating call when True.

        Returns:
            GmailTargetClient instance.
        """
        service = build_service(settings.gmail)
        return cls(
            service=service,
            read_only=read_only,
            user_id=settings.gmail.user_id,
            concurrency=settings.concurrency.gmail_requests,
            retry=RetryPolicy.from_settings(settings.retry),
        )

    @property
    def read_only(self) -> bool:
        """Return True when mutating calls are blocked."""
        return self._read_only

    def _guard(self, operation: str) -> None:
        """Refuse a write on a read-only client.

        Raises:
            BlockedWriteError: If the client is read-only.
        """
        if self._read_only:
            raise BlockedWriteError(f"Blocked Gmail write in read-only mode: {operation}")

    async def _execute(self, build: Callable[[], Any], *, description: str) -> Any:
        """Execute a Google API request in a thread with limiting and retries.

        Args:
            build: Returns the (unexecuted) API request object.
            description: Label for logs and errors.

        Returns:
            Decoded API response.
        """

        async def _attempt() -> Any:
            """Run one request and classify any failure."""
            async with self._sem:
                try:
                    return await asyncio.to_thread(lambda: build().execute())
                except HttpError as exc:
                    raise _classify_http_error(exc, description=description) from exc
                except RefreshError as exc:
                    raise GmailAuthError(f"Gmail credentials could not be refreshed: {exc}") from exc
                except (ConnectionError, TimeoutError, httplib2.HttpLib2Error) as exc:
                    raise GmailApiError(
                        f"Gmail {description} transport error: {exc!r}",
                        retryable=True,
                    ) from exc

        return await retry_async(
            _attempt,
            policy=self._retry,
            retry_if=is_retryable,
            description=f"Gmail {description}",
        )

    async def _refresh_labels(self) -> list[GmailLabel]:
        """Re-list labels and replace the cache; caller holds the label lock."""
        resp = await self._execute(
            lambda: self._service.users().labels().list(userId=self._user_id),
            description="list labels",
        )
        raw_labels = resp.get("labels", []) if isinstance(resp, dict) else []
        labels = [label for label in map(GmailLabel.from_api, raw_labels) if label is not None]
        self._labels.replace_all(labels)
        return labels

    async def list_labels(self) -> list[GmailLabel]:
        """List labels and populate the name → id cache."""
        async with self._label_lock:
            return await self._refresh_labels()

    def cached_label_id(self, name: str) -> str | None:
        """Return the cached label id for ``name`` (case-insensitive)."""
        label = self._labels.get(name)
        return label.id if label is not None else None

    async def ensure_label(self, name: str) -> GmailLabel:
        """Return the label called ``name``, creating it if needed.

        Args:
            name: Label name.

        Returns:
            The existing or newly created label.

        Raises:
            BlockedWriteError: If the client is read-only.
            GmailLabelError: If the name is blank or the create response is malformed.
        """
        self._guard("ensure_label")
        async with self._label_lock:
            return await self._ensure_label_locked(name)

    async def ensure_labels(self, names: Iterable[str]) -> dict[str, str]:
        """Ensure every label exists, listing existing labels first.

        Args:
            names: Label names.

        Returns:
            Mapping of each requested name to its label id.

        Raises:
            BlockedWriteError: If the client is read-only.
        """
        self._guard("ensure_labels")
        result: dict[str, str] = {}
        async with self._label_lock:
            await self._refresh_labels()
            for name in names:
                label = await self._ensure_label_locked(name)
                result[name] = label.id
        return result

    async def _ensure_label_locked(self, name: str) -> GmailLabel:
        """Create-if-missing under the label lock."""
        normalized = name.strip()
        if not normalized:
            raise GmailLabelError("Label name must not be blank")

        cached = self._labels.get(normalized)
        if cached is not None:
            return cached

        body = {
            "name": normalized,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        try:
            created = await self._execute(
                lambda: self._service.users().labels().create(userId=self._user_id, body=body),
                description="create label",
            )
        except GmailApiError as exc:
            if exc.status_code != 409:
                raise
            logger.info("Label %r already exists; refreshing label cache", normalized)
            await self._refresh_labels()
            existing = self._labels.get(normalized)
            if existing is None:
                raise GmailLabelError(
                    f"Label {normalized!r} conflicts but was not found after re-listing",
                ) from exc
            return existing

        label = GmailLabel.from_api(created)
        if label is None:
            raise GmailLabelError(f"Unexpected label create response: {created!r}")
        self._labels.put(label)
        logger.debug("Created label %r (%s)", label.name, label.id)
        return label

    async def find_by_message_id(self, identifier: str) -> ThreadMatch | None:
        """Find the Gmail message whose RFC Message-ID equals ``identifier``.

        Args:
            identifier: Message-ID without angle brackets.

        Returns:
            ThreadMatch for the first hit, or None if nothing matches.

        Raises:
            ValueError: If the identifier is blank or contains whitespace.
        """
        cleaned = identifier.strip()
        if not cleaned or any(ch.isspace() for ch in cleaned):
            raise ValueError(f"Unusable Message-ID for exact lookup: {identifier!r}")
        query = f"rfc822msgid:{cleaned}"

        resp = await self._execute(
            lambda: self._service.users()
            .messages()
            .list(userId=self._user_id, q=query, maxResults=1),
            description="message lookup",
        )
        messages = resp.get("messages") if isinstance(resp, dict) else None
        if not messages:
            return None

        first = messages[0]
        message_id = str(first["id"])
        thread_id = first.get("threadId")
        if not thread_id:
            full = await self._execute(
                lambda: self._service.users()
                .messages()
                .get(userId=self._user_id, id=message_id, format="minimal"),
                description="message get",
            )
            thread_id = full.get("threadId") if isinstance(full, dict) else None
        if not thread_id:
            raise GmailApiError(
                f"Gmail message {message_id} has no thread id",
                retryable=False,
            )
        return ThreadMatch(
            message_id=message_id,
            thread_id=str(thread_id),
            result_count=len(messages),
        )

    async def modify_thread(
        self,
        thread_id: str,
        add_label_ids: list[str],
        remove_label_ids: list[str],
    ) -> None:
        """Apply label changes to every message of a thread.

        Raises:
            BlockedWriteError: If the client is read-only.
        """
        self._guard("modify_thread")
        body = {"addLabelIds": list(add_label_ids), "removeLabelIds": list(remove_label_ids)}
        await self._execute(
            lambda: self._service.users()
            .threads()
            .modify(userId=self._user_id, id=thread_id, body=body),
            description="thread modify",
        )

    async def modify_message(
        self,
        message_id: str,
        add_label_ids: list[str],
        remove_label_ids: list[str],
    ) -> None:
        """Apply label changes to a single message.

        Raises:
            BlockedWriteError: If the client is read-only.
        """
        self._guard("modify_message")
        body = {"addLabelIds": list(add_label_ids), "removeLabelIds": list(remove_label_ids)}
        await self._execute(
            lambda: self._service.users()
            .messages()
            .modify(userId=self._user_id, id=message_id, body=body),
            description="message modify",
        )

    async def batch_modify(
        self,
        message_ids: list[str],
        add_label_ids: list[str],
        remove_label_ids: list[str],
    ) -> None:
        """Apply label changes to many messages, 1000 ids per request.

        Raises:
            BlockedWriteError: If the client is read-only.
        """
        self._guard("batch_modify")
        for start in range(0, len(message_ids), MAX_BATCH_MODIFY_IDS):
            body = {
                "ids": message_ids[start : start + MAX_BATCH_MODIFY_IDS],
                "addLabelIds": list(add_label_ids),
                "removeLabelIds": list(remove_label_ids),
            }
            await self._execute(
                lambda body=body: self._service.users()
                .messages()
                .batchModify(userId=self._user_id, body=body),
                description="batch modify",
            )

    async def archive_messages(self, message_ids: list[str]) -> None:
        """Remove the INBOX label from the given messages."""
        await self.batch_modify(message_ids, [], [GmailSystemLabelId.inbox.value])


def _error_reasons(exc: HttpError) -> set[str]:
    """Return the provider reason codes embedded in an error body."""
    content = exc.content
    try:
        text = content.decode("utf-8") if isinstance(content, bytes) else str(content)
        body = json.loads(text)
    except (UnicodeDecodeError, ValueError):
        return set()
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return set()
    reasons = set()
    for item in error.get("errors") or []:
        if isinstance(item, dict) and item.get("reason"):
            reasons.add(str(item["reason"]))
    return reasons


def _classify_http_error(exc: HttpError, *, description: str) -> MigrationError:
    """Map an ``HttpError`` to an auth error or a classified API error."""
    status = int(exc.resp.status)
    if status == 401:
        return GmailAuthError(f"Gmail rejected the credentials during {description}: {exc}")
    reasons = _error_reasons(exc)
    retryable = status == 429 or status >= 500 or bool(reasons & RATE_LIMIT_REASONS)
    message = f"Gmail {description} failed: HTTP {status}"
    if reasons:
        message += f" ({', '.join(sorted(reasons))})"
    return GmailApiError(
        message,
        status_code=status,
        retryable=retryable,
    )
