"""Async Front API client with pagination, admission limiting and retries."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import httpx
from pydantic import ValidationError

from front_gmail_migration.config.settings import (
    DEFAULT_FRONT_BASE_URL,
    AppSettings,
    FrontSettings,
)
from front_gmail_migration.errors import AuthError, RemoteApiError, is_retryable
from front_gmail_migration.models.front import (
    FrontConversation,
    FrontInbox,
    FrontMessage,
    FrontTag,
)
from front_gmail_migration.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)


class FrontApiError(RemoteApiError):
    """Raised for failed Front API calls."""


class FrontAuthError(AuthError):
    """Raised when Front rejects the API token (HTTP 401)."""


@dataclass(frozen=True)
class ConversationPage:
    """One page of conversations plus the cursor for the next one."""

    conversations: list[FrontConversation]
    next_page: str | None


class FrontClient:
    """Read-only client for the Front REST API."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_FRONT_BASE_URL,
        concurrency: int = 2,
        page_size: int = 100,
        timeout_seconds: float = 30.0,
        retry: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Front API token.
            base_url: API root URL.
            concurrency: Maximum number of in-flight requests.
            page_size: Conversations requested per page.
            timeout_seconds: Per-request network timeout.
            retry: Backoff policy for transient failures.
            transport: Optional httpx transport (used by tests).
        """
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout_seconds,
            transport=transport,
        )
        self._sem = asyncio.Semaphore(concurrency)
        self._page_size = page_size
        self._retry = retry or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: AppSettings) -> FrontClient:
        """Create a Front client from application settings.

        Args:
            settings: Application settings; ``settings.front`` must be set.

        Returns:
            FrontClient instance.

        Raises:
            ValueError: If Front settings are missing.
        """
        front: FrontSettings | None = settings.front
        if front is None:
            raise ValueError("Front settings are missing. Set MIG_FRONT__API_KEY.")
        return cls(
            api_key=front.api_key.get_secret_value(),
            base_url=front.base_url,
            concurrency=settings.concurrency.front_requests,
            page_size=front.page_size,
            timeout_seconds=front.timeout_seconds,
            retry=RetryPolicy.from_settings(settings.retry),
        )

    async def __aenter__(self) -> FrontClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    async def _get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        description: str,
    ) -> dict[str, Any]:
        """GET a JSON document with admission limiting and retries.

        Args:
            url: Path relative to the base URL, or an absolute URL.
            params: Query parameters.
            description: Label for logs and errors.

        Returns:
            Decoded JSON body.

        Raises:
            FrontAuthError: If the token is rejected.
            FrontApiError: If the call fails after retries.
        """

        async def _attempt() -> dict[str, Any]:
            """Perform a single request and classify any failure."""
            async with self._sem:
                try:
                    resp = await self._http.get(url, params=params)
                except httpx.TransportError as exc:
                    raise FrontApiError(
                        f"Front {description} transport error: {exc!r}",
                        retryable=True,
                    ) from exc
            return _decode_response(resp, description=description)

        return await retry_async(
            _attempt,
            policy=self._retry,
            retry_if=is_retryable,
            description=f"Front {description}",
        )

    async def list_conversations_page(
        self,
        *,
        inbox_id: str | None = None,
        page: str | None = None,
    ) -> ConversationPage:
        """Fetch a single page of conversations.

        Args:
            inbox_id: Restrict to one inbox when given.
            page: Cursor returned by the previous page (URL or token).

        Returns:
            ConversationPage with parsed conversations and the next cursor.
        """
        if page and page.startswith(("http://", "https://")):
            url, params = page, None
        else:
            url = f"/inboxes/{inbox_id}/conversations" if inbox_id else "/conversations"
            params = {"limit": self._page_size, "include_messages": "true"}
            if page:
                params["page_token"] = page

        data = await self._get(url, params=params, description="list conversations")
        conversations = _parse_conversations(data.get("_results") or [])
        pagination = data.get("_pagination") or {}
        next_page = pagination.get("next") or None
        return ConversationPage(conversations=conversations, next_page=next_page)

    async def iter_conversations(
        self,
        *,
        inbox_id: str | None = None,
        hydrate_messages: bool = False,
    ) -> AsyncIterator[FrontConversation]:
        """Yield every conversation, following pagination until exhausted.

        Args:
            inbox_id: Restrict to one inbox when given.
            hydrate_messages: Fetch messages for conversations listed without any.

        Yields:
            Conversations in provider order.
        """
        page: str | None = None
        fetched = 0
        while True:
            result = await self.list_conversations_page(inbox_id=inbox_id, page=page)
            for conversation in result.conversations:
                if hydrate_messages and not conversation.messages:
                    messages = await self.list_conversation_messages(conversation.id)
                    conversation = conversation.model_copy(update={"messages": tuple(messages)})
                yield conversation
            fetched += len(result.conversations)
            if not result.next_page:
                return
            logger.info("Fetched %d conversations so far...", fetched)
            page = result.next_page

    async def list_all(
        self,
        *,
        inbox_id: str | None = None,
        hydrate_messages: bool = False,
    ) -> list[FrontConversation]:
        """Collect every conversation into a list (see ``iter_conversations``)."""
        return [
            conversation
            async for conversation in self.iter_conversations(
                inbox_id=inbox_id,
                hydrate_messages=hydrate_messages,
            )
        ]

    async def list_conversation_messages(self, conversation_id: str) -> list[FrontMessage]:
        """Fetch the messages of one conversation."""
        data = await self._get(
            f"/conversations/{conversation_id}/messages",
            description="list conversation messages",
        )
        return [FrontMessage.model_validate(raw) for raw in data.get("_results") or []]

    async def list_inboxes(self) -> list[FrontInbox]:
        """Fetch every inbox visible to the token."""
        data = await self._get("/inboxes", description="list inboxes")
        return [FrontInbox.model_validate(raw) for raw in data.get("_results") or []]

    async def list_tags(self) -> list[FrontTag]:
        """Fetch the tag taxonomy."""
        data = await self._get("/tags", description="list tags")
        return [FrontTag.model_validate(raw) for raw in data.get("_results") or []]


def _decode_response(resp: httpx.Response, *, description: str) -> dict[str, Any]:
    """Turn an HTTP response into JSON or a classified error.

    Args:
        resp: Response to inspect.
        description: Label for error messages.

    Returns:
        Decoded JSON body.

    Raises:
        FrontAuthError: On HTTP 401.
        FrontApiError: On any other non-2xx status or a non-object body.
    """
    status = resp.status_code
    if status == 401:
        raise FrontAuthError(f"Front rejected the API token: {_error_message(resp)}")
    if status >= 400:
        raise FrontApiError(
            f"Front {description} failed: HTTP {status} {_error_message(resp)}",
            status_code=status,
            retryable=status == 429 or status >= 500,
        )
    try:
        data = resp.json()
    except ValueError as exc:
        raise FrontApiError(
            f"Front {description} returned invalid JSON",
            status_code=status,
            retryable=False,
        ) from exc
    if not isinstance(data, dict):
        raise FrontApiError(
            f"Unexpected Front {description} response: {data!r}",
            status_code=status,
            retryable=False,
        )
    return data


def _error_message(resp: httpx.Response) -> str:
    """Extract Front's ``_error.message`` from an error body, if any."""
    try:
        body = resp.json()
    except ValueError:
        return resp.reason_phrase
    if isinstance(body, dict):
        err = body.get("_error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
    return resp.reason_phrase


def _parse_conversations(raw_items: list[Any]) -> list[FrontConversation]:
    """Validate listed conversations, dropping malformed ones with a warning."""
    conversations: list[FrontConversation] = []
    for raw in raw_items:
        try:
            conversations.append(FrontConversation.model_validate(raw))
        except ValidationError as exc:
            conversation_id = raw.get("id") if isinstance(raw, dict) else None
            logger.warning(
                "Skipping malformed Front conversation %s: %d validation error(s)",
                conversation_id or "<unknown>",
                exc.error_count(),
            )
            logger.debug("Validation details for %s: %s", conversation_id, exc)
    return conversations
