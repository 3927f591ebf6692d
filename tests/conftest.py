"""Shared fakes for Front and Gmail."""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Callable
from typing import Any

import httplib2
import pytest
from googleapiclient.errors import HttpError

from front_gmail_migration.models.front import FrontConversation
from front_gmail_migration.utils.retry import RetryPolicy

NO_DELAY = RetryPolicy(attempts=3, base_delay_s=0.0, max_delay_s=0.0, jitter_s=0.0)


def make_http_error(status: int, reason: str | None = None) -> HttpError:
    """Build a googleapiclient HttpError with an optional reason code."""
    errors = [{"reason": reason, "message": reason}] if reason else []
    content = {"error": {"code": status, "message": f"HTTP {status}", "errors": errors}}
    return HttpError(httplib2.Response({"status": status}), json.dumps(content).encode("utf-8"))


class FakeRequest:
    """Mimics an unexecuted googleapiclient request."""

    def __init__(self, run: Callable[[], Any]) -> None:
        self._run = run

    def execute(self) -> Any:
        return self._run()


class _Resource:
    """Resolves ``service.users().<kind>().<method>(**kwargs)`` to a handler."""

    def __init__(self, service: FakeGmailService, kind: str) -> None:
        self._service = service
        self._kind = kind

    def __getattr__(self, method: str) -> Callable[..., FakeRequest]:
        handler = getattr(self._service, f"_{self._kind}_{method}")
        op = f"{self._kind}.{method}"
        return lambda **kwargs: self._service.request(op, kwargs, handler)


class FakeGmailService:
    """In-memory stand-in for the Gmail API service object."""

    def __init__(
        self,
        *,
        labels: list[dict[str, str]] | None = None,
        messages_by_rfc_id: dict[str, dict[str, str]] | None = None,
    ) -> None:
        self.label_rows: list[dict[str, str]] = [dict(row) for row in labels or []]
        self.messages_by_rfc_id = dict(messages_by_rfc_id or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, list[BaseException]] = defaultdict(list)
        self._next_label = 1

    def users(self) -> FakeGmailService:
        return self

    def labels(self) -> _Resource:
        return _Resource(self, "labels")

    def messages(self) -> _Resource:
        return _Resource(self, "messages")

    def threads(self) -> _Resource:
        return _Resource(self, "threads")

    def request(
        self,
        op: str,
        kwargs: dict[str, Any],
        handler: Callable[..., Any],
    ) -> FakeRequest:
        def _run() -> Any:
            self.calls.append((op, kwargs))
            pending = self.failures.get(op)
            if pending:
                raise pending.pop(0)
            return handler(**kwargs)

        return FakeRequest(_run)

    def calls_to(self, op: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == op]

    def mutating_calls(self) -> list[str]:
        mutating = {
            "labels.create",
            "threads.modify",
            "messages.modify",
            "messages.batchModify",
        }
        return [name for name, _ in self.calls if name in mutating]

    def _labels_list(self, *, userId: str) -> dict[str, Any]:
        return {"labels": [dict(row) for row in self.label_rows]}

    def _labels_create(self, *, userId: str, body: dict[str, Any]) -> dict[str, Any]:
        if any(row["name"].casefold() == body["name"].casefold() for row in self.label_rows):
            raise make_http_error(409)
        row = {"id": f"Label_{self._next_label}", "name": body["name"], "type": "user"}
        self._next_label += 1
        self.label_rows.append(row)
        return dict(row)

    def _messages_list(self, *, userId: str, q: str, maxResults: int) -> dict[str, Any]:
        hit = self.messages_by_rfc_id.get(q.removeprefix("rfc822msgid:"))
        if hit is None:
            return {"resultSizeEstimate": 0}
        return {"messages": [dict(hit)], "resultSizeEstimate": 1}

    def _messages_get(self, *, userId: str, id: str, format: str) -> dict[str, Any]:
        for hit in self.messages_by_rfc_id.values():
            if hit["id"] == id:
                return {"id": id, "threadId": hit.get("fullThreadId", f"thread-of-{id}")}
        raise make_http_error(404)

    def _messages_modify(self, *, userId: str, id: str, body: dict[str, Any]) -> dict[str, Any]:
        return {"id": id}

    def _messages_batchModify(self, *, userId: str, body: dict[str, Any]) -> dict[str, Any]:
        return {}

    def _threads_modify(self, *, userId: str, id: str, body: dict[str, Any]) -> dict[str, Any]:
        return {"id": id}


def conversation_payload(
    conversation_id: str,
    *,
    status: str = "unarchived",
    tags: tuple[str, ...] = (),
    message_id: str | None = "<msg-1@example.com>",
    message_type: str = "email",
    subject: str = "Hello",
    created_at: float = 1_700_000_000.0,
) -> dict[str, Any]:
    """Return a Front API conversation document."""
    message: dict[str, Any] = {
        "id": f"msg_{conversation_id}",
        "type": message_type,
        "from": {"handle": "Alice@Example.com"},
        "recipients": [{"handle": "bob@example.com", "role": "to"}],
        "created_at": created_at,
    }
    if message_id is not None:
        message["metadata"] = {"headers": {"message-id": message_id}}
    return {
        "id": conversation_id,
        "subject": subject,
        "status": status,
        "tags": [{"id": f"tag_{name}", "name": name} for name in tags],
        "messages": [message],
        "created_at": created_at,
    }


@pytest.fixture
def make_conversation() -> Callable[..., FrontConversation]:
    """Factory for validated Front conversations."""

    def _make(conversation_id: str, **kwargs: Any) -> FrontConversation:
        return FrontConversation.model_validate(conversation_payload(conversation_id, **kwargs))

    return _make
