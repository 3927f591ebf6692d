"""Tests for the Gmail target client."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

import pytest
from conftest import NO_DELAY, FakeGmailService, make_http_error

from front_gmail_migration.gmail.target import (
    MAX_BATCH_MODIFY_IDS,
    BlockedWriteError,
    GmailApiError,
    GmailAuthError,
    GmailTargetClient,
    ThreadMatch,
)

SYSTEM_LABELS = [
    {"id": "INBOX", "name": "INBOX", "type": "system"},
    {"id": "Label_existing", "name": "Front/Important", "type": "user"},
]


def _client(service: FakeGmailService, *, read_only: bool = False) -> GmailTargetClient:
    return GmailTargetClient(service=service, read_only=read_only, retry=NO_DELAY)


def test_list_labels_populates_case_insensitive_cache() -> None:
    """Listing fills the cache; lookups ignore case."""
    client = _client(FakeGmailService(labels=SYSTEM_LABELS))
    labels = asyncio.run(client.list_labels())

    assert {label.name for label in labels} == {"INBOX", "Front/Important"}
    assert client.cached_label_id("front/important") == "Label_existing"
    assert client.cached_label_id("inbox") == "INBOX"
    assert client.cached_label_id("Front/Unknown") is None


def test_ensure_label_is_idempotent() -> None:
    """Ensuring the same name twice creates one label."""
    service = FakeGmailService()
    client = _client(service)

    async def _run() -> tuple[str, str]:
        first = await client.ensure_label("Front/New")
        second = await client.ensure_label("front/new")
        return first.id, second.id

    first_id, second_id = asyncio.run(_run())
    assert first_id == second_id
    assert len(service.calls_to("labels.create")) == 1


def test_ensure_labels_reuses_existing_and_creates_missing() -> None:
    """Existing labels are not re-created."""
    service = FakeGmailService(labels=SYSTEM_LABELS)
    client = _client(service)

    mapping = asyncio.run(client.ensure_labels(["Front/Important", "Front/Status/Inbox"]))

    assert mapping["Front/Important"] == "Label_existing"
    assert mapping["Front/Status/Inbox"].startswith("Label_")
    assert [c["body"]["name"] for c in service.calls_to("labels.create")] == [
        "Front/Status/Inbox",
    ]


def test_ensure_label_recovers_from_create_conflict() -> None:
    """A 409 from a concurrent creator is resolved by re-listing."""
    service = FakeGmailService()
    client = _client(service)
    asyncio.run(client.list_labels())
    # Another actor creates the label after our listing.
    service.label_rows.append({"id": "Label_race", "name": "Front/Race", "type": "user"})

    label = asyncio.run(client.ensure_label("Front/Race"))

    assert label.id == "Label_race"
    assert client.cached_label_id("Front/Race") == "Label_race"


def test_concurrent_ensure_label_creates_once() -> None:
    """Concurrent ensure calls for one name serialize on the cache lock."""
    service = FakeGmailService()
    client = _client(service)

    async def _run() -> set[str]:
        labels = await asyncio.gather(*(client.ensure_label("Front/Same") for _ in range(5)))
        return {label.id for label in labels}

    assert len(asyncio.run(_run())) == 1
    assert len(service.calls_to("labels.create")) == 1


@pytest.mark.parametrize(
    "operation",
    [
        lambda c: c.ensure_label("Front/X"),
        lambda c: c.ensure_labels(["Front/X"]),
        lambda c: c.modify_thread("t1", ["L1"], []),
        lambda c: c.modify_message("m1", ["L1"], []),
        lambda c: c.batch_modify(["m1"], ["L1"], []),
        lambda c: c.archive_messages(["m1"]),
    ],
)
def test_read_only_client_blocks_every_write(
    operation: Callable[[GmailTargetClient], Coroutine[Any, Any, Any]],
) -> None:
    """Each mutating method raises before reaching the API, every time."""
    service = FakeGmailService()
    client = _client(service, read_only=True)

    for _ in range(2):
        with pytest.raises(BlockedWriteError):
            asyncio.run(operation(client))
    assert service.calls == []


def test_read_only_client_still_reads() -> None:
    """Lookups and label listing work in read-only mode."""
    service = FakeGmailService(
        labels=SYSTEM_LABELS,
        messages_by_rfc_id={"abc@x": {"id": "m1", "threadId": "t1"}},
    )
    client = _client(service, read_only=True)

    asyncio.run(client.list_labels())
    match = asyncio.run(client.find_by_message_id("abc@x"))

    assert match == ThreadMatch(message_id="m1", thread_id="t1", result_count=1)
    assert service.mutating_calls() == []


def test_find_by_message_id_uses_exact_query() -> None:
    """The lookup is a single rfc822msgid query limited to one result."""
    service = FakeGmailService(messages_by_rfc_id={"abc@x": {"id": "m1", "threadId": "t1"}})
    client = _client(service)

    assert asyncio.run(client.find_by_message_id("nothing@x")) is None
    assert service.calls_to("messages.list") == [
        {"userId": "me", "q": "rfc822msgid:nothing@x", "maxResults": 1},
    ]


def test_find_by_message_id_fetches_thread_when_missing() -> None:
    """A listing without threadId falls back to a minimal message get."""
    service = FakeGmailService(
        messages_by_rfc_id={"abc@x": {"id": "m1", "fullThreadId": "t9"}},
    )
    client = _client(service)

    match = asyncio.run(client.find_by_message_id("abc@x"))

    assert match is not None
    assert match.thread_id == "t9"
    assert service.calls_to("messages.get")[0]["format"] == "minimal"


def test_find_by_message_id_rejects_whitespace() -> None:
    """Identifiers that would turn the query into a search are refused."""
    client = _client(FakeGmailService())
    with pytest.raises(ValueError):
        asyncio.run(client.find_by_message_id("a b@x"))


def test_lookup_retries_rate_limit_reason_codes() -> None:
    """A 403 carrying a rate-limit reason is retried like a 429."""
    service = FakeGmailService(messages_by_rfc_id={"abc@x": {"id": "m1", "threadId": "t1"}})
    service.failures["messages.list"] = [
        make_http_error(403, "userRateLimitExceeded"),
        make_http_error(429),
    ]
    client = _client(service)

    match = asyncio.run(client.find_by_message_id("abc@x"))

    assert match is not None
    assert len(service.calls_to("messages.list")) == 3


def test_forbidden_without_rate_limit_reason_is_not_retried() -> None:
    """A plain 403 fails on the first attempt."""
    service = FakeGmailService()
    service.failures["messages.list"] = [make_http_error(403, "insufficientPermissions")]
    client = _client(service)

    with pytest.raises(GmailApiError) as excinfo:
        asyncio.run(client.find_by_message_id("abc@x"))
    assert excinfo.value.status_code == 403
    assert len(service.calls_to("messages.list")) == 1


def test_unauthorized_raises_auth_error_without_retry() -> None:
    """HTTP 401 is an authentication failure, never retried."""
    service = FakeGmailService()
    service.failures["labels.list"] = [make_http_error(401)]
    client = _client(service)

    with pytest.raises(GmailAuthError):
        asyncio.run(client.list_labels())
    assert len(service.calls_to("labels.list")) == 1


def test_modify_thread_sends_label_changes() -> None:
    """Thread modification targets the whole thread."""
    service = FakeGmailService()
    client = _client(service)

    asyncio.run(client.modify_thread("t1", ["L1", "L2"], ["L3"]))

    assert service.calls_to("threads.modify") == [
        {
            "userId": "me",
            "id": "t1",
            "body": {"addLabelIds": ["L1", "L2"], "removeLabelIds": ["L3"]},
        },
    ]


def test_batch_modify_chunks_ids() -> None:
    """Bulk modification issues one call per 1000 ids."""
    service = FakeGmailService()
    client = _client(service)
    ids = [f"m{i}" for i in range(MAX_BATCH_MODIFY_IDS * 2 + 5)]

    asyncio.run(client.batch_modify(ids, ["L1"], []))

    chunks = [call["body"]["ids"] for call in service.calls_to("messages.batchModify")]
    assert [len(chunk) for chunk in chunks] == [1000, 1000, 5]
    assert [i for chunk in chunks for i in chunk] == ids


def test_batch_modify_with_no_ids_makes_no_call() -> None:
    """Empty id lists are a no-op."""
    service = FakeGmailService()
    asyncio.run(_client(service).batch_modify([], ["L1"], []))
    assert service.calls == []


def test_archive_messages_removes_inbox() -> None:
    """Archiving removes the INBOX system label."""
    service = FakeGmailService()
    asyncio.run(_client(service).archive_messages(["m1", "m2"]))
    body = service.calls_to("messages.batchModify")[0]["body"]
    assert body == {"ids": ["m1", "m2"], "addLabelIds": [], "removeLabelIds": ["INBOX"]}
