"""Protocols describing what the orchestrator needs from each remote system.

The target side is split into a read capability and a write capability. A
dry run only ever needs ``TargetReader``; the live branch additionally calls
the ``TargetWriter`` methods, which a read-only client refuses.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from front_gmail_migration.gmail.labels import GmailLabel
    from front_gmail_migration.gmail.target import ThreadMatch
    from front_gmail_migration.models.front import FrontConversation


class SourceReader(Protocol):
    """Read access to source conversations."""

    async def list_all(
        self,
        *,
        inbox_id: str | None = None,
        hydrate_messages: bool = False,
    ) -> list[FrontConversation]:
        """Return every conversation, in provider order."""
        ...


class TargetReader(Protocol):
    """Non-mutating target operations."""

    @property
    def read_only(self) -> bool:
        """Return True when writes are blocked."""
        ...

    async def list_labels(self) -> list[GmailLabel]:
        """List labels and populate the cache."""
        ...

    def cached_label_id(self, name: str) -> str | None:
        """Return a cached label id, if known."""
        ...

    async def find_by_message_id(self, identifier: str) -> ThreadMatch | None:
        """Exact Message-ID lookup."""
        ...


class TargetWriter(TargetReader, Protocol):
    """Mutating target operations."""

    async def ensure_labels(self, names: Iterable[str]) -> dict[str, str]:
        """Create missing labels and return name → id."""
        ...

    async def modify_thread(
        self,
        thread_id: str,
        add_label_ids: list[str],
        remove_label_ids: list[str],
    ) -> None:
        """Apply label changes to a thread."""
        ...
