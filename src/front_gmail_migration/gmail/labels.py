"""Gmail label records and the case-insensitive label cache."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from front_gmail_migration.models.types import GmailLabelType


class GmailLabelError(RuntimeError):
    """Raised when label operations fail."""


@dataclass(frozen=True)
class GmailLabel:
    """A Gmail label as returned by ``users.labels``."""

    id: str
    name: str
    type: GmailLabelType = GmailLabelType.user

    @classmethod
    def from_api(cls, raw: Any) -> GmailLabel | None:
        """Build a label from an API resource; None if id or name is missing."""
        if not isinstance(raw, dict) or not raw.get("id") or not raw.get("name"):
            return None
        kind = GmailLabelType.system if raw.get("type") == "system" else GmailLabelType.user
        return cls(id=str(raw["id"]), name=str(raw["name"]), type=kind)


@dataclass
class GmailLabelCache:
    """Caches label name → label, keyed case-insensitively.

    Owned by a single target client; callers serialize writes.
    """

    _by_key: dict[str, GmailLabel] = field(default_factory=dict)

    @staticmethod
    def key(name: str) -> str:
        """Return the cache key for a label name."""
        return name.strip().casefold()

    def get(self, name: str) -> GmailLabel | None:
        """Return the cached label for ``name``, if any."""
        return self._by_key.get(self.key(name))

    def put(self, label: GmailLabel) -> None:
        """Insert or replace a label."""
        self._by_key[self.key(label.name)] = label

    def replace_all(self, labels: Iterable[GmailLabel]) -> None:
        """Replace the cache contents with a fresh listing."""
        self._by_key = {self.key(label.name): label for label in labels}

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.key(name) in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)

    def __iter__(self) -> Iterator[GmailLabel]:
        return iter(list(self._by_key.values()))
