"""Pydantic models for Front API payloads."""

from __future__ import annotations

from pydantic import Field

from front_gmail_migration.models.base import ApiModel


class FrontTag(ApiModel):
    """A Front tag attached to a conversation."""

    id: str
    name: str


class FrontInbox(ApiModel):
    """A Front inbox (used as the optional source filter)."""

    id: str
    name: str = ""


class FrontRecipient(ApiModel):
    """A sender or recipient handle on a Front message."""

    handle: str
    name: str | None = None
    role: str | None = None


class FrontMessageMetadata(ApiModel):
    """Message metadata; only protocol headers are used here."""

    headers: dict[str, str | None] | None = None


class FrontMessage(ApiModel):
    """A single message inside a Front conversation."""

    id: str
    type: str
    subject: str | None = None
    from_: FrontRecipient | None = Field(default=None, alias="from")
    recipients: tuple[FrontRecipient, ...] = ()
    created_at: float | None = None
    is_inbound: bool | None = None
    metadata: FrontMessageMetadata | None = None

    @property
    def header_message_id(self) -> str | None:
        """Return the raw RFC Message-ID header, if Front captured one."""
        if self.metadata is None or not self.metadata.headers:
            return None
        for key, value in self.metadata.headers.items():
            if key.lower() == "message-id" and isinstance(value, str):
                return value
        return None


class FrontConversation(ApiModel):
    """A Front conversation, immutable once fetched."""

    id: str
    subject: str | None = None
    status: str
    tags: tuple[FrontTag, ...] = ()
    messages: tuple[FrontMessage, ...] = ()
    created_at: float
    updated_at: float | None = None
