"""
Domain models (Pydantic v2) for cached Gmail data and OAuth credentials.

Gmail payloads arrive in camelCase; fields are snake_case with aliases and
are dumped ``by_alias`` so cached JSON keeps the Gmail shape. All models are
frozen: a cache entry is replaced wholesale, never edited in place. Sensitive
fields (tokens, bodies, snippets) are hashed in repr.
"""

from __future__ import annotations

from datetime import UTC, datetime
from hashlib import sha256
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _hash_value(value: str) -> str:
    digest = sha256(value.encode("utf-8")).hexdigest()
    return f"hash:{digest[:12]}"


class RedactedModel(BaseModel):
    """Base model that redacts sensitive fields in repr."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")
    _redact_fields = {"access_token", "refresh_token", "snippet", "data", "content"}

    def _redacted_dump(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        for field in self._redact_fields:
            if field in data and isinstance(data[field], str) and data[field]:
                data[field] = _hash_value(data[field])
        return data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._redacted_dump()})"

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class EmailHeader(RedactedModel):
    name: str = ""
    value: str = ""


class MessageBody(RedactedModel):
    data: str | None = None
    size: int | None = None


class MessagePart(RedactedModel):
    """One node of a (possibly nested) MIME tree."""

    mime_type: str = Field(default="", alias="mimeType")
    headers: tuple[EmailHeader, ...] = ()
    body: MessageBody | None = None
    parts: tuple[MessagePart, ...] | None = None


class EmailMessage(RedactedModel):
    id: str
    thread_id: str | None = Field(default=None, alias="threadId")
    internal_date: str | None = Field(default=None, alias="internalDate")
    history_id: str | None = Field(default=None, alias="historyId")
    snippet: str = ""
    label_ids: tuple[str, ...] = Field(default=(), alias="labelIds")
    payload: MessagePart = Field(default_factory=MessagePart)

    def header(self, name: str) -> str | None:
        name_lower = name.lower()
        for header in self.payload.headers:
            if header.name.lower() == name_lower:
                return header.value
        return None


class EmailThread(RedactedModel):
    """Messages of one conversation, newest first."""

    id: str | None = None
    messages: tuple[EmailMessage, ...] = ()


class Summary(RedactedModel):
    """AI summary artifact attached to a message."""

    email_id: str = Field(alias="emailId")
    content: str
    prompt_id: str | None = Field(default=None, alias="promptId")
    created_at: datetime | None = Field(default=None, alias="createdAt")


class EmailCacheData(RedactedModel):
    """
    Value stored under one cache key.

    Keys decide which fields are populated: ``email:*`` holds ``email`` and
    usually ``thread``; ``page:*`` holds ``messages``/``total_emails``/
    ``next_page_token``; ``nextPageToken:*`` holds only ``next_page_token``;
    ``historyId:*`` holds ``history_id``; ``summary:*`` holds ``summary``.
    """

    email: EmailMessage | None = None
    thread: EmailThread | None = None
    summary: Summary | None = None
    messages: tuple[EmailMessage, ...] | None = None
    total_emails: int | None = Field(default=None, alias="totalEmails")
    next_page_token: str | None = Field(default=None, alias="nextPageToken")
    history_id: str | None = Field(default=None, alias="historyId")


class Credential(RedactedModel):
    """OAuth2 token pair for exactly one mailbox owner."""

    owner_id: str
    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None
    scopes: tuple[str, ...] = ()

    @field_validator("expiry")
    @classmethod
    def _expiry_is_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)
