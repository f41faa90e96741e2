"""In-process stand-ins for Gmail and the Google token endpoint."""

from __future__ import annotations

import base64
import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Any

from inboxq.gmail.client import ListResponse
from inboxq.gmail.credentials import TokenGrant
from inboxq.infrastructure.errors import InboxQError, UpstreamError, UpstreamTransient
from inboxq.storage.models import EmailMessage


def encode_body(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_message(
    message_id: str,
    thread_id: str | None = None,
    subject: str = "Hello",
    sender: str = "alice@example.com",
    body: str = "plain body",
    history_id: str | None = None,
) -> dict[str, Any]:
    """Raw Gmail ``messages.get`` payload with a single text/plain part."""
    return {
        "id": message_id,
        "threadId": thread_id or f"thread-{message_id}",
        "historyId": history_id or f"h-{message_id}",
        "internalDate": "1700000000000",
        "snippet": body[:40],
        "labelIds": ["INBOX"],
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": sender},
            ],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": encode_body(body)}},
            ],
        },
    }


class FakeMailbox:
    """
    Mailbox over a fixed newest-first message list.

    Cursors are ``cursor-<offset>``; after ``expire_cursors()`` previously
    issued cursors are rejected with a 400 and new ones carry an epoch tag.
    Every call is recorded.
    """

    def __init__(
        self,
        messages: list[dict[str, Any]],
        failing_ids: tuple[str, ...] = (),
        list_error: InboxQError | None = None,
    ):
        self.messages = messages
        self.failing_ids = set(failing_ids)
        self.list_error = list_error
        self._cursor_prefix = "cursor-"
        self._epoch = 0
        self.list_calls: list[tuple[str, str | None, int]] = []
        self.get_calls: list[str] = []
        self.thread_calls: list[str] = []

    def expire_cursors(self) -> None:
        self._epoch += 1
        self._cursor_prefix = f"cursor-e{self._epoch}-"

    @classmethod
    def with_count(cls, count: int, **kwargs: Any) -> FakeMailbox:
        return cls([make_message(f"m{i:03d}") for i in range(count)], **kwargs)

    def list_messages(self, query: str, cursor: str | None, page_size: int) -> ListResponse:
        self.list_calls.append((query, cursor, page_size))
        if self.list_error is not None:
            raise self.list_error

        if cursor and not cursor.startswith(self._cursor_prefix):
            raise UpstreamError("Invalid pageToken", status_code=400)
        start = int(cursor.removeprefix(self._cursor_prefix)) if cursor else 0
        end = start + page_size
        return ListResponse(
            ids=[message["id"] for message in self.messages[start:end]],
            next_cursor=f"{self._cursor_prefix}{end}" if end < len(self.messages) else None,
            total_estimate=len(self.messages),
        )

    def get_message(self, message_id: str) -> EmailMessage:
        self.get_calls.append(message_id)
        if message_id in self.failing_ids:
            raise UpstreamTransient(f"Gmail request failed for {message_id}", status_code=503)
        for message in self.messages:
            if message["id"] == message_id:
                return EmailMessage.model_validate(message)
        raise KeyError(message_id)

    def get_thread(self, thread_id: str) -> list[EmailMessage]:
        self.thread_calls.append(thread_id)
        in_thread = [m for m in self.messages if m["threadId"] == thread_id]
        # Gmail returns threads oldest first
        return [EmailMessage.model_validate(m) for m in reversed(in_thread)]


class FakeMailboxFactory:
    def __init__(self, mailbox: FakeMailbox, error: Exception | None = None):
        self.mailbox = mailbox
        self.error = error
        self.owners: list[str] = []

    def for_owner(self, owner_id: str) -> FakeMailbox:
        self.owners.append(owner_id)
        if self.error is not None:
            raise self.error
        return self.mailbox


class FakeRefresher:
    """Token endpoint that counts calls and can be slowed down or made to fail."""

    def __init__(
        self,
        grant: TokenGrant | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ):
        self.grant = grant
        self.delay = delay
        self.error = error
        self.calls = 0
        self.refresh_tokens: list[str] = []
        self._lock = threading.Lock()

    def refresh(self, refresh_token: str) -> TokenGrant:
        with self._lock:
            self.calls += 1
            call_number = self.calls
            self.refresh_tokens.append(refresh_token)

        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.grant is not None:
            return self.grant
        return TokenGrant(
            access_token=f"fresh-token-{call_number}",
            expiry=datetime.now(UTC) + timedelta(hours=1),
        )
