"""
Mailbox read operations for one request.

Wires the shared email cache, the per-owner Gmail client and the paginator:
- inbox pages are cached whole under ``page:*`` and served from cache until
  the caller asks for a refresh
- a message view is the message, its thread (newest first) and the decoded
  body; message and thread are cached together under ``email:*``
- ``prefetch_recent`` warms the cache with the latest messages after login
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from inboxq.config import PAGE_SIZE_DEFAULT, PAGE_SIZE_MAX, PREFETCH_SIZE
from inboxq.gmail.client import MailboxApi
from inboxq.gmail.decoder import extract_body
from inboxq.gmail.paginator import MailboxPaginator, MessagePage
from inboxq.infrastructure.errors import InboxQError
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, hash_identifier, log_event
from inboxq.storage.keys import cursor_key, email_key, history_key, owner_key, page_key
from inboxq.storage.models import EmailCacheData, EmailMessage, EmailThread
from inboxq.storage.tiered_cache import TieredCache

logger = get_logger(__name__)


class MailboxFactory(Protocol):
    def for_owner(self, owner_id: str) -> MailboxApi: ...


@dataclass(frozen=True)
class MessageView:
    email: EmailMessage
    thread: EmailThread
    body: str


class MailboxService:
    """Read-side mailbox operations over the shared cache."""

    def __init__(self, cache: TieredCache, mailbox_factory: MailboxFactory):
        self.cache = cache
        self.mailbox_factory = mailbox_factory

    def get_inbox_page(
        self,
        owner_id: str,
        query: str = "",
        page: int = 1,
        page_size: int = PAGE_SIZE_DEFAULT,
        refresh: bool = False,
    ) -> MessagePage:
        """
        One page of the owner's mailbox for ``query``

        Pages with failed message fetches are returned but not cached, so the
        next request retries the missing messages.

        Raises:
            ValueError: page or page_size out of range
            AuthorizationError: owner must re-authorize
            UpstreamError: Gmail listing failed
        """
        if page_size > PAGE_SIZE_MAX:
            raise ValueError(f"page_size must be <= {PAGE_SIZE_MAX}")

        key = page_key(owner_id, query, page, page_size)
        if not refresh:
            cached = self.cache.get(key)
            if cached is not None and cached.messages is not None:
                counter("mailbox.page_cache.hit")
                return MessagePage(
                    messages=list(cached.messages),
                    total_estimate=cached.total_emails or 0,
                    next_cursor=cached.next_page_token,
                    page=page,
                    page_size=page_size,
                )

        mailbox = self.mailbox_factory.for_owner(owner_id)
        paginator = MailboxPaginator(mailbox, self.cache, owner_id)
        result = paginator.list_page(query, page, page_size, refresh=refresh)

        if not result.partial:
            self.cache.set(
                key,
                EmailCacheData(
                    messages=tuple(result.messages),
                    total_emails=result.total_estimate,
                    next_page_token=result.next_cursor,
                ),
            )
        if page == 1 and not query:
            self._record_history_id(owner_id, result.messages)

        log_event(
            "mailbox.page_served",
            owner=hash_identifier(owner_id),
            page=page,
            count=len(result.messages),
            failed=len(result.failures),
            walks=result.walks,
        )
        return result

    def get_message(self, owner_id: str, message_id: str) -> MessageView:
        """
        Message, thread (newest first) and decoded body

        Raises:
            AuthorizationError: owner must re-authorize
            UpstreamError: Gmail get failed
        """
        key = email_key(owner_id, message_id)
        cached = self.cache.get(key)
        if cached is not None and cached.email is not None and cached.thread is not None:
            counter("mailbox.message_cache.hit")
            return MessageView(cached.email, cached.thread, extract_body(cached.email))

        mailbox = self.mailbox_factory.for_owner(owner_id)
        email = cached.email if cached is not None and cached.email is not None else None
        if email is None:
            email = mailbox.get_message(message_id)

        if email.thread_id:
            thread_messages = mailbox.get_thread(email.thread_id)
        else:
            thread_messages = [email]
        thread = EmailThread(id=email.thread_id, messages=tuple(reversed(thread_messages)))

        self.cache.set(key, EmailCacheData(email=email, thread=thread))
        return MessageView(email, thread, extract_body(email))

    def prefetch_recent(self, owner_id: str, limit: int = PREFETCH_SIZE) -> int:
        """
        Cache the owner's ``limit`` most recent messages

        Returns the number of messages fetched from Gmail (cache hits are
        skipped). A message that fails to fetch is logged and skipped.

        Side Effects:
            - Writes ``email:*`` entries, the page-2 cursor for ``limit`` sized
              pages and the owner's ``historyId``
        """
        mailbox = self.mailbox_factory.for_owner(owner_id)
        listing = mailbox.list_messages("", None, limit)

        fetched = 0
        newest: list[EmailMessage] = []
        for message_id in listing.ids:
            key = email_key(owner_id, message_id)
            cached = self.cache.get(key)
            if cached is not None and cached.email is not None:
                newest.append(cached.email)
                continue
            try:
                message = mailbox.get_message(message_id)
            except InboxQError as e:
                logger.warning("Prefetch skipped message %s: %s", hash_identifier(message_id), e)
                counter("mailbox.prefetch.failed")
                continue
            self.cache.set(key, EmailCacheData(email=message))
            newest.append(message)
            fetched += 1

        if listing.next_cursor:
            self.cache.set(
                cursor_key(owner_id, "", 2, limit),
                EmailCacheData(next_page_token=listing.next_cursor),
            )
        self._record_history_id(owner_id, newest)

        logger.info(
            "Prefetched %d messages for owner %s (%d listed)",
            fetched,
            hash_identifier(owner_id),
            len(listing.ids),
        )
        counter("mailbox.prefetch.count", fetched)
        return fetched

    def get_cached(self, owner_id: str, key: str) -> EmailCacheData | None:
        return self.cache.get(owner_key(owner_id, key))

    def set_cached(self, owner_id: str, key: str, value: EmailCacheData) -> None:
        self.cache.set(owner_key(owner_id, key), value)

    def _record_history_id(self, owner_id: str, messages: list[EmailMessage]) -> None:
        # Gmail lists newest first
        if not messages or not messages[0].history_id:
            return
        self.cache.set(history_key(owner_id), EmailCacheData(history_id=messages[0].history_id))
