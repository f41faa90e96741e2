"""
Page-number access over Gmail's forward-only cursor listing.

Gmail hands out an opaque ``nextPageToken`` per page and nothing else, so
reaching page N means walking N-1 listing calls and keeping only the cursor.
Cursors seen along the way are cached per (owner, query, page, page size); a
later request resumes from the furthest cached cursor at or before its
target, which makes "next page" navigation a single listing call. A refresh
walks from the first page and overwrites them; a cached cursor Gmail no
longer accepts is dropped and the walk restarts once from the first page.

Detail fetches are one ``get`` per id. A failed get is recorded as a
``FetchFailure`` on the page and the rest of the page is still returned.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from inboxq.gmail.client import ListResponse, MailboxApi
from inboxq.infrastructure.errors import InboxQError, UpstreamError
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, hash_identifier, log_event, time_block
from inboxq.storage.keys import cursor_key, email_key
from inboxq.storage.models import EmailCacheData, EmailMessage
from inboxq.storage.tiered_cache import TieredCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class PageCursor:
    """Opaque token that lists ``page`` of ``query`` (None lists page 1)."""

    query: str
    page: int
    page_size: int
    token: str | None


@dataclass(frozen=True)
class FetchFailure:
    message_id: str
    reason: str


@dataclass
class MessagePage:
    messages: list[EmailMessage]
    total_estimate: int
    next_cursor: str | None
    page: int = 1
    page_size: int = 10
    failures: list[FetchFailure] = field(default_factory=list)
    walks: int = 0

    @property
    def partial(self) -> bool:
        return bool(self.failures)


class MailboxPaginator:
    """Materializes one page of a Gmail search for one owner."""

    def __init__(
        self,
        mailbox: MailboxApi,
        cache: TieredCache | None = None,
        owner_id: str | None = None,
    ):
        if cache is not None and not owner_id:
            raise ValueError("owner_id is required when a cache is supplied")
        self.mailbox = mailbox
        self.cache = cache
        self.owner_id = owner_id

    def list_page(
        self, query: str, target_page: int, page_size: int, refresh: bool = False
    ) -> MessagePage:
        """
        Fetch page ``target_page`` (1-based) of ``query``

        ``refresh`` ignores cached cursors and walks from the first page,
        overwriting them. A cached cursor that Gmail rejects with a
        non-retryable error is dropped and the page is walked again once.

        Raises:
            ValueError: target_page or page_size below 1
            UpstreamTransient / UpstreamError: a listing call failed
        """
        if target_page < 1:
            raise ValueError("target_page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")

        with time_block("gmail.list_page.latency"):
            total_estimate = self.mailbox.list_messages(query, None, 1).total_estimate

            first = PageCursor(query, 1, page_size, None)
            start = first if refresh else self._nearest_cursor(query, target_page, page_size)
            try:
                walks, listing = self._list_from(query, start, target_page, page_size)
            except UpstreamError as e:
                if e.retryable or start.token is None:
                    raise
                self._forget(start)
                logger.warning(
                    "Cached cursor for page %d rejected (%s); walking from page 1",
                    start.page,
                    e,
                )
                counter("gmail.cursor_cache.stale")
                walks, listing = self._list_from(query, first, target_page, page_size)

            if listing is None:
                log_event(
                    "gmail.page_beyond_end",
                    page=target_page,
                    walks=walks,
                    owner=hash_identifier(self.owner_id),
                )
                return MessagePage(
                    messages=[],
                    total_estimate=total_estimate,
                    next_cursor=None,
                    page=target_page,
                    page_size=page_size,
                    walks=walks,
                )

            self._remember(PageCursor(query, target_page + 1, page_size, listing.next_cursor))
            messages, failures = self._fetch_details(listing.ids)

        if failures:
            counter("gmail.partial_page.count")
            logger.warning(
                "PartialPageFailure: %d of %d messages failed on page %d",
                len(failures),
                len(listing.ids),
                target_page,
            )
            log_event(
                "gmail.partial_page",
                failed=len(failures),
                listed=len(listing.ids),
                owner=hash_identifier(self.owner_id),
            )

        return MessagePage(
            messages=messages,
            total_estimate=total_estimate,
            next_cursor=listing.next_cursor,
            page=target_page,
            page_size=page_size,
            failures=failures,
            walks=walks,
        )

    def _list_from(
        self, query: str, start: PageCursor, target_page: int, page_size: int
    ) -> tuple[int, ListResponse | None]:
        """Walk from ``start`` and list ``target_page``; no listing if exhausted."""
        cursor, walks = self._walk(query, start, target_page, page_size)
        if cursor is None:
            return walks, None
        return walks, self.mailbox.list_messages(query, cursor.token, page_size)

    def _walk(
        self, query: str, start: PageCursor, target_page: int, page_size: int
    ) -> tuple[PageCursor | None, int]:
        """Advance from ``start`` to the cursor of ``target_page``; None if exhausted."""
        cursor = start
        walks = 0
        while cursor.page < target_page:
            listing = self.mailbox.list_messages(query, cursor.token, page_size)
            walks += 1
            if not listing.next_cursor:
                counter("gmail.walk.exhausted")
                return None, walks
            cursor = PageCursor(query, cursor.page + 1, page_size, listing.next_cursor)
            self._remember(cursor)

        if walks:
            counter("gmail.walk.discarded_pages", walks)
        return cursor, walks

    def _nearest_cursor(self, query: str, target_page: int, page_size: int) -> PageCursor:
        if self.cache is not None:
            for page in range(target_page, 1, -1):
                cached = self.cache.get(cursor_key(self.owner_id, query, page, page_size))
                if cached is not None and cached.next_page_token:
                    if page == target_page:
                        counter("gmail.cursor_cache.hit")
                    return PageCursor(query, page, page_size, cached.next_page_token)
        return PageCursor(query, 1, page_size, None)

    def _forget(self, cursor: PageCursor) -> None:
        if self.cache is not None:
            self.cache.delete(
                cursor_key(self.owner_id, cursor.query, cursor.page, cursor.page_size)
            )

    def _remember(self, cursor: PageCursor) -> None:
        if self.cache is None or not cursor.token:
            return
        self.cache.set(
            cursor_key(self.owner_id, cursor.query, cursor.page, cursor.page_size),
            EmailCacheData(next_page_token=cursor.token),
        )

    def _fetch_details(self, ids: list[str]) -> tuple[list[EmailMessage], list[FetchFailure]]:
        messages: list[EmailMessage] = []
        failures: list[FetchFailure] = []

        for message_id in ids:
            cached = self.cache.get(email_key(self.owner_id, message_id)) if self.cache else None
            if cached is not None and cached.email is not None:
                messages.append(cached.email)
                continue

            try:
                message = self.mailbox.get_message(message_id)
            except InboxQError as e:
                failures.append(FetchFailure(message_id=message_id, reason=str(e)))
                continue

            if self.cache is not None:
                self.cache.set(email_key(self.owner_id, message_id), EmailCacheData(email=message))
            messages.append(message)

        return messages, failures
