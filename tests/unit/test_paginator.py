"""Unit tests for page-number pagination over Gmail cursors"""

from __future__ import annotations

import pytest

from inboxq.gmail.paginator import MailboxPaginator
from inboxq.infrastructure.errors import UpstreamTransient
from inboxq.observability.telemetry import _COUNTERS
from inboxq.storage.keys import cursor_key, email_key
from inboxq.storage.models import EmailCacheData, EmailMessage

from fakes import FakeMailbox


def test_first_page_needs_no_walk():
    mailbox = FakeMailbox.with_count(25)

    page = MailboxPaginator(mailbox).list_page("", 1, 10)

    assert [m.id for m in page.messages] == [f"m{i:03d}" for i in range(10)]
    assert page.total_estimate == 25
    assert page.next_cursor == "cursor-10"
    assert page.walks == 0
    # estimate call, then the page itself
    assert mailbox.list_calls == [("", None, 1), ("", None, 10)]


def test_third_page_walks_two_pages():
    mailbox = FakeMailbox.with_count(25)

    page = MailboxPaginator(mailbox).list_page("", 3, 10)

    assert [m.id for m in page.messages] == [f"m{i:03d}" for i in range(20, 25)]
    assert page.total_estimate == 25
    assert page.next_cursor is None
    assert page.walks == 2
    assert mailbox.list_calls == [
        ("", None, 1),
        ("", None, 10),
        ("", "cursor-10", 10),
        ("", "cursor-20", 10),
    ]
    # walked pages are discarded: only the target page is fetched in detail
    assert mailbox.get_calls == [f"m{i:03d}" for i in range(20, 25)]


def test_page_beyond_end_is_empty():
    mailbox = FakeMailbox.with_count(15)

    page = MailboxPaginator(mailbox).list_page("", 4, 10)

    assert page.messages == []
    assert page.next_cursor is None
    assert page.total_estimate == 15
    assert mailbox.get_calls == []


def test_page_one_of_empty_mailbox():
    mailbox = FakeMailbox([])

    page = MailboxPaginator(mailbox).list_page("", 1, 10)

    assert page.messages == []
    assert page.total_estimate == 0


@pytest.mark.parametrize(("target_page", "page_size"), [(0, 10), (1, 0), (-1, 10)])
def test_invalid_arguments_are_rejected(target_page, page_size):
    with pytest.raises(ValueError):
        MailboxPaginator(FakeMailbox([])).list_page("", target_page, page_size)


def test_cache_requires_owner(memory_cache):
    with pytest.raises(ValueError):
        MailboxPaginator(FakeMailbox([]), cache=memory_cache)


def test_cursor_for_next_page_is_cached(memory_cache):
    mailbox = FakeMailbox.with_count(25)

    MailboxPaginator(mailbox, memory_cache, "owner-1").list_page("", 1, 10)

    cached = memory_cache.get(cursor_key("owner-1", "", 2, 10))
    assert cached.next_page_token == "cursor-10"


def test_cached_cursor_skips_the_walk(memory_cache):
    mailbox = FakeMailbox.with_count(25)
    paginator = MailboxPaginator(mailbox, memory_cache, "owner-1")
    paginator.list_page("", 2, 10)
    mailbox.list_calls.clear()

    page = paginator.list_page("", 3, 10)

    assert page.walks == 0
    assert mailbox.list_calls == [("", None, 1), ("", "cursor-20", 10)]
    assert _COUNTERS["gmail.cursor_cache.hit"] == 1


def test_walk_resumes_from_nearest_cached_cursor(memory_cache):
    mailbox = FakeMailbox.with_count(60)
    paginator = MailboxPaginator(mailbox, memory_cache, "owner-1")
    paginator.list_page("", 1, 10)
    mailbox.list_calls.clear()

    page = paginator.list_page("", 4, 10)

    assert page.walks == 2
    assert [m.id for m in page.messages][0] == "m030"
    assert mailbox.list_calls[1] == ("", "cursor-10", 10)


def test_cursors_are_not_shared_between_owners(memory_cache):
    mailbox = FakeMailbox.with_count(25)
    MailboxPaginator(mailbox, memory_cache, "alice").list_page("", 2, 10)
    mailbox.list_calls.clear()

    page = MailboxPaginator(mailbox, memory_cache, "bob").list_page("", 3, 10)

    assert page.walks == 2


def test_cached_messages_are_not_refetched(memory_cache):
    mailbox = FakeMailbox.with_count(3)
    memory_cache.set(email_key("owner-1", "m001"), EmailCacheData(email=EmailMessage(id="m001")))

    page = MailboxPaginator(mailbox, memory_cache, "owner-1").list_page("", 1, 10)

    assert [m.id for m in page.messages] == ["m000", "m001", "m002"]
    assert mailbox.get_calls == ["m000", "m002"]
    assert memory_cache.get(email_key("owner-1", "m000")).email.id == "m000"


def test_failed_message_is_reported_not_raised():
    mailbox = FakeMailbox.with_count(5, failing_ids=("m002",))

    page = MailboxPaginator(mailbox).list_page("", 1, 10)

    assert [m.id for m in page.messages] == ["m000", "m001", "m003", "m004"]
    assert page.partial
    assert [f.message_id for f in page.failures] == ["m002"]
    assert _COUNTERS["gmail.partial_page.count"] == 1


def test_refresh_ignores_cached_cursors_and_overwrites_them(memory_cache):
    mailbox = FakeMailbox.with_count(25)
    paginator = MailboxPaginator(mailbox, memory_cache, "owner-1")
    paginator.list_page("", 2, 10)
    mailbox.expire_cursors()
    mailbox.list_calls.clear()

    page = paginator.list_page("", 3, 10, refresh=True)

    assert page.walks == 2
    assert [m.id for m in page.messages] == [f"m{i:03d}" for i in range(20, 25)]
    assert ("", "cursor-20", 10) not in mailbox.list_calls
    assert memory_cache.get(cursor_key("owner-1", "", 2, 10)).next_page_token == "cursor-e1-10"
    assert memory_cache.get(cursor_key("owner-1", "", 3, 10)).next_page_token == "cursor-e1-20"
    assert "gmail.cursor_cache.stale" not in _COUNTERS


def test_rejected_cached_cursor_is_dropped_and_walk_restarts(memory_cache):
    mailbox = FakeMailbox.with_count(25)
    paginator = MailboxPaginator(mailbox, memory_cache, "owner-1")
    paginator.list_page("", 2, 10)  # caches cursor-20 for page 3
    mailbox.expire_cursors()
    mailbox.list_calls.clear()

    page = paginator.list_page("", 3, 10)

    assert [m.id for m in page.messages] == [f"m{i:03d}" for i in range(20, 25)]
    assert page.walks == 2
    assert mailbox.list_calls == [
        ("", None, 1),
        ("", "cursor-20", 10),
        ("", None, 10),
        ("", "cursor-e1-10", 10),
        ("", "cursor-e1-20", 10),
    ]
    assert memory_cache.get(cursor_key("owner-1", "", 3, 10)).next_page_token == "cursor-e1-20"
    assert _COUNTERS["gmail.cursor_cache.stale"] == 1


def test_transient_failure_on_cached_cursor_propagates(memory_cache):
    mailbox = FakeMailbox.with_count(25)
    paginator = MailboxPaginator(mailbox, memory_cache, "owner-1")
    paginator.list_page("", 2, 10)
    list_messages = mailbox.list_messages

    def unavailable_for_page_three(query, cursor, page_size):
        if cursor == "cursor-20":
            raise UpstreamTransient("Gmail unavailable", status_code=503)
        return list_messages(query, cursor, page_size)

    mailbox.list_messages = unavailable_for_page_three

    with pytest.raises(UpstreamTransient):
        paginator.list_page("", 3, 10)
    # a transient failure says nothing about the cursor; keep it
    assert memory_cache.get(cursor_key("owner-1", "", 3, 10)).next_page_token == "cursor-20"
