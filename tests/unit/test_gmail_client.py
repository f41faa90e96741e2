"""Unit tests for the Gmail API wrapper and its error mapping"""

from __future__ import annotations

import json
from unittest.mock import Mock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from inboxq.gmail.client import GmailMailbox, GmailMailboxFactory, map_http_error
from inboxq.infrastructure.errors import (
    AuthExpiredTerminal,
    AuthorizationError,
    UpstreamError,
    UpstreamTransient,
)

from fakes import make_message


def _http_error(status: int, reason: str = "backendError", message: str = "failed") -> HttpError:
    content = json.dumps(
        {"error": {"code": status, "message": message, "errors": [{"reason": reason}]}}
    ).encode()
    return HttpError(httplib2.Response({"status": status}), content)


def _mailbox(service: Mock) -> GmailMailbox:
    mailbox = GmailMailbox(service, owner_id="owner-1")
    mailbox._list_policy.sleep_fn = lambda _delay: None
    return mailbox


@pytest.mark.parametrize(
    ("status", "reason", "expected"),
    [
        (401, "authError", AuthorizationError),
        (403, "insufficientPermissions", AuthorizationError),
        (403, "rateLimitExceeded", UpstreamTransient),
        (429, "rateLimitExceeded", UpstreamTransient),
        (500, "backendError", UpstreamTransient),
        (503, "backendError", UpstreamTransient),
        (404, "notFound", UpstreamError),
    ],
)
def test_map_http_error(status, reason, expected):
    error = map_http_error(_http_error(status, reason))

    assert type(error) is expected


def test_list_messages_maps_response():
    service = Mock()
    service.users().messages().list().execute.return_value = {
        "messages": [{"id": "m1", "threadId": "t1"}, {"id": "m2", "threadId": "t2"}],
        "nextPageToken": "next-1",
        "resultSizeEstimate": 42,
    }

    response = _mailbox(service).list_messages("is:unread", None, 10)

    assert response.ids == ["m1", "m2"]
    assert response.next_cursor == "next-1"
    assert response.total_estimate == 42
    service.users().messages().list.assert_called_with(
        userId="me", maxResults=10, q="is:unread"
    )


def test_list_messages_passes_cursor():
    service = Mock()
    service.users().messages().list().execute.return_value = {"resultSizeEstimate": 0}

    response = _mailbox(service).list_messages("", "cursor-abc", 5)

    assert response.ids == []
    assert response.next_cursor is None
    service.users().messages().list.assert_called_with(
        userId="me", maxResults=5, pageToken="cursor-abc"
    )


def test_list_messages_retries_transient_failure_once():
    service = Mock()
    service.users().messages().list().execute.side_effect = [
        _http_error(503),
        {"messages": [{"id": "m1"}], "resultSizeEstimate": 1},
    ]

    response = _mailbox(service).list_messages("", None, 10)

    assert response.ids == ["m1"]


def test_list_messages_gives_up_after_second_failure():
    service = Mock()
    service.users().messages().list().execute.side_effect = [_http_error(503), _http_error(503)]

    with pytest.raises(UpstreamTransient):
        _mailbox(service).list_messages("", None, 10)


def test_list_messages_does_not_retry_permanent_failure():
    service = Mock()
    execute = service.users().messages().list().execute
    execute.side_effect = [_http_error(400, "invalidArgument"), {"resultSizeEstimate": 0}]

    with pytest.raises(UpstreamError) as exc_info:
        _mailbox(service).list_messages("bad:query", None, 10)

    assert not exc_info.value.retryable
    assert execute.call_count == 1


def test_timeout_becomes_transient():
    service = Mock()
    service.users().messages().get().execute.side_effect = TimeoutError("timed out")

    with pytest.raises(UpstreamTransient):
        _mailbox(service).get_message("m1")


def test_get_message_parses_payload():
    service = Mock()
    service.users().messages().get().execute.return_value = make_message("m1", subject="Hi")

    message = _mailbox(service).get_message("m1")

    assert message.id == "m1"
    assert message.header("subject") == "Hi"


def test_malformed_payload_is_upstream_error():
    service = Mock()
    service.users().messages().get().execute.return_value = {"threadId": "t1"}

    with pytest.raises(UpstreamError):
        _mailbox(service).get_message("m1")


def test_get_thread_keeps_gmail_order():
    service = Mock()
    service.users().threads().get().execute.return_value = {
        "id": "t1",
        "messages": [make_message("old", thread_id="t1"), make_message("new", thread_id="t1")],
    }

    messages = _mailbox(service).get_thread("t1")

    assert [m.id for m in messages] == ["old", "new"]


def test_factory_propagates_auth_failure_before_building_service():
    manager = Mock()
    manager.ensure_valid_token.side_effect = AuthExpiredTerminal("expired", owner_id="owner-1")

    with pytest.raises(AuthExpiredTerminal):
        GmailMailboxFactory(manager).for_owner("owner-1")
