"""Authenticated Gmail API client (read-only)

Thin wrapper over ``googleapiclient`` that:
- builds the Gmail service from an access token supplied by CredentialManager
- bounds every HTTP call with a socket timeout
- maps HttpError / transport failures onto the InboxQ error taxonomy
- validates message payloads into ``EmailMessage`` models
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pydantic import ValidationError

from inboxq.config import UPSTREAM_MAX_ATTEMPTS, UPSTREAM_TIMEOUT_SECONDS
from inboxq.gmail.credentials import CredentialManager
from inboxq.infrastructure.errors import (
    AuthorizationError,
    InboxQError,
    UpstreamError,
    UpstreamTransient,
)
from inboxq.infrastructure.retry import RetryPolicy
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, hash_identifier, log_event, time_block
from inboxq.storage.models import EmailMessage

logger = get_logger(__name__)

_RATE_LIMIT_REASONS = ("ratelimitexceeded", "userratelimitexceeded", "quotaexceeded")


@dataclass(frozen=True)
class ListResponse:
    ids: list[str] = field(default_factory=list)
    next_cursor: str | None = None
    total_estimate: int = 0


class MailboxApi(Protocol):
    """Consumed Gmail operations (implemented by GmailMailbox and test fakes)."""

    def list_messages(self, query: str, cursor: str | None, page_size: int) -> ListResponse: ...

    def get_message(self, message_id: str) -> EmailMessage: ...

    def get_thread(self, thread_id: str) -> list[EmailMessage]: ...


def map_http_error(error: HttpError) -> InboxQError:
    status = error.resp.status
    detail = str(error)
    if status == 401:
        return AuthorizationError(f"Gmail rejected the access token: {detail}")
    if status == 429 or status >= 500:
        return UpstreamTransient(f"Gmail API unavailable: {detail}", status_code=status)
    compact = detail.lower().replace(" ", "")
    if status == 403:
        if any(reason in compact for reason in _RATE_LIMIT_REASONS):
            return UpstreamTransient(f"Gmail API rate limited: {detail}", status_code=status)
        return AuthorizationError(f"Gmail denied access: {detail}")
    return UpstreamError(f"Gmail API error: {detail}", status_code=status)


def build_gmail_service(access_token: str, timeout: float = UPSTREAM_TIMEOUT_SECONDS) -> Any:
    """
    Build a Gmail API service for one access token

    Uses the bundled discovery document, so no network call happens here.
    """
    credentials = Credentials(token=access_token)
    http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
    return build("gmail", "v1", http=http, cache_discovery=False)


class GmailMailbox:
    """Gmail operations for one owner, bound to one access token."""

    def __init__(self, service: Any, owner_id: str = "me"):
        self.service = service
        self.owner_hash = hash_identifier(owner_id)
        self._list_policy = RetryPolicy(stage="gmail.list", max_attempts=UPSTREAM_MAX_ATTEMPTS)

    def list_messages(self, query: str, cursor: str | None, page_size: int) -> ListResponse:
        """
        List one page of message ids

        Raises:
            UpstreamTransient: Timeout, 429 or 5xx after one automatic retry
            UpstreamError: Any other Gmail API failure
            AuthorizationError: Access token rejected
        """
        params: dict[str, Any] = {"userId": "me", "maxResults": page_size}
        if query:
            params["q"] = query
        if cursor:
            params["pageToken"] = cursor

        def _list() -> dict[str, Any]:
            return self._execute(self.service.users().messages().list(**params), "gmail.list")

        with time_block("gmail.list.latency"):
            response = self._list_policy.execute(_list)

        counter("gmail.list.count")
        return ListResponse(
            ids=[msg["id"] for msg in response.get("messages", [])],
            next_cursor=response.get("nextPageToken") or None,
            total_estimate=int(response.get("resultSizeEstimate", 0)),
        )

    def get_message(self, message_id: str) -> EmailMessage:
        raw = self._execute(
            self.service.users().messages().get(userId="me", id=message_id, format="full"),
            "gmail.get",
        )
        return self._parse(raw)

    def get_thread(self, thread_id: str) -> list[EmailMessage]:
        """Thread messages in Gmail order (oldest first)."""
        raw = self._execute(
            self.service.users().threads().get(userId="me", id=thread_id, format="full"),
            "gmail.thread",
        )
        return [self._parse(message) for message in raw.get("messages", [])]

    def _parse(self, raw: dict[str, Any]) -> EmailMessage:
        try:
            return EmailMessage.model_validate(raw)
        except ValidationError as e:
            counter("gmail.parse_failed.count")
            log_event("gmail.parse_failed", owner=self.owner_hash, error_count=e.error_count())
            raise UpstreamError("Gmail returned a malformed message payload") from e

    def _execute(self, request: Any, stage: str) -> dict[str, Any]:
        try:
            return request.execute()
        except HttpError as e:
            mapped = map_http_error(e)
            logger.error("Gmail API error in %s: %s", stage, e)
            log_event(f"{stage}.error", status=e.resp.status, owner=self.owner_hash)
            raise mapped from e
        except (TimeoutError, httplib2.HttpLib2Error, OSError) as e:
            logger.warning("Gmail transport failure in %s: %s", stage, e)
            log_event(f"{stage}.error", error=type(e).__name__, owner=self.owner_hash)
            raise UpstreamTransient(f"Gmail request failed: {e}") from e


class GmailMailboxFactory:
    """Builds a GmailMailbox with a freshly validated token for each request."""

    def __init__(
        self,
        credential_manager: CredentialManager,
        timeout: float = UPSTREAM_TIMEOUT_SECONDS,
    ):
        self.credential_manager = credential_manager
        self.timeout = timeout

    def for_owner(self, owner_id: str) -> MailboxApi:
        access_token = self.credential_manager.ensure_valid_token(owner_id)
        return GmailMailbox(build_gmail_service(access_token, self.timeout), owner_id=owner_id)
