"""
Gmail read endpoints.

Handlers are sync: FastAPI runs them on its threadpool, which is where the
blocking Gmail and SQLite calls belong.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from inboxq.api.dependencies import get_mailbox_service, get_owner_id
from inboxq.config import PAGE_SIZE_DEFAULT, PAGE_SIZE_MAX
from inboxq.mailbox.service import MailboxService
from inboxq.observability.logging import get_logger
from inboxq.storage.models import EmailMessage

router = APIRouter(prefix="/api/gmail", tags=["gmail"])
logger = get_logger(__name__)


def _message_json(message: EmailMessage) -> dict[str, Any]:
    return message.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/inbox")
def get_inbox(
    page: int = Query(1, ge=1),
    q: str = Query("", max_length=500),
    page_size: int = Query(PAGE_SIZE_DEFAULT, ge=1, le=PAGE_SIZE_MAX),
    refresh: bool = False,
    owner_id: str = Depends(get_owner_id),
    service: MailboxService = Depends(get_mailbox_service),
) -> dict[str, Any]:
    """
    One page of the owner's mailbox.

    ``failures`` lists messages that could not be fetched; the rest of the
    page is still returned.
    """
    try:
        result = service.get_inbox_page(owner_id, q, page, page_size, refresh=refresh)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return {
        "messages": [_message_json(message) for message in result.messages],
        "totalEmails": result.total_estimate,
        "nextPageToken": result.next_cursor,
        "page": result.page,
        "pageSize": result.page_size,
        "failures": [
            {"id": failure.message_id, "reason": failure.reason} for failure in result.failures
        ],
    }


@router.get("/messages/{message_id}")
def get_message(
    message_id: str,
    owner_id: str = Depends(get_owner_id),
    service: MailboxService = Depends(get_mailbox_service),
) -> dict[str, Any]:
    view = service.get_message(owner_id, message_id)
    return {
        "email": _message_json(view.email),
        "thread": [_message_json(message) for message in view.thread.messages],
        "body": view.body,
    }
