"""Owner-scoped read and write access to the email cache."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from inboxq.api.dependencies import get_mailbox_service, get_owner_id
from inboxq.mailbox.service import MailboxService
from inboxq.storage.models import EmailCacheData

router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.get("/{key}")
def get_cached(
    key: str,
    owner_id: str = Depends(get_owner_id),
    service: MailboxService = Depends(get_mailbox_service),
) -> dict[str, Any]:
    value = service.get_cached(owner_id, key)
    if value is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cache entry not found")
    return value.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.put("/{key}")
def put_cached(
    key: str,
    value: EmailCacheData,
    owner_id: str = Depends(get_owner_id),
    service: MailboxService = Depends(get_mailbox_service),
) -> dict[str, Any]:
    """Replace the entry under ``key``; the previous value is not merged."""
    service.set_cached(owner_id, key, value)
    return {"key": key, "stored": True}
