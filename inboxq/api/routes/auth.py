"""OAuth consent hand-off.

The session layer in front of the API runs Google's consent flow and posts the
granted tokens here. They are stored through the credential manager, then the
owner's most recent messages are prefetched into the email cache.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from inboxq.api.dependencies import get_credential_manager, get_mailbox_service, get_owner_id
from inboxq.gmail.credentials import CredentialManager
from inboxq.infrastructure.errors import UpstreamError
from inboxq.mailbox.service import MailboxService
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, hash_identifier

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class CredentialGrant(BaseModel):
    """Tokens returned by Google's token endpoint after consent."""

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expiry: datetime | None = None
    expires_in: int | None = Field(default=None, ge=0)
    scopes: list[str] | None = None
    prefetch: bool = True

    def resolved_expiry(self, now: datetime) -> datetime | None:
        if self.expiry is not None:
            # naive timestamps are UTC, as google-auth reports them
            return self.expiry if self.expiry.tzinfo else self.expiry.replace(tzinfo=UTC)
        if self.expires_in is not None:
            return now + timedelta(seconds=self.expires_in)
        return None


@router.post("/credentials", status_code=status.HTTP_201_CREATED)
def store_credentials(
    grant: CredentialGrant,
    owner_id: str = Depends(get_owner_id),
    manager: CredentialManager = Depends(get_credential_manager),
    service: MailboxService = Depends(get_mailbox_service),
) -> dict[str, Any]:
    """
    Store consent tokens and warm the cache

    A Gmail failure while prefetching does not undo the stored credential;
    it is reported in the response and the cache fills on first read instead.
    """
    credential = manager.store_credentials(
        owner_id,
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        expiry=grant.resolved_expiry(datetime.now(UTC)),
        scopes=grant.scopes,
    )
    response: dict[str, Any] = {
        "stored": True,
        "refreshable": credential.can_refresh,
        "prefetched": 0,
    }
    if not grant.prefetch:
        return response

    try:
        response["prefetched"] = service.prefetch_recent(owner_id)
    except UpstreamError as e:
        logger.warning(
            "Prefetch after consent failed for owner %s: %s", hash_identifier(owner_id), e
        )
        counter("api.consent_prefetch.failed")
        response["prefetch_error"] = str(e)
    return response
