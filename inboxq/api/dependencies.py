"""FastAPI dependencies: owner identity and the shared services on app.state."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from inboxq.config import OWNER_HEADER
from inboxq.gmail.credentials import CredentialManager
from inboxq.mailbox.service import MailboxService
from inboxq.storage.tiered_cache import TieredCache


def get_owner_id(owner_id: str | None = Header(default=None, alias=OWNER_HEADER)) -> str:
    """
    Owner of the request, as asserted by the session layer in front of the API.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    if owner_id is None or not owner_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {OWNER_HEADER} header",
        )
    return owner_id.strip()


def get_email_cache(request: Request) -> TieredCache:
    return request.app.state.email_cache


def get_mailbox_service(request: Request) -> MailboxService:
    return MailboxService(request.app.state.email_cache, request.app.state.mailbox_factory)


def get_credential_manager(request: Request) -> CredentialManager:
    return request.app.state.credential_manager
