"""Credential record store boundary.

The customer record store is shared with other readers (profile pages); the
credential manager is the only writer of token fields. ``save_credential``
takes partial fields: ``None`` means "not supplied" and never erases a stored
value.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Protocol

from inboxq.storage.models import Credential


class CredentialStore(Protocol):
    def load_credential(self, owner_id: str) -> Credential | None: ...

    def save_credential(
        self,
        owner_id: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        expiry: datetime | None = None,
        scopes: list[str] | None = None,
    ) -> Credential: ...

    def update_refresh_timestamp(self, owner_id: str) -> None: ...


def merge_credential(
    existing: Credential | None,
    owner_id: str,
    *,
    access_token: str | None = None,
    refresh_token: str | None = None,
    expiry: datetime | None = None,
    scopes: list[str] | None = None,
) -> Credential:
    """Apply supplied fields over ``existing``; absent fields keep stored values."""
    if existing is None:
        if not access_token:
            raise ValueError(f"cannot create credential for {owner_id!r} without an access token")
        return Credential(
            owner_id=owner_id,
            access_token=access_token,
            refresh_token=refresh_token or None,
            expiry=expiry,
            scopes=tuple(scopes or ()),
        )

    update: dict[str, object] = {}
    if access_token:
        update["access_token"] = access_token
    if refresh_token:
        update["refresh_token"] = refresh_token
    if expiry is not None:
        update["expiry"] = expiry
    if scopes:
        update["scopes"] = tuple(scopes)
    # model_copy skips validation; re-validate so expiry is normalized to UTC
    return Credential.model_validate({**existing.model_dump(), **update})


class InMemoryCredentialStore:
    """Dict-backed store for tests and local development."""

    def __init__(self, credentials: list[Credential] | None = None):
        self._records: dict[str, Credential] = {c.owner_id: c for c in credentials or []}
        self._lock = threading.Lock()
        self.save_calls = 0
        self.refreshed_at: dict[str, datetime] = {}

    def load_credential(self, owner_id: str) -> Credential | None:
        with self._lock:
            return self._records.get(owner_id)

    def save_credential(
        self,
        owner_id: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        expiry: datetime | None = None,
        scopes: list[str] | None = None,
    ) -> Credential:
        with self._lock:
            merged = merge_credential(
                self._records.get(owner_id),
                owner_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expiry=expiry,
                scopes=scopes,
            )
            self._records[owner_id] = merged
            self.save_calls += 1
            return merged

    def update_refresh_timestamp(self, owner_id: str) -> None:
        with self._lock:
            self.refreshed_at[owner_id] = datetime.now(UTC)
