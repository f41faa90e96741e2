"""Gmail OAuth2 credential lifecycle

Produces a usable access token for an owner before every Gmail call:
- Valid tokens are returned as-is
- Tokens expiring within the skew window (5 min) are refreshed proactively
- Expired tokens with a refresh token are refreshed
- Expired tokens without a refresh token fail fast (AuthExpiredTerminal)

Refreshes are single-flight per owner: concurrent callers for the same owner
wait on one lock and reuse the result of the refresh that ran while they
waited, so one expiry produces one upstream refresh call.

A failed refresh falls back to the stale access token; the Gmail call that
follows surfaces the auth error if the token really is dead.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from inboxq.config import (
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_TOKEN_URI,
    TOKEN_REFRESH_SKEW_SECONDS,
    UPSTREAM_TIMEOUT_SECONDS,
)
from inboxq.infrastructure.errors import (
    AuthExpiredTerminal,
    CredentialNotFoundError,
    TokenRefreshError,
)
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, hash_identifier, log_event, time_block
from inboxq.storage.credential_store import CredentialStore
from inboxq.storage.models import Credential

logger = get_logger(__name__)


class CredentialState(str, Enum):
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"
    EXPIRED_REFRESHABLE = "expired_refreshable"
    EXPIRED_TERMINAL = "expired_terminal"


@dataclass(frozen=True)
class TokenGrant:
    """Result of one refresh; None fields were not returned by the token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None


class TokenRefresher(Protocol):
    def refresh(self, refresh_token: str) -> TokenGrant: ...


class _TimeoutRequest(Request):
    """google-auth transport with a bounded default timeout."""

    def __init__(self, timeout: float):
        super().__init__()
        self._timeout = timeout

    def __call__(
        self,
        url: str,
        method: str = "GET",
        body: Any = None,
        headers: Any = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Any:
        return super().__call__(
            url,
            method=method,
            body=body,
            headers=headers,
            timeout=timeout or self._timeout,
            **kwargs,
        )


class GoogleTokenRefresher:
    """Refreshes Google OAuth tokens through the token endpoint."""

    def __init__(
        self,
        client_id: str | None = GOOGLE_CLIENT_ID,
        client_secret: str | None = GOOGLE_CLIENT_SECRET,
        token_uri: str = GOOGLE_TOKEN_URI,
        timeout: float = UPSTREAM_TIMEOUT_SECONDS,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri
        self._request = _TimeoutRequest(timeout)

    def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Raises:
            TokenRefreshError: Token endpoint rejected the grant or was unreachable
        """
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        try:
            credentials.refresh(self._request)
        except (RefreshError, TransportError) as e:
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

        # google-auth keeps the old refresh token when the response omits one
        new_refresh_token = credentials.refresh_token
        if new_refresh_token == refresh_token:
            new_refresh_token = None

        # google-auth reports expiry as naive UTC
        expiry = credentials.expiry.replace(tzinfo=UTC) if credentials.expiry else None
        return TokenGrant(
            access_token=credentials.token,
            refresh_token=new_refresh_token,
            expiry=expiry,
        )


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CredentialManager:
    """Owns the refresh decision for every owner's credential."""

    def __init__(
        self,
        store: CredentialStore,
        refresher: TokenRefresher | None = None,
        skew_seconds: int = TOKEN_REFRESH_SKEW_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.refresher = refresher or GoogleTokenRefresher()
        self.skew = timedelta(seconds=skew_seconds)
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._owner_locks: dict[str, threading.Lock] = {}
        # owner -> (generation, token handed out by the last refresh attempt)
        self._last_refresh: dict[str, tuple[int, str]] = {}

    def classify(self, credential: Credential, now: datetime | None = None) -> CredentialState:
        if credential.expiry is None:
            return CredentialState.VALID

        now = now or self._clock()
        if credential.expiry <= now:
            if credential.can_refresh:
                return CredentialState.EXPIRED_REFRESHABLE
            return CredentialState.EXPIRED_TERMINAL
        if credential.expiry - now <= self.skew:
            return CredentialState.NEAR_EXPIRY
        return CredentialState.VALID

    def store_credentials(
        self,
        owner_id: str,
        access_token: str,
        refresh_token: str | None = None,
        expiry: datetime | None = None,
        scopes: list[str] | None = None,
    ) -> Credential:
        """
        Record tokens granted by the OAuth consent flow

        A consent response without a refresh token keeps the one already stored
        (Google only returns it on the first consent).
        """
        credential = self.store.save_credential(
            owner_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=expiry,
            scopes=scopes,
        )
        with self._owner_lock(owner_id):
            generation, _ = self._last_refresh.get(owner_id, (0, ""))
            self._last_refresh[owner_id] = (generation + 1, credential.access_token)

        logger.info("Stored consent credentials for owner: %s", hash_identifier(owner_id))
        log_event(
            "oauth.credentials_stored",
            owner=hash_identifier(owner_id),
            refreshable=credential.can_refresh,
        )
        return credential

    def ensure_valid_token(self, owner_id: str) -> str:
        """
        Return an access token to use for the owner's next Gmail call

        Raises:
            CredentialNotFoundError: Owner never completed OAuth consent
            AuthExpiredTerminal: Token expired and no refresh token is stored

        Side Effects:
            - May call the token endpoint and persist the refreshed credential
        """
        credential = self._load(owner_id)
        fast = self._resolve_without_refresh(credential)
        if fast is not None:
            return fast

        generation, _ = self._last_refresh.get(owner_id, (0, ""))
        with self._owner_lock(owner_id):
            seen_generation, token = self._last_refresh.get(owner_id, (0, ""))
            if seen_generation != generation:
                # another caller refreshed while we waited
                counter("oauth.refresh.coalesced")
                return token

            credential = self._load(owner_id)
            fast = self._resolve_without_refresh(credential)
            if fast is not None:
                return fast

            token = self._refresh(credential)
            self._last_refresh[owner_id] = (seen_generation + 1, token)
            return token

    def _resolve_without_refresh(self, credential: Credential) -> str | None:
        """Token to use directly, or None when a refresh is needed."""
        state = self.classify(credential)
        if state is CredentialState.VALID:
            return credential.access_token

        if state is CredentialState.EXPIRED_TERMINAL:
            counter("oauth.auth_expired_terminal")
            log_event("oauth.auth_expired_terminal", owner=hash_identifier(credential.owner_id))
            raise AuthExpiredTerminal(
                "Access token expired and no refresh token is available; re-run consent",
                owner_id=credential.owner_id,
            )

        if not credential.can_refresh:
            # near expiry with nothing to refresh with: still usable for now
            logger.warning(
                "Token for owner %s expires soon and cannot be refreshed",
                hash_identifier(credential.owner_id),
            )
            return credential.access_token

        return None

    def _refresh(self, credential: Credential) -> str:
        owner_id = credential.owner_id
        owner_hash = hash_identifier(owner_id)
        if not credential.refresh_token:
            raise AuthExpiredTerminal(
                "No refresh token stored; re-run consent", owner_id=credential.owner_id
            )

        try:
            with time_block("oauth.refresh.latency"):
                grant = self.refresher.refresh(credential.refresh_token)
        except (TokenRefreshError, TimeoutError) as e:
            logger.warning(
                "Token refresh failed for owner %s, using stale token: %s", owner_hash, e
            )
            counter("oauth.refresh.failed")
            log_event("oauth.refresh_failed", owner=owner_hash, error=str(e))
            return credential.access_token

        self.store.save_credential(
            owner_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expiry=grant.expiry,
        )
        self.store.update_refresh_timestamp(owner_id)

        logger.info("Refreshed credentials for owner: %s", owner_hash)
        counter("oauth.token_refreshed.count")
        log_event(
            "oauth.token_refreshed",
            owner=owner_hash,
            rotated_refresh_token=grant.refresh_token is not None,
            has_expiry=grant.expiry is not None,
        )
        return grant.access_token

    def _load(self, owner_id: str) -> Credential:
        credential = self.store.load_credential(owner_id)
        if credential is None:
            raise CredentialNotFoundError(
                "No credentials found for owner; run the consent flow", owner_id=owner_id
            )
        return credential

    def _owner_lock(self, owner_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._owner_locks.get(owner_id)
            if lock is None:
                lock = threading.Lock()
                self._owner_locks[owner_id] = lock
            return lock
