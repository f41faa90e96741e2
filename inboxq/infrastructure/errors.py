"""
Error taxonomy for the cache and credential subsystem.

Storage degradation and partial page failures are never raised to callers;
they are reported through ``StoreStatus`` and ``MessagePage.failures``.
"""

from __future__ import annotations


class InboxQError(Exception):
    """Base class for InboxQ errors."""


class StorageDegraded(InboxQError):
    """Durable cache tier unavailable; the cache continues in memory only."""


class AuthorizationError(InboxQError):
    """The owner must go through the OAuth consent flow again."""

    def __init__(self, message: str, owner_id: str | None = None):
        super().__init__(message)
        self.owner_id = owner_id


class CredentialNotFoundError(AuthorizationError):
    """No credential has been stored for the owner."""


class AuthExpiredTerminal(AuthorizationError):
    """Access token expired and no refresh token is available."""


class TokenRefreshError(InboxQError):
    """The upstream token endpoint rejected or failed a refresh."""


class UpstreamError(InboxQError):
    """A Gmail API call failed."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamTransient(UpstreamError):
    """Network error, timeout, 429 or 5xx from the Gmail API."""

    retryable = True
