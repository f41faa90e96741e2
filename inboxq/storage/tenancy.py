"""
Tenancy enforcement for the shared email cache.

The cache is one process-wide instance with no partitioning of its own; the
owner prefix on every key is what keeps one mailbox's data away from another.
These guards make a missing or blank owner id fail loudly instead of
producing an unscoped key.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

F = TypeVar("F", bound=Callable[..., Any])


class TenancyViolationError(ValueError):
    """Raised when a cache key would not be scoped to an owner."""


def validate_owner_id(owner_id: Any, context: str = "cache key") -> str:
    if owner_id is None:
        raise TenancyViolationError(f"{context} received None for owner_id")
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise TenancyViolationError(
            f"{context} received invalid owner_id: {owner_id!r} - must be non-empty string"
        )
    return owner_id


def enforce_tenancy(func: F) -> F:
    """
    Decorator requiring a valid ``owner_id`` argument.

    Example:
        @enforce_tenancy
        def email_key(owner_id: str, message_id: str) -> str:
            ...
    """
    sig = inspect.signature(func)
    if "owner_id" not in sig.parameters:
        raise TenancyViolationError(f"{func.__name__} must have an 'owner_id' parameter")

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        bound = sig.bind(*args, **kwargs)
        bound.apply_defaults()
        validate_owner_id(bound.arguments.get("owner_id"), context=func.__name__)
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]
