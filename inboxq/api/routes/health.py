"""Health check endpoint for InboxQ API.

Reports service status plus the email cache tier:
- ``durable``: SQLite tier connected
- ``memory_only``: durable tier unavailable, cache running in memory

and the in-process latency summaries of Gmail listing and token refresh.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from inboxq.api.dependencies import get_email_cache
from inboxq.config import APP_VERSION
from inboxq.observability.telemetry import get_latency_stats
from inboxq.storage.tiered_cache import TieredCache

router = APIRouter(tags=["health"])

LATENCY_METRICS = (
    "gmail.list_page.latency",
    "gmail.list.latency",
    "oauth.refresh.latency",
)


@router.get("/health")
def health_check(cache: TieredCache = Depends(get_email_cache)) -> dict[str, Any]:
    """Health check endpoint.

    A degraded cache keeps serving requests, so it is reported but the
    endpoint still answers 200.
    """
    stats = cache.stats()
    return {
        "status": "degraded" if stats["mode"] == "memory_only" else "healthy",
        "service": "InboxQ API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "cache": stats,
        "latency": {name: get_latency_stats(name) for name in LATENCY_METRICS},
    }
