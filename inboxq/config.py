"""Centralized configuration for the InboxQ backend.

Typed constants for the cache tiers, credential lifecycle, Gmail paging,
database and API settings. Environment variable overrides use safe defaults
so the app starts without extra env configuration.
"""

from __future__ import annotations

import os
from pathlib import Path

# --- App ---
APP_VERSION: str = "0.1.0"
ENV: str = os.getenv("INBOXQ_ENV", "development")

# --- Email cache ---
CACHE_DB_PATH: Path = Path(
    os.getenv("INBOXQ_CACHE_DB_PATH", str(Path.cwd() / ".data" / "email_cache.db"))
)
CACHE_MEMORY_MAX_ENTRIES: int = int(os.getenv("INBOXQ_CACHE_MEMORY_MAX_ENTRIES", "1000"))
# 0 disables time-based expiry in the memory tier
CACHE_MEMORY_TTL_SECONDS: float = float(os.getenv("INBOXQ_CACHE_MEMORY_TTL_SECONDS", "3600"))

# --- Credentials ---
TOKEN_REFRESH_SKEW_SECONDS: int = int(os.getenv("INBOXQ_TOKEN_REFRESH_SKEW_SECONDS", "300"))
GOOGLE_CLIENT_ID: str | None = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET: str | None = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_TOKEN_URI: str = os.getenv("GOOGLE_TOKEN_URI", "https://oauth2.googleapis.com/token")

# --- Gmail ---
UPSTREAM_TIMEOUT_SECONDS: float = float(os.getenv("INBOXQ_UPSTREAM_TIMEOUT_SECONDS", "10"))
UPSTREAM_MAX_ATTEMPTS: int = 2
PAGE_SIZE_DEFAULT: int = int(os.getenv("INBOXQ_PAGE_SIZE", "10"))
PAGE_SIZE_MAX: int = int(os.getenv("INBOXQ_PAGE_SIZE_MAX", "100"))
PREFETCH_SIZE: int = int(os.getenv("INBOXQ_PREFETCH_SIZE", "50"))

# --- Database (credential record store) ---
DB_POOL_SIZE: int = int(os.getenv("INBOXQ_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("INBOXQ_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("INBOXQ_DB_CONNECT_TIMEOUT", "30.0"))
DB_RETRY_MAX: int = int(os.getenv("INBOXQ_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("INBOXQ_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("INBOXQ_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("INBOXQ_DB_RETRY_JITTER", "0.1"))

# --- API ---
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
OWNER_HEADER: str = "X-Owner-Id"
ALLOWED_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv("INBOXQ_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]


def is_development() -> bool:
    """Check if running in development"""
    return ENV == "development"
