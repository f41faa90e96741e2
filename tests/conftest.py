"""
Pytest configuration for InboxQ tests

Provides fixtures shared across unit and integration tests
"""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet

from inboxq.infrastructure.database import init_database
from inboxq.observability.telemetry import reset_telemetry
from inboxq.storage.tiered_cache import TieredCache, create_email_cache


@pytest.fixture(autouse=True)
def clean_telemetry():
    """Counters are process-global; start every test from zero"""
    reset_telemetry()
    yield
    reset_telemetry()


@pytest.fixture
def memory_cache() -> TieredCache:
    """Initialized cache running without a durable tier"""
    cache = create_email_cache(durable=False)
    cache.initialize()
    return cache


@pytest.fixture
def durable_cache(tmp_path) -> TieredCache:
    """Initialized cache backed by a SQLite file under tmp_path"""
    cache = create_email_cache(db_path=tmp_path / "email_cache.db")
    cache.initialize()
    yield cache
    cache.store.close()


@pytest.fixture
def encryption_key(monkeypatch) -> str:
    """Generate test encryption key"""
    key = Fernet.generate_key().decode()
    monkeypatch.setenv("INBOXQ_ENCRYPTION_KEY", key)
    return key


@pytest.fixture
def credentials_db(tmp_path, monkeypatch):
    """Fresh credentials database for one test"""
    db_path = tmp_path / "inboxq.db"
    monkeypatch.setenv("INBOXQ_DB_PATH", str(db_path))
    init_database()
    return db_path
