"""Unit tests for the encrypted credential record store"""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime

import pytest
from cryptography.fernet import Fernet

from inboxq.infrastructure.database import validate_schema
from inboxq.storage.credential_store import merge_credential
from inboxq.storage.models import Credential
from inboxq.storage.user_credentials_repository import (
    CredentialEncryptionError,
    UserCredentialsRepository,
)

EXPIRY = datetime(2025, 6, 1, 13, 0, tzinfo=UTC)


@pytest.fixture
def repo(credentials_db, encryption_key):
    return UserCredentialsRepository()


def test_schema_is_valid(credentials_db):
    assert validate_schema() is True


def test_save_and_load_round_trip(repo):
    repo.save_credential(
        "owner-1",
        access_token="access-1",
        refresh_token="refresh-1",
        expiry=EXPIRY,
        scopes=["https://www.googleapis.com/auth/gmail.readonly"],
    )

    credential = repo.load_credential("owner-1")

    assert credential.access_token == "access-1"
    assert credential.refresh_token == "refresh-1"
    assert credential.expiry == EXPIRY
    assert credential.scopes == ("https://www.googleapis.com/auth/gmail.readonly",)


def test_tokens_are_encrypted_at_rest(repo, credentials_db):
    repo.save_credential("owner-1", access_token="access-secret", refresh_token="refresh-secret")

    conn = sqlite3.connect(credentials_db)
    (stored,) = conn.execute(
        "SELECT encrypted_token_json FROM user_credentials WHERE user_id = 'owner-1'"
    ).fetchone()
    conn.close()

    assert "access-secret" not in stored
    assert "refresh-secret" not in stored


def test_partial_update_keeps_stored_fields(repo):
    repo.save_credential(
        "owner-1", access_token="access-1", refresh_token="refresh-1", expiry=EXPIRY
    )

    repo.save_credential("owner-1", access_token="access-2")

    credential = repo.load_credential("owner-1")
    assert credential.access_token == "access-2"
    assert credential.refresh_token == "refresh-1"
    assert credential.expiry == EXPIRY


def test_missing_owner_returns_none(repo):
    assert repo.load_credential("nobody") is None


def test_refresh_timestamp_is_recorded(repo):
    repo.save_credential("owner-1", access_token="access-1")
    assert repo.get_last_refresh_at("owner-1") is None

    repo.update_refresh_timestamp("owner-1")

    assert repo.get_last_refresh_at("owner-1") is not None


def test_missing_encryption_key_is_rejected(credentials_db, monkeypatch):
    monkeypatch.delenv("INBOXQ_ENCRYPTION_KEY", raising=False)

    with pytest.raises(ValueError, match="INBOXQ_ENCRYPTION_KEY"):
        UserCredentialsRepository()


def test_wrong_key_cannot_decrypt(repo):
    repo.save_credential("owner-1", access_token="access-1")
    other = UserCredentialsRepository(encryption_key=Fernet.generate_key().decode())

    with pytest.raises(CredentialEncryptionError):
        other.load_credential("owner-1")


def test_merge_requires_access_token_for_new_record():
    with pytest.raises(ValueError):
        merge_credential(None, "owner-1", refresh_token="refresh-1")


def test_merge_normalizes_naive_expiry_to_utc():
    existing = Credential(owner_id="owner-1", access_token="a")
    naive = datetime(2025, 6, 1, 13, 0)

    merged = merge_credential(existing, "owner-1", expiry=naive)

    assert merged.expiry == naive.replace(tzinfo=UTC)
