"""User credentials repository for OAuth token management

Durable credential record store backed by the InboxQ SQLite database.

SECURITY:
- Token pair encrypted with Fernet (symmetric encryption)
- Encryption key must be set via INBOXQ_ENCRYPTION_KEY environment variable
- Token expiry stored in clear so freshness checks need no decryption
- Rows keyed by owner id
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from inboxq.infrastructure.database import retry_on_db_lock
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import hash_identifier
from inboxq.storage import BaseRepository
from inboxq.storage.credential_store import merge_credential
from inboxq.storage.models import Credential

logger = get_logger(__name__)


class CredentialEncryptionError(Exception):
    """Raised when credential encryption/decryption fails"""


class UserCredentialsRepository(BaseRepository):
    """
    Repository for encrypted per-owner OAuth credentials

    Implements the ``CredentialStore`` contract used by ``CredentialManager``.
    """

    def __init__(self, encryption_key: str | None = None):
        super().__init__("user_credentials", key_column="user_id")
        self._cipher = self._get_cipher(encryption_key)

    def _get_cipher(self, encryption_key: str | None) -> Fernet:
        """
        Raises:
            ValueError: If no key is given and INBOXQ_ENCRYPTION_KEY is not set
        """
        encryption_key = encryption_key or os.getenv("INBOXQ_ENCRYPTION_KEY")

        if not encryption_key:
            raise ValueError(
                "INBOXQ_ENCRYPTION_KEY environment variable must be set. "
                "Generate one with: python -c "
                "'from cryptography.fernet import Fernet; "
                "print(Fernet.generate_key().decode())'"
            )

        try:
            return Fernet(encryption_key.encode())
        except ValueError as e:
            raise ValueError(f"Invalid encryption key format: {e}") from e

    def _encrypt_token(self, token_dict: dict[str, Any]) -> str:
        try:
            return self._cipher.encrypt(json.dumps(token_dict).encode()).decode()
        except (TypeError, ValueError) as e:
            logger.error("Failed to encrypt token: %s", e)
            raise CredentialEncryptionError(f"Encryption failed: {e}") from e

    def _decrypt_token(self, encrypted_token: str) -> dict[str, Any]:
        try:
            return json.loads(self._cipher.decrypt(encrypted_token.encode()).decode())
        except (InvalidToken, ValueError) as e:
            logger.error("Failed to decrypt token: %s", e)
            raise CredentialEncryptionError(f"Decryption failed: {e}") from e

    def load_credential(self, owner_id: str) -> Credential | None:
        """
        Load the credential for an owner

        Raises:
            CredentialEncryptionError: If the stored token cannot be decrypted
        """
        row = self.find(owner_id)
        if not row:
            return None

        token_dict = self._decrypt_token(row["encrypted_token_json"])
        return Credential(
            owner_id=row["user_id"],
            access_token=token_dict["access_token"],
            refresh_token=token_dict.get("refresh_token"),
            expiry=datetime.fromisoformat(row["token_expiry"]) if row["token_expiry"] else None,
            scopes=tuple(json.loads(row["scopes"] or "[]")),
        )

    @retry_on_db_lock()
    def save_credential(
        self,
        owner_id: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        expiry: datetime | None = None,
        scopes: list[str] | None = None,
    ) -> Credential:
        """
        Insert or update token fields; fields left as None keep their stored value

        Side Effects:
            - Inserts or updates the owner's row in user_credentials
        """
        merged = merge_credential(
            self.load_credential(owner_id),
            owner_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=expiry,
            scopes=scopes,
        )
        encrypted = self._encrypt_token(
            {"access_token": merged.access_token, "refresh_token": merged.refresh_token}
        )
        self.execute(
            """
            INSERT INTO user_credentials (user_id, encrypted_token_json, scopes, token_expiry)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                encrypted_token_json = excluded.encrypted_token_json,
                scopes = excluded.scopes,
                token_expiry = excluded.token_expiry,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                owner_id,
                encrypted,
                json.dumps(list(merged.scopes)),
                merged.expiry.isoformat() if merged.expiry else None,
            ),
        )
        logger.info("Saved credentials for owner: %s", hash_identifier(owner_id))
        return merged

    def update_refresh_timestamp(self, owner_id: str) -> None:
        self.execute(
            "UPDATE user_credentials SET last_refresh_at = CURRENT_TIMESTAMP WHERE user_id = ?",
            (owner_id,),
        )

    def get_last_refresh_at(self, owner_id: str) -> str | None:
        row = self.find(owner_id, columns="last_refresh_at")
        return row["last_refresh_at"] if row else None
