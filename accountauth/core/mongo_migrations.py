"""Versioned MongoDB schema migrations for account and session collections."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from accountauth.core.logging import CORRELATION_ID_CTX

LOGGER = logging.getLogger(__name__)

MigrationFn = Callable[[Any], None]

ACCOUNTS_COLLECTION = "accounts"
REFRESH_TOKENS_COLLECTION = "refresh_tokens"


def _migration_20261001_01_account_indexes(db: Any) -> None:
    """Unique account keys and sparse ephemeral token digests."""
    accounts = db[ACCOUNTS_COLLECTION]
    accounts.create_index("account_id", unique=True)
    accounts.create_index("email", unique=True)
    accounts.create_index("uid", unique=True)
    accounts.create_index("confirm_email_token_hash", sparse=True)
    accounts.create_index("password_reset_token_hash", sparse=True)
    accounts.create_index([("is_deactivated", 1), ("deactivated_at", 1)])


def _migration_20261001_02_refresh_token_indexes(db: Any) -> None:
    """Unique token ids and the per-account revocation lookup."""
    tokens = db[REFRESH_TOKENS_COLLECTION]
    tokens.create_index("token_id", unique=True)
    tokens.create_index([("account_id", 1), ("revoked", 1)])


def _migration_20261001_03_refresh_token_ttl(db: Any) -> None:
    """Let MongoDB purge expired refresh token records."""
    # Storage hygiene only; validation never relies on the TTL monitor.
    db[REFRESH_TOKENS_COLLECTION].create_index(
        "expires_at_dt",
        expireAfterSeconds=0,
        name="idx_refresh_tokens_expires_at_ttl",
    )


MIGRATIONS: list[tuple[str, MigrationFn]] = [
    ("20261001_01_account_indexes", _migration_20261001_01_account_indexes),
    ("20261001_02_refresh_token_indexes", _migration_20261001_02_refresh_token_indexes),
    ("20261001_03_refresh_token_ttl", _migration_20261001_03_refresh_token_ttl),
]


def apply_mongo_migrations(db: Any) -> list[str]:
    """Apply pending migrations to ``db`` and return the ids that ran."""
    migration_collection = db["schema_migrations"]
    migration_collection.create_index("migration_id", unique=True)

    applied: list[str] = []
    for migration_id, migration_fn in MIGRATIONS:
        if migration_collection.find_one({"migration_id": migration_id}):
            continue
        migration_fn(db)
        migration_collection.insert_one(
            {
                "migration_id": migration_id,
                "applied_at": datetime.now(timezone.utc),
                "correlation_id": CORRELATION_ID_CTX.get(),
            }
        )
        applied.append(migration_id)
        LOGGER.info("Applied MongoDB migration %s", migration_id)
    return applied
