"""Repository for accounts and refresh token persistence."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Iterator

from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from accountauth.api.errors import DuplicateAccountError, InfrastructureError
from accountauth.auth.models import Account, RefreshTokenRecord
from accountauth.core.config import StorageConfig
from accountauth.core.mongo_migrations import (
    ACCOUNTS_COLLECTION,
    REFRESH_TOKENS_COLLECTION,
    apply_mongo_migrations,
)

LOGGER = logging.getLogger(__name__)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Surface driver and filesystem failures as ``InfrastructureError``."""
    try:
        yield
    except (PyMongoError, OSError) as exc:
        LOGGER.exception("Storage operation failed: %s", operation)
        raise InfrastructureError("Storage is unavailable") from exc


def _as_datetime(epoch_seconds: int) -> datetime:
    """Convert epoch seconds to an aware UTC datetime for TTL indexes."""
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)


class AccountRepository:
    """Account repository with MongoDB primary and file-store fallback.

    Every state transition that guards a security invariant (refresh token
    revocation, ephemeral token consumption) is a single conditional write:
    an ``update_one`` filtered on the prior state in MongoDB, or a
    read-modify-write under the repository lock for the file store.
    """

    def __init__(self, config: StorageConfig, *, database: Any | None = None) -> None:
        """Initialize repository storage backends."""
        self._lock = RLock()
        self._mongo_accounts: Any | None = None
        self._mongo_refresh: Any | None = None

        if database is None and config.mongodb_uri:
            try:
                client: Any = MongoClient(
                    config.mongodb_uri, serverSelectionTimeoutMS=3000
                )
                client.admin.command("ping")
                database = client[config.mongodb_db]
                apply_mongo_migrations(database)
            except PyMongoError as exc:
                LOGGER.exception("MongoDB connection failed: db=%s", config.mongodb_db)
                raise InfrastructureError("Storage is unavailable") from exc

        if database is not None:
            self._mongo_accounts = database[ACCOUNTS_COLLECTION]
            self._mongo_refresh = database[REFRESH_TOKENS_COLLECTION]
            LOGGER.info("AccountRepository using MongoDB: db=%s", config.mongodb_db)
            return

        self._fallback_dir = Path(config.data_dir) / "auth_store"
        self._fallback_dir.mkdir(parents=True, exist_ok=True)
        self._accounts_file = self._fallback_dir / "accounts.json"
        self._refresh_file = self._fallback_dir / "refresh_tokens.json"
        LOGGER.warning(
            "MONGODB_URI is not set. Using local auth store fallback: %s",
            self._fallback_dir,
        )

    @property
    def uses_mongo(self) -> bool:
        """Return whether MongoDB backs this repository."""
        return self._mongo_accounts is not None

    def _read_json_file(self, path: Path) -> list[dict[str, Any]]:
        """Read list payload from JSON file; a missing file is an empty store.

        A file that does not decode to a list raises ``InfrastructureError``.
        """
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            LOGGER.exception("Failed reading fallback auth store: %s", path)
            raise InfrastructureError("Storage is unavailable") from exc
        if not isinstance(payload, list):
            LOGGER.error("Fallback auth store is not a list: %s", path)
            raise InfrastructureError("Storage is unavailable")
        return payload

    def _write_json_file(self, path: Path, items: list[dict[str, Any]]) -> None:
        """Persist list payload atomically via a temp file swap."""
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps(items, ensure_ascii=False, indent=2), encoding="utf-8"
        )
        tmp_path.replace(path)

    # Accounts

    def has_accounts(self) -> bool:
        """Return whether at least one account exists."""
        with _storage_errors("has_accounts"):
            if self._mongo_accounts is not None:
                return self._mongo_accounts.find_one({}, {"_id": 1}) is not None
            with self._lock:
                return bool(self._read_json_file(self._accounts_file))

    def create_account(self, account: Account) -> None:
        """Insert a new account, rejecting duplicate email or uid."""
        doc = account.model_dump(mode="json")
        with _storage_errors("create_account"):
            if self._mongo_accounts is not None:
                try:
                    self._mongo_accounts.insert_one(dict(doc))
                except DuplicateKeyError as exc:
                    raise DuplicateAccountError() from exc
                return

            with self._lock:
                items = self._read_json_file(self._accounts_file)
                for row in items:
                    if (
                        str(row.get("email", "")).lower() == account.email.lower()
                        or row.get("uid") == account.uid
                        or row.get("account_id") == account.account_id
                    ):
                        raise DuplicateAccountError()
                items.append(doc)
                self._write_json_file(self._accounts_file, items)

    def _find_account(self, query: dict[str, Any]) -> Account | None:
        """Return the first account matching every field in ``query``."""
        with _storage_errors("find_account"):
            if self._mongo_accounts is not None:
                doc = self._mongo_accounts.find_one(query, {"_id": 0})
                return Account.model_validate(doc) if doc else None

            with self._lock:
                rows = self._read_json_file(self._accounts_file)
        for row in rows:
            if all(row.get(key) == value for key, value in query.items()):
                return Account.model_validate(row)
        return None

    def get_account(self, account_id: str) -> Account | None:
        """Get account by internal id."""
        return self._find_account({"account_id": account_id})

    def get_account_by_email(self, email: str) -> Account | None:
        """Get account by normalized email."""
        return self._find_account({"email": email.strip().lower()})

    def get_account_by_uid(self, uid: str) -> Account | None:
        """Get account by public uid."""
        return self._find_account({"uid": uid})

    def find_account_by_token_hash(
        self, hash_field: str, expires_field: str, token_hash: str, now: int
    ) -> Account | None:
        """Return the account holding an unexpired ephemeral token digest."""
        account = self._find_account({hash_field: token_hash})
        if account is None:
            return None
        expires_at = getattr(account, expires_field)
        if expires_at is None or expires_at <= now:
            return None
        return account

    def update_account(self, account_id: str, fields: dict[str, Any]) -> None:
        """Set the given fields on an existing account."""
        with _storage_errors("update_account"):
            if self._mongo_accounts is not None:
                self._mongo_accounts.update_one(
                    {"account_id": account_id}, {"$set": fields}
                )
                return

            with self._lock:
                items = self._read_json_file(self._accounts_file)
                for row in items:
                    if row.get("account_id") == account_id:
                        row.update(fields)
                self._write_json_file(self._accounts_file, items)

    def clear_token_if_match(
        self,
        account_id: str,
        hash_field: str,
        expires_field: str,
        token_hash: str,
        now: int,
    ) -> bool:
        """Atomically clear an unexpired ephemeral token matching ``token_hash``."""
        cleared = {hash_field: None, expires_field: None}
        with _storage_errors("clear_token_if_match"):
            if self._mongo_accounts is not None:
                result = self._mongo_accounts.update_one(
                    {
                        "account_id": account_id,
                        hash_field: token_hash,
                        expires_field: {"$gt": now},
                    },
                    {"$set": cleared},
                )
                return result.modified_count == 1

            with self._lock:
                items = self._read_json_file(self._accounts_file)
                for row in items:
                    if row.get("account_id") != account_id:
                        continue
                    expires_at = row.get(expires_field)
                    if row.get(hash_field) != token_hash or expires_at is None:
                        return False
                    if int(expires_at) <= now:
                        return False
                    row.update(cleared)
                    self._write_json_file(self._accounts_file, items)
                    return True
                return False

    # Refresh tokens

    def save_refresh_token(self, record: RefreshTokenRecord) -> None:
        """Insert refresh token record."""
        doc = record.model_dump(mode="json")
        with _storage_errors("save_refresh_token"):
            if self._mongo_refresh is not None:
                self._mongo_refresh.insert_one(
                    {**doc, "expires_at_dt": _as_datetime(record.expires_at)}
                )
                return

            with self._lock:
                items = self._read_json_file(self._refresh_file)
                items.append(doc)
                self._write_json_file(self._refresh_file, items)

    def get_refresh_token(self, token_id: str) -> RefreshTokenRecord | None:
        """Get refresh token record by id."""
        with _storage_errors("get_refresh_token"):
            if self._mongo_refresh is not None:
                doc = self._mongo_refresh.find_one(
                    {"token_id": token_id}, {"_id": 0, "expires_at_dt": 0}
                )
                return RefreshTokenRecord.model_validate(doc) if doc else None

            with self._lock:
                rows = self._read_json_file(self._refresh_file)
        for row in rows:
            if row.get("token_id") == token_id:
                return RefreshTokenRecord.model_validate(row)
        return None

    def revoke_refresh_token(
        self,
        token_id: str,
        *,
        now: int,
        ip: str | None,
        replaced_by: str | None = None,
    ) -> bool:
        """Flip an unrevoked record to revoked; False when it already was."""
        fields: dict[str, Any] = {
            "revoked": True,
            "revoked_at": now,
            "revoked_by_ip": ip,
        }
        if replaced_by is not None:
            fields["replaced_by"] = replaced_by

        with _storage_errors("revoke_refresh_token"):
            if self._mongo_refresh is not None:
                result = self._mongo_refresh.update_one(
                    {"token_id": token_id, "revoked": False}, {"$set": fields}
                )
                return result.modified_count == 1

            with self._lock:
                items = self._read_json_file(self._refresh_file)
                for row in items:
                    if row.get("token_id") == token_id and not row.get("revoked"):
                        row.update(fields)
                        self._write_json_file(self._refresh_file, items)
                        return True
                return False

    def revoke_refresh_tokens_for_account(
        self, account_id: str, *, now: int, ip: str | None
    ) -> int:
        """Revoke every unrevoked record owned by the account."""
        fields = {"revoked": True, "revoked_at": now, "revoked_by_ip": ip}
        with _storage_errors("revoke_refresh_tokens_for_account"):
            if self._mongo_refresh is not None:
                result = self._mongo_refresh.update_many(
                    {"account_id": account_id, "revoked": False}, {"$set": fields}
                )
                return int(result.modified_count)

            with self._lock:
                items = self._read_json_file(self._refresh_file)
                count = 0
                for row in items:
                    if row.get("account_id") == account_id and not row.get("revoked"):
                        row.update(fields)
                        count += 1
                if count:
                    self._write_json_file(self._refresh_file, items)
                return count
