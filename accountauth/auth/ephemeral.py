"""Single-use email confirmation and password reset tokens."""

from __future__ import annotations

import logging

from accountauth.auth.models import Account, EphemeralKind
from accountauth.auth.repository import AccountRepository
from accountauth.core.clock import Clock, system_clock
from accountauth.core.config import AuthConfig
from accountauth.core.security import digest_token, generate_token_value

LOGGER = logging.getLogger(__name__)

# kind -> (hash field, expiry field) on the account record
_TOKEN_FIELDS: dict[EphemeralKind, tuple[str, str]] = {
    EphemeralKind.CONFIRMATION: (
        "confirm_email_token_hash",
        "confirm_email_token_expires_at",
    ),
    EphemeralKind.PASSWORD_RESET: (
        "password_reset_token_hash",
        "password_reset_token_expires_at",
    ),
}


class EphemeralTokenIssuer:
    """Issue, check and consume the hash+expiry pairs stored on accounts.

    Only the SHA-256 digest is persisted; the raw value is returned once to
    the caller for delivery and cannot be recovered from storage. This class
    is the only writer of those account fields.
    """

    def __init__(
        self,
        repo: AccountRepository,
        config: AuthConfig,
        clock: Clock = system_clock,
    ) -> None:
        """Initialize token dependencies."""
        self._repo = repo
        self._config = config
        self._clock = clock

    def ttl_seconds(self, kind: EphemeralKind) -> int:
        """Lifetime in seconds of a token of ``kind``."""
        if kind is EphemeralKind.CONFIRMATION:
            return self._config.confirmation_token_ttl_seconds
        return self._config.reset_token_ttl_seconds

    def issue(self, kind: EphemeralKind, account: Account) -> str:
        """Store a fresh digest and expiry for ``kind`` and return the raw token.

        Any previous token of the same kind is overwritten.
        """
        hash_field, expires_field = _TOKEN_FIELDS[kind]
        raw_token = generate_token_value(30)
        token_hash = digest_token(raw_token)
        expires_at = self._clock() + self.ttl_seconds(kind)

        self._repo.update_account(
            account.account_id, {hash_field: token_hash, expires_field: expires_at}
        )
        setattr(account, hash_field, token_hash)
        setattr(account, expires_field, expires_at)
        LOGGER.info(
            "Issued ephemeral token",
            extra={"account_id": account.account_id, "kind": str(kind)},
        )
        return raw_token

    def is_outstanding(self, kind: EphemeralKind, account: Account) -> bool:
        """Return whether a previously issued token has not lapsed yet."""
        _, expires_field = _TOKEN_FIELDS[kind]
        expires_at = getattr(account, expires_field)
        return expires_at is not None and self._clock() < expires_at

    def consume(self, kind: EphemeralKind, account: Account, raw_token: str) -> bool:
        """Clear a matching unexpired token and return True, else False."""
        if not raw_token:
            return False
        hash_field, expires_field = _TOKEN_FIELDS[kind]
        consumed = self._repo.clear_token_if_match(
            account.account_id,
            hash_field,
            expires_field,
            digest_token(raw_token),
            self._clock(),
        )
        if consumed:
            setattr(account, hash_field, None)
            setattr(account, expires_field, None)
        else:
            LOGGER.info(
                "Rejected ephemeral token",
                extra={"account_id": account.account_id, "kind": str(kind)},
            )
        return consumed

    def find_account(self, kind: EphemeralKind, raw_token: str) -> Account | None:
        """Resolve the account that holds an unexpired ``raw_token``."""
        if not raw_token:
            return None
        hash_field, expires_field = _TOKEN_FIELDS[kind]
        return self._repo.find_account_by_token_hash(
            hash_field, expires_field, digest_token(raw_token), self._clock()
        )

    def discard(self, kind: EphemeralKind, account: Account) -> None:
        """Drop the stored token of ``kind`` regardless of its value."""
        hash_field, expires_field = _TOKEN_FIELDS[kind]
        self._repo.update_account(
            account.account_id, {hash_field: None, expires_field: None}
        )
        setattr(account, hash_field, None)
        setattr(account, expires_field, None)
