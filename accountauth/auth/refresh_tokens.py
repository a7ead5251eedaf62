"""Rotating refresh tokens backed by the repository."""

from __future__ import annotations

import logging
import secrets

from accountauth.api.errors import TokenInvalidError
from accountauth.auth.models import Account, RefreshTokenRecord
from accountauth.auth.repository import AccountRepository
from accountauth.core.clock import Clock, system_clock
from accountauth.core.config import AuthConfig

LOGGER = logging.getLogger(__name__)


def _new_token_id() -> str:
    """Return an opaque random refresh token id."""
    return secrets.token_urlsafe(48)


class RefreshTokenManager:
    """Issue, validate, rotate and revoke refresh token records.

    A record is Active until it is revoked (explicitly or by rotation) or its
    expiry passes. Both terminal states look identical to callers: every
    rejection raises the same ``TokenInvalidError``.
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

    def issue(self, account: Account, ip: str) -> RefreshTokenRecord:
        """Create a new Active record for ``account``."""
        return self._issue_for(account.account_id, ip, _new_token_id())

    def _issue_for(self, account_id: str, ip: str, token_id: str) -> RefreshTokenRecord:
        now_ts = self._clock()
        record = RefreshTokenRecord(
            token_id=token_id,
            account_id=account_id,
            issued_at=now_ts,
            expires_at=now_ts + self._config.refresh_token_ttl_seconds,
            created_by_ip=ip or "",
        )
        self._repo.save_refresh_token(record)
        return record

    def validate(self, token_id: str) -> RefreshTokenRecord:
        """Return the Active record for ``token_id`` or raise ``TokenInvalidError``."""
        record = self._repo.get_refresh_token(token_id) if token_id else None
        if record is None:
            raise TokenInvalidError("Invalid refresh token")
        if record.revoked and record.replaced_by:
            LOGGER.warning(
                "Rotated refresh token presented again",
                extra={"account_id": record.account_id},
            )
        if not record.is_active(self._clock()):
            raise TokenInvalidError("Invalid refresh token")
        return record

    def rotate(self, token_id: str, ip: str) -> RefreshTokenRecord:
        """Revoke ``token_id`` and issue its successor for the same account.

        The revoke is a compare-and-set on the revoked flag, so of several
        concurrent rotations of the same token only one gets past it. If
        issuing the successor fails afterwards the caller is left logged out.
        """
        record = self.validate(token_id)
        successor_id = _new_token_id()
        revoked = self._repo.revoke_refresh_token(
            token_id, now=self._clock(), ip=ip, replaced_by=successor_id
        )
        if not revoked:
            LOGGER.warning(
                "Concurrent refresh token rotation rejected",
                extra={"account_id": record.account_id, "client_ip": ip},
            )
            raise TokenInvalidError("Invalid refresh token")
        return self._issue_for(record.account_id, ip, successor_id)

    def revoke(self, token_id: str, ip: str | None, *, account_id: str) -> None:
        """Revoke a token owned by ``account_id``.

        Unknown tokens and tokens of another account fail the same way.
        Revoking an already revoked token is a no-op.
        """
        record = self._repo.get_refresh_token(token_id) if token_id else None
        if record is None or record.account_id != account_id:
            raise TokenInvalidError("Invalid refresh token")
        if record.revoked:
            return
        self._repo.revoke_refresh_token(token_id, now=self._clock(), ip=ip)

    def revoke_all_for_account(self, account_id: str, ip: str | None = None) -> int:
        """Revoke every Active record of the account ("log out everywhere")."""
        count = self._repo.revoke_refresh_tokens_for_account(
            account_id, now=self._clock(), ip=ip
        )
        LOGGER.info(
            "Revoked refresh tokens",
            extra={"account_id": account_id, "revoked_count": count, "client_ip": ip},
        )
        return count
