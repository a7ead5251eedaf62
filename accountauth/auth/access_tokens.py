"""Short-lived signed access tokens."""

from __future__ import annotations

from typing import Iterable

from pydantic import ValidationError

from accountauth.api.errors import ForbiddenError, TokenInvalidError
from accountauth.auth.models import AccessClaims, Account, AccountRole
from accountauth.core.clock import Clock, system_clock
from accountauth.core.config import AuthConfig
from accountauth.core.security import build_signed_token, decode_signed_token


class AccessTokenSigner:
    """Stateless HS256 signer; the secret is fixed for the process lifetime."""

    def __init__(self, config: AuthConfig, clock: Clock = system_clock) -> None:
        """Initialize signer configuration and clock."""
        self._config = config
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        """Lifetime in seconds of issued access tokens."""
        return self._config.access_token_ttl_seconds

    def issue(self, account: Account) -> str:
        """Sign the account's current identity claims."""
        now_ts = self._clock()
        payload = {
            "id": account.account_id,
            "role": str(account.role),
            "name": account.name,
            "uid": account.uid,
            "is_email_confirmed": bool(account.is_email_confirmed),
            "is_deactivated": bool(account.is_deactivated),
            "iss": self._config.issuer,
            "type": "access",
            "iat": now_ts,
            "exp": now_ts + self._config.access_token_ttl_seconds,
        }
        return build_signed_token(payload, self._config.signing_secret)

    def verify(self, token: str) -> AccessClaims:
        """Return verified claims or raise ``TokenInvalidError``."""
        try:
            payload = decode_signed_token(
                token or "", self._config.signing_secret, now=self._clock()
            )
        except ValueError as exc:
            raise TokenInvalidError() from exc

        if str(payload.get("iss") or "") != self._config.issuer:
            raise TokenInvalidError()
        if str(payload.get("type") or "") != "access":
            raise TokenInvalidError()
        try:
            return AccessClaims.model_validate(payload)
        except ValidationError as exc:
            raise TokenInvalidError() from exc


def ensure_role(claims: AccessClaims, allowed: Iterable[AccountRole | str]) -> None:
    """Raise ``ForbiddenError`` unless the claims carry an allowed role."""
    if claims.role not in {AccountRole(role) for role in allowed}:
        raise ForbiddenError()
