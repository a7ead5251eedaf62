"""Account lifecycle service: registration, sign-in, passwords, deactivation."""

from __future__ import annotations

import logging
import secrets
import uuid

from accountauth.api.errors import (
    AccountDeactivatedError,
    DuplicateAccountError,
    EmailAlreadyConfirmedError,
    EmailNotConfirmedError,
    InfrastructureError,
    InvalidCredentialError,
    PasswordMismatchError,
    TokenCooldownError,
    TokenInvalidError,
)
from accountauth.auth.access_tokens import AccessTokenSigner
from accountauth.auth.ephemeral import EphemeralTokenIssuer
from accountauth.auth.mailer import EmailSender
from accountauth.auth.models import (
    AccessClaims,
    Account,
    AccountProfile,
    AccountRole,
    AuthSession,
    DeactivationResult,
    EmailPurpose,
    EmailStatus,
    EphemeralKind,
    PasswordChangeResult,
    RegistrationResult,
)
from accountauth.auth.refresh_tokens import RefreshTokenManager
from accountauth.auth.repository import AccountRepository
from accountauth.core.clock import Clock, system_clock
from accountauth.core.config import AuthConfig
from accountauth.core.security import DUMMY_PASSWORD_HASH, hash_password, verify_password

LOGGER = logging.getLogger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60


def normalize_email(email: str) -> str:
    """Return the canonical lower-cased form of an email address."""
    return email.strip().lower()


class AccountService:
    """Orchestrates the account lifecycle on top of the token components.

    Gating on deactivation or email confirmation is left to the caller (see
    ``ensure_active`` and ``ensure_email_confirmed``); the operations here
    assume those checks already ran where the caller wants them.
    """

    def __init__(
        self,
        repo: AccountRepository,
        config: AuthConfig,
        mailer: EmailSender,
        clock: Clock = system_clock,
    ) -> None:
        """Initialize service dependencies."""
        self._repo = repo
        self._config = config
        self._mailer = mailer
        self._clock = clock
        self.ephemeral = EphemeralTokenIssuer(repo, config, clock)
        self.access_tokens = AccessTokenSigner(config, clock)
        self.refresh_tokens = RefreshTokenManager(repo, config, clock)

    # Lookups and gating

    def get_account(self, account_id: str) -> Account | None:
        """Get account by internal id."""
        return self._repo.get_account(account_id)

    def get_account_by_email(self, email: str) -> Account | None:
        """Get account by email, normalizing it first."""
        return self._repo.get_account_by_email(normalize_email(email))

    def account_for_token(self, kind: EphemeralKind, raw_token: str) -> Account:
        """Resolve the account an emailed token belongs to."""
        account = self.ephemeral.find_account(kind, raw_token)
        if account is None:
            raise TokenInvalidError()
        return account

    @staticmethod
    def account_profile(account: Account) -> AccountProfile:
        """Build the public profile view of an account."""
        return AccountProfile(
            uid=account.uid,
            name=account.name,
            email=account.email,
            role=account.role,
            is_email_confirmed=account.is_email_confirmed,
            is_deactivated=account.is_deactivated,
        )

    @staticmethod
    def ensure_active(account: Account) -> None:
        """Raise ``AccountDeactivatedError`` for a deactivated account."""
        if account.is_deactivated:
            raise AccountDeactivatedError()

    @staticmethod
    def ensure_email_confirmed(account: Account) -> None:
        """Raise ``EmailNotConfirmedError`` until the email is confirmed."""
        if not account.is_email_confirmed:
            raise EmailNotConfirmedError()

    def _send_email(
        self, account: Account, purpose: EmailPurpose, raw_token: str | None = None
    ) -> EmailStatus:
        """Deliver an email and report a raising sender as a failed status."""
        try:
            return self._mailer.send(account, purpose, raw_token)
        except Exception as exc:
            LOGGER.exception(
                "Email sender raised",
                extra={"account_id": account.account_id, "purpose": str(purpose)},
            )
            return EmailStatus(success=False, message=str(exc) or "Email delivery failed")

    # Sessions

    def _issue_session(
        self, account: Account, client_ip: str, email_status: EmailStatus | None = None
    ) -> AuthSession:
        """Issue fresh access and refresh tokens for given account."""
        refresh = self.refresh_tokens.issue(account, client_ip)
        return AuthSession(
            access_token=self.access_tokens.issue(account),
            refresh_token=refresh.token_id,
            expires_in=self.access_tokens.ttl_seconds,
            email_success=email_status.success if email_status else None,
            email_message=email_status.message if email_status else "",
        )

    def register(
        self, name: str, email: str, password: str, *, client_ip: str
    ) -> RegistrationResult:
        """Create an email/password account and sign it in.

        The first account ever created becomes admin when
        ``bootstrap_first_user_as_admin`` is enabled.
        """
        normalized_email = normalize_email(email)
        if self._repo.get_account_by_email(normalized_email) is not None:
            raise DuplicateAccountError()

        role = AccountRole.USER
        if self._config.bootstrap_first_user_as_admin and not self._repo.has_accounts():
            role = AccountRole.ADMIN

        account = Account(
            account_id=uuid.uuid4().hex,
            uid=secrets.token_hex(15),
            name=name.strip(),
            email=normalized_email,
            password_hash=hash_password(password),
            provider="email",
            role=role,
            created_at=self._clock(),
        )
        self._repo.create_account(account)
        LOGGER.info(
            "Account registered",
            extra={"account_id": account.account_id, "client_ip": client_ip},
        )

        confirmation_token = self.ephemeral.issue(EphemeralKind.CONFIRMATION, account)
        session = self._issue_session(account, client_ip)
        email_status = self._send_email(
            account, EmailPurpose.CONFIRMATION, confirmation_token
        )
        session.email_success = email_status.success
        session.email_message = email_status.message
        return RegistrationResult(
            account=account,
            session=session,
            confirmation_token=confirmation_token,
        )

    def authenticate(self, email: str, password: str, *, client_ip: str) -> AuthSession:
        """Verify credentials and issue an access/refresh token pair."""
        account = self._repo.get_account_by_email(normalize_email(email))
        if account is None or not account.password_hash:
            verify_password(password, DUMMY_PASSWORD_HASH)
            raise InvalidCredentialError()
        if not verify_password(password, account.password_hash):
            LOGGER.info(
                "Rejected sign-in",
                extra={"account_id": account.account_id, "client_ip": client_ip},
            )
            raise InvalidCredentialError()

        email_status = self._send_email(account, EmailPurpose.NEW_LOGIN)
        return self._issue_session(account, client_ip, email_status)

    def refresh_session(self, refresh_token: str, *, client_ip: str) -> AuthSession:
        """Rotate a refresh token and mint a new access token."""
        record = self.refresh_tokens.validate(refresh_token)
        account = self._repo.get_account(record.account_id)
        if account is None:
            raise TokenInvalidError("Invalid refresh token")

        successor = self.refresh_tokens.rotate(refresh_token, client_ip)
        return AuthSession(
            access_token=self.access_tokens.issue(account),
            refresh_token=successor.token_id,
            expires_in=self.access_tokens.ttl_seconds,
        )

    def logout(self, refresh_token: str, *, claims: AccessClaims, client_ip: str) -> None:
        """Revoke one refresh token belonging to the caller."""
        self.refresh_tokens.revoke(
            refresh_token, client_ip, account_id=claims.account_id
        )

    def logout_everywhere(self, account: Account, *, client_ip: str | None = None) -> int:
        """Revoke every active refresh token of the account."""
        return self.refresh_tokens.revoke_all_for_account(account.account_id, client_ip)

    # Email confirmation

    def confirm_email(self, account: Account, raw_token: str) -> Account:
        """Consume the confirmation token and mark the email as confirmed."""
        if not self.ephemeral.consume(EphemeralKind.CONFIRMATION, account, raw_token):
            raise TokenInvalidError()
        self._repo.update_account(account.account_id, {"is_email_confirmed": True})
        account.is_email_confirmed = True
        return account

    def request_confirmation_email(self, account: Account) -> str:
        """Re-send the confirmation email once the previous token lapsed."""
        if account.is_email_confirmed:
            raise EmailAlreadyConfirmedError()
        if self.ephemeral.is_outstanding(EphemeralKind.CONFIRMATION, account):
            raise TokenCooldownError(
                "Confirmation email was recently sent. Please request again later."
            )
        return self._issue_and_deliver(
            EphemeralKind.CONFIRMATION, EmailPurpose.CONFIRMATION, account
        )

    # Passwords

    def request_password_reset(self, account: Account) -> str:
        """Issue and deliver a reset token unless one is still outstanding."""
        if self.ephemeral.is_outstanding(EphemeralKind.PASSWORD_RESET, account):
            raise TokenCooldownError("Please check your email, try again later")
        return self._issue_and_deliver(
            EphemeralKind.PASSWORD_RESET, EmailPurpose.PASSWORD_RESET, account
        )

    def _issue_and_deliver(
        self, kind: EphemeralKind, purpose: EmailPurpose, account: Account
    ) -> str:
        """Issue a token and deliver it, discarding the token if delivery fails."""
        raw_token = self.ephemeral.issue(kind, account)
        status = self._send_email(account, purpose, raw_token)
        if not status.success:
            # Undelivered tokens must not hold the cooldown.
            self.ephemeral.discard(kind, account)
            LOGGER.warning(
                "Email delivery failed",
                extra={"account_id": account.account_id, "purpose": str(purpose)},
            )
            raise InfrastructureError(status.message or "Email delivery failed")
        return raw_token

    def reset_password(
        self,
        account: Account,
        raw_token: str,
        new_password: str,
        confirm_password: str,
        *,
        client_ip: str | None = None,
    ) -> PasswordChangeResult:
        """Set a new password from a reset token and end every session."""
        if new_password != confirm_password:
            raise PasswordMismatchError()
        new_hash = hash_password(new_password)
        if not self.ephemeral.consume(EphemeralKind.PASSWORD_RESET, account, raw_token):
            raise TokenInvalidError()
        return self._replace_password(account, new_hash, client_ip)

    def change_password(
        self,
        account: Account,
        current_password: str,
        new_password: str,
        confirm_password: str,
        *,
        client_ip: str,
    ) -> PasswordChangeResult:
        """Replace the password of a signed-in account and end every session."""
        if not verify_password(current_password, account.password_hash):
            raise InvalidCredentialError("You entered the wrong password")
        if new_password != confirm_password:
            raise PasswordMismatchError()
        return self._replace_password(account, hash_password(new_password), client_ip)

    def _replace_password(
        self, account: Account, new_hash: str, client_ip: str | None
    ) -> PasswordChangeResult:
        """Revoke every session, store the new hash and notify the owner."""
        revoked = self.refresh_tokens.revoke_all_for_account(account.account_id, client_ip)
        self._repo.update_account(account.account_id, {"password_hash": new_hash})
        account.password_hash = new_hash
        LOGGER.info(
            "Password updated",
            extra={"account_id": account.account_id, "client_ip": client_ip},
        )

        email_status = self._send_email(account, EmailPurpose.PASSWORD_CHANGED)
        return PasswordChangeResult(
            revoked_sessions=revoked,
            email_success=email_status.success,
            email_message=email_status.message,
        )

    # Deactivation

    def deactivate(
        self, account: Account, password: str, *, client_ip: str
    ) -> DeactivationResult:
        """Soft-delete the account; the purge sweep removes it after the grace period."""
        if not verify_password(password, account.password_hash):
            raise InvalidCredentialError(
                "We could not delete your account. You entered the wrong password"
            )

        revoked = self.refresh_tokens.revoke_all_for_account(account.account_id, client_ip)
        now_ts = self._clock()
        self._repo.update_account(
            account.account_id, {"is_deactivated": True, "deactivated_at": now_ts}
        )
        account.is_deactivated = True
        account.deactivated_at = now_ts
        LOGGER.info(
            "Account deactivated",
            extra={"account_id": account.account_id, "client_ip": client_ip},
        )
        return DeactivationResult(
            revoked_sessions=revoked,
            deactivated_at=now_ts,
            deletion_due_at=now_ts + self._config.deactivation_grace_days * _SECONDS_PER_DAY,
        )
