from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

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
from accountauth.auth.models import (
    Account,
    AccountRole,
    EmailPurpose,
    EmailStatus,
    EphemeralKind,
)
from accountauth.auth.repository import AccountRepository
from accountauth.auth.service import AccountService
from accountauth.core.clock import FrozenClock
from accountauth.core.config import AuthConfig, StorageConfig

IP = "127.0.0.1"


@dataclass
class _Mailer:
    sent: list[tuple[str, EmailPurpose, str | None]] = field(default_factory=list)
    fail: bool = False
    raises: Exception | None = None

    def send(
        self, account: Account, purpose: EmailPurpose, raw_token: str | None = None
    ) -> EmailStatus:
        self.sent.append((account.email, purpose, raw_token))
        if self.raises is not None:
            raise self.raises
        if self.fail:
            return EmailStatus(success=False, message="smtp down")
        return EmailStatus(success=True, message="sent")


@dataclass
class _Env:
    service: AccountService
    repo: AccountRepository
    mailer: _Mailer
    clock: FrozenClock


def _build_service(tmp_path: Path, *, bootstrap_admin: bool = False) -> _Env:
    clock = FrozenClock()
    config = AuthConfig(
        signing_secret="test-secret",
        issuer="accountauth-test",
        bootstrap_first_user_as_admin=bootstrap_admin,
    )
    repo = AccountRepository(
        StorageConfig(mongodb_uri="", mongodb_db="test", data_dir=str(tmp_path))
    )
    mailer = _Mailer()
    return _Env(AccountService(repo, config, mailer, clock), repo, mailer, clock)


def test_register_then_authenticate(tmp_path: Path) -> None:
    env = _build_service(tmp_path)

    registered = env.service.register("Ada", "Ada@X.com", "pw123456", client_ip=IP)
    session = env.service.authenticate("ada@x.com", "pw123456", client_ip=IP)
    claims = env.service.access_tokens.verify(session.access_token)

    assert registered.account.email == "ada@x.com"
    assert len(registered.account.uid) == 30
    assert registered.account.is_email_confirmed is False
    assert registered.session.email_success is True
    assert claims.uid == registered.account.uid
    assert env.service.refresh_tokens.validate(session.refresh_token).account_id == (
        registered.account.account_id
    )
    assert [purpose for _, purpose, _ in env.mailer.sent] == [
        EmailPurpose.CONFIRMATION,
        EmailPurpose.NEW_LOGIN,
    ]


def test_authenticate_does_not_reveal_whether_email_exists(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    env.service.register("Ada", "ada@x.com", "pw123456", client_ip=IP)

    with pytest.raises(InvalidCredentialError) as wrong_password:
        env.service.authenticate("ada@x.com", "pw1234567", client_ip=IP)
    with pytest.raises(InvalidCredentialError) as unknown_email:
        env.service.authenticate("nobody@x.com", "pw123456", client_ip=IP)

    assert wrong_password.value.detail == unknown_email.value.detail


def test_registration_bootstrap_admin(tmp_path: Path) -> None:
    env = _build_service(tmp_path, bootstrap_admin=True)

    first = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)
    second = env.service.register("B", "b@x.com", "pw123456", client_ip=IP)

    assert first.account.role == AccountRole.ADMIN
    assert second.account.role == AccountRole.USER


def test_registration_without_bootstrap_is_user(tmp_path: Path) -> None:
    env = _build_service(tmp_path)

    first = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)

    assert first.account.role == AccountRole.USER


def test_register_duplicate_email_creates_no_record(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    original = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)

    with pytest.raises(DuplicateAccountError):
        env.service.register("Other", " A@x.com", "pw999999", client_ip=IP)

    stored = env.repo.get_account_by_email("a@x.com")
    assert stored.account_id == original.account.account_id
    assert stored.name == "A"


def test_register_reports_email_failure_without_failing(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    env.mailer.fail = True

    result = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)

    assert result.session.email_success is False
    assert result.session.email_message == "smtp down"


def test_register_and_sign_in_survive_a_raising_mailer(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    env.mailer.raises = ConnectionError("smtp unreachable")

    result = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)
    session = env.service.authenticate("a@x.com", "pw123456", client_ip=IP)

    assert result.session.email_success is False
    assert result.session.email_message == "smtp unreachable"
    assert session.email_success is False
    env.service.refresh_tokens.validate(session.refresh_token)
    with pytest.raises(DuplicateAccountError):
        env.service.register("A", "a@x.com", "pw123456", client_ip=IP)


def test_request_password_reset_with_raising_mailer_is_infrastructure_error(
    tmp_path: Path,
) -> None:
    env = _build_service(tmp_path)
    account = env.service.register("A", "a@x.com", "pw123456", client_ip=IP).account
    env.mailer.raises = ConnectionError("smtp unreachable")

    with pytest.raises(InfrastructureError) as exc_info:
        env.service.request_password_reset(account)

    assert exc_info.value.message == "smtp unreachable"
    assert env.repo.get_account(account.account_id).password_reset_token_hash is None
    env.mailer.raises = None
    assert env.service.request_password_reset(account)


def test_change_password_reports_raising_mailer_after_commit(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    account = env.service.register("A", "a@x.com", "pw123456", client_ip=IP).account
    env.mailer.raises = ConnectionError("smtp unreachable")

    result = env.service.change_password(
        account, "pw123456", "n3wpass1", "n3wpass1", client_ip=IP
    )

    assert result.revoked_sessions == 1
    assert result.email_success is False
    env.service.authenticate("a@x.com", "n3wpass1", client_ip=IP)


def test_register_on_corrupted_store_never_grants_bootstrap_admin(tmp_path: Path) -> None:
    env = _build_service(tmp_path, bootstrap_admin=True)
    env.service.register("Root", "root@x.com", "pw123456", client_ip=IP)
    env.service.register("B", "b@x.com", "pw123456", client_ip=IP)
    accounts_file = tmp_path / "auth_store" / "accounts.json"
    truncated = accounts_file.read_text(encoding="utf-8")[:40]
    accounts_file.write_text(truncated, encoding="utf-8")

    with pytest.raises(InfrastructureError):
        env.service.register("Mallory", "m@x.com", "pw123456", client_ip=IP)

    assert accounts_file.read_text(encoding="utf-8") == truncated


def test_confirm_email_consumes_token_once(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    result = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)
    account = env.service.account_for_token(
        EphemeralKind.CONFIRMATION, result.confirmation_token
    )

    confirmed = env.service.confirm_email(account, result.confirmation_token)

    assert confirmed.is_email_confirmed is True
    assert env.repo.get_account(account.account_id).is_email_confirmed is True
    with pytest.raises(TokenInvalidError):
        env.service.confirm_email(account, result.confirmation_token)
    with pytest.raises(TokenInvalidError):
        env.service.account_for_token(EphemeralKind.CONFIRMATION, result.confirmation_token)


def test_confirm_email_rejects_expired_token(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    result = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)

    env.clock.advance(60 * 60)

    with pytest.raises(TokenInvalidError):
        env.service.confirm_email(result.account, result.confirmation_token)


def test_request_confirmation_email_cooldown_and_resend(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    result = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)

    with pytest.raises(TokenCooldownError):
        env.service.request_confirmation_email(result.account)

    env.clock.advance(60 * 60)
    fresh = env.service.request_confirmation_email(result.account)

    assert fresh != result.confirmation_token
    env.service.confirm_email(result.account, fresh)
    with pytest.raises(EmailAlreadyConfirmedError):
        env.service.request_confirmation_email(result.account)


def test_request_password_reset_cooldown_keeps_first_token(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    account = env.service.register("A", "a@x.com", "pw123456", client_ip=IP).account

    first = env.service.request_password_reset(account)
    with pytest.raises(TokenCooldownError):
        env.service.request_password_reset(account)

    env.service.reset_password(account, first, "newpass99", "newpass99")
    env.service.authenticate("a@x.com", "newpass99", client_ip=IP)


def test_request_password_reset_rolls_back_on_delivery_failure(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    account = env.service.register("A", "a@x.com", "pw123456", client_ip=IP).account
    env.mailer.fail = True

    with pytest.raises(InfrastructureError):
        env.service.request_password_reset(account)

    assert env.repo.get_account(account.account_id).password_reset_token_hash is None
    env.mailer.fail = False
    assert env.service.request_password_reset(account)


def test_reset_password_revokes_all_sessions(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    registered = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)
    second = env.service.authenticate("a@x.com", "pw123456", client_ip=IP)
    raw = env.service.request_password_reset(registered.account)

    result = env.service.reset_password(registered.account, raw, "newpass99", "newpass99")

    assert result.revoked_sessions == 2
    for token_id in (registered.session.refresh_token, second.refresh_token):
        with pytest.raises(TokenInvalidError):
            env.service.refresh_tokens.validate(token_id)
    with pytest.raises(InvalidCredentialError):
        env.service.authenticate("a@x.com", "pw123456", client_ip=IP)
    assert env.mailer.sent[-1][1] == EmailPurpose.PASSWORD_CHANGED


def test_reset_password_mismatch_keeps_token(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    account = env.service.register("A", "a@x.com", "pw123456", client_ip=IP).account
    raw = env.service.request_password_reset(account)

    with pytest.raises(PasswordMismatchError):
        env.service.reset_password(account, raw, "newpass99", "newpass98")

    env.service.reset_password(account, raw, "newpass99", "newpass99")
    with pytest.raises(TokenInvalidError):
        env.service.reset_password(account, raw, "again1234", "again1234")


def test_change_password_requires_current_password(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    registered = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)
    account = registered.account

    with pytest.raises(InvalidCredentialError):
        env.service.change_password(account, "wrong", "n3wpass1", "n3wpass1", client_ip=IP)
    with pytest.raises(PasswordMismatchError):
        env.service.change_password(account, "pw123456", "n3wpass1", "n3wpass2", client_ip=IP)

    result = env.service.change_password(
        account, "pw123456", "n3wpass1", "n3wpass1", client_ip=IP
    )

    assert result.revoked_sessions == 1
    with pytest.raises(TokenInvalidError):
        env.service.refresh_tokens.validate(registered.session.refresh_token)
    env.service.authenticate("a@x.com", "n3wpass1", client_ip=IP)


def test_refresh_session_rotates_once(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    session = env.service.register("A", "a@x.com", "pw123456", client_ip=IP).session

    rotated = env.service.refresh_session(session.refresh_token, client_ip=IP)

    assert rotated.refresh_token != session.refresh_token
    assert env.service.access_tokens.verify(rotated.access_token).name == "A"
    with pytest.raises(TokenInvalidError):
        env.service.refresh_session(session.refresh_token, client_ip=IP)
    env.service.refresh_session(rotated.refresh_token, client_ip=IP)


def test_logout_checks_token_owner(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    alice = env.service.register("A", "a@x.com", "pw123456", client_ip=IP).session
    bob = env.service.register("B", "b@x.com", "pw123456", client_ip=IP).session
    bob_claims = env.service.access_tokens.verify(bob.access_token)

    with pytest.raises(TokenInvalidError):
        env.service.logout(alice.refresh_token, claims=bob_claims, client_ip=IP)
    env.service.refresh_tokens.validate(alice.refresh_token)

    env.service.logout(bob.refresh_token, claims=bob_claims, client_ip=IP)
    with pytest.raises(TokenInvalidError):
        env.service.refresh_tokens.validate(bob.refresh_token)


def test_logout_everywhere_is_scoped_to_account(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    alice = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)
    env.service.authenticate("a@x.com", "pw123456", client_ip=IP)
    bob = env.service.register("B", "b@x.com", "pw123456", client_ip=IP)

    assert env.service.logout_everywhere(alice.account, client_ip=IP) == 2
    env.service.refresh_tokens.validate(bob.session.refresh_token)


def test_deactivate_soft_deletes_and_revokes(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    registered = env.service.register("A", "a@x.com", "pw123456", client_ip=IP)
    account = registered.account

    with pytest.raises(InvalidCredentialError):
        env.service.deactivate(account, "wrong", client_ip=IP)

    result = env.service.deactivate(account, "pw123456", client_ip=IP)
    stored = env.repo.get_account(account.account_id)

    assert stored.is_deactivated is True
    assert stored.deactivated_at == env.clock()
    assert result.deletion_due_at == env.clock() + 10 * 24 * 60 * 60
    assert result.revoked_sessions == 1
    with pytest.raises(AccountDeactivatedError):
        env.service.ensure_active(stored)


def test_gating_helpers_and_profile(tmp_path: Path) -> None:
    env = _build_service(tmp_path)
    account = env.service.register("A", "a@x.com", "pw123456", client_ip=IP).account

    with pytest.raises(EmailNotConfirmedError):
        env.service.ensure_email_confirmed(account)
    env.service.ensure_active(account)
    profile = env.service.account_profile(account)

    assert profile.email == "a@x.com"
    assert "password_hash" not in profile.model_dump()
