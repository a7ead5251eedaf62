"""Pydantic models for the account and session domain."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class AccountRole(StrEnum):
    """Authorization role carried in access tokens."""

    USER = "user"
    ADMIN = "admin"


class EphemeralKind(StrEnum):
    """Single-use token purposes stored on the account record."""

    CONFIRMATION = "confirmation"
    PASSWORD_RESET = "password_reset"


class EmailPurpose(StrEnum):
    """Kinds of email the sender collaborator delivers."""

    CONFIRMATION = "confirmation"
    PASSWORD_RESET = "password_reset"
    NEW_LOGIN = "new_login"
    PASSWORD_CHANGED = "password_changed"


class Account(BaseModel):
    """Persisted account record."""

    account_id: str
    uid: str
    name: str
    email: str
    password_hash: str | None = Field(default=None, repr=False)
    provider: str = "email"
    role: AccountRole = AccountRole.USER
    is_email_confirmed: bool = False
    is_deactivated: bool = False
    deactivated_at: int | None = None
    created_at: int
    confirm_email_token_hash: str | None = Field(default=None, repr=False)
    confirm_email_token_expires_at: int | None = None
    password_reset_token_hash: str | None = Field(default=None, repr=False)
    password_reset_token_expires_at: int | None = None


class AccountProfile(BaseModel):
    """Public account view without any secret material."""

    uid: str
    name: str
    email: str
    role: AccountRole
    is_email_confirmed: bool
    is_deactivated: bool


class RefreshTokenRecord(BaseModel):
    """Refresh token persistence record; ``token_id`` is the caller-facing value."""

    token_id: str = Field(repr=False)
    account_id: str
    issued_at: int
    expires_at: int
    revoked: bool = False
    revoked_at: int | None = None
    created_by_ip: str = ""
    revoked_by_ip: str | None = None
    replaced_by: str | None = Field(default=None, repr=False)

    def is_active(self, now: int) -> bool:
        """Return whether the record can still be used at ``now``."""
        return not self.revoked and now < self.expires_at


class AccessClaims(BaseModel):
    """Verified access token claims."""

    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(alias="id")
    role: AccountRole
    name: str
    uid: str
    is_email_confirmed: bool
    is_deactivated: bool
    iss: str
    type: str = "access"
    iat: int
    exp: int


class EmailStatus(BaseModel):
    """Outcome reported by the email collaborator."""

    success: bool
    message: str = ""


class AuthSession(BaseModel):
    """Access/refresh token pair handed back to the caller."""

    access_token: str
    refresh_token: str = Field(repr=False)
    token_type: str = "bearer"
    expires_in: int
    email_success: bool | None = None
    email_message: str = ""


class RegistrationResult(BaseModel):
    """New account, its first session and the raw confirmation token."""

    account: Account
    session: AuthSession
    confirmation_token: str = Field(repr=False)


class PasswordChangeResult(BaseModel):
    """Outcome of a password reset or change."""

    revoked_sessions: int
    email_success: bool
    email_message: str = ""


class DeactivationResult(BaseModel):
    """Outcome of a soft delete, with the purge deadline."""

    revoked_sessions: int
    deactivated_at: int
    deletion_due_at: int
