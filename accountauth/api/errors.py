"""Shared error types raised by the account and session services."""

from __future__ import annotations

from enum import StrEnum

from fastapi import HTTPException


class ApiErrorCode(StrEnum):
    """Machine-readable error codes."""

    AUTH_DUPLICATE_ACCOUNT = "AUTH_DUPLICATE_ACCOUNT"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_TOKEN_COOLDOWN = "AUTH_TOKEN_COOLDOWN"
    AUTH_PASSWORD_MISMATCH = "AUTH_PASSWORD_MISMATCH"
    AUTH_EMAIL_ALREADY_CONFIRMED = "AUTH_EMAIL_ALREADY_CONFIRMED"
    AUTH_EMAIL_NOT_CONFIRMED = "AUTH_EMAIL_NOT_CONFIRMED"
    AUTH_ACCOUNT_DEACTIVATED = "AUTH_ACCOUNT_DEACTIVATED"
    AUTH_FORBIDDEN = "AUTH_FORBIDDEN"
    INFRASTRUCTURE_FAILURE = "INFRASTRUCTURE_FAILURE"


class ApiError(HTTPException):
    """HTTP exception carrying stable API error envelope."""

    def __init__(
        self, *, status_code: int, error_code: ApiErrorCode, message: str
    ) -> None:
        """Build an HTTP exception with standard detail structure."""
        super().__init__(
            status_code=status_code,
            detail={"error_code": str(error_code), "message": message},
        )
        self.error_code = error_code
        self.message = message


class _FixedApiError(ApiError):
    """Base for errors whose status and code never vary."""

    status: int
    code: ApiErrorCode
    default_message: str

    def __init__(self, message: str | None = None) -> None:
        """Build the error with ``message`` or the class default."""
        super().__init__(
            status_code=self.status,
            error_code=self.code,
            message=message or self.default_message,
        )


class DuplicateAccountError(_FixedApiError):
    """Email or uid already belongs to an account."""

    status = 409
    code = ApiErrorCode.AUTH_DUPLICATE_ACCOUNT
    default_message = "Duplicate field value entered"


class InvalidCredentialError(_FixedApiError):
    """Wrong password or unknown account; the two are never told apart."""

    status = 401
    code = ApiErrorCode.AUTH_INVALID_CREDENTIALS
    default_message = "Invalid credentials"


class TokenInvalidError(_FixedApiError):
    """Token not found, revoked, expired or owned by someone else."""

    status = 401
    code = ApiErrorCode.AUTH_TOKEN_INVALID
    default_message = "Invalid token"


class TokenCooldownError(_FixedApiError):
    """A token of the same kind is still outstanding."""

    status = 429
    code = ApiErrorCode.AUTH_TOKEN_COOLDOWN
    default_message = "A token was recently sent. Please try again later."


class PasswordMismatchError(_FixedApiError):
    """New password and its confirmation differ."""

    status: int
    code = ApiErrorCode.AUTH_PASSWORD_MISMATCH
    default_message = "Password and confirmed password are different"


class EmailAlreadyConfirmedError(_FixedApiError):
    """Confirmation requested for an already confirmed email."""

    status: int
    code = ApiErrorCode.AUTH_EMAIL_ALREADY_CONFIRMED
    default_message = "Email already confirmed"


class EmailNotConfirmedError(_FixedApiError):
    """Operation requires a confirmed email."""

    status = 403
    code = ApiErrorCode.AUTH_EMAIL_NOT_CONFIRMED
    default_message = "Email is not confirmed"


class AccountDeactivatedError(_FixedApiError):
    """Operation attempted on a soft-deleted account."""

    status = 403
    code = ApiErrorCode.AUTH_ACCOUNT_DEACTIVATED
    default_message = "Account is deactivated"


class ForbiddenError(_FixedApiError):
    """Caller role is not allowed for the operation."""

    status = 403
    code = ApiErrorCode.AUTH_FORBIDDEN
    default_message = "Insufficient role"


class InfrastructureError(_FixedApiError):
    """Storage or email collaborator failure, surfaced without retries."""

    status = 503
    code = ApiErrorCode.INFRASTRUCTURE_FAILURE
    default_message = "Service temporarily unavailable"
