"""Security primitives for password hashing, token digests and token signing."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

_PASSWORD_HASHER = PasswordHasher()

# Verified against when an account has no usable hash so that the
# unknown-account path costs the same as a wrong password.
DUMMY_PASSWORD_HASH = _PASSWORD_HASHER.hash("accountauth-dummy-password")


def _b64url_encode(raw: bytes) -> str:
    """Return URL-safe base64 string without padding."""
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    """Decode URL-safe base64 string with optional missing padding."""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def hash_password(password: str) -> str:
    """Hash password with argon2id; salt and cost parameters live in the output."""
    return _PASSWORD_HASHER.hash(password)


def verify_password(password: str, stored_hash: str | None) -> bool:
    """Verify password against a stored argon2 hash.

    Malformed or missing hashes never match.
    """
    if not stored_hash:
        return False
    try:
        return _PASSWORD_HASHER.verify(stored_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def generate_token_value(num_bytes: int = 30) -> str:
    """Return a hex-encoded cryptographically random token."""
    return secrets.token_hex(num_bytes)


def digest_token(raw_token: str) -> str:
    """Hash raw token for storage/comparison."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def build_signed_token(payload: dict[str, Any], secret_key: str) -> str:
    """Create compact signed token using JWT-like 3-part structure."""
    header = {"alg": "HS256", "typ": "JWT"}
    header_part = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_part = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    signature = hmac.new(secret_key.encode("utf-8"), signing_input, hashlib.sha256).digest()
    signature_part = _b64url_encode(signature)
    return f"{header_part}.{payload_part}.{signature_part}"


def decode_signed_token(token: str, secret_key: str, *, now: int) -> dict[str, Any]:
    """Decode and verify compact signed token, raising ``ValueError`` on failure.

    ``exp`` is mandatory: a token without it is rejected rather than treated
    as never-expiring.
    """
    try:
        header_part, payload_part, signature_part = token.split(".", 2)
    except ValueError as exc:
        raise ValueError("Malformed token") from exc

    try:
        header = json.loads(_b64url_decode(header_part).decode("utf-8"))
        got_sig = _b64url_decode(signature_part)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("Malformed token") from exc
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        raise ValueError("Unsupported token algorithm")

    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    expected_sig = hmac.new(secret_key.encode("utf-8"), signing_input, hashlib.sha256).digest()
    if not hmac.compare_digest(expected_sig, got_sig):
        raise ValueError("Invalid token signature")

    try:
        payload = json.loads(_b64url_decode(payload_part).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("Invalid token payload") from exc
    if not isinstance(payload, dict):
        raise ValueError("Invalid token payload")

    try:
        exp = int(payload.get("exp") or 0)
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid token expiry") from exc
    if exp <= now:
        raise ValueError("Token expired")

    return payload
