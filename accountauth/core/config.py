"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AuthConfig:
    """Token lifetimes, signing secret and account bootstrap policy."""

    signing_secret: str
    issuer: str = "accountauth"
    access_token_ttl_seconds: int = 15 * 60
    confirmation_token_ttl_seconds: int = 60 * 60
    reset_token_ttl_seconds: int = 30 * 60
    refresh_token_ttl_seconds: int = 30 * 24 * 60 * 60
    deactivation_grace_days: int = 10
    bootstrap_first_user_as_admin: bool = False


@dataclass(frozen=True)
class StorageConfig:
    """Persistence settings: MongoDB when configured, JSON files otherwise."""

    mongodb_uri: str
    mongodb_db: str
    data_dir: str


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    auth: AuthConfig
    storage: StorageConfig
    logging: LoggingConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        secret_key = (
            os.getenv("AUTH_SECRET_KEY", "").strip() or "dev-insecure-secret-change-me"
        )
        issuer = os.getenv("AUTH_ISSUER", "accountauth").strip() or "accountauth"
        access_ttl = int(os.getenv("AUTH_ACCESS_TOKEN_TTL_SECONDS", "900"))
        confirmation_ttl = int(
            os.getenv("AUTH_CONFIRMATION_TOKEN_TTL_SECONDS", "3600")
        )
        reset_ttl = int(os.getenv("AUTH_RESET_TOKEN_TTL_SECONDS", "1800"))
        refresh_ttl = int(os.getenv("AUTH_REFRESH_TOKEN_TTL_SECONDS", "2592000"))
        grace_days = int(os.getenv("AUTH_DEACTIVATION_GRACE_DAYS", "10"))
        bootstrap_admin = (
            os.getenv("AUTH_BOOTSTRAP_FIRST_USER_AS_ADMIN", "0").strip().lower()
            in _TRUTHY
        )
        mongodb_uri = os.getenv("MONGODB_URI", "").strip()
        mongodb_db = os.getenv("MONGODB_DB", "accountauth").strip() or "accountauth"
        data_dir = os.getenv("ACCOUNTAUTH_DATA_DIR", "runtime").strip() or "runtime"
        log_level = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"

        return AppConfig(
            auth=AuthConfig(
                signing_secret=secret_key,
                issuer=issuer,
                access_token_ttl_seconds=access_ttl,
                confirmation_token_ttl_seconds=confirmation_ttl,
                reset_token_ttl_seconds=reset_ttl,
                refresh_token_ttl_seconds=refresh_ttl,
                deactivation_grace_days=grace_days,
                bootstrap_first_user_as_admin=bootstrap_admin,
            ),
            storage=StorageConfig(
                mongodb_uri=mongodb_uri,
                mongodb_db=mongodb_db,
                data_dir=data_dir,
            ),
            logging=LoggingConfig(level=log_level),
        )
