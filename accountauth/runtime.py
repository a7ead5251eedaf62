"""Process-wide wiring of configuration, logging, storage and services."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dotenv import load_dotenv

from accountauth.auth.mailer import EmailSender, LoggingEmailSender
from accountauth.auth.repository import AccountRepository
from accountauth.auth.service import AccountService
from accountauth.core.clock import Clock, system_clock
from accountauth.core.config import AppConfig
from accountauth.core.logging import setup_logging

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Runtime:
    """Objects built once at startup and shared read-only afterwards."""

    config: AppConfig
    repository: AccountRepository
    accounts: AccountService


def build_runtime(
    *,
    mailer: EmailSender | None = None,
    clock: Clock = system_clock,
    load_env_file: bool = True,
    configure_logging: bool = True,
) -> Runtime:
    """Load config from the environment and assemble the account service."""
    if load_env_file:
        load_dotenv()
    config = AppConfig.from_env()
    if configure_logging:
        setup_logging(config.logging.level)

    if config.auth.signing_secret == "dev-insecure-secret-change-me":
        LOGGER.warning("AUTH_SECRET_KEY is not set; using the development secret.")

    repository = AccountRepository(config.storage)
    accounts = AccountService(
        repository,
        config.auth,
        mailer or LoggingEmailSender(),
        clock,
    )
    return Runtime(config=config, repository=repository, accounts=accounts)
