"""Email collaborator contract used by the account service."""

from __future__ import annotations

import logging
from typing import Protocol

from accountauth.auth.models import Account, EmailPurpose, EmailStatus

LOGGER = logging.getLogger(__name__)


class EmailSender(Protocol):
    """Delivers account emails; transport is owned by the implementation."""

    def send(
        self, account: Account, purpose: EmailPurpose, raw_token: str | None = None
    ) -> EmailStatus:
        """Send an email of ``purpose`` and report the outcome."""


class LoggingEmailSender:
    """Development sender that records the dispatch instead of mailing it.

    The raw token is never logged.
    """

    def send(
        self, account: Account, purpose: EmailPurpose, raw_token: str | None = None
    ) -> EmailStatus:
        """Log the dispatch and report it as delivered."""
        LOGGER.info(
            "Email dispatch skipped (no transport configured)",
            extra={
                "account_id": account.account_id,
                "email": account.email,
                "purpose": str(purpose),
            },
        )
        return EmailStatus(success=True, message=f"{purpose} email queued")
