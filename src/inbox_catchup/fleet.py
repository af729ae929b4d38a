"""Catch-up across every eligible mailbox."""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from inbox_catchup.catchup import CatchUpOrchestrator
from inbox_catchup.models import FleetResult, MailboxAccount, SyncRunResult, SyncStatus


class AccountSource(Protocol):
    def list_catchup_accounts(self, email_filter: str | None = None) -> list[MailboxAccount]: ...


class FleetRunner:
    """Runs the orchestrator for each eligible mailbox, one after another.

    A failure in one mailbox is recorded as an ``error`` result and the
    loop moves on to the next mailbox.
    """

    def __init__(self, accounts: AccountSource, orchestrator: CatchUpOrchestrator, log=logger) -> None:
        self.accounts = accounts
        self.orchestrator = orchestrator
        self.log = log

    def run(self, email_filter: str | None = None) -> FleetResult:
        selected = self.accounts.list_catchup_accounts(email_filter)
        self.log.info("Starting catch-up", account_count=len(selected))

        result = FleetResult()
        for account in selected:
            account_log = self.log.bind(email=account.email, email_account_id=account.id)
            try:
                run_result = self.orchestrator.run(account.email, log=account_log)
            except Exception as exc:
                account_log.exception("Failed to catch up account")
                run_result = SyncRunResult(
                    email=account.email,
                    status=SyncStatus.ERROR,
                    error=str(exc) or type(exc).__name__,
                )
            result.accounts.append(run_result)

        return result
