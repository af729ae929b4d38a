"""History catch-up for a single mailbox.

One run validates the mailbox, snapshots Gmail's current history id, then
pages through the history log from the stored cursor and hands every page
to the dispatcher. The stored cursor is written at most once per run:

* when the log had nothing to replay, it moves to the snapshot;
* when the stored cursor has expired, it is reset to the snapshot.

A run that replayed changes leaves the stored cursor where it was; webhook
processing owns advancing it.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol

from loguru import logger

from inbox_catchup.constants import HISTORY_PAGE_SIZE, HISTORY_TYPES
from inbox_catchup.dispatcher import ChangeDispatcher
from inbox_catchup.errors import CursorExpiredError
from inbox_catchup.gmail_client import fetch_history, get_current_history_id, is_history_expired_error
from inbox_catchup.models import (
    ChangePage,
    MailboxAccount,
    MailboxContext,
    Rule,
    SyncRunResult,
    SyncStatus,
)

ServiceFactory = Callable[[MailboxAccount], Any]
PageFetcher = Callable[..., ChangePage]


class CursorStore(Protocol):
    def read_cursor(self, account_id: str) -> str | None: ...

    def write_cursor(self, account_id: str, history_id: str) -> None: ...


class AccountRepository(CursorStore, Protocol):
    def get_account_by_email(self, email: str) -> MailboxAccount | None: ...

    def list_rules(self, account_id: str, enabled_only: bool = False) -> list[Rule]: ...


class CatchUpOrchestrator:
    """Runs the fetch, dispatch and cursor steps for one mailbox at a time.

    The Gmail client factory, page fetcher and current-cursor lookup are
    injected, so the same orchestrator serves the CLI, the HTTP trigger
    and the tests.
    """

    def __init__(
        self,
        store: AccountRepository,
        client_factory: ServiceFactory,
        dispatcher: ChangeDispatcher,
        fetch_page: PageFetcher = fetch_history,
        get_current_cursor: Callable[[Any], str | None] = get_current_history_id,
        page_size: int = HISTORY_PAGE_SIZE,
    ) -> None:
        self.store = store
        self.client_factory = client_factory
        self.dispatcher = dispatcher
        self.fetch_page = fetch_page
        self.get_current_cursor = get_current_cursor
        self.page_size = page_size

    def _skipped(self, email: str) -> SyncRunResult:
        return SyncRunResult(email=email, status=SyncStatus.SKIPPED)

    def run(self, email: str, log=logger) -> SyncRunResult:
        """Catch up one mailbox. Errors other than cursor expiry propagate."""
        account = self.store.get_account_by_email(email)
        if account is None or account.is_disconnected:
            log.info("Account validation failed, skipping")
            return self._skipped(email)

        if not account.has_credentials:
            log.error("Missing tokens after validation")
            return self._skipped(account.email)

        service = self.client_factory(account)

        current_history_id = self.get_current_cursor(service)
        if not current_history_id:
            log.warning("No historyId from Gmail profile")
            return self._skipped(account.email)

        start_history_id = self.store.read_cursor(account.id)
        if not start_history_id:
            log.warning("No lastSyncedHistoryId in database")
            return self._skipped(account.email)

        context = MailboxContext(
            account=account,
            rules=self.store.list_rules(account.id, enabled_only=True),
            has_ai_access=account.ai_access,
        )

        log.info(
            "Catching up history",
            start_history_id=start_history_id,
            current_history_id=current_history_id,
        )

        page_token: str | None = None
        pages_processed = 0
        total_items = 0

        while True:
            try:
                page = self.fetch_page(
                    service,
                    start_history_id,
                    history_types=HISTORY_TYPES,
                    max_results=self.page_size,
                    page_token=page_token,
                )
            except Exception as exc:
                if not isinstance(exc, CursorExpiredError) and not is_history_expired_error(exc):
                    raise
                log.warning(
                    "History ID expired, resetting to current",
                    expired_history_id=start_history_id,
                    new_history_id=current_history_id,
                )
                self.store.write_cursor(account.id, current_history_id)
                return SyncRunResult(
                    email=account.email,
                    status=SyncStatus.EXPIRED_RESET,
                    pages_processed=pages_processed,
                    items_processed=total_items,
                )

            pages_processed += 1

            if page.records:
                total_items += len(page.records)
                self.dispatcher.dispatch(page, service, context, log=log)

            page_token = page.next_page_token

            log.info(
                "Processed history page",
                page=pages_processed,
                items_on_page=len(page.records),
                has_more=bool(page_token),
            )
            if not page_token:
                break

        # TODO: decide whether a run that replayed changes should also persist current_history_id.
        if total_items == 0:
            self.store.write_cursor(account.id, current_history_id)

        return SyncRunResult(
            email=account.email,
            status=SyncStatus.OK,
            pages_processed=pages_processed,
            items_processed=total_items,
        )
