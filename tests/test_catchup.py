"""Tests for the single-mailbox catch-up orchestrator."""

import pytest

from fakes import FakeGmail, RecordingEvaluator, gmail_message, history_entry, http_error, make_account

from inbox_catchup.catchup import CatchUpOrchestrator
from inbox_catchup.dispatcher import ChangeDispatcher
from inbox_catchup.errors import CursorExpiredError
from inbox_catchup.models import ChangePage, SyncStatus


@pytest.fixture
def cursor_writes(store, monkeypatch):
    writes = []
    original = store.write_cursor

    def spy(account_id, history_id):
        writes.append((account_id, history_id))
        original(account_id, history_id)

    monkeypatch.setattr(store, "write_cursor", spy)
    return writes


def _messages(*ids):
    return {m: gmail_message(m, subject=f"Subject {m}") for m in ids}


def _orchestrator(store, gmail, evaluator=None, **kwargs):
    return CatchUpOrchestrator(
        store=store,
        client_factory=lambda account: gmail,
        dispatcher=ChangeDispatcher(evaluator or RecordingEvaluator()),
        **kwargs,
    )


def test_unknown_account_is_skipped(store, cursor_writes):
    result = _orchestrator(store, FakeGmail()).run("nobody@example.com")
    assert result.status is SyncStatus.SKIPPED
    assert cursor_writes == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"access_token": None},
        {"refresh_token": None},
        {"last_synced_history_id": None},
        {"disconnected_at": "2026-10-01T00:00:00+00:00"},
    ],
)
def test_ineligible_account_is_skipped_without_writes(store, cursor_writes, overrides):
    store.upsert_account(make_account(**overrides))
    gmail = FakeGmail(history_pages=[{}])

    result = _orchestrator(store, gmail).run("me@example.com")

    assert result.status is SyncStatus.SKIPPED
    assert result.to_dict() == {"email": "me@example.com", "status": "skipped"}
    assert cursor_writes == []
    assert gmail.history_calls == []


def test_missing_current_history_id_is_skipped(store, account, cursor_writes):
    gmail = FakeGmail(history_id=None, history_pages=[{}])
    result = _orchestrator(store, gmail).run(account.email)
    assert result.status is SyncStatus.SKIPPED
    assert cursor_writes == []
    assert gmail.history_calls == []


def test_no_changes_writes_current_cursor(store, account, cursor_writes):
    gmail = FakeGmail(history_id="900", history_pages=[{"historyId": "900"}])

    result = _orchestrator(store, gmail).run(account.email)

    assert result.status is SyncStatus.OK
    assert result.pages_processed == 1
    assert result.items_processed == 0
    assert cursor_writes == [(account.id, "900")]
    assert store.read_cursor(account.id) == "900"


def test_empty_pages_across_tokens_still_write_once(store, account, cursor_writes):
    gmail = FakeGmail(history_pages=[{"nextPageToken": "p2"}, {"history": []}])

    result = _orchestrator(store, gmail).run(account.email)

    assert result.status is SyncStatus.OK
    assert result.pages_processed == 2
    assert cursor_writes == [(account.id, "900")]


def test_processed_changes_leave_cursor_untouched(store, account, cursor_writes):
    gmail = FakeGmail(
        history_pages=[{"history": [history_entry("101", added=["m1"])]}],
        messages=_messages("m1"),
    )

    result = _orchestrator(store, gmail).run(account.email)

    assert result.status is SyncStatus.OK
    assert result.items_processed == 1
    assert cursor_writes == []
    assert store.read_cursor(account.id) == "100"


def test_records_dispatched_in_order_across_pages(store, account):
    evaluator = RecordingEvaluator()
    gmail = FakeGmail(
        history_pages=[
            {
                "history": [
                    history_entry("101", added=["m1", "m2"]),
                    history_entry("102", labels_added=["m1"]),
                ],
                "nextPageToken": "page-2",
            },
            {
                "history": [
                    history_entry("103", labels_added=["m1"]),
                    history_entry("104", added=["m3"]),
                ]
            },
        ],
        messages=_messages("m1", "m2", "m3"),
    )

    result = _orchestrator(store, gmail, evaluator).run(account.email)

    assert evaluator.calls == [
        ("messageAdded", "m1"),
        ("messageAdded", "m2"),
        ("labelAdded", "m1"),
        ("labelAdded", "m1"),
        ("messageAdded", "m3"),
    ]
    assert result.pages_processed == 2
    assert result.items_processed == 5


def test_next_page_token_triggers_exactly_one_more_fetch(store, account):
    gmail = FakeGmail(
        history_pages=[{"nextPageToken": "tok-1"}, {"nextPageToken": "tok-2"}, {}],
    )

    _orchestrator(store, gmail, page_size=50).run(account.email)

    assert len(gmail.history_calls) == 3
    assert "pageToken" not in gmail.history_calls[0]
    assert gmail.history_calls[1]["pageToken"] == "tok-1"
    assert gmail.history_calls[2]["pageToken"] == "tok-2"
    assert all(call["startHistoryId"] == "100" for call in gmail.history_calls)
    assert all(call["maxResults"] == 50 for call in gmail.history_calls)


def test_expired_cursor_on_first_page_resets(store, account, cursor_writes):
    gmail = FakeGmail(history_id="900", history_pages=[http_error(404, "Not Found")])

    result = _orchestrator(store, gmail).run(account.email)

    assert result.status is SyncStatus.EXPIRED_RESET
    assert result.pages_processed == 0
    assert result.items_processed == 0
    assert cursor_writes == [(account.id, "900")]


def test_expired_cursor_mid_run_reports_partial_progress(store, account, cursor_writes):
    evaluator = RecordingEvaluator()
    gmail = FakeGmail(
        history_pages=[
            {"history": [history_entry("101", added=["m1"])], "nextPageToken": "p2"},
            http_error(404),
        ],
        messages=_messages("m1"),
    )

    result = _orchestrator(store, gmail, evaluator).run(account.email)

    assert result.status is SyncStatus.EXPIRED_RESET
    assert result.pages_processed == 1
    assert result.items_processed == 1
    assert evaluator.calls == [("messageAdded", "m1")]
    assert cursor_writes == [(account.id, "900")]


def test_expiry_from_injected_fetcher_with_generic_status(store, account, cursor_writes):
    class ProviderError(Exception):
        status = 404

    def fetch_page(service, start_history_id, **kwargs):
        raise ProviderError("gone")

    orchestrator = _orchestrator(store, FakeGmail(), fetch_page=fetch_page)
    result = orchestrator.run(account.email)

    assert result.status is SyncStatus.EXPIRED_RESET
    assert cursor_writes == [(account.id, "900")]


def test_expiry_error_type_from_injected_fetcher(store, account, cursor_writes):
    def fetch_page(service, start_history_id, **kwargs):
        raise CursorExpiredError(start_history_id)

    result = _orchestrator(store, FakeGmail(), fetch_page=fetch_page).run(account.email)
    assert result.status is SyncStatus.EXPIRED_RESET


def test_fetch_failure_propagates_without_writes(store, account, cursor_writes):
    gmail = FakeGmail(history_pages=[http_error(403, "Forbidden")])

    with pytest.raises(Exception) as info:
        _orchestrator(store, gmail).run(account.email)

    assert "Forbidden" in str(info.value) or "403" in str(info.value)
    assert cursor_writes == []


def test_dispatch_failure_aborts_page_and_propagates(store, account, cursor_writes):
    evaluator = RecordingEvaluator(fail_on="m2")
    gmail = FakeGmail(
        history_pages=[{"history": [history_entry("101", added=["m1", "m2", "m3"])], "nextPageToken": "p2"}, {}],
        messages=_messages("m1", "m2", "m3"),
    )

    with pytest.raises(RuntimeError, match="m2"):
        _orchestrator(store, gmail, evaluator).run(account.email)

    assert evaluator.calls == [("messageAdded", "m1")]
    assert len(gmail.history_calls) == 1
    assert cursor_writes == []


def test_deleted_message_is_skipped_but_counted(store, account):
    evaluator = RecordingEvaluator()
    gmail = FakeGmail(
        history_pages=[{"history": [history_entry("101", added=["gone", "m1"])]}],
        messages=_messages("m1"),
    )

    result = _orchestrator(store, gmail, evaluator).run(account.email)

    assert result.status is SyncStatus.OK
    assert result.items_processed == 2
    assert evaluator.calls == [("messageAdded", "m1")]


def test_context_carries_enabled_rules(store, account):
    from inbox_catchup.models import Rule, RuleAction

    store.add_rule(Rule(name="r1", email_account_id=account.id, subject_pattern="x",
                        actions=[RuleAction(type="star")]))
    seen = []

    class ContextEvaluator:
        def evaluate(self, record, message, service, context):
            seen.append((context.has_automation_rules, [r.name for r in context.rules]))

    gmail = FakeGmail(
        history_pages=[{"history": [history_entry("101", added=["m1"])]}],
        messages=_messages("m1"),
    )
    _orchestrator(store, gmail, ContextEvaluator()).run(account.email)

    assert seen == [(True, ["r1"])]


def test_page_object_from_injected_fetcher(store, account, cursor_writes):
    pages = [ChangePage(records=[], next_page_token=None)]

    def fetch_page(service, start_history_id, **kwargs):
        return pages.pop(0)

    result = _orchestrator(store, FakeGmail(), fetch_page=fetch_page).run(account.email)
    assert result.status is SyncStatus.OK
    assert cursor_writes == [(account.id, "900")]


def test_entries_without_message_changes_count_as_empty(store, account, cursor_writes):
    gmail = FakeGmail(history_pages=[{"history": [{"id": "101", "messages": [{"id": "m1"}]}]}])

    result = _orchestrator(store, gmail).run(account.email)

    assert result.to_dict() == {"email": "me@example.com", "status": "ok", "pagesProcessed": 1, "itemsProcessed": 0}
    assert cursor_writes == [(account.id, "900")]
