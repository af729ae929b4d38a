"""Tests for the daily digest compiler."""

import base64
from datetime import datetime
from email import message_from_bytes

import pytest

from googleapiclient.errors import HttpError

from fakes import FakeGmail, FakeSummarizer, gmail_message, http_error, make_account

from inbox_catchup.digest import DigestCompiler, build_digest_html, build_digest_query, digest_subject
from inbox_catchup.errors import AccountNotFoundError, MissingCredentialsError
from inbox_catchup.models import DigestItem

FIXED_NOW = datetime(2026, 10, 17, 8, 30)


def _compiler(store, gmail, summarizer, **kwargs):
    return DigestCompiler(
        store=store,
        client_factory=lambda account: gmail,
        summarizer=summarizer,
        now=lambda: FIXED_NOW,
        **kwargs,
    )


def _decode_sent(gmail):
    raw = gmail.sent[0]["raw"]
    return message_from_bytes(base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)))


def _inbox(n):
    return {
        f"m{i}": gmail_message(f"m{i}", sender=f"Sender {i} <s{i}@example.com>", subject=f"Subject {i}")
        for i in range(1, n + 1)
    }


def test_failed_summary_is_dropped_and_order_kept(store, account):
    gmail = FakeGmail(messages=_inbox(5))
    summarizer = FakeSummarizer(fail_ids={"m3"})

    items = _compiler(store, gmail, summarizer).compile(account.email)

    assert [i.subject for i in items] == ["Subject 1", "Subject 2", "Subject 4", "Subject 5"]
    assert items[0].sender == "Sender 1"
    assert items[0].content == "Summary of Subject 1"
    assert sorted(summarizer.calls) == ["m1", "m2", "m3", "m4", "m5"]
    assert len(gmail.sent) == 1


def test_empty_summary_is_dropped(store, account):
    gmail = FakeGmail(messages=_inbox(2))
    items = _compiler(store, gmail, FakeSummarizer(empty_ids={"m1"})).compile(account.email)
    assert [i.subject for i in items] == ["Subject 2"]
    assert len(gmail.sent) == 1


def test_no_messages_sends_nothing(store, account):
    gmail = FakeGmail(messages={})
    summarizer = FakeSummarizer()

    items = _compiler(store, gmail, summarizer).compile(account.email)

    assert items == []
    assert gmail.sent == []
    assert summarizer.calls == []


def test_no_summaries_sends_nothing(store, account):
    gmail = FakeGmail(messages=_inbox(2))
    items = _compiler(store, gmail, FakeSummarizer(fail_ids={"m1", "m2"})).compile(account.email)
    assert items == []
    assert gmail.sent == []


def test_query_and_cap(store, account):
    gmail = FakeGmail(messages=_inbox(5))
    summarizer = FakeSummarizer()

    _compiler(store, gmail, summarizer, max_messages=3).compile(account.email, hours=48)

    assert gmail.list_calls[0]["q"] == build_digest_query(48)
    assert sorted(summarizer.calls) == ["m1", "m2", "m3"]


def test_build_digest_query():
    assert build_digest_query(24) == (
        "in:inbox newer_than:24h -label:Marketing -label:Newsletter -label:Receipt -category:promotions"
    )


def test_sent_message_headers_and_body(store, account):
    gmail = FakeGmail(messages=_inbox(1))

    _compiler(store, gmail, FakeSummarizer()).compile(account.email)

    sent = _decode_sent(gmail)
    assert sent["To"] == account.email
    assert sent["From"] == account.email
    assert sent["Subject"] == "Daily Inbox Digest - Saturday, October 17"
    html = sent.get_payload(decode=True).decode()
    assert "Subject 1" in html
    assert "Summary of Subject 1" in html
    assert "1 email<" in html


def test_digest_subject_uses_weekday_month_and_day():
    assert digest_subject(datetime(2026, 1, 5)) == "Daily Inbox Digest - Monday, January 5"


def test_html_escapes_content():
    html = build_digest_html([DigestItem(sender="<b>", subject="A & B", content="x < y")], FIXED_NOW)
    assert "A &amp; B" in html
    assert "&lt;b&gt;" in html
    assert "x &lt; y" in html


def test_unknown_account_raises(store):
    with pytest.raises(AccountNotFoundError):
        _compiler(store, FakeGmail(), FakeSummarizer()).compile("nobody@example.com")


def test_account_without_tokens_raises(store):
    store.upsert_account(make_account(access_token=None))
    with pytest.raises(MissingCredentialsError):
        _compiler(store, FakeGmail(), FakeSummarizer()).compile("me@example.com")


def test_failed_send_is_not_retried(store, account):
    gmail = FakeGmail(messages=_inbox(1))
    gmail.send_errors.append(http_error(503, "Backend Error"))

    with pytest.raises(HttpError):
        _compiler(store, gmail, FakeSummarizer()).compile(account.email)

    assert gmail.send_attempts == 1
    assert gmail.sent == []
