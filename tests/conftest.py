"""Shared fixtures for tests."""

from __future__ import annotations

import sys

import pytest
from loguru import logger

from inbox_catchup.models import MailboxAccount
from inbox_catchup.settings import get_settings
from inbox_catchup.store import AccountStore

from fakes import make_account


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at a throwaway data dir and drop any cached instance."""
    monkeypatch.setenv("INBOX_CATCHUP_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("INBOX_CATCHUP_CRON_SECRET", raising=False)
    monkeypatch.delenv("INBOX_CATCHUP_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("INBOX_CATCHUP_DATABASE_PATH", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_logging():
    """Send loguru output to the current stderr; CLI runs swap it out."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")
    yield
    logger.remove()


@pytest.fixture
def store(tmp_path) -> AccountStore:
    with AccountStore(tmp_path / "accounts.db") as s:
        yield s


@pytest.fixture
def account(store: AccountStore) -> MailboxAccount:
    return store.upsert_account(make_account())
