"""Builds the catch-up and digest jobs from settings."""

from __future__ import annotations

from inbox_catchup.auth import ClientFactory
from inbox_catchup.catchup import CatchUpOrchestrator
from inbox_catchup.digest import DigestCompiler
from inbox_catchup.dispatcher import ChangeDispatcher
from inbox_catchup.fleet import FleetRunner
from inbox_catchup.rules import StaticRuleEvaluator
from inbox_catchup.settings import Settings
from inbox_catchup.store import AccountStore
from inbox_catchup.summarizer import OpenAISummarizer


def open_store(settings: Settings) -> AccountStore:
    return AccountStore(settings.resolved_database_path)


def build_fleet_runner(store: AccountStore, settings: Settings) -> FleetRunner:
    orchestrator = CatchUpOrchestrator(
        store=store,
        client_factory=ClientFactory(store, settings.resolved_client_secrets_path),
        dispatcher=ChangeDispatcher(StaticRuleEvaluator()),
        page_size=settings.history_page_size,
    )
    return FleetRunner(store, orchestrator)


def build_digest_compiler(store: AccountStore, settings: Settings) -> DigestCompiler:
    api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
    return DigestCompiler(
        store=store,
        client_factory=ClientFactory(store, settings.resolved_client_secrets_path),
        summarizer=OpenAISummarizer(api_key, model=settings.openai_model),
        max_messages=settings.digest_max_messages,
        workers=settings.digest_workers,
    )
