"""HTTP trigger for scheduled catch-up runs."""

from __future__ import annotations

import secrets
from contextlib import AbstractContextManager, contextmanager
from typing import Callable, Iterator

from fastapi import FastAPI, Header
from fastapi.responses import PlainTextResponse
from loguru import logger

from inbox_catchup.constants import CRON_SECRET_HEADER
from inbox_catchup.factory import build_fleet_runner, open_store
from inbox_catchup.fleet import FleetRunner
from inbox_catchup.settings import Settings, get_settings

RunnerFactory = Callable[[], AbstractContextManager[FleetRunner]]


def has_cron_secret(expected: str | None, authorization: str | None, header_secret: str | None) -> bool:
    """Accept ``Authorization: Bearer <secret>`` or the x-cron-secret header."""
    if not expected:
        return False
    candidates = [header_secret]
    if authorization and authorization.lower().startswith("bearer "):
        candidates.append(authorization[7:].strip())
    return any(
        c is not None and secrets.compare_digest(c.encode(), expected.encode()) for c in candidates
    )


def _settings_runner_factory(settings: Settings) -> RunnerFactory:
    @contextmanager
    def factory() -> Iterator[FleetRunner]:
        # One store per request: sqlite connections stay on the thread that opened them.
        with open_store(settings) as store:
            yield build_fleet_runner(store, settings)

    return factory


def create_app(settings: Settings | None = None, runner_factory: RunnerFactory | None = None) -> FastAPI:
    settings = settings or get_settings()
    runner_factory = runner_factory or _settings_runner_factory(settings)
    expected = settings.cron_secret.get_secret_value() if settings.cron_secret else None

    app = FastAPI(title="Inbox Catch-up", version="0.1.0")

    @app.get("/api/cron/catch-up-history")
    def catch_up_history(
        email: str | None = None,
        authorization: str | None = Header(default=None),
        x_cron_secret: str | None = Header(default=None, alias=CRON_SECRET_HEADER),
    ):
        if not has_cron_secret(expected, authorization, x_cron_secret):
            logger.warning("Unauthorized request: api/cron/catch-up-history")
            return PlainTextResponse("Unauthorized", status_code=401)

        with runner_factory() as runner:
            result = runner.run(email)
        return result.to_dict()

    return app
