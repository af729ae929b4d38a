"""Exception types raised by Inbox Catch-up."""

from __future__ import annotations


class InboxCatchupError(Exception):
    """Base class for errors the CLI reports without a traceback."""


class AccountNotFoundError(InboxCatchupError):
    def __init__(self, email: str) -> None:
        super().__init__(f"No account found for email: {email}")
        self.email = email


class MissingCredentialsError(InboxCatchupError):
    """Raised when tokens, client secrets or API keys are unavailable."""


class CursorExpiredError(InboxCatchupError):
    """The starting history id is older than the provider keeps history for."""

    def __init__(self, history_id: str) -> None:
        super().__init__(f"History ID {history_id} has expired")
        self.history_id = history_id
