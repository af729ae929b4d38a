"""Data models for Inbox Catch-up."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class RuleAction:
    """A single action taken when a rule matches."""

    type: str  # label, archive, mark_read or star
    label: str | None = None


@dataclass
class Rule:
    """An automation rule attached to a mailbox."""

    name: str
    email_account_id: str
    actions: list[RuleAction] = field(default_factory=list)
    from_pattern: str | None = None
    to_pattern: str | None = None
    subject_pattern: str | None = None
    enabled: bool = True
    id: int | None = None


@dataclass
class MailboxAccount:
    """One user mailbox under sync."""

    id: str
    email: str  # Normalized (lower-cased) address
    provider: str = "google"
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: float | None = None  # Epoch seconds
    disconnected_at: str | None = None
    last_synced_history_id: str | None = None
    ai_access: bool = False
    name: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_token and self.refresh_token)

    @property
    def is_disconnected(self) -> bool:
        return self.disconnected_at is not None

    @property
    def is_eligible(self) -> bool:
        """Whether this account may take part in a history catch-up."""
        return (
            self.has_credentials
            and not self.is_disconnected
            and bool(self.last_synced_history_id)
        )


@dataclass
class MailboxContext:
    """Everything the rule evaluator needs to know about the mailbox."""

    account: MailboxAccount
    rules: list[Rule] = field(default_factory=list)
    has_ai_access: bool = False

    @property
    def has_automation_rules(self) -> bool:
        return any(rule.enabled for rule in self.rules)


class ChangeKind(str, Enum):
    MESSAGE_ADDED = "messageAdded"
    LABEL_ADDED = "labelAdded"
    LABEL_REMOVED = "labelRemoved"


@dataclass
class ChangeRecord:
    """One atomic mailbox event from the provider's history log."""

    kind: ChangeKind
    message_id: str
    label_ids: list[str] = field(default_factory=list)


@dataclass
class ChangePage:
    """One page of the history log."""

    records: list[ChangeRecord] = field(default_factory=list)
    next_page_token: str | None = None


@dataclass
class Message:
    """A resolved Gmail message, reduced to what rules and the digest need."""

    id: str
    thread_id: str = ""
    sender: str = ""  # Full From header value
    to: str = ""
    subject: str = ""
    date: str = ""
    snippet: str = ""
    body_text: str = ""
    label_ids: list[str] = field(default_factory=list)


class SyncStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    EXPIRED_RESET = "expired_reset"
    ERROR = "error"


@dataclass
class SyncRunResult:
    """Outcome of one catch-up run for one mailbox.

    ``items_processed`` counts flattened change records (one per added message
    or label change), not history entries.
    """

    email: str
    status: SyncStatus
    pages_processed: int | None = None
    items_processed: int | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"email": self.email, "status": self.status.value}
        if self.pages_processed is not None:
            data["pagesProcessed"] = self.pages_processed
        if self.items_processed is not None:
            data["itemsProcessed"] = self.items_processed
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class FleetResult:
    """Aggregated results for every selected mailbox."""

    accounts: list[SyncRunResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"accounts": [result.to_dict() for result in self.accounts]}


@dataclass
class Summary:
    content: str


@dataclass
class DigestItem:
    """One summarized message in a digest."""

    sender: str  # Display name, or address when there is none
    subject: str
    content: str
