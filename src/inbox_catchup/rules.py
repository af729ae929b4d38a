"""Rule matching and actions applied to messages seen in the history log."""

from __future__ import annotations

import re
from typing import Protocol

from loguru import logger

from inbox_catchup.constants import ACTION_ARCHIVE, ACTION_LABEL, ACTION_MARK_READ, ACTION_STAR
from inbox_catchup.gmail_client import get_or_create_label, modify_message
from inbox_catchup.models import ChangeKind, ChangeRecord, MailboxContext, Message, Rule, RuleAction


class RuleEvaluator(Protocol):
    """Receives every change record, in order, together with its message.

    Implementations must tolerate seeing the same message state more than once.
    """

    def evaluate(
        self,
        record: ChangeRecord,
        message: Message,
        service,
        context: MailboxContext,
    ) -> None: ...


def _matches(pattern: str | None, value: str) -> bool:
    if not pattern:
        return True
    return re.search(pattern, value, re.IGNORECASE) is not None


def rule_matches(rule: Rule, message: Message) -> bool:
    """A rule matches when every pattern it sets matches the message."""
    if not (rule.from_pattern or rule.to_pattern or rule.subject_pattern):
        return False
    return (
        _matches(rule.from_pattern, message.sender)
        and _matches(rule.to_pattern, message.to)
        and _matches(rule.subject_pattern, message.subject)
    )


def find_matching_rule(rules: list[Rule], message: Message) -> Rule | None:
    for rule in rules:
        if rule.enabled and rule_matches(rule, message):
            return rule
    return None


class StaticRuleEvaluator:
    """Applies the first matching static rule to newly added messages.

    Label events are accepted and ignored. All actions are label
    modifications, so running them again on the same message is a no-op.
    """

    def __init__(self) -> None:
        self._label_ids: dict[tuple[str, str], str] = {}

    def _label_id(self, service, account_id: str, name: str) -> str:
        key = (account_id, name.lower())
        if key not in self._label_ids:
            self._label_ids[key] = get_or_create_label(service, name)
        return self._label_ids[key]

    def _label_changes(
        self, service, account_id: str, actions: list[RuleAction]
    ) -> tuple[list[str], list[str]]:
        add: list[str] = []
        remove: list[str] = []
        for action in actions:
            if action.type == ACTION_LABEL and action.label:
                add.append(self._label_id(service, account_id, action.label))
            elif action.type == ACTION_ARCHIVE:
                remove.append("INBOX")
            elif action.type == ACTION_MARK_READ:
                remove.append("UNREAD")
            elif action.type == ACTION_STAR:
                add.append("STARRED")
        return add, remove

    def evaluate(
        self,
        record: ChangeRecord,
        message: Message,
        service,
        context: MailboxContext,
    ) -> None:
        if record.kind is not ChangeKind.MESSAGE_ADDED or not context.has_automation_rules:
            return
        # Only mail that is still in the inbox is automated; sent mail and drafts are not.
        if "INBOX" not in message.label_ids:
            return

        rule = find_matching_rule(context.rules, message)
        if rule is None:
            return

        add, remove = self._label_changes(service, context.account.id, rule.actions)
        if add or remove:
            modify_message(service, message.id, add_label_ids=add, remove_label_ids=remove)
        logger.bind(email=context.account.email, message_id=message.id).info(
            f"Applied rule {rule.name!r}"
        )
