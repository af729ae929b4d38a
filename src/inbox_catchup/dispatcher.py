"""Routes each change record of a history page to the rule evaluator."""

from __future__ import annotations

from typing import Any, Callable

from loguru import logger

from inbox_catchup.gmail_client import get_message
from inbox_catchup.models import ChangePage, MailboxContext, Message
from inbox_catchup.rules import RuleEvaluator

MessageResolver = Callable[[Any, str], Message | None]


class ChangeDispatcher:
    """Delivers records to the evaluator strictly in page order.

    Records are not deduplicated: Gmail may report several label events for
    one message and each is delivered. A message that was deleted after its
    event is skipped. Any other error stops the page and propagates.
    """

    def __init__(
        self,
        evaluator: RuleEvaluator,
        resolve_message: MessageResolver = get_message,
    ) -> None:
        self.evaluator = evaluator
        self.resolve_message = resolve_message

    def dispatch(self, page: ChangePage, service, context: MailboxContext, log=logger) -> int:
        """Dispatch every record on the page. Returns the number delivered."""
        delivered = 0
        for record in page.records:
            message = self.resolve_message(service, record.message_id)
            if message is None:
                log.debug(f"Message {record.message_id} no longer exists, skipping")
                continue
            self.evaluator.evaluate(record, message, service, context)
            delivered += 1
        return delivered
