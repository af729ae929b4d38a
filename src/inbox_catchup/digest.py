"""Daily digest: summarize recent inbox mail and send it to the mailbox owner."""

from __future__ import annotations

import base64
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from email.message import EmailMessage
from html import escape
from typing import Any, Callable

from loguru import logger

from inbox_catchup.catchup import ServiceFactory
from inbox_catchup.constants import (
    DIGEST_DEFAULT_HOURS,
    DIGEST_EXCLUDED_CATEGORIES,
    DIGEST_EXCLUDED_LABELS,
    DIGEST_MAX_MESSAGES,
    DIGEST_RULE_NAME,
    DIGEST_WORKERS,
)
from inbox_catchup.errors import AccountNotFoundError, MissingCredentialsError
from inbox_catchup.gmail_client import fetch_messages, list_message_ids, send_raw_message, sender_display_name
from inbox_catchup.models import DigestItem, MailboxAccount, MailboxContext, Message
from inbox_catchup.summarizer import Summarizer


def build_digest_query(hours: int) -> str:
    parts = ["in:inbox", f"newer_than:{hours}h"]
    parts += [f"-label:{label}" for label in DIGEST_EXCLUDED_LABELS]
    parts += [f"-category:{category}" for category in DIGEST_EXCLUDED_CATEGORIES]
    return " ".join(parts)


def digest_subject(date: datetime) -> str:
    return f"Daily Inbox Digest - {date:%A}, {date:%B} {date.day}"


def build_digest_html(items: list[DigestItem], date: datetime) -> str:
    date_str = f"{date:%A}, {date:%B} {date.day}, {date.year}"
    rows = "".join(
        f"""
    <tr>
      <td style="padding:14px 0;border-bottom:1px solid #e5e7eb;">
        <div style="font-weight:600;color:#111;font-size:15px;">{escape(item.subject)}</div>
        <div style="color:#6b7280;font-size:13px;margin:2px 0 8px;">{escape(item.sender)}</div>
        <div style="color:#374151;font-size:14px;white-space:pre-line;">{escape(item.content)}</div>
      </td>
    </tr>"""
        for item in items
    )
    plural = "" if len(items) == 1 else "s"
    return f"""<!DOCTYPE html>
<html>
<body style="font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',sans-serif;max-width:620px;margin:0 auto;padding:24px;color:#111;">
  <h2 style="margin:0 0 4px;font-size:20px;">Daily Inbox Digest</h2>
  <p style="margin:0 0 20px;color:#6b7280;font-size:14px;">{escape(date_str)} &middot; {len(items)} email{plural}</p>
  <table style="width:100%;border-collapse:collapse;">{rows}</table>
</body>
</html>"""


def build_raw_message(to: str, sender: str, subject: str, html: str) -> str:
    """Return an RFC 822 HTML message, base64url-encoded as Gmail expects."""
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(html, subtype="html")
    return base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii").rstrip("=")


class DigestCompiler:
    """Builds and sends one digest per call.

    Messages are summarized concurrently. A message whose summary fails or
    comes back empty is left out of the digest; the rest are kept in the
    order Gmail listed them.
    """

    def __init__(
        self,
        store,
        client_factory: ServiceFactory,
        summarizer: Summarizer,
        max_messages: int = DIGEST_MAX_MESSAGES,
        workers: int = DIGEST_WORKERS,
        list_ids: Callable[..., list[str]] = list_message_ids,
        fetch: Callable[[Any, list[str]], list[Message]] = fetch_messages,
        send: Callable[[Any, str], Any] = send_raw_message,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.client_factory = client_factory
        self.summarizer = summarizer
        self.max_messages = max_messages
        self.workers = workers
        self.list_ids = list_ids
        self.fetch = fetch
        self.send = send
        self.now = now

    def _summarize_one(self, context: MailboxContext, message: Message) -> DigestItem | None:
        summary = self.summarizer.summarize(DIGEST_RULE_NAME, context, message)
        if not summary or not summary.content:
            return None
        return DigestItem(
            sender=sender_display_name(message.sender),
            subject=message.subject,
            content=summary.content,
        )

    def summarize_all(self, context: MailboxContext, messages: list[Message], log=logger) -> list[DigestItem]:
        """Summarize every message independently, dropping failures."""
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [pool.submit(self._summarize_one, context, m) for m in messages]

        items: list[DigestItem] = []
        for message, future in zip(messages, futures):
            try:
                item = future.result()
            except Exception as exc:
                log.bind(message_id=message.id).warning(f"Failed to summarize message: {exc}")
                continue
            if item is not None:
                items.append(item)
        return items

    def _get_account(self, email: str) -> MailboxAccount:
        account = self.store.get_account_by_email(email)
        if account is None:
            raise AccountNotFoundError(email)
        if not account.has_credentials:
            raise MissingCredentialsError(f"Missing Gmail tokens for {account.email}")
        return account

    def compile(self, email: str, hours: int = DIGEST_DEFAULT_HOURS) -> list[DigestItem]:
        """Send the digest for ``email``. Returns the items sent, empty when nothing was sent."""
        log = logger.bind(email=email, hours=hours)
        account = self._get_account(email)
        service = self.client_factory(account)

        query = build_digest_query(hours)
        log.info("Fetching inbox messages", query=query)
        ids = self.list_ids(service, query=query, max_results=self.max_messages)
        messages = self.fetch(service, ids) if ids else []
        log.info("Fetched messages", count=len(messages))

        if not messages:
            log.info("No messages to summarize, skipping digest")
            return []

        context = MailboxContext(account=account, has_ai_access=account.ai_access)
        items = self.summarize_all(context, messages, log=log)
        log.info("Summarized messages", total=len(messages), summarized=len(items))

        if not items:
            log.info("No summaries produced, skipping digest")
            return []

        date = self.now()
        raw = build_raw_message(
            to=account.email,
            sender=account.email,
            subject=digest_subject(date),
            html=build_digest_html(items, date),
        )
        self.send(service, raw)
        log.info("Digest email sent", item_count=len(items))
        return items
