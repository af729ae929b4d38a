"""AI summaries of individual messages for the daily digest."""

from __future__ import annotations

from typing import Protocol

from openai import OpenAI

from inbox_catchup.constants import DIGEST_BODY_CHAR_LIMIT
from inbox_catchup.errors import MissingCredentialsError
from inbox_catchup.models import MailboxContext, Message, Summary

_SYSTEM_PROMPT = """You write entries for a daily email digest.

Summarize the email you are given in at most three short sentences.
Lead with what the reader needs to know or do. Do not greet, do not repeat
the subject line, and do not invent details that are not in the email.
If the email has no meaningful content, reply with an empty message."""


class Summarizer(Protocol):
    def summarize(self, rule_name: str, context: MailboxContext, message: Message) -> Summary | None: ...


def format_message_for_llm(message: Message, max_chars: int = DIGEST_BODY_CHAR_LIMIT) -> str:
    body = message.body_text or message.snippet
    if len(body) > max_chars:
        body = body[:max_chars] + "\n[truncated]"
    return (
        f"From: {message.sender}\n"
        f"To: {message.to}\n"
        f"Subject: {message.subject}\n"
        f"Date: {message.date}\n\n"
        f"{body}"
    )


class OpenAISummarizer:
    """Summarizer backed by the OpenAI chat completions API."""

    def __init__(self, api_key: str | None, model: str = "gpt-4o-mini", client: OpenAI | None = None) -> None:
        if client is None:
            if not api_key:
                raise MissingCredentialsError(
                    "OpenAI API key not set (INBOX_CATCHUP_OPENAI_API_KEY)"
                )
            client = OpenAI(api_key=api_key)
        self.client = client
        self.model = model

    def summarize(self, rule_name: str, context: MailboxContext, message: Message) -> Summary | None:
        owner = context.account.name or context.account.email
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"Digest: {rule_name}\nRecipient: {owner}\n\n"
                        f"<email>\n{format_message_for_llm(message)}\n</email>"
                    ),
                },
            ],
        )
        content = (response.choices[0].message.content or "").strip()
        if not content:
            return None
        return Summary(content=content)
