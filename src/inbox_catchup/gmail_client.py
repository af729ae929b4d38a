"""Gmail API client functions: history paging, message access and sending."""

from __future__ import annotations

import base64
import json
import re
from html import unescape
from typing import Any

from googleapiclient.errors import HttpError
from loguru import logger
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from inbox_catchup.constants import (
    CURSOR_EXPIRED_STATUS,
    HISTORY_PAGE_SIZE,
    HISTORY_TYPES,
    LIST_PAGE_SIZE,
    RETRYABLE_STATUS_CODES,
)
from inbox_catchup.errors import CursorExpiredError
from inbox_catchup.models import ChangeKind, ChangePage, ChangeRecord, Message

_FROM_RE = re.compile(r"^(.*?)\s*<([^>]+)>$")
_TAG_RE = re.compile(r"<[^>]+>")
_HISTORY_KEYS = (
    ("messagesAdded", ChangeKind.MESSAGE_ADDED),
    ("labelsAdded", ChangeKind.LABEL_ADDED),
    ("labelsRemoved", ChangeKind.LABEL_REMOVED),
)


def _is_retryable_http_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in RETRYABLE_STATUS_CODES


@retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=60),
    stop=stop_after_attempt(5),
    reraise=True,
)
def _execute(request) -> Any:
    return request.execute()


# --- status code extraction ---


def _as_status(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _nested_response_code(exc: BaseException) -> int | None:
    """The provider's own error body: ``{"error": {"code": 404, ...}}``."""
    data: Any = None
    content = getattr(exc, "content", None)
    if isinstance(content, (bytes, str)) and content:
        try:
            data = json.loads(content)
        except ValueError:
            data = None
    if data is None:
        data = getattr(getattr(exc, "response", None), "data", None)
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return _as_status(data["error"].get("code"))
    return None


def _http_status(exc: BaseException) -> int | None:
    for attr in ("resp", "response"):
        response = getattr(exc, attr, None)
        if response is None:
            continue
        for field in ("status", "status_code"):
            status = _as_status(getattr(response, field, None))
            if status is not None:
                return status
    return None


def _status_field(exc: BaseException) -> int | None:
    return _as_status(getattr(exc, "status", None))


def _code_field(exc: BaseException) -> int | None:
    return _as_status(getattr(exc, "code", None))


_STATUS_EXTRACTORS = (_nested_response_code, _http_status, _status_field, _code_field)


def extract_status_code(exc: BaseException) -> int | None:
    """Return the status code carried by a provider failure, if any.

    Known failure shapes are tried in a fixed order and the first one that
    yields a code wins.
    """
    for extractor in _STATUS_EXTRACTORS:
        status = extractor(exc)
        if status is not None:
            return status
    return None


def is_history_expired_error(exc: BaseException) -> bool:
    return extract_status_code(exc) == CURSOR_EXPIRED_STATUS


# --- history ---


def _parse_history(entries: list[dict]) -> list[ChangeRecord]:
    """Flatten history entries into change records, keeping emission order."""
    records: list[ChangeRecord] = []
    for entry in entries:
        for key, kind in _HISTORY_KEYS:
            for change in entry.get(key, []):
                msg = change.get("message", {})
                if not msg.get("id"):
                    continue
                if kind is ChangeKind.MESSAGE_ADDED:
                    label_ids = msg.get("labelIds", [])
                else:
                    label_ids = change.get("labelIds", [])
                records.append(
                    ChangeRecord(
                        kind=kind,
                        message_id=msg["id"],
                        label_ids=list(label_ids),
                    )
                )
    return records


def get_current_history_id(service) -> str | None:
    """Return the mailbox's current history id from its profile."""
    profile = _execute(service.users().getProfile(userId="me"))
    history_id = profile.get("historyId")
    return str(history_id) if history_id else None


def fetch_history(
    service,
    start_history_id: str,
    history_types: list[str] | None = None,
    max_results: int = HISTORY_PAGE_SIZE,
    page_token: str | None = None,
) -> ChangePage:
    """Fetch one page of the history log.

    Raises CursorExpiredError when Gmail no longer knows ``start_history_id``.
    Every other failure propagates unchanged.
    """
    kwargs: dict = {
        "userId": "me",
        "startHistoryId": start_history_id,
        "historyTypes": history_types or HISTORY_TYPES,
        "maxResults": max_results,
    }
    if page_token:
        kwargs["pageToken"] = page_token

    try:
        resp = _execute(service.users().history().list(**kwargs))
    except Exception as exc:
        if is_history_expired_error(exc):
            raise CursorExpiredError(start_history_id) from exc
        raise

    return ChangePage(
        records=_parse_history(resp.get("history", [])),
        next_page_token=resp.get("nextPageToken"),
    )


# --- messages ---


def parse_from_header(from_value: str) -> tuple[str, str]:
    """Parse a From header into (display name, email address).

    Handles formats like:
      "John Doe <john@example.com>" -> ("John Doe", "john@example.com")
      "<john@example.com>"          -> ("", "john@example.com")
      "john@example.com"            -> ("", "john@example.com")
    """
    if not from_value:
        return ("", "")
    m = _FROM_RE.match(from_value.strip())
    if m:
        name = m.group(1).strip().strip('"').strip("'")
        return (name, m.group(2).strip())
    email = from_value.strip().strip("<>")
    return ("", email)


def sender_display_name(from_value: str) -> str:
    """Display name from a From header, falling back to the address."""
    name, email = parse_from_header(from_value)
    return name or email


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _extract_text(payload: dict) -> str:
    """Return the plain-text body of a message payload, or stripped HTML."""
    plain: list[str] = []
    html: list[str] = []

    def walk(part: dict) -> None:
        mime_type = part.get("mimeType", "")
        data = part.get("body", {}).get("data")
        if data and mime_type == "text/plain":
            plain.append(_decode_body(data))
        elif data and mime_type == "text/html":
            html.append(_decode_body(data))
        for child in part.get("parts", []):
            walk(child)

    walk(payload)
    if plain:
        return "\n".join(plain).strip()
    return unescape(_TAG_RE.sub(" ", "\n".join(html))).strip()


def parse_message(resp: dict) -> Message:
    payload = resp.get("payload", {})
    headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
    return Message(
        id=resp["id"],
        thread_id=resp.get("threadId", ""),
        sender=headers.get("from", ""),
        to=headers.get("to", ""),
        subject=headers.get("subject", ""),
        date=headers.get("date", ""),
        snippet=unescape(resp.get("snippet", "")),
        body_text=_extract_text(payload),
        label_ids=resp.get("labelIds", []),
    )


def get_message(service, message_id: str) -> Message | None:
    """Fetch one message in full. Returns None when it no longer exists."""
    try:
        resp = _execute(service.users().messages().get(userId="me", id=message_id, format="full"))
    except HttpError as exc:
        if extract_status_code(exc) == 404:
            return None
        raise
    return parse_message(resp)


def list_message_ids(
    service,
    query: str | None = None,
    max_results: int | None = None,
) -> list[str]:
    """List message IDs matching the query, newest first, handling pagination."""
    ids: list[str] = []
    page_token: str | None = None

    while True:
        kwargs: dict = {"userId": "me", "maxResults": LIST_PAGE_SIZE, "fields": "messages/id,nextPageToken"}
        if query:
            kwargs["q"] = query
        if page_token:
            kwargs["pageToken"] = page_token

        resp = _execute(service.users().messages().list(**kwargs))
        for msg in resp.get("messages", []):
            ids.append(msg["id"])
            if max_results and len(ids) >= max_results:
                return ids[:max_results]

        page_token = resp.get("nextPageToken")
        if not page_token:
            break

    return ids


def fetch_messages(service, message_ids: list[str]) -> list[Message]:
    """Fetch full messages one by one, preserving the order of ``message_ids``.

    Messages that disappeared or failed to load are left out.
    """
    messages: list[Message] = []
    for msg_id in message_ids:
        try:
            message = get_message(service, msg_id)
        except HttpError as exc:
            logger.bind(message_id=msg_id).warning(f"Failed to fetch message: {exc}")
            continue
        if message is not None:
            messages.append(message)
    return messages


def send_raw_message(service, raw: str) -> dict:
    """Send an already base64url-encoded RFC 822 message.

    Not retried: a failed response does not mean the message was not sent.
    """
    return service.users().messages().send(userId="me", body={"raw": raw}).execute()


# --- labels ---


def get_or_create_label(service, name: str) -> str:
    """Return the id of the user label called ``name``, creating it if missing."""
    resp = _execute(service.users().labels().list(userId="me"))
    for label in resp.get("labels", []):
        if label.get("name", "").lower() == name.lower():
            return label["id"]
    created = service.users().labels().create(
        userId="me",
        body={"name": name, "labelListVisibility": "labelShow", "messageListVisibility": "show"},
    ).execute()
    return created["id"]


def modify_message(
    service,
    message_id: str,
    add_label_ids: list[str] | None = None,
    remove_label_ids: list[str] | None = None,
) -> None:
    _execute(
        service.users().messages().modify(
            userId="me",
            id=message_id,
            body={
                "addLabelIds": add_label_ids or [],
                "removeLabelIds": remove_label_ids or [],
            },
        )
    )
