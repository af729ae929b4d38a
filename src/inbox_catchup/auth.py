"""Authentication helpers for the Gmail API."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build
from loguru import logger

from inbox_catchup.constants import PROVIDER_GOOGLE, SCOPES
from inbox_catchup.errors import MissingCredentialsError
from inbox_catchup.models import MailboxAccount
from inbox_catchup.store import AccountStore

_TOKEN_URI = "https://oauth2.googleapis.com/token"


def _load_client_config(client_secrets_path: Path) -> dict:
    """Return the "installed" (or "web") section of an OAuth client secrets file."""
    if not client_secrets_path.exists():
        raise MissingCredentialsError(
            f"Client secrets file not found at {client_secrets_path}.\n"
            "Download your OAuth client credentials from the Google Cloud Console "
            "and save them as:\n"
            f"  {client_secrets_path}"
        )
    data = json.loads(client_secrets_path.read_text())
    return data.get("installed") or data.get("web") or {}


def _expiry_to_datetime(expires_at: float | None) -> datetime | None:
    # google-auth compares expiry against a naive UTC datetime
    if expires_at is None:
        return None
    return datetime.fromtimestamp(expires_at, tz=timezone.utc).replace(tzinfo=None)


def _datetime_to_expiry(expiry: datetime | None) -> float | None:
    if expiry is None:
        return None
    return expiry.replace(tzinfo=timezone.utc).timestamp()


def build_credentials(
    access_token: str,
    refresh_token: str,
    expires_at: float | None,
    client_secrets_path: Path,
) -> Credentials:
    client = _load_client_config(client_secrets_path)
    return Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=client.get("token_uri", _TOKEN_URI),
        client_id=client.get("client_id"),
        client_secret=client.get("client_secret"),
        scopes=SCOPES,
        expiry=_expiry_to_datetime(expires_at),
    )


def get_client(
    access_token: str | None,
    refresh_token: str | None,
    expires_at: float | None,
    mailbox_id: str,
    store: AccountStore,
    client_secrets_path: Path,
) -> Resource:
    """Return a Gmail service for one mailbox, refreshing its token when expired.

    Refreshed tokens are written back to the store so the next run starts
    from a valid access token.
    """
    if not access_token or not refresh_token:
        raise MissingCredentialsError(f"Mailbox {mailbox_id} has no Gmail tokens")

    creds = build_credentials(access_token, refresh_token, expires_at, client_secrets_path)
    if not creds.valid:
        logger.bind(mailbox_id=mailbox_id).debug("Refreshing Gmail access token")
        creds.refresh(Request())
        store.update_tokens(
            mailbox_id,
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expires_at=_datetime_to_expiry(creds.expiry),
        )

    return build("gmail", "v1", credentials=creds, cache_discovery=False)


class ClientFactory:
    """Builds per-mailbox Gmail services from stored tokens."""

    def __init__(self, store: AccountStore, client_secrets_path: Path) -> None:
        self.store = store
        self.client_secrets_path = client_secrets_path

    def __call__(self, account: MailboxAccount) -> Resource:
        return get_client(
            account.access_token,
            account.refresh_token,
            account.expires_at,
            account.id,
            self.store,
            self.client_secrets_path,
        )


def authorize_account(store: AccountStore, client_secrets_path: Path) -> MailboxAccount:
    """Run the OAuth browser flow and register the authorized mailbox.

    A newly registered mailbox starts from its current history id, so the
    next catch-up replays only changes made after authorization. Re-authorizing
    a known mailbox keeps its stored cursor, and its refresh token
    when Google does not issue a new one.
    """
    _load_client_config(client_secrets_path)
    flow = InstalledAppFlow.from_client_secrets_file(str(client_secrets_path), SCOPES)
    creds = flow.run_local_server(port=0)

    service = build("gmail", "v1", credentials=creds, cache_discovery=False)
    profile = service.users().getProfile(userId="me").execute()

    existing = store.get_account_by_email(profile["emailAddress"])
    cursor = profile.get("historyId")
    if existing and existing.last_synced_history_id:
        cursor = existing.last_synced_history_id
    refresh_token = creds.refresh_token
    if not refresh_token and existing:
        # Google omits the refresh token on repeat consent
        refresh_token = existing.refresh_token

    account = store.upsert_account(
        MailboxAccount(
            id="",
            email=profile["emailAddress"],
            name=existing.name if existing else "",
            provider=PROVIDER_GOOGLE,
            access_token=creds.token,
            refresh_token=refresh_token,
            expires_at=_datetime_to_expiry(creds.expiry),
            last_synced_history_id=cursor,
            ai_access=existing.ai_access if existing else False,
        )
    )
    logger.bind(email=account.email).info("Authorized Gmail account")
    return account
