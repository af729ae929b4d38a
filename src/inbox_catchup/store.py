"""SQLite store for mailbox accounts, their history cursors and rules."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from inbox_catchup.constants import PROVIDER_GOOGLE
from inbox_catchup.models import MailboxAccount, Rule, RuleAction

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS email_accounts (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL DEFAULT '',
    provider TEXT NOT NULL,
    access_token TEXT,
    refresh_token TEXT,
    expires_at REAL,
    disconnected_at TEXT,
    last_synced_history_id TEXT,
    ai_access INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email_account_id TEXT NOT NULL,
    name TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    from_pattern TEXT,
    to_pattern TEXT,
    subject_pattern TEXT,
    actions_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (email_account_id, name),
    FOREIGN KEY (email_account_id) REFERENCES email_accounts(id)
);
"""

_ELIGIBLE_SQL = """
SELECT * FROM email_accounts
WHERE last_synced_history_id IS NOT NULL
  AND provider = ?
  AND access_token IS NOT NULL
  AND refresh_token IS NOT NULL
  AND disconnected_at IS NULL
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_account(row: sqlite3.Row) -> MailboxAccount:
    return MailboxAccount(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        provider=row["provider"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        expires_at=row["expires_at"],
        disconnected_at=row["disconnected_at"],
        last_synced_history_id=row["last_synced_history_id"],
        ai_access=bool(row["ai_access"]),
    )


def _row_to_rule(row: sqlite3.Row) -> Rule:
    return Rule(
        id=row["id"],
        email_account_id=row["email_account_id"],
        name=row["name"],
        enabled=bool(row["enabled"]),
        from_pattern=row["from_pattern"],
        to_pattern=row["to_pattern"],
        subject_pattern=row["subject_pattern"],
        actions=[RuleAction(**a) for a in json.loads(row["actions_json"])],
    )


class AccountStore:
    """Persistent SQLite store for accounts and their automation rules.

    The per-account ``last_synced_history_id`` column is the cursor store:
    every read and write is a point operation on a single row.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(_CREATE_TABLES_SQL)

    # --- accounts ---

    def upsert_account(self, account: MailboxAccount) -> MailboxAccount:
        """Insert or update an account, keyed by its normalized email."""
        email = account.email.strip().lower()
        existing = self.get_account_by_email(email)
        account_id = existing.id if existing else (account.id or uuid.uuid4().hex)
        with self._conn:
            self._conn.execute(
                "INSERT INTO email_accounts (id, email, name, provider, access_token, refresh_token, "
                "expires_at, disconnected_at, last_synced_history_id, ai_access) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET "
                "name = excluded.name, provider = excluded.provider, "
                "access_token = excluded.access_token, refresh_token = excluded.refresh_token, "
                "expires_at = excluded.expires_at, disconnected_at = excluded.disconnected_at, "
                "last_synced_history_id = excluded.last_synced_history_id, "
                "ai_access = excluded.ai_access",
                (
                    account_id,
                    email,
                    account.name,
                    account.provider,
                    account.access_token,
                    account.refresh_token,
                    account.expires_at,
                    account.disconnected_at,
                    account.last_synced_history_id,
                    int(account.ai_access),
                ),
            )
        return self.get_account(account_id)

    def get_account(self, account_id: str) -> MailboxAccount | None:
        row = self._conn.execute(
            "SELECT * FROM email_accounts WHERE id = ?", (account_id,)
        ).fetchone()
        return _row_to_account(row) if row else None

    def get_account_by_email(self, email: str) -> MailboxAccount | None:
        row = self._conn.execute(
            "SELECT * FROM email_accounts WHERE email = ?", (email.strip().lower(),)
        ).fetchone()
        return _row_to_account(row) if row else None

    def list_accounts(self) -> list[MailboxAccount]:
        rows = self._conn.execute("SELECT * FROM email_accounts ORDER BY email").fetchall()
        return [_row_to_account(r) for r in rows]

    def list_catchup_accounts(self, email_filter: str | None = None) -> list[MailboxAccount]:
        """Return accounts eligible for a history catch-up, optionally just one address."""
        sql = _ELIGIBLE_SQL
        params: list = [PROVIDER_GOOGLE]
        if email_filter:
            sql += " AND email = ?"
            params.append(email_filter.strip().lower())
        sql += " ORDER BY email"
        rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_account(r) for r in rows]

    def update_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: float | None,
    ) -> None:
        """Store refreshed OAuth tokens. A missing refresh token keeps the old one."""
        with self._conn:
            self._conn.execute(
                "UPDATE email_accounts SET access_token = ?, "
                "refresh_token = COALESCE(?, refresh_token), expires_at = ? WHERE id = ?",
                (access_token, refresh_token, expires_at, account_id),
            )

    # --- cursor ---

    def read_cursor(self, account_id: str) -> str | None:
        row = self._conn.execute(
            "SELECT last_synced_history_id FROM email_accounts WHERE id = ?", (account_id,)
        ).fetchone()
        return row["last_synced_history_id"] if row else None

    def write_cursor(self, account_id: str, history_id: str) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE email_accounts SET last_synced_history_id = ? WHERE id = ?",
                (history_id, account_id),
            )

    # --- rules ---

    def add_rule(self, rule: Rule) -> Rule:
        with self._conn:
            cursor = self._conn.execute(
                "INSERT INTO rules (email_account_id, name, enabled, from_pattern, to_pattern, "
                "subject_pattern, actions_json, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    rule.email_account_id,
                    rule.name,
                    int(rule.enabled),
                    rule.from_pattern,
                    rule.to_pattern,
                    rule.subject_pattern,
                    json.dumps([{"type": a.type, "label": a.label} for a in rule.actions]),
                    _now(),
                ),
            )
        rule.id = cursor.lastrowid
        return rule

    def list_rules(self, account_id: str, enabled_only: bool = False) -> list[Rule]:
        sql = "SELECT * FROM rules WHERE email_account_id = ?"
        if enabled_only:
            sql += " AND enabled = 1"
        rows = self._conn.execute(sql + " ORDER BY created_at, id", (account_id,)).fetchall()
        return [_row_to_rule(r) for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # --- context manager ---

    def __enter__(self) -> AccountStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()
