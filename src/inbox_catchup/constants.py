"""Constants for Inbox Catch-up."""

from pathlib import Path

# --- Config paths ---
DATA_DIR = Path.home() / ".inbox-catchup"

# --- Gmail API ---
SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]
PROVIDER_GOOGLE = "google"
HISTORY_TYPES = ["messageAdded", "labelAdded", "labelRemoved"]
HISTORY_PAGE_SIZE = 500  # records per history.list call
LIST_PAGE_SIZE = 100  # ids per messages.list page
RETRYABLE_STATUS_CODES = (429, 500, 503)
CURSOR_EXPIRED_STATUS = 404

# --- Digest ---
DIGEST_RULE_NAME = "Daily Digest"
DIGEST_DEFAULT_HOURS = 24
DIGEST_MAX_MESSAGES = 100
DIGEST_WORKERS = 8
DIGEST_EXCLUDED_LABELS = ["Marketing", "Newsletter", "Receipt"]
DIGEST_EXCLUDED_CATEGORIES = ["promotions"]
DIGEST_BODY_CHAR_LIMIT = 6000  # body text handed to the summarizer

# --- Rule actions ---
ACTION_LABEL = "label"
ACTION_ARCHIVE = "archive"
ACTION_MARK_READ = "mark_read"
ACTION_STAR = "star"

# --- HTTP trigger ---
CRON_SECRET_HEADER = "x-cron-secret"
