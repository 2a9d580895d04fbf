"""Single source of truth for all configuration and secrets.

All modules import from here, never from os.environ directly.

Values come from secrets/internal.env (or the SOPS-encrypted
secrets/internal.env.enc when BOUNCER_USE_SOPS=true). Environment
variables of the same name override the file, which is how the scheduler
passes per-deployment tweaks.
"""

import os
from pathlib import Path

from bouncer.schemas.mail import MailAccountConfig
from bouncer.schemas.triage import (
    BlockMode,
    ReplyFormat,
    RunSettings,
    TriagePolicy,
    VerdictLabel,
)
from bouncer.secrets import load_dotenv_fallback, load_secrets

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("BOUNCER_USE_SOPS", "false").lower() == "true"


def _load(scope: str) -> dict[str, str | None]:
    """Load settings for a given scope."""
    if USE_SOPS:
        return load_secrets(PROJECT_ROOT / f"secrets/{scope}.env.enc")
    return load_dotenv_fallback(PROJECT_ROOT / f"secrets/{scope}.env")


_internal = _load("internal")


def _get(key: str, default: str) -> str:
    value = os.environ.get(key)
    if value is None:
        value = _internal.get(key)
    return default if value is None else value


def _get_bool(key: str, default: bool) -> bool:
    return _get(key, "true" if default else "false").strip().lower() in ("1", "true", "yes", "on")


def _get_list(key: str, default: str = "") -> list[str]:
    return [item.strip() for item in _get(key, default).split(",") if item.strip()]


def _get_optional_int(key: str, default: str) -> int | None:
    value = _get(key, default).strip().lower()
    if value in ("", "none", "off"):
        return None
    return int(value)


# --- Storage ---
DENYLIST_DB_PATH: str = _get("DENYLIST_DB_PATH", str(PROJECT_ROOT / "data" / "denylist.db"))
AUDIT_LOG_PATH: str = _get("AUDIT_LOG_PATH", str(PROJECT_ROOT / "data" / "audit.jsonl"))

# --- Classification backend ---
OLLAMA_BASE_URL: str = _get("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL: str = _get("OLLAMA_MODEL", "")
OLLAMA_KEEP_ALIVE: str = _get("OLLAMA_KEEP_ALIVE", "5m")
API_RETRY_MAX: int = int(_get("API_RETRY_MAX", "3"))
API_RETRY_DELAY_SECONDS: float = float(_get("API_RETRY_DELAY_SECONDS", "10"))
API_RETRYABLE_STATUSES: frozenset[int] = frozenset(
    int(s) for s in _get_list("API_RETRYABLE_STATUSES", "429,500,502,503,504")
)
CLASSIFIER_FALLBACK_LABEL: str = _get("CLASSIFIER_FALLBACK_LABEL", "uncertain")
CLASSIFIER_REPLY_FORMAT: str = _get("CLASSIFIER_REPLY_FORMAT", "label")
CLASSIFY_DELAY_SECONDS: float = float(_get("CLASSIFY_DELAY_SECONDS", "2"))

# --- Triage policy ---
SPAM_THRESHOLD: float = float(_get("SPAM_THRESHOLD", "0.7"))
GRACE_PERIOD_DAYS: int | None = _get_optional_int("GRACE_PERIOD_DAYS", "7")
TRUSTED_DOMAINS: list[str] = _get_list("TRUSTED_DOMAINS")
BLOCK_MODE: str = _get("BLOCK_MODE", "archive")

# --- Batch bounds ---
# Keep MAX_EXECUTION_SECONDS below the scheduler's hard timeout.
MAX_EXECUTION_SECONDS: float = float(_get("MAX_EXECUTION_SECONDS", "270"))
MAX_MESSAGES_PER_RUN: int = int(_get("MAX_MESSAGES_PER_RUN", "20"))
REVIEW_ENABLED: bool = _get_bool("REVIEW_ENABLED", True)
REVIEW_WINDOW_DAYS: int = int(_get("REVIEW_WINDOW_DAYS", "7"))

# --- Mailbox ---
IMAP_SERVER: str = _get("IMAP_SERVER", "")
IMAP_PORT: int = int(_get("IMAP_PORT", "993"))
IMAP_SSL: bool = _get_bool("IMAP_SSL", True)
IMAP_EMAIL: str = _get("IMAP_EMAIL", "")
IMAP_PASSWORD: str = _get("IMAP_PASSWORD", "")
IMAP_IS_GMAIL: bool = _get_bool("IMAP_IS_GMAIL", False)
IMAP_INBOX_FOLDER: str = _get("IMAP_INBOX_FOLDER", "INBOX")
IMAP_ARCHIVE_FOLDER: str = _get("IMAP_ARCHIVE_FOLDER", "Archive")
IMAP_BLOCKED_LABEL: str = _get("IMAP_BLOCKED_LABEL", "Blocked")
IMAP_THREAD_FOLDERS: list[str] = _get_list("IMAP_THREAD_FOLDERS", "INBOX,Sent")

# --- Notifications ---
SLACK_BOT_TOKEN: str = _get("SLACK_BOT_TOKEN", "")
SLACK_CHANNEL_ID: str = _get("SLACK_CHANNEL_ID", "")


def load_policy() -> TriagePolicy:
    """Triage policy from the current settings. Raises ValidationError/ValueError."""
    return TriagePolicy(
        spam_threshold=SPAM_THRESHOLD,
        block_mode=BlockMode(BLOCK_MODE),
        trusted_domains=TRUSTED_DOMAINS,
        classify_delay_seconds=CLASSIFY_DELAY_SECONDS,
        blocked_label=IMAP_BLOCKED_LABEL,
    )


def load_run_settings() -> RunSettings:
    """Batch bounds from the current settings."""
    return RunSettings(
        max_execution_seconds=MAX_EXECUTION_SECONDS,
        max_messages=MAX_MESSAGES_PER_RUN,
        review_enabled=REVIEW_ENABLED,
        review_window_days=REVIEW_WINDOW_DAYS,
    )


def load_account() -> MailAccountConfig:
    """Mailbox connection settings."""
    return MailAccountConfig(
        server=IMAP_SERVER,
        email=IMAP_EMAIL,
        password=IMAP_PASSWORD,
        port=IMAP_PORT,
        ssl=IMAP_SSL,
        is_gmail=IMAP_IS_GMAIL,
        inbox_folder=IMAP_INBOX_FOLDER,
        archive_folder=IMAP_ARCHIVE_FOLDER,
        thread_folders=IMAP_THREAD_FOLDERS,
    )


def classifier_fallback_label() -> VerdictLabel:
    return VerdictLabel(CLASSIFIER_FALLBACK_LABEL)


def classifier_reply_format() -> ReplyFormat:
    return ReplyFormat(CLASSIFIER_REPLY_FORMAT)
