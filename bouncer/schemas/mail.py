"""Schemas for the mailbox adapter."""

from datetime import datetime

from pydantic import BaseModel, Field


class MailAccountConfig(BaseModel):
    """Configuration for the triaged mailbox."""

    server: str
    email: str
    password: str
    port: int = 993
    ssl: bool = True
    is_gmail: bool = False
    inbox_folder: str = "INBOX"
    archive_folder: str = "Archive"
    # Folders searched when assembling a conversation (inbox + sent mail).
    thread_folders: list[str] = Field(default_factory=lambda: ["INBOX", "Sent"])


class MailEnvelope(BaseModel):
    """Lightweight message representation (headers only)."""

    uid: str
    message_id: str = ""  # RFC 5322 Message-ID header
    sender: str
    sender_name: str = ""
    subject: str
    date: datetime | None = None


class MailMessage(MailEnvelope):
    """Full message with body and threading headers."""

    body: str = ""
    in_reply_to: str = ""
    references: list[str] = Field(default_factory=list)
    folder: str = "INBOX"


class ThreadMessage(BaseModel):
    """Another message in the same conversation."""

    message_id: str
    sender: str
    subject: str = ""
    date: datetime | None = None
