"""Async IMAP client wrapping imap-tools.

imap-tools is synchronous; all public methods use asyncio.to_thread()
for non-blocking operation.

Usage::

    async with ImapClient(account_config) as imap:
        envelopes = await imap.fetch_unseen_envelopes(limit=20)
        message = await imap.fetch_message(envelopes[0].uid)
        thread = await imap.fetch_thread(message)
        await imap.archive(message.uid, "Blocked")
"""

import asyncio
import logging
from datetime import datetime
from email.utils import parseaddr

from imap_tools import AND, OR, H, MailBox, MailboxLoginError, MailMessage as ImapMessage

from bouncer.schemas.mail import MailAccountConfig, MailEnvelope, MailMessage, ThreadMessage

logger = logging.getLogger(__name__)

GMAIL_TRASH_FOLDER = "[Gmail]/Trash"


def _header(msg: ImapMessage, name: str) -> str:
    values = msg.headers.get(name.lower(), ())
    return values[0].strip() if values else ""


def _message_ids(value: str) -> list[str]:
    """Split a References / In-Reply-To header into bracketed ids."""
    return [part for part in value.split() if part.startswith("<") and part.endswith(">")]


def _sender(msg: ImapMessage) -> tuple[str, str]:
    name, addr = parseaddr(msg.from_)
    return name, addr or msg.from_


def _parse_envelope(msg: ImapMessage) -> MailEnvelope:
    """Convert an imap-tools message to a MailEnvelope (headers only)."""
    name, addr = _sender(msg)
    return MailEnvelope(
        uid=msg.uid,
        message_id=_header(msg, "Message-ID"),
        sender=addr,
        sender_name=name,
        subject=msg.subject or "(no subject)",
        date=msg.date,
    )


def _parse_message(msg: ImapMessage, folder: str) -> MailMessage:
    """Convert an imap-tools message to a full MailMessage."""
    name, addr = _sender(msg)
    return MailMessage(
        uid=msg.uid,
        message_id=_header(msg, "Message-ID"),
        sender=addr,
        sender_name=name,
        subject=msg.subject or "(no subject)",
        date=msg.date,
        body=msg.text or msg.html or "",
        in_reply_to=_header(msg, "In-Reply-To"),
        references=_message_ids(_header(msg, "References")),
        folder=folder,
    )


def _parse_thread_message(msg: ImapMessage) -> ThreadMessage:
    _name, addr = _sender(msg)
    return ThreadMessage(
        message_id=_header(msg, "Message-ID"),
        sender=addr,
        subject=msg.subject or "",
        date=msg.date,
    )


class FolderCache:
    """Known folder names for one connection, refreshed on demand.

    Lives on the client instance; nothing is shared across runs.
    """

    def __init__(self, mailbox: MailBox) -> None:
        self._mailbox = mailbox
        self._names: set[str] | None = None

    def refresh(self) -> set[str]:
        self._names = {f.name for f in self._mailbox.folder.list()}
        return self._names

    def exists(self, name: str) -> bool:
        names = self._names if self._names is not None else self.refresh()
        return name in names

    def ensure(self, name: str) -> str:
        """Create the folder if needed and return its name."""
        name = name.strip()
        if not name:
            raise ValueError("Folder name must be a non-empty string")
        if not self.exists(name):
            self._mailbox.folder.create(name)
            self._names.add(name)
            logger.info("Created IMAP folder: %s", name)
        return name


class ImapClient:
    """Async IMAP client for the triaged mailbox.

    Usage::

        async with ImapClient(account_config) as imap:
            envelopes = await imap.fetch_unseen_envelopes(limit=20)
    """

    def __init__(self, config: MailAccountConfig) -> None:
        self._config = config
        self._mailbox: MailBox | None = None
        self._folders: FolderCache | None = None

    async def __aenter__(self) -> "ImapClient":
        self._mailbox = await asyncio.to_thread(self._connect)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._mailbox:
            await asyncio.to_thread(self._disconnect)
            self._mailbox = None
            self._folders = None

    def _connect(self) -> MailBox:
        """Connect and login (sync, called via to_thread)."""
        if self._config.ssl:
            mb = MailBox(self._config.server, port=self._config.port)
        else:
            from imap_tools import MailBoxUnencrypted

            mb = MailBoxUnencrypted(self._config.server, port=self._config.port)

        try:
            mb.login(self._config.email, self._config.password)
        except MailboxLoginError:
            logger.error("IMAP login failed for %s", self._config.email)
            raise

        logger.info("Connected to %s as %s", self._config.server, self._config.email)
        return mb

    def _disconnect(self) -> None:
        """Logout and close (sync, called via to_thread)."""
        if self._mailbox:
            try:
                self._mailbox.logout()
            except Exception:
                logger.debug("Error during IMAP logout", exc_info=True)

    @property
    def mailbox(self) -> MailBox:
        if self._mailbox is None:
            raise RuntimeError("ImapClient is not connected. Use 'async with' context.")
        return self._mailbox

    @property
    def folders(self) -> FolderCache:
        if self._folders is None:
            self._folders = FolderCache(self.mailbox)
        return self._folders

    # --- Fetch ---

    async def fetch_unseen_envelopes(self, *, limit: int = 0) -> list[MailEnvelope]:
        """Fetch unseen envelopes from the inbox, oldest first.

        Args:
            limit: Maximum number of messages (0 = all unseen).
        """

        def _fetch() -> list[MailEnvelope]:
            self.mailbox.folder.set(self._config.inbox_folder)
            msgs = self.mailbox.fetch(
                AND(seen=False),
                headers_only=True,
                mark_seen=False,
                limit=limit if limit > 0 else None,
            )
            return [_parse_envelope(m) for m in msgs]

        return await asyncio.to_thread(_fetch)

    async def fetch_message(self, uid: str) -> MailMessage:
        """Fetch a single full inbox message by UID.

        Raises:
            ValueError: If message with given UID is not found.
        """
        folder = self._config.inbox_folder

        def _fetch() -> MailMessage:
            self.mailbox.folder.set(folder)
            msgs = list(self.mailbox.fetch(AND(uid=uid), mark_seen=False, limit=1))
            if not msgs:
                raise ValueError(f"Email UID {uid} not found in {folder}")
            return _parse_message(msgs[0], folder)

        return await asyncio.to_thread(_fetch)

    def _search_thread_sync(self, message_ids: list[str], exclude: str) -> list[ThreadMessage]:
        """Messages that are, or refer to, any of ``message_ids``."""
        found: dict[str, ThreadMessage] = {}
        for folder in self._config.thread_folders:
            if not self.folders.exists(folder):
                continue
            self.mailbox.folder.set(folder)
            for mid in message_ids:
                criteria = OR(
                    header=[H("Message-ID", mid), H("References", mid), H("In-Reply-To", mid)]
                )
                for m in self.mailbox.fetch(criteria, headers_only=True, mark_seen=False):
                    tm = _parse_thread_message(m)
                    key = tm.message_id or f"{folder}:{m.uid}"
                    if tm.message_id and tm.message_id == exclude:
                        continue
                    found.setdefault(key, tm)
        return sorted(found.values(), key=lambda t: t.date.timestamp() if t.date else 0.0)

    async def fetch_thread(self, message: MailMessage) -> list[ThreadMessage]:
        """Other messages in the same conversation as ``message``.

        Follows the References / In-Reply-To chain in both directions
        across the configured thread folders.
        """
        ids = list(dict.fromkeys([*message.references, message.in_reply_to, message.message_id]))
        ids = [i for i in ids if i]
        if not ids:
            return []
        return await asyncio.to_thread(self._search_thread_sync, ids, message.message_id)

    async def threads_from(self, address: str, *, since: datetime) -> list[list[ThreadMessage]]:
        """Conversations containing mail from ``address`` received since ``since``."""

        def _fetch() -> list[MailMessage]:
            self.mailbox.folder.set(self._config.inbox_folder)
            msgs = self.mailbox.fetch(
                AND(from_=address, date_gte=since.date()),
                headers_only=True,
                mark_seen=False,
            )
            return [_parse_message(m, self._config.inbox_folder) for m in msgs]

        messages = await asyncio.to_thread(_fetch)
        return [await self.fetch_thread(m) for m in messages]

    # --- Actions ---

    async def archive(self, uid: str, label: str = "") -> None:
        """Take a message out of the inbox, filed under ``label``.

        On Gmail, COPY applies the label and deleting from the inbox
        archives it. Elsewhere the label is a folder the message moves to.
        """
        target = label or self._config.archive_folder

        def _do() -> None:
            folder = self.folders.ensure(target)
            self.mailbox.folder.set(self._config.inbox_folder)
            if self._config.is_gmail:
                # Gmail IMAP doesn't support MOVE reliably: COPY + DELETE.
                self.mailbox.copy([uid], folder)
                self.mailbox.delete([uid])
            else:
                self.mailbox.move([uid], folder)
            logger.info("Archived email %s to %s", uid, folder)

        await asyncio.to_thread(_do)

    async def discard(self, uid: str) -> None:
        """Send a message to the trash."""

        def _do() -> None:
            self.mailbox.folder.set(self._config.inbox_folder)
            if self._config.is_gmail:
                self.mailbox.move([uid], GMAIL_TRASH_FOLDER)
            else:
                self.mailbox.delete([uid])
            logger.info("Discarded email %s", uid)

        await asyncio.to_thread(_do)

    async def mark_seen(self, uid: str) -> None:
        """Set \\Seen so the message is not picked up by the next run."""

        def _do() -> None:
            self.mailbox.folder.set(self._config.inbox_folder)
            self.mailbox.flag([uid], {"\\Seen"}, True)

        await asyncio.to_thread(_do)
