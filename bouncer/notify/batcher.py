"""Batched announcement of newly denylisted senders.

Collects denylist entries that were never announced, posts them as one
message (address file + short summary) and only then flags them as
announced. A failed post leaves them pending for the next run: delivery is
at-least-once.
"""

import logging

from pydantic import BaseModel

from bouncer.denylist import DenylistStore
from bouncer.integrations.slack import SlackClient
from bouncer.schemas.denylist import DenylistEntry

logger = logging.getLogger(__name__)

ADDRESS_FILE_NAME = "denylisted_senders.txt"
SUMMARY_PREVIEW_COUNT = 5


class Announcement(BaseModel):
    """One batched payload."""

    addresses: list[str]
    summary: str

    @property
    def address_file(self) -> str:
        return "".join(f"{address}\n" for address in self.addresses)


def build_announcement(entries: list[DenylistEntry]) -> Announcement:
    """Build the payload for a batch of entries."""
    addresses = [e.address for e in entries]
    preview = ", ".join(addresses[:SUMMARY_PREVIEW_COUNT])
    more = len(addresses) - SUMMARY_PREVIEW_COUNT
    summary = f"{len(addresses)} sender(s) added to the denylist: {preview}"
    if more > 0:
        summary += f" (+{more} more)"
    return Announcement(addresses=addresses, summary=summary)


class NotificationBatcher:
    """Announces pending denylist entries through Slack.

    Usage::

        batcher = NotificationBatcher(store, slack, channel_id="C0123")
        sent = await batcher.announce_pending()
    """

    def __init__(
        self,
        store: DenylistStore,
        channel: SlackClient,
        *,
        channel_id: str,
    ) -> None:
        self._store = store
        self._channel = channel
        self._channel_id = channel_id

    async def announce_pending(self) -> int:
        """Send one announcement for all unannounced entries.

        Returns:
            The number of addresses announced (0 when nothing was pending or
            the send failed).
        """
        pending = self._store.unannounced_entries()
        if not pending:
            logger.debug("No denylist entries to announce")
            return 0

        announcement = build_announcement(pending)
        try:
            await self._channel.upload_text(
                channel_id=self._channel_id,
                filename=ADDRESS_FILE_NAME,
                content=announcement.address_file,
                comment=announcement.summary,
            )
        except Exception:
            logger.exception(
                "Failed to announce %d denylist entr(ies); will retry next run",
                len(announcement.addresses),
            )
            return 0

        marked = self._store.mark_announced(announcement.addresses)
        if marked < len(announcement.addresses):
            logger.warning(
                "Announced %d address(es) but only marked %d; the rest may be re-announced",
                len(announcement.addresses),
                marked,
            )
        logger.info("Announced %d denylisted sender(s)", len(announcement.addresses))
        return len(announcement.addresses)
