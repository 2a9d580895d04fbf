"""Self-review of recently denylisted senders.

For each sender added within the review window, look for fresh
conversations with them. If any of those threads carries a reply from a
trusted domain, the organization is corresponding with the sender and the
entry is removed without asking the classifier.
"""

import logging
from collections.abc import Iterable

from bouncer.denylist import DenylistStore
from bouncer.engine.deadline import Deadline
from bouncer.engine.triage import has_trusted_reply
from bouncer.integrations.imap import ImapClient

logger = logging.getLogger(__name__)


async def review_denylist(
    *,
    store: DenylistStore,
    mailbox: ImapClient,
    trusted_domains: Iterable[str],
    window_days: int,
    deadline: Deadline | None = None,
) -> int:
    """Remove recent denylist entries the organization is talking to.

    Returns:
        The number of entries removed.
    """
    trusted = list(trusted_domains)
    if not trusted:
        return 0

    removed = 0
    for entry in store.recent_entries(window_days):
        if deadline is not None and deadline.expired():
            logger.info("Denylist review stopped at the execution budget")
            break
        try:
            threads = await mailbox.threads_from(entry.address, since=entry.added_at)
        except Exception:
            logger.exception("Denylist review could not search mail from %s", entry.address)
            continue

        if any(has_trusted_reply(thread, trusted) for thread in threads):
            if store.remove(entry.address):
                removed += 1
                logger.info(
                    "Denylist review removed %s: trusted reply found in a thread",
                    entry.address,
                )

    return removed
