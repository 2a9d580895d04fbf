"""Deterministic router from triage decisions to mailbox operations.

No LLM calls, pure Python logic.
"""

import logging

from bouncer.integrations.imap import ImapClient
from bouncer.schemas.mail import MailMessage
from bouncer.schemas.triage import MailboxOp, TriageDecision

logger = logging.getLogger(__name__)


async def apply_action(
    decision: TriageDecision,
    message: MailMessage,
    *,
    imap: ImapClient,
    blocked_label: str,
    dry_run: bool = False,
) -> None:
    """Execute the decision's mailbox op for one message.

    Messages left in the inbox are marked seen so the next run skips them;
    archived and discarded messages leave the inbox anyway.

    Args:
        decision: The engine's decision.
        message: The message it applies to.
        imap: An open ImapClient instance.
        blocked_label: Label/folder applied to archived messages.
        dry_run: Log the operation without executing it.
    """
    op = decision.mailbox_op

    if dry_run:
        logger.info("[dry-run] Would %s email %s (%s)", op.value, message.uid, decision.action.value)
        return

    if op == MailboxOp.ARCHIVE:
        await imap.archive(message.uid, blocked_label)
    elif op == MailboxOp.DISCARD:
        await imap.discard(message.uid)
    elif op == MailboxOp.NONE:
        await imap.mark_seen(message.uid)
    else:
        logger.warning("Unknown mailbox op: %s", op)
