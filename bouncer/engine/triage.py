"""Per-message triage decision engine.

Deterministic apart from the classifier call. For one message it walks:

  thread affinity -> denylist lookup -> (classification) -> decision

and returns exactly one TriageDecision. The engine mutates the denylist
(add on confident spam, remove on a legitimate verdict during the grace
period, confirm on repeat offenders) but never touches the mailbox; the
runner applies the decision's mailbox op.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from email.utils import parseaddr

from bouncer.denylist import DenylistStore, normalize_address
from bouncer.executors.classifier import RetryingClassifier
from bouncer.schemas.denylist import DenylistSource
from bouncer.schemas.mail import MailMessage, ThreadMessage
from bouncer.schemas.triage import (
    BlockMode,
    MailboxOp,
    TriageAction,
    TriageDecision,
    TriagePolicy,
    VerdictLabel,
)

logger = logging.getLogger(__name__)


def sender_domain(address: str) -> str:
    """Domain part of an address (display names tolerated), lowercased."""
    _name, addr = parseaddr(address or "")
    return (addr or address or "").rpartition("@")[2].strip().lower()


def is_trusted_domain(domain: str, trusted_domains: Iterable[str]) -> bool:
    """Exact match or subdomain of a trusted domain."""
    if not domain:
        return False
    for trusted in trusted_domains:
        trusted = trusted.strip().lower().lstrip("@")
        if trusted and (domain == trusted or domain.endswith("." + trusted)):
            return True
    return False


def has_trusted_reply(
    thread: Iterable[ThreadMessage],
    trusted_domains: Iterable[str],
    *,
    exclude_message_id: str = "",
) -> bool:
    """True if any other message in the thread was sent from a trusted domain."""
    trusted = list(trusted_domains)
    if not trusted:
        return False
    for msg in thread:
        if exclude_message_id and msg.message_id == exclude_message_id:
            continue
        if is_trusted_domain(sender_domain(msg.sender), trusted):
            return True
    return False


class TriageEngine:
    """Decides what to do with one inbound message.

    Usage::

        engine = TriageEngine(store, classifier, policy)
        decision = await engine.triage(message, thread)
    """

    def __init__(
        self,
        store: DenylistStore,
        classifier: RetryingClassifier,
        policy: TriagePolicy,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._classifier = classifier
        self._policy = policy
        self._sleep = sleep

    @property
    def policy(self) -> TriagePolicy:
        return self._policy

    def _block_op(self) -> MailboxOp:
        if self._policy.block_mode == BlockMode.DISCARD:
            return MailboxOp.DISCARD
        return MailboxOp.ARCHIVE

    async def triage(
        self,
        message: MailMessage,
        thread: Iterable[ThreadMessage] = (),
    ) -> TriageDecision:
        """Return the terminal decision for one message."""
        sender = normalize_address(parseaddr(message.sender)[1] or message.sender) or message.sender

        # 1. Trusted correspondence is never re-judged.
        if has_trusted_reply(
            thread,
            self._policy.trusted_domains,
            exclude_message_id=message.message_id,
        ):
            logger.info("Message %s from %s is in a trusted thread", message.uid, sender)
            return TriageDecision(
                action=TriageAction.SKIP_RELATED_THREAD,
                label=VerdictLabel.LEGITIMATE,
                reason="thread contains a reply from a trusted domain",
            )

        # 2. Denylist.
        lookup = self._store.lookup(sender)
        if lookup.found and not lookup.in_grace_period:
            self._store.touch_confirmed(sender)
            logger.info("Blocking denylisted sender %s (message %s)", sender, message.uid)
            return TriageDecision(
                action=TriageAction.BLOCK_DENYLISTED,
                label=VerdictLabel.SPAM,
                reason="sender is on the denylist",
                mailbox_op=self._block_op(),
            )
        in_grace = lookup.found and lookup.in_grace_period

        # 3. Classification, paced to respect the backend's per-minute quota.
        if self._policy.classify_delay_seconds > 0:
            await self._sleep(self._policy.classify_delay_seconds)
        verdict = await self._classifier.classify(sender, message.subject, message.body)

        # 4. Decision.
        if verdict.label == VerdictLabel.SPAM:
            if verdict.confidence >= self._policy.spam_threshold:
                self._store.add(sender, DenylistSource.AUTO)
                return TriageDecision(
                    action=TriageAction.BLOCK_BY_CLASSIFICATION,
                    label=verdict.label,
                    reason=verdict.reason,
                    verdict=verdict,
                    mailbox_op=self._block_op(),
                )
            return TriageDecision(
                action=TriageAction.KEEP,
                label=verdict.label,
                reason=f"low confidence ({verdict.confidence:.2f}): {verdict.reason}",
                verdict=verdict,
            )

        if verdict.label == VerdictLabel.LEGITIMATE and in_grace:
            self._store.remove(sender)
            logger.info("Un-blocking %s: legitimate during grace period", sender)
            return TriageDecision(
                action=TriageAction.UNBLOCK_GRACE_PERIOD,
                label=verdict.label,
                reason=verdict.reason,
                verdict=verdict,
            )

        return TriageDecision(
            action=TriageAction.KEEP,
            label=verdict.label,
            reason=verdict.reason,
            verdict=verdict,
        )
