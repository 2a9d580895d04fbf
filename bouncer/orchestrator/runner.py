"""Time-boxed batch runner for inbox triage.

One ``run_once`` call:

1. Starts the execution budget.
2. Lists a bounded page of unseen messages.
3. Optionally reviews recently denylisted senders.
4. Triages messages one at a time in list order, stopping cleanly when the
   budget is spent. A failure on one message is counted and skipped.
5. Always runs the notification pass and returns the summary.

Runs are not serialized here: the scheduler that calls ``run_once`` must
not start a run while another one is still going.
"""

import logging
import time
from collections.abc import Callable

from bouncer.audit.logger import AuditLog
from bouncer.denylist import DenylistStore
from bouncer.engine.deadline import Deadline
from bouncer.engine.review import review_denylist
from bouncer.engine.triage import TriageEngine
from bouncer.integrations.imap import ImapClient
from bouncer.notify.batcher import NotificationBatcher
from bouncer.router.mailbox import apply_action
from bouncer.schemas.mail import MailEnvelope
from bouncer.schemas.triage import RunSettings, RunSummary

logger = logging.getLogger(__name__)


class BatchRunner:
    """Drives one bounded triage run over the mailbox.

    Usage::

        async with ImapClient(account) as imap:
            runner = BatchRunner(
                mailbox=imap, engine=engine, store=store,
                audit_log=audit, batcher=batcher, settings=settings,
            )
            summary = await runner.run_once()
    """

    def __init__(
        self,
        *,
        mailbox: ImapClient,
        engine: TriageEngine,
        store: DenylistStore,
        audit_log: AuditLog,
        settings: RunSettings,
        batcher: NotificationBatcher | None = None,
        dry_run: bool = False,
        on_progress: Callable[[str], None] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._mailbox = mailbox
        self._engine = engine
        self._store = store
        self._audit_log = audit_log
        self._settings = settings
        self._batcher = batcher
        self._dry_run = dry_run
        self._on_progress = on_progress
        self._monotonic = monotonic

    def _emit(self, msg: str) -> None:
        if self._on_progress:
            self._on_progress(msg)

    async def run_once(self, *, limit: int | None = None) -> RunSummary:
        """Run one batch and return its summary.

        Never raises for per-message, classifier, storage or notification
        faults. The engine may change the denylist before the mailbox op
        runs. If that op then fails, the decision is still audited with the
        failure appended to its reason, the message counts as an error, and
        it stays unseen for the next run.
        """
        deadline = Deadline(self._settings.max_execution_seconds, clock=self._monotonic)
        summary = RunSummary()
        max_messages = min(limit, self._settings.max_messages) if limit else self._settings.max_messages

        try:
            envelopes = await self._mailbox.fetch_unseen_envelopes(limit=max_messages)
        except Exception:
            logger.exception("Could not list unseen messages")
            summary.errors += 1
            envelopes = []
        # The adapter may ignore the limit; enforce it here too.
        envelopes = envelopes[:max_messages]
        summary.found = len(envelopes)
        self._emit(f"Found {len(envelopes)} unseen email(s).")

        if self._settings.review_enabled:
            summary.review_removed = await self._review(deadline)

        for i, envelope in enumerate(envelopes, 1):
            if deadline.expired():
                summary.stopped_early = True
                logger.info(
                    "Execution budget of %.0fs spent after %d/%d message(s); "
                    "leaving the rest for the next run",
                    self._settings.max_execution_seconds,
                    i - 1,
                    len(envelopes),
                )
                break

            self._emit(f"\n[{i}/{len(envelopes)}] {envelope.subject}\n  From: {envelope.sender}")
            try:
                await self._process(envelope, summary)
            except Exception:
                summary.errors += 1
                logger.exception(
                    "Error processing email %s: %s", envelope.uid, envelope.subject
                )
                self._emit("  ERROR: Failed to process (see log for details)")

        summary.announced = await self._announce()

        logger.info("Run complete. %s", summary.render())
        self._emit(f"\nDone. {summary.render()}")
        return summary

    async def _review(self, deadline: Deadline) -> int:
        if self._dry_run:
            return 0
        try:
            return await review_denylist(
                store=self._store,
                mailbox=self._mailbox,
                trusted_domains=self._engine.policy.trusted_domains,
                window_days=self._settings.review_window_days,
                deadline=deadline,
            )
        except Exception:
            logger.exception("Denylist review failed")
            return 0

    async def _process(self, envelope: MailEnvelope, summary: RunSummary) -> None:
        message = await self._mailbox.fetch_message(envelope.uid)
        thread = await self._mailbox.fetch_thread(message)

        decision = await self._engine.triage(message, thread)
        try:
            await apply_action(
                decision,
                message,
                imap=self._mailbox,
                blocked_label=self._engine.policy.blocked_label,
                dry_run=self._dry_run,
            )
        except Exception as exc:
            # The denylist may already reflect this decision; keep a record of it.
            failed = decision.model_copy(
                update={"reason": f"{decision.reason}; mailbox op failed: {type(exc).__name__}: {exc}"}
            )
            self._audit_log.log_decision(message, failed)
            raise
        self._audit_log.log_decision(message, decision)
        summary.count(decision.action)

        self._emit(f"  Action: {decision.action.value} ({decision.label.value}) {decision.reason}")

    async def _announce(self) -> int:
        if self._batcher is None or self._dry_run:
            return 0
        try:
            return await self._batcher.announce_pending()
        except Exception:
            logger.exception("Notification pass failed")
            return 0
