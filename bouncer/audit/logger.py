"""Append-only audit log for triage decisions.

Writes AuditEntry records as JSON Lines (one JSON object per line), one
line per processed message in processing order. Entries are never
rewritten.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from bouncer.schemas.audit import AuditEntry
from bouncer.schemas.mail import MailEnvelope
from bouncer.schemas.triage import TriageAction, TriageDecision

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AuditLog:
    """Append-only JSONL audit log.

    Usage::

        audit = AuditLog("/path/to/audit.jsonl")
        audit.log_decision(message, decision)

        entries = audit.read_entries(since=some_datetime)
    """

    def __init__(
        self,
        path: str | Path,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    def log(self, entry: AuditEntry) -> None:
        """Append a single audit entry to the log file."""
        with self._path.open("a") as f:
            f.write(entry.model_dump_json() + "\n")
        logger.debug(
            "Audit: %s message=%s sender=%s label=%s",
            entry.action.value,
            entry.message_id,
            entry.sender,
            entry.label.value,
        )

    def log_decision(self, message: MailEnvelope, decision: TriageDecision) -> AuditEntry:
        """Record the terminal decision for one message."""
        entry = AuditEntry(
            timestamp=self._clock(),
            message_id=message.message_id or message.uid,
            sender=message.sender,
            subject=message.subject,
            label=decision.label,
            action=decision.action,
            reason=decision.reason,
        )
        self.log(entry)
        return entry

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        """Read audit entries, optionally filtered by timestamp.

        Args:
            since: Only return entries after this timestamp.
            limit: Maximum number of entries to return (newest after filtering).

        Returns:
            List of AuditEntry objects, oldest first.
        """
        if not self._path.exists():
            return []

        entries: list[AuditEntry] = []
        with self._path.open() as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                entry = AuditEntry.model_validate_json(line)
                if since and entry.timestamp <= since:
                    continue
                entries.append(entry)

        if limit is not None:
            entries = entries[-limit:]

        return entries

    def count_by_action(self, *, since: datetime | None = None) -> dict[TriageAction, int]:
        """Tally entries per action."""
        counts = {action: 0 for action in TriageAction}
        for entry in self.read_entries(since=since):
            counts[entry.action] += 1
        return counts
