"""Schema for the append-only triage audit log."""

from datetime import datetime

from pydantic import BaseModel

from bouncer.schemas.triage import TriageAction, VerdictLabel


class AuditEntry(BaseModel):
    """One processed message. Field order matches the audit row layout."""

    timestamp: datetime
    message_id: str
    sender: str
    subject: str
    label: VerdictLabel
    action: TriageAction
    reason: str = ""
