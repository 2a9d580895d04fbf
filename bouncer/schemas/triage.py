"""Schemas for the triage decision engine.

Covers the per-message lifecycle:
  classifier verdict -> engine decision -> mailbox op -> run summary
"""

from enum import StrEnum

from pydantic import BaseModel, Field


class VerdictLabel(StrEnum):
    """Classifier label for one message."""

    SPAM = "spam"
    LEGITIMATE = "legitimate"
    UNCERTAIN = "uncertain"


class Verdict(BaseModel):
    """Classifier output for one message. Folded into the audit entry."""

    label: VerdictLabel
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str = ""


class TriageAction(StrEnum):
    """Terminal outcome of triaging one message."""

    SKIP_RELATED_THREAD = "skip_related_thread"
    BLOCK_DENYLISTED = "block_denylisted"
    BLOCK_BY_CLASSIFICATION = "block_by_classification"
    UNBLOCK_GRACE_PERIOD = "unblock_grace_period"
    KEEP = "keep"


class BlockMode(StrEnum):
    """What happens to a blocked message."""

    ARCHIVE = "archive"  # archive and label
    DISCARD = "discard"  # move to trash


class MailboxOp(StrEnum):
    """Concrete mailbox operation for a decision."""

    NONE = "none"
    ARCHIVE = "archive"
    DISCARD = "discard"


class ReplyFormat(StrEnum):
    """Shape of the structured reply requested from the classifier."""

    LABEL = "label"  # {"label": "spam|legitimate|uncertain", ...}
    LEGITIMACY = "legitimacy"  # {"is_legitimate": true|false, ...}


class TriageDecision(BaseModel):
    """Engine output for one message."""

    action: TriageAction
    label: VerdictLabel
    reason: str = ""
    verdict: Verdict | None = None
    mailbox_op: MailboxOp = MailboxOp.NONE


class TriagePolicy(BaseModel):
    """Deployment policy for the decision engine."""

    spam_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    block_mode: BlockMode = BlockMode.ARCHIVE
    trusted_domains: list[str] = Field(default_factory=list)
    classify_delay_seconds: float = Field(default=2.0, ge=0.0)
    blocked_label: str = "Blocked"


class RunSettings(BaseModel):
    """Bounds for one batch run."""

    max_execution_seconds: float = Field(default=270.0, gt=0.0)
    max_messages: int = Field(default=20, gt=0)
    review_enabled: bool = True
    review_window_days: int = Field(default=7, ge=0)


class RunSummary(BaseModel):
    """Pipeline result for one batch run."""

    found: int = 0
    processed: int = 0
    errors: int = 0
    review_removed: int = 0
    announced: int = 0
    stopped_early: bool = False
    actions: dict[TriageAction, int] = Field(
        default_factory=lambda: {action: 0 for action in TriageAction}
    )

    def count(self, action: TriageAction) -> None:
        self.actions[action] = self.actions.get(action, 0) + 1
        self.processed += 1

    def render(self) -> str:
        parts = [f"{action.value}={n}" for action, n in self.actions.items()]
        return (
            f"Found: {self.found}, Processed: {self.processed}, Errors: {self.errors}, "
            f"Review removed: {self.review_removed}, Announced: {self.announced}"
            + (" (stopped early)" if self.stopped_early else "")
            + "\n  " + ", ".join(parts)
        )
