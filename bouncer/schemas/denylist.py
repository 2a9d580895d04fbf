"""Schemas for the sender denylist.

A denylist entry is created when the classifier is confident a sender is
unsolicited (source=auto) or when an operator adds one by hand
(source=manual). Entries are announced once to the notification channel.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel

# Ordered column layout of the backing row store. The last_confirmed_date
# and notified columns were added later; older stores may lack them.
DENYLIST_COLUMNS: tuple[str, ...] = (
    "email",
    "added_date",
    "last_confirmed_date",
    "source",
    "notified",
)
DENYLIST_OPTIONAL_COLUMNS: frozenset[str] = frozenset({"last_confirmed_date", "notified"})


class DenylistSource(StrEnum):
    """Who put a sender on the denylist."""

    AUTO = "auto"
    MANUAL = "manual"


class DenylistEntry(BaseModel):
    """A single denylisted sender."""

    address: str  # normalized (lowercased, trimmed)
    added_at: datetime
    last_confirmed_at: datetime
    source: DenylistSource = DenylistSource.AUTO
    announced: bool = False
    position: int  # opaque row handle in the backing store


class DenylistLookup(BaseModel):
    """Result of looking up a sender. Never raised, always returned."""

    found: bool = False
    entry: DenylistEntry | None = None
    in_grace_period: bool = False

    @classmethod
    def not_found(cls) -> "DenylistLookup":
        return cls()
