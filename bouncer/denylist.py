"""Denylist of unwanted senders.

Wraps a ``RowStore`` with address normalization, idempotent adds, temporal
queries (grace period, recently added) and announcement bookkeeping.

Storage faults never escape this class: a failed read looks like an empty
denylist and a failed write is a logged no-op, so one bad row or a flaky
backend cannot abort a triage run.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from bouncer.schemas.denylist import (
    DENYLIST_COLUMNS,
    DenylistEntry,
    DenylistLookup,
    DenylistSource,
)
from bouncer.storage import Row, RowStore, StorageError

logger = logging.getLogger(__name__)


def normalize_address(address: str | None) -> str | None:
    """Lowercase and trim an address. Returns None if it is not usable.

    Accepts ``local@domain`` only: no display names, no whitespace, exactly
    one ``@`` with a non-empty local part and a dotted domain.
    """
    if not address:
        return None
    normalized = address.strip().lower()
    if not normalized or any(ch.isspace() for ch in normalized):
        return None
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain or "@" in domain:
        return None
    if "." not in domain or domain.startswith(".") or domain.endswith("."):
        return None
    return normalized


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _row_to_entry(row: Row) -> DenylistEntry | None:
    """Convert a stored row to an entry. Returns None for unusable rows."""
    address = normalize_address(row.get("email"))
    if address is None:
        return None
    try:
        added_at = _parse_time(row.get("added_date"))
        confirmed_at = _parse_time(row.get("last_confirmed_date"))
    except ValueError:
        logger.warning("Skipping denylist row %d with a bad date", row.position)
        return None
    if added_at is None:
        logger.warning("Skipping denylist row %d without added_date", row.position)
        return None
    try:
        source = DenylistSource(row.get("source") or DenylistSource.AUTO)
    except ValueError:
        source = DenylistSource.AUTO
    return DenylistEntry(
        address=address,
        added_at=added_at,
        last_confirmed_at=confirmed_at or added_at,
        source=source,
        announced=(row.get("notified") or "").strip().lower() == "true",
        position=row.position,
    )


class DenylistStore:
    """Denylist over a key-ordered row store.

    Usage::

        store = DenylistStore(SqliteRowStore(path, "denylist", DENYLIST_COLUMNS),
                              grace_period_days=7)
        result = store.lookup("Spam@Ads.Example ")
        if result.found and not result.in_grace_period:
            ...

    ``grace_period_days=None`` disables the grace period: every denylisted
    sender is blocked outright.
    """

    def __init__(
        self,
        rows: RowStore,
        *,
        grace_period_days: int | None = 7,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        missing = set(DENYLIST_COLUMNS) - set(rows.columns)
        if missing:
            raise ValueError(f"Row store lacks denylist column(s): {sorted(missing)}")
        self._rows = rows
        self._grace_period_days = grace_period_days
        self._clock = clock

    @property
    def grace_period_days(self) -> int | None:
        return self._grace_period_days

    # --- Reads ---

    def _load(self) -> list[DenylistEntry]:
        """All parseable entries in row order. Storage faults read as empty."""
        try:
            rows = self._rows.scan()
        except StorageError:
            logger.exception("Denylist scan failed, treating as empty")
            return []
        entries = []
        for row in rows:
            entry = _row_to_entry(row)
            if entry is not None:
                entries.append(entry)
        return entries

    def _find(self, address: str) -> list[DenylistEntry]:
        return [e for e in self._load() if e.address == address]

    def entries(self) -> list[DenylistEntry]:
        """Every entry, in row order."""
        return self._load()

    def lookup(self, address: str | None) -> DenylistLookup:
        """Look up a sender. Malformed input is never found."""
        normalized = normalize_address(address)
        if normalized is None:
            return DenylistLookup.not_found()
        matches = self._find(normalized)
        if not matches:
            return DenylistLookup.not_found()
        entry = matches[0]
        return DenylistLookup(
            found=True,
            entry=entry,
            in_grace_period=self.in_grace_period(entry),
        )

    def in_grace_period(self, entry: DenylistEntry) -> bool:
        """True iff 0 <= now - added_at <= grace period (inclusive)."""
        if self._grace_period_days is None:
            return False
        age = self._clock() - entry.added_at
        return timedelta(0) <= age <= timedelta(days=self._grace_period_days)

    def recent_entries(self, window_days: int) -> list[DenylistEntry]:
        """Entries added within the last ``window_days``, oldest first."""
        now = self._clock()
        window = timedelta(days=window_days)
        recent = [
            e for e in self._load() if timedelta(0) <= now - e.added_at <= window
        ]
        return sorted(recent, key=lambda e: e.added_at)

    def unannounced_entries(self) -> list[DenylistEntry]:
        """Entries not yet sent to the notification channel, in row order."""
        return [e for e in self._load() if not e.announced]

    # --- Writes ---

    def add(
        self,
        address: str | None,
        source: DenylistSource = DenylistSource.AUTO,
    ) -> DenylistEntry | None:
        """Add a sender, or refresh ``last_confirmed_at`` if already present.

        Returns the resulting entry, or None if the address is malformed or
        the write failed.
        """
        normalized = normalize_address(address)
        if normalized is None:
            logger.warning("Refusing to denylist malformed address %r", address)
            return None

        existing = self._find(normalized)
        if existing:
            return self._confirm(existing[0])

        now = self._clock()
        try:
            position = self._rows.append(
                {
                    "email": normalized,
                    "added_date": now.isoformat(),
                    "last_confirmed_date": now.isoformat(),
                    "source": source.value,
                    "notified": "false",
                }
            )
        except StorageError:
            logger.exception("Failed to denylist %s", normalized)
            return None

        logger.info("Denylisted %s (source=%s)", normalized, source.value)
        return DenylistEntry(
            address=normalized,
            added_at=now,
            last_confirmed_at=now,
            source=source,
            announced=False,
            position=position,
        )

    def touch_confirmed(self, address: str | None) -> DenylistEntry | None:
        """Advance ``last_confirmed_at`` for a sender. No-op if absent."""
        normalized = normalize_address(address)
        if normalized is None:
            return None
        existing = self._find(normalized)
        if not existing:
            return None
        return self._confirm(existing[0])

    def _confirm(self, entry: DenylistEntry) -> DenylistEntry:
        # Never move the confirmation time backwards.
        now = max(self._clock(), entry.last_confirmed_at)
        try:
            self._rows.update(entry.position, {"last_confirmed_date": now.isoformat()})
        except StorageError:
            logger.exception("Failed to confirm denylist entry %s", entry.address)
            return entry
        logger.debug("Confirmed denylist entry %s", entry.address)
        return entry.model_copy(update={"last_confirmed_at": now})

    def remove(self, address: str | None) -> bool:
        """Remove a sender. Returns True if any row was deleted."""
        normalized = normalize_address(address)
        if normalized is None:
            return False
        removed = False
        # Overlapping runs can leave duplicates behind; drop them all.
        for entry in self._find(normalized):
            try:
                self._rows.delete(entry.position)
                removed = True
            except StorageError:
                logger.exception("Failed to remove denylist entry %s", normalized)
        if removed:
            logger.info("Removed %s from the denylist", normalized)
        return removed

    def mark_announced(self, addresses: Iterable[str]) -> int:
        """Flag entries as announced. Best-effort and idempotent.

        Returns the number of rows that changed.
        """
        wanted = {a for a in (normalize_address(x) for x in addresses) if a}
        if not wanted:
            return 0
        changed = 0
        for entry in self._load():
            if entry.address not in wanted or entry.announced:
                continue
            try:
                self._rows.update(entry.position, {"notified": "true"})
                changed += 1
            except StorageError:
                logger.exception("Failed to mark %s as announced", entry.address)
        return changed
