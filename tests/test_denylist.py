"""Tests for the denylist store (bouncer/denylist.py).

Covers: normalization, lookup after add, idempotent add, monotonic
confirmation, grace period boundaries, recent/unannounced queries,
announcement marking, and storage-fault isolation.
"""

from datetime import timedelta

import pytest

from bouncer.denylist import DenylistStore, normalize_address
from bouncer.schemas.denylist import DENYLIST_COLUMNS, DenylistSource
from bouncer.storage import MemoryRowStore, SqliteRowStore, StorageError
from fakes import T0, FakeClock


class BrokenRowStore(MemoryRowStore):
    """Row store whose every operation fails."""

    def scan(self):
        raise StorageError("backend down")

    def append(self, values):
        raise StorageError("backend down")

    def update(self, position, values):
        raise StorageError("backend down")

    def delete(self, position):
        raise StorageError("backend down")


# --- normalize_address ---


class TestNormalizeAddress:
    def test_lowercases_and_trims(self):
        assert normalize_address("  X@Ads.Example \n") == "x@ads.example"

    @pytest.mark.parametrize(
        "value",
        ["", "   ", None, "no-at-sign", "@ads.example", "x@", "x@localhost", "a b@c.example", "x@@y.example"],
    )
    def test_rejects_malformed(self, value):
        assert normalize_address(value) is None


# --- lookup / add ---


class TestLookupAndAdd:
    def test_lookup_after_add(self, store):
        store.add("x@ads.example", DenylistSource.AUTO)
        result = store.lookup("x@ads.example")

        assert result.found is True
        assert result.entry.source == DenylistSource.AUTO
        assert result.entry.announced is False

    def test_lookup_is_case_insensitive(self, store):
        store.add("X@Ads.Example")
        assert store.lookup(" x@ADS.example ").found is True

    def test_lookup_unknown_is_not_found(self, store):
        result = store.lookup("nobody@x.example")
        assert result.found is False
        assert result.entry is None
        assert result.in_grace_period is False

    @pytest.mark.parametrize("value", ["", None, "garbage"])
    def test_lookup_malformed_is_not_found(self, store, value):
        assert store.lookup(value).found is False

    def test_add_malformed_returns_none(self, store, rows):
        assert store.add("not an address") is None
        assert rows.scan() == []

    def test_add_twice_keeps_one_row(self, store, rows, clock):
        store.add("x@ads.example")
        clock.advance(hours=3)
        store.add("X@ads.example")

        assert len(rows.scan()) == 1
        entry = store.lookup("x@ads.example").entry
        assert entry.added_at == T0
        assert entry.last_confirmed_at == T0 + timedelta(hours=3)

    def test_last_confirmed_never_moves_backwards(self, store, clock):
        store.add("x@ads.example")
        clock.advance(days=1)
        store.touch_confirmed("x@ads.example")
        clock.now = T0  # clock skew
        store.add("x@ads.example")

        entry = store.lookup("x@ads.example").entry
        assert entry.last_confirmed_at == T0 + timedelta(days=1)

    def test_add_keeps_original_source(self, store):
        store.add("x@ads.example", DenylistSource.MANUAL)
        store.add("x@ads.example", DenylistSource.AUTO)
        assert store.lookup("x@ads.example").entry.source == DenylistSource.MANUAL


# --- grace period ---


class TestGracePeriod:
    def test_fresh_entry_is_in_grace(self, store, clock):
        store.add("x@ads.example")
        clock.advance(days=3)
        assert store.lookup("x@ads.example").in_grace_period is True

    def test_boundary_is_inclusive(self, store, clock):
        store.add("x@ads.example")
        clock.advance(days=7)
        assert store.lookup("x@ads.example").in_grace_period is True

    def test_expired_after_boundary(self, store, clock):
        store.add("x@ads.example")
        clock.advance(days=7, seconds=1)
        result = store.lookup("x@ads.example")
        assert result.found is True
        assert result.in_grace_period is False

    def test_future_added_at_is_not_in_grace(self, store, clock):
        store.add("x@ads.example")
        clock.now = T0 - timedelta(hours=1)
        assert store.lookup("x@ads.example").in_grace_period is False

    def test_disabled_grace_period(self, rows, clock):
        store = DenylistStore(rows, grace_period_days=None, clock=clock)
        store.add("x@ads.example")
        result = store.lookup("x@ads.example")
        assert result.found is True
        assert result.in_grace_period is False


# --- remove / touch ---


class TestRemoveAndTouch:
    def test_remove_present(self, store):
        store.add("x@ads.example")
        assert store.remove("X@ads.example") is True
        assert store.lookup("x@ads.example").found is False

    def test_remove_absent_is_noop(self, store):
        assert store.remove("x@ads.example") is False

    def test_remove_drops_duplicate_rows(self, store, rows):
        for _ in range(2):
            rows.append(
                {"email": "x@ads.example", "added_date": T0.isoformat(), "source": "auto"}
            )
        assert store.remove("x@ads.example") is True
        assert rows.scan() == []

    def test_touch_absent_is_noop(self, store, rows):
        assert store.touch_confirmed("x@ads.example") is None
        assert rows.scan() == []

    def test_touch_updates_only_confirmation(self, store, clock):
        store.add("x@ads.example")
        clock.advance(days=2)
        entry = store.touch_confirmed("x@ads.example")
        assert entry.added_at == T0
        assert entry.last_confirmed_at == T0 + timedelta(days=2)


# --- temporal queries ---


class TestRecentEntries:
    def test_filters_and_orders_by_added_at(self, rows, clock):
        store = DenylistStore(rows, grace_period_days=7, clock=clock)
        rows.append({"email": "new@x.example", "added_date": (T0 - timedelta(days=1)).isoformat(), "source": "auto"})
        rows.append({"email": "old@x.example", "added_date": (T0 - timedelta(days=30)).isoformat(), "source": "auto"})
        rows.append({"email": "mid@x.example", "added_date": (T0 - timedelta(days=5)).isoformat(), "source": "auto"})

        recent = store.recent_entries(7)
        assert [e.address for e in recent] == ["mid@x.example", "new@x.example"]

    def test_window_boundary_inclusive(self, rows, clock):
        store = DenylistStore(rows, clock=clock)
        rows.append({"email": "edge@x.example", "added_date": (T0 - timedelta(days=7)).isoformat(), "source": "auto"})
        assert [e.address for e in store.recent_entries(7)] == ["edge@x.example"]


class TestAnnouncements:
    def test_new_entries_are_unannounced(self, store):
        store.add("a@x.example")
        store.add("b@x.example")
        assert [e.address for e in store.unannounced_entries()] == ["a@x.example", "b@x.example"]

    def test_mark_announced_is_idempotent(self, store):
        store.add("a@x.example")
        store.add("b@x.example")

        assert store.mark_announced(["a@x.example"]) == 1
        assert store.mark_announced(["a@x.example"]) == 0
        assert [e.address for e in store.unannounced_entries()] == ["b@x.example"]

    def test_mark_announced_ignores_unknown(self, store):
        assert store.mark_announced(["ghost@x.example", "bad"]) == 0


# --- row compatibility ---


class TestRowCompatibility:
    def test_missing_optional_columns(self, rows, clock):
        rows.append({"email": "legacy@x.example", "added_date": T0.isoformat(), "source": "manual"})
        store = DenylistStore(rows, clock=clock)

        entry = store.lookup("legacy@x.example").entry
        assert entry.last_confirmed_at == entry.added_at
        assert entry.announced is False
        assert entry.source == DenylistSource.MANUAL

    def test_naive_dates_read_as_utc(self, rows, clock):
        rows.append({"email": "naive@x.example", "added_date": "2025-06-01T10:00:00", "source": "auto"})
        store = DenylistStore(rows, clock=clock)
        assert store.lookup("naive@x.example").in_grace_period is True

    def test_unparseable_rows_are_skipped(self, rows, clock):
        rows.append({"email": "bad@x.example", "added_date": "yesterday", "source": "auto"})
        rows.append({"email": "", "added_date": T0.isoformat()})
        rows.append({"email": "ok@x.example", "added_date": T0.isoformat(), "source": "weird"})
        store = DenylistStore(rows, clock=clock)

        assert [e.address for e in store.entries()] == ["ok@x.example"]
        assert store.entries()[0].source == DenylistSource.AUTO

    def test_rejects_row_store_without_columns(self):
        with pytest.raises(ValueError):
            DenylistStore(MemoryRowStore(("email",)))

    def test_works_over_sqlite(self, tmp_path, clock):
        with SqliteRowStore(tmp_path / "d.db", "denylist", DENYLIST_COLUMNS) as rows:
            store = DenylistStore(rows, clock=clock)
            store.add("x@ads.example")
            store.mark_announced(["x@ads.example"])
            entry = store.lookup("x@ads.example").entry
            assert entry.announced is True
            assert entry.added_at == T0


# --- fault isolation ---


class TestStorageFaults:
    @pytest.fixture
    def broken(self):
        return DenylistStore(BrokenRowStore(DENYLIST_COLUMNS), clock=FakeClock())

    def test_lookup_degrades_to_not_found(self, broken):
        assert broken.lookup("x@ads.example").found is False

    def test_writes_degrade_to_noop(self, broken):
        assert broken.add("x@ads.example") is None
        assert broken.remove("x@ads.example") is False
        assert broken.touch_confirmed("x@ads.example") is None
        assert broken.mark_announced(["x@ads.example"]) == 0

    def test_queries_degrade_to_empty(self, broken):
        assert broken.recent_entries(7) == []
        assert broken.unannounced_entries() == []

    def test_failed_write_after_successful_read(self, rows, clock):
        store = DenylistStore(rows, clock=clock)
        store.add("x@ads.example")

        def fail(*args, **kwargs):
            raise StorageError("read-only")

        rows.update = fail
        rows.delete = fail
        clock.advance(days=1)

        entry = store.touch_confirmed("x@ads.example")
        assert entry.last_confirmed_at == T0
        assert store.remove("x@ads.example") is False
        assert store.lookup("x@ads.example").found is True
