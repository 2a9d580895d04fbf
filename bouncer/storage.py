"""Key-ordered row stores backing the denylist.

A row store keeps an ordered sequence of rows, each addressed by an opaque
integer position. Columns are declared up front; optional columns that are
missing from an older backing table read as ``None``.

Two backends share the contract:

- ``SqliteRowStore`` - stdlib sqlite3, position = rowid.
- ``MemoryRowStore`` - in-process dict, used by tests and dry runs.

Every backend fault surfaces as ``StorageError`` so callers catch one type.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the backing store cannot complete an operation."""


class Row(BaseModel):
    """One stored row: its position and its column values."""

    position: int
    values: dict[str, str | None]

    def get(self, column: str) -> str | None:
        return self.values.get(column)


class RowStore(ABC):
    """Abstract key-ordered row store."""

    def __init__(self, columns: Sequence[str]) -> None:
        self.columns: tuple[str, ...] = tuple(columns)

    @abstractmethod
    def scan(self) -> list[Row]:
        """Return every row, ordered by position."""

    @abstractmethod
    def append(self, values: Mapping[str, str | None]) -> int:
        """Append a row and return its position."""

    @abstractmethod
    def update(self, position: int, values: Mapping[str, str | None]) -> None:
        """Overwrite the given columns of the row at ``position``."""

    @abstractmethod
    def delete(self, position: int) -> None:
        """Delete the row at ``position``. No-op if it does not exist."""

    def close(self) -> None:
        pass

    def __enter__(self) -> "RowStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _check_columns(self, values: Mapping[str, str | None]) -> None:
        unknown = set(values) - set(self.columns)
        if unknown:
            raise StorageError(f"Unknown column(s): {', '.join(sorted(unknown))}")


class MemoryRowStore(RowStore):
    """In-memory row store with the same semantics as the sqlite backend."""

    def __init__(self, columns: Sequence[str]) -> None:
        super().__init__(columns)
        self._rows: dict[int, dict[str, str | None]] = {}
        self._next_position = 1

    def scan(self) -> list[Row]:
        return [
            Row(position=pos, values=dict(values))
            for pos, values in sorted(self._rows.items())
        ]

    def append(self, values: Mapping[str, str | None]) -> int:
        self._check_columns(values)
        position = self._next_position
        self._next_position += 1
        self._rows[position] = {col: values.get(col) for col in self.columns}
        return position

    def update(self, position: int, values: Mapping[str, str | None]) -> None:
        self._check_columns(values)
        row = self._rows.get(position)
        if row is None:
            raise StorageError(f"Row not found at position {position}")
        row.update(values)

    def delete(self, position: int) -> None:
        self._rows.pop(position, None)


class SqliteRowStore(RowStore):
    """SQLite-backed row store.

    Usage::

        with SqliteRowStore("data/denylist.db", "denylist", DENYLIST_COLUMNS) as rows:
            pos = rows.append({"email": "x@ads.example", ...})
            for row in rows.scan():
                print(row.position, row.get("email"))

    Columns are TEXT. When an existing table lacks one of the declared
    columns it is added with ``ALTER TABLE`` and reads as NULL for old rows.
    """

    def __init__(
        self,
        db_path: str | Path,
        table: str,
        columns: Sequence[str],
    ) -> None:
        super().__init__(columns)
        if not table.isidentifier() or not all(c.isidentifier() for c in self.columns):
            raise ValueError("Table and column names must be plain identifiers")
        self._table = table
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(self._db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open {self._db_path}: {exc}") from exc

    def _ensure_schema(self) -> None:
        cols = ", ".join(f"{c} TEXT" for c in self.columns)
        self._conn.execute(f"CREATE TABLE IF NOT EXISTS {self._table} ({cols})")
        existing = {
            r["name"] for r in self._conn.execute(f"PRAGMA table_info({self._table})")
        }
        for col in self.columns:
            if col not in existing:
                self._conn.execute(f"ALTER TABLE {self._table} ADD COLUMN {col} TEXT")
                logger.info("Added missing column %s to %s", col, self._table)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def scan(self) -> list[Row]:
        cols = ", ".join(self.columns)
        try:
            rows = self._conn.execute(
                f"SELECT rowid, {cols} FROM {self._table} ORDER BY rowid ASC"
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Scan of {self._table} failed: {exc}") from exc
        return [
            Row(position=r["rowid"], values={c: r[c] for c in self.columns})
            for r in rows
        ]

    def append(self, values: Mapping[str, str | None]) -> int:
        self._check_columns(values)
        cols = ", ".join(self.columns)
        marks = ", ".join("?" for _ in self.columns)
        try:
            cursor = self._conn.execute(
                f"INSERT INTO {self._table} ({cols}) VALUES ({marks})",
                tuple(values.get(c) for c in self.columns),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Append to {self._table} failed: {exc}") from exc
        return cursor.lastrowid

    def update(self, position: int, values: Mapping[str, str | None]) -> None:
        self._check_columns(values)
        if not values:
            return
        assignments = ", ".join(f"{c} = ?" for c in values)
        try:
            cursor = self._conn.execute(
                f"UPDATE {self._table} SET {assignments} WHERE rowid = ?",
                (*values.values(), position),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Update of {self._table} failed: {exc}") from exc
        if cursor.rowcount == 0:
            raise StorageError(f"Row not found at position {position}")

    def delete(self, position: int) -> None:
        try:
            self._conn.execute(f"DELETE FROM {self._table} WHERE rowid = ?", (position,))
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Delete from {self._table} failed: {exc}") from exc
