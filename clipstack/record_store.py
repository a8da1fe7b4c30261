"""
Record store using SQLite.

The record store is the source of truth for clipboard history:
- Record identity (row id)
- Contents (one row per representation, in copy order)
- Timestamps, copy counter, pin marker and origin

The history cache only talks to it through the query contract below
(count / fetch / insert / update / delete), expressed with predicate
objects so that other backends can implement the same contract.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from .errors import StoreUnavailable
from .types import Record, RecordContent, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


# -----------------------------------------------------------------------------
# Predicates
# -----------------------------------------------------------------------------

class Predicate:
    """
    A filter over stored records.

    ``clause()`` narrows the query in SQL. Predicates that cannot be fully
    expressed in SQL set ``post_filter`` and refine rows with ``matches()``.
    """
    post_filter = False

    def clause(self) -> tuple[str, tuple]:
        return "1 = 1", ()

    def matches(self, record: Record) -> bool:
        return True


class _All(Predicate):
    def __repr__(self) -> str:
        return "ALL"


class _Pinned(Predicate):
    def clause(self) -> tuple[str, tuple]:
        return "pin IS NOT NULL", ()

    def matches(self, record: Record) -> bool:
        return record.is_pinned

    def __repr__(self) -> str:
        return "PINNED"


class _Unpinned(Predicate):
    def clause(self) -> tuple[str, tuple]:
        return "pin IS NULL", ()

    def matches(self, record: Record) -> bool:
        return record.is_unpinned

    def __repr__(self) -> str:
        return "UNPINNED"


ALL = _All()
PINNED = _Pinned()
UNPINNED = _Unpinned()


class UnpinnedOlderThan(Predicate):
    """Unpinned records last copied strictly before ``timestamp``."""

    def __init__(self, timestamp):
        self.timestamp = timestamp

    def clause(self) -> tuple[str, tuple]:
        return "pin IS NULL AND last_copied_at < ?", (format_timestamp(self.timestamp),)

    def matches(self, record: Record) -> bool:
        return record.is_unpinned and record.last_copied_at < self.timestamp

    def __repr__(self) -> str:
        return f"UnpinnedOlderThan({format_timestamp(self.timestamp)})"


class Supersedes(Predicate):
    """Records equal to ``record`` or superseding it (see Record.supersedes)."""
    post_filter = True

    def __init__(self, record: Record):
        self.record = record

    def clause(self) -> tuple[str, tuple]:
        key = self.record.text_key()
        if key is None:
            return "1 = 1", ()
        return "text_key = ?", (key,)

    def matches(self, record: Record) -> bool:
        return record.supersedes(self.record)

    def __repr__(self) -> str:
        return f"Supersedes({self.record!r})"


class Sort(Enum):
    """Sort orders understood by fetch()."""
    LAST_COPIED_DESC = "last_copied_at DESC, id DESC"
    LAST_COPIED_ASC = "last_copied_at ASC, id ASC"


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------

_COLUMNS = (
    "id, first_copied_at, last_copied_at, number_of_copies, pin, "
    "modified, application, from_internal, title"
)


class RecordStore:
    """
    SQLite-backed store for clipboard history records.

    Every mutation runs in its own transaction under a lock, so capture
    threads and the presentation thread can share one store.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                first_copied_at TEXT NOT NULL,
                last_copied_at TEXT NOT NULL,
                number_of_copies INTEGER NOT NULL DEFAULT 1,
                pin TEXT,
                modified INTEGER,
                application TEXT,
                from_internal INTEGER NOT NULL DEFAULT 0,
                title TEXT NOT NULL DEFAULT '',
                text_key TEXT
            )
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS contents (
                record_id INTEGER NOT NULL REFERENCES records(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                type TEXT NOT NULL,
                value BLOB NOT NULL,
                PRIMARY KEY (record_id, position)
            )
        """)

        # Pagination walks unpinned records by recency
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_records_last_copied
            ON records(pin, last_copied_at)
        """)

        # Duplicate detection narrows by normalized text
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_records_text_key
            ON records(text_key)
        """)

        self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        self._conn.commit()

    @contextmanager
    def _guard(self, action: str) -> Iterator[sqlite3.Connection]:
        """Translate SQLite failures into StoreUnavailable."""
        if self._conn is None:
            raise StoreUnavailable(f"Cannot {action}: store is closed")
        try:
            yield self._conn
        except sqlite3.Error as e:
            logger.warning("Record store failed to %s: %s", action, e)
            raise StoreUnavailable(f"Cannot {action}: {e}") from e

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def insert(self, record: Record) -> Record:
        """
        Insert a new record and assign its id.

        Args:
            record: Record without an id

        Returns:
            The same record, with ``id`` set
        """
        with self._lock, self._guard("insert record") as conn:
            with conn:
                cursor = conn.execute(f"""
                    INSERT INTO records
                    (first_copied_at, last_copied_at, number_of_copies, pin,
                     modified, application, from_internal, title, text_key)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, self._row_values(record))
                record.id = cursor.lastrowid
                self._write_contents(conn, record)
        return record

    def update(self, record: Record) -> Record:
        """
        Overwrite a stored record (row and contents) in one transaction.

        Returns:
            The record
        """
        if record.id is None:
            return self.insert(record)
        with self._lock, self._guard("update record") as conn:
            with conn:
                conn.execute("""
                    UPDATE records
                    SET first_copied_at = ?, last_copied_at = ?, number_of_copies = ?,
                        pin = ?, modified = ?, application = ?, from_internal = ?,
                        title = ?, text_key = ?
                    WHERE id = ?
                """, (*self._row_values(record), record.id))
                conn.execute("DELETE FROM contents WHERE record_id = ?", (record.id,))
                self._write_contents(conn, record)
        return record

    def delete(self, record: Record) -> bool:
        """
        Delete a record.

        Deleting a record that was never stored, or is already gone, is a
        no-op.

        Returns:
            True if the record existed and was deleted
        """
        if record.id is None:
            return False
        with self._lock, self._guard("delete record") as conn:
            with conn:
                cursor = conn.execute("DELETE FROM records WHERE id = ?", (record.id,))
        return cursor.rowcount > 0

    def delete_where(self, predicate: Predicate) -> int:
        """
        Delete every record matching a predicate.

        Returns:
            Number of records deleted
        """
        if predicate.post_filter:
            ids = [r.id for r in self.fetch(predicate)]
            if not ids:
                return 0
            placeholders = ",".join("?" * len(ids))
            sql, params = f"DELETE FROM records WHERE id IN ({placeholders})", tuple(ids)
        else:
            clause, params = predicate.clause()
            sql = f"DELETE FROM records WHERE {clause}"

        with self._lock, self._guard("delete records") as conn:
            with conn:
                cursor = conn.execute(sql, params)
        logger.info("Deleted %d records matching %r", cursor.rowcount, predicate)
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def count(self, predicate: Predicate = ALL) -> int:
        """Count records matching a predicate."""
        if predicate.post_filter:
            return len(self.fetch(predicate))
        clause, params = predicate.clause()
        with self._guard("count records") as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM records WHERE {clause}", params).fetchone()
        return row[0]

    def fetch(
        self,
        predicate: Predicate = ALL,
        sort: Sort = Sort.LAST_COPIED_DESC,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Record]:
        """
        Fetch records matching a predicate.

        Args:
            predicate: Filter to apply
            sort: Result order
            limit: Maximum number to return (None for all)
            offset: Number of matching records to skip

        Returns:
            List of Records with their contents
        """
        clause, params = predicate.clause()
        sql = f"SELECT {_COLUMNS} FROM records WHERE {clause} ORDER BY {sort.value}"

        if not predicate.post_filter and (limit is not None or offset):
            sql += " LIMIT ? OFFSET ?"
            params = (*params, -1 if limit is None else limit, offset or 0)

        with self._guard("fetch records") as conn:
            rows = conn.execute(sql, params).fetchall()
            records = [self._row_to_record(row) for row in rows]
            self._load_contents(conn, records)

        if predicate.post_filter:
            records = [r for r in records if predicate.matches(r)]
            start = offset or 0
            end = None if limit is None else start + limit
            records = records[start:end]

        return records

    def get(self, id: int) -> Optional[Record]:
        """Get a record by id."""
        with self._guard("fetch record") as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM records WHERE id = ?", (id,)).fetchone()
            if row is None:
                return None
            record = self._row_to_record(row)
            self._load_contents(conn, [record])
        return record

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_values(record: Record) -> tuple:
        return (
            format_timestamp(record.first_copied_at),
            format_timestamp(record.last_copied_at),
            record.number_of_copies,
            record.pin,
            record.modified,
            record.application,
            int(record.from_internal),
            record.title,
            record.text_key(),
        )

    @staticmethod
    def _write_contents(conn: sqlite3.Connection, record: Record) -> None:
        conn.executemany("""
            INSERT INTO contents (record_id, position, type, value)
            VALUES (?, ?, ?, ?)
        """, [(record.id, i, c.type, c.value) for i, c in enumerate(record.contents)])

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        return Record(
            id=row["id"],
            first_copied_at=parse_timestamp(row["first_copied_at"]),
            last_copied_at=parse_timestamp(row["last_copied_at"]),
            number_of_copies=row["number_of_copies"],
            pin=row["pin"],
            modified=row["modified"],
            application=row["application"],
            from_internal=bool(row["from_internal"]),
            title=row["title"],
        )

    @staticmethod
    def _load_contents(conn: sqlite3.Connection, records: list[Record]) -> None:
        if not records:
            return
        by_id = {r.id: r for r in records}
        ids = list(by_id)
        # Stay well under SQLite's bound-parameter limit
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            placeholders = ",".join("?" * len(chunk))
            cursor = conn.execute(f"""
                SELECT record_id, type, value FROM contents
                WHERE record_id IN ({placeholders})
                ORDER BY record_id, position
            """, chunk)
            for row in cursor:
                by_id[row["record_id"]].contents.append(
                    RecordContent(type=row["type"], value=bytes(row["value"]))
                )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
