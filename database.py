"""Record store used by the lending controller.

Rows are plain dicts keyed by column name. Every operation takes the
``Entity`` it works on, so the controller never builds SQL itself and tests
can swap the SQLite store for ``MemoryStore``.
"""
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

DATABASE_FILE = "library.db"


class Entity(Enum):
    BOOKS = ("books", ("title", "description", "category_id", "person_id"), ())
    PERSONS = ("persons", ("first_name", "last_name", "alias", "email"), ("email",))
    CATEGORIES = ("categories", ("name",), ("name",))

    def __init__(self, table: str, columns: tuple, unique: tuple) -> None:
        self.table = table
        self.columns = columns
        self.unique = unique

    def check_columns(self, names) -> None:
        unknown = [n for n in names if n != "id" and n not in self.columns]
        if unknown:
            raise ValueError(f"Unknown column(s) for {self.table}: {', '.join(sorted(unknown))}")


class StoreError(Exception):
    """The backing store failed to carry out an operation."""


class DuplicateRecordError(StoreError):
    """A write would break a unique column."""


class RecordStore(ABC):
    """Uniquely identified rows, one collection per entity."""

    @abstractmethod
    def get(self, entity: Entity, record_id: int) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def list(self, entity: Entity, **filters: Any) -> List[Dict[str, Any]]:
        """Rows whose columns equal every filter value, ordered by id."""

    @abstractmethod
    def insert(self, entity: Entity, fields: Dict[str, Any]) -> int:
        ...

    @abstractmethod
    def update_fields(self, entity: Entity, record_id: int, fields: Dict[str, Any],
                      expected: Optional[Dict[str, Any]] = None,
                      requires: Optional[Tuple[Entity, int]] = None) -> bool:
        """Atomically write ``fields`` if the row exists and matches ``expected``.

        ``requires`` names another row, as ``(entity, id)``, that must exist
        at the moment of the write. Returns True when the row matched and
        was written, False otherwise.
        """

    @abstractmethod
    def delete(self, entity: Entity, record_id: int, expected: Optional[Dict[str, Any]] = None,
               unreferenced_by: Optional[Tuple[Entity, str]] = None) -> bool:
        """Atomically remove the row if it exists and matches ``expected``.

        ``unreferenced_by`` is ``(entity, column)``: the delete is skipped
        while any row of that entity holds this row's id in that column.
        """

    def close(self) -> None:
        pass


# ------------------------- SQLite ------------------------- #

def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Opens a connection to the SQLite database with dict-like rows."""
    conn = sqlite3.connect(db_file or DATABASE_FILE, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Creates the tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS persons (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                first_name TEXT NOT NULL,
                last_name TEXT NOT NULL,
                alias TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                category_id INTEGER NOT NULL REFERENCES categories(id),
                person_id INTEGER NOT NULL DEFAULT 0
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_person_id ON books(person_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_category_id ON books(category_id)")
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    create_tables(db_file)


class SQLiteStore(RecordStore):
    """Record store backed by a SQLite file, one short connection per call."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or DATABASE_FILE
        try:
            initialize_database(self.db_file)
        except sqlite3.Error as e:
            logger.error("Could not initialize database %s: %s", self.db_file, e)
            raise StoreError(str(e)) from e

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = get_db_connection(self.db_file)
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateRecordError(str(e)) from e
            logger.error("Integrity error on %s: %s", self.db_file, e)
            raise StoreError(str(e)) from e
        except sqlite3.Error as e:
            logger.error("Database error on %s: %s", self.db_file, e)
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def get(self, entity: Entity, record_id: int) -> Optional[Dict[str, Any]]:
        with self._connection() as conn:
            row = conn.execute(f"SELECT * FROM {entity.table} WHERE id = ?", (record_id,)).fetchone()
            return dict(row) if row else None

    def list(self, entity: Entity, **filters: Any) -> List[Dict[str, Any]]:
        entity.check_columns(filters)
        query = f"SELECT * FROM {entity.table}"
        if filters:
            query += " WHERE " + " AND ".join(f"{name} = ?" for name in filters)
        query += " ORDER BY id"
        with self._connection() as conn:
            rows = conn.execute(query, tuple(filters.values())).fetchall()
            return [dict(row) for row in rows]

    def insert(self, entity: Entity, fields: Dict[str, Any]) -> int:
        entity.check_columns(fields)
        names = ", ".join(fields)
        placeholders = ", ".join("?" for _ in fields)
        with self._connection() as conn:
            cursor = conn.execute(
                f"INSERT INTO {entity.table} ({names}) VALUES ({placeholders})",
                tuple(fields.values()),
            )
            return cursor.lastrowid

    def update_fields(self, entity: Entity, record_id: int, fields: Dict[str, Any],
                      expected: Optional[Dict[str, Any]] = None,
                      requires: Optional[Tuple[Entity, int]] = None) -> bool:
        if not fields:
            raise ValueError("Nothing to update.")
        expected = expected or {}
        entity.check_columns(fields)
        entity.check_columns(expected)
        assignments = ", ".join(f"{name} = ?" for name in fields)
        conditions = "".join(f" AND {name} = ?" for name in expected)
        params = [*fields.values(), record_id, *expected.values()]
        if requires is not None:
            other, other_id = requires
            conditions += f" AND EXISTS (SELECT 1 FROM {other.table} WHERE id = ?)"
            params.append(other_id)
        with self._connection() as conn:
            cursor = conn.execute(
                f"UPDATE {entity.table} SET {assignments} WHERE id = ?{conditions}",
                params,
            )
            return cursor.rowcount > 0

    def delete(self, entity: Entity, record_id: int, expected: Optional[Dict[str, Any]] = None,
               unreferenced_by: Optional[Tuple[Entity, str]] = None) -> bool:
        expected = expected or {}
        entity.check_columns(expected)
        conditions = "".join(f" AND {name} = ?" for name in expected)
        params = [record_id, *expected.values()]
        if unreferenced_by is not None:
            other, column = unreferenced_by
            other.check_columns([column])
            conditions += f" AND NOT EXISTS (SELECT 1 FROM {other.table} WHERE {column} = ?)"
            params.append(record_id)
        with self._connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM {entity.table} WHERE id = ?{conditions}",
                params,
            )
            return cursor.rowcount > 0


# ------------------------- In-memory ------------------------- #

class MemoryStore(RecordStore):
    """Dict-backed store; a single lock makes every operation atomic."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: Dict[Entity, Dict[int, Dict[str, Any]]] = {entity: {} for entity in Entity}
        self._next_id: Dict[Entity, int] = {entity: 1 for entity in Entity}

    def _check_unique(self, entity: Entity, fields: Dict[str, Any], exclude_id: Optional[int] = None) -> None:
        for column in entity.unique:
            if column not in fields:
                continue
            for row_id, row in self._rows[entity].items():
                if row_id != exclude_id and row.get(column) == fields[column]:
                    raise DuplicateRecordError(
                        f"UNIQUE constraint failed: {entity.table}.{column}"
                    )

    def get(self, entity: Entity, record_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._rows[entity].get(record_id)
            return dict(row) if row else None

    def list(self, entity: Entity, **filters: Any) -> List[Dict[str, Any]]:
        entity.check_columns(filters)
        with self._lock:
            return [
                dict(row)
                for _, row in sorted(self._rows[entity].items())
                if all(row.get(name) == value for name, value in filters.items())
            ]

    def insert(self, entity: Entity, fields: Dict[str, Any]) -> int:
        entity.check_columns(fields)
        with self._lock:
            self._check_unique(entity, fields)
            record_id = self._next_id[entity]
            self._next_id[entity] += 1
            row = {column: None for column in entity.columns}
            row.update(fields)
            row["id"] = record_id
            self._rows[entity][record_id] = row
            return record_id

    def update_fields(self, entity: Entity, record_id: int, fields: Dict[str, Any],
                      expected: Optional[Dict[str, Any]] = None,
                      requires: Optional[Tuple[Entity, int]] = None) -> bool:
        if not fields:
            raise ValueError("Nothing to update.")
        expected = expected or {}
        entity.check_columns(fields)
        entity.check_columns(expected)
        with self._lock:
            row = self._rows[entity].get(record_id)
            if row is None:
                return False
            if any(row.get(name) != value for name, value in expected.items()):
                return False
            if requires is not None:
                other, other_id = requires
                if other_id not in self._rows[other]:
                    return False
            self._check_unique(entity, fields, exclude_id=record_id)
            row.update(fields)
            return True

    def delete(self, entity: Entity, record_id: int, expected: Optional[Dict[str, Any]] = None,
               unreferenced_by: Optional[Tuple[Entity, str]] = None) -> bool:
        expected = expected or {}
        entity.check_columns(expected)
        if unreferenced_by is not None:
            unreferenced_by[0].check_columns([unreferenced_by[1]])
        with self._lock:
            row = self._rows[entity].get(record_id)
            if row is None:
                return False
            if any(row.get(name) != value for name, value in expected.items()):
                return False
            if unreferenced_by is not None:
                other, column = unreferenced_by
                if any(r.get(column) == record_id for r in self._rows[other].values()):
                    return False
            del self._rows[entity][record_id]
            return True


def create_store(settings) -> RecordStore:
    """Builds the store selected by ``settings.store_backend``."""
    backend = settings.store_backend.lower()
    if backend == "sqlite":
        return SQLiteStore(settings.database_file)
    if backend == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown store backend: {settings.store_backend!r}")
