"""SQLite storage for searches, files, file chunks and index tasks."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional


class NotFoundError(LookupError):
    """Raised when a requested row does not exist."""


@dataclass(frozen=True)
class Search:
    """A saved search query."""

    created_at: datetime
    updated_at: datetime
    id: int
    query: str


@dataclass(frozen=True)
class File:
    """An indexed file."""

    created_at: datetime
    updated_at: datetime
    id: int
    title: str
    file_type: str
    path: str


@dataclass(frozen=True)
class FileChunkRecord:
    """A stored piece of a file's text, belonging to one file."""

    created_at: datetime
    updated_at: datetime
    id: int
    content: str
    file_id: int


@dataclass(frozen=True)
class IndexTask:
    """A directory indexing job and its progress."""

    created_at: datetime
    updated_at: datetime
    id: int
    path: str
    progress: float
    status: str
    queue: str


@dataclass(frozen=True)
class _Migration:
    name: str
    up: str
    down: str


_MIGRATIONS: tuple[_Migration, ...] = (
    _Migration(
        "m20251121_101838_searches",
        """CREATE TABLE searches (
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            query TEXT NOT NULL
        )""",
        "DROP TABLE searches",
    ),
    _Migration(
        "m20251121_102944_files",
        """CREATE TABLE files (
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            file_type TEXT NOT NULL,
            path TEXT NOT NULL
        )""",
        "DROP TABLE files",
    ),
    _Migration(
        "m20251121_115159_index_tasks",
        """CREATE TABLE index_tasks (
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            path TEXT NOT NULL,
            progress REAL NOT NULL DEFAULT 0.0,
            status TEXT NOT NULL,
            queue TEXT NOT NULL
        )""",
        "DROP TABLE index_tasks",
    ),
    _Migration(
        "m20251123_155655_file_chunks",
        """CREATE TABLE file_chunks (
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            content TEXT NOT NULL,
            file_id INTEGER NOT NULL
                REFERENCES files (id) ON DELETE CASCADE ON UPDATE CASCADE
        )""",
        "DROP TABLE file_chunks",
    ),
)

_MIGRATION_TABLE = """CREATE TABLE IF NOT EXISTS seaql_migrations (
    version TEXT PRIMARY KEY,
    applied_at TEXT NOT NULL
)"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _stamps(row: sqlite3.Row) -> dict[str, datetime]:
    return {
        "created_at": datetime.fromisoformat(row["created_at"]),
        "updated_at": datetime.fromisoformat(row["updated_at"]),
    }


def _search(row: sqlite3.Row) -> Search:
    return Search(**_stamps(row), id=row["id"], query=row["query"])


def _file(row: sqlite3.Row) -> File:
    return File(
        **_stamps(row),
        id=row["id"],
        title=row["title"],
        file_type=row["file_type"],
        path=row["path"],
    )


def _chunk(row: sqlite3.Row) -> FileChunkRecord:
    return FileChunkRecord(
        **_stamps(row), id=row["id"], content=row["content"], file_id=row["file_id"]
    )


def _task(row: sqlite3.Row) -> IndexTask:
    return IndexTask(
        **_stamps(row),
        id=row["id"],
        path=row["path"],
        progress=float(row["progress"]),
        status=row["status"],
        queue=row["queue"],
    )


class Database:
    """A thread-safe SQLite connection with the application's schema."""

    def __init__(self, path: str = ":memory:") -> None:
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()

    def close(self) -> None:
        """Close the connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- migrations -------------------------------------------------------

    def _applied(self) -> list[str]:
        self._conn.execute(_MIGRATION_TABLE)
        rows = self._conn.execute("SELECT version FROM seaql_migrations").fetchall()
        return [row["version"] for row in rows]

    def migrate_up(self) -> list[str]:
        """Apply every pending migration in order; return the names applied."""
        with self._lock, self._conn:
            applied = set(self._applied())
            done = []
            for migration in _MIGRATIONS:
                if migration.name in applied:
                    continue
                self._conn.execute(migration.up)
                self._conn.execute(
                    "INSERT INTO seaql_migrations (version, applied_at) VALUES (?, ?)",
                    (migration.name, _now()),
                )
                done.append(migration.name)
            return done

    def migrate_down(self) -> Optional[str]:
        """Roll back the most recent migration; return its name, or None."""
        with self._lock, self._conn:
            applied = set(self._applied())
            for migration in reversed(_MIGRATIONS):
                if migration.name in applied:
                    self._conn.execute(migration.down)
                    self._conn.execute(
                        "DELETE FROM seaql_migrations WHERE version = ?",
                        (migration.name,),
                    )
                    return migration.name
            return None

    # -- helpers ----------------------------------------------------------

    def _insert(self, table: str, values: dict[str, Any]) -> int:
        stamp = _now()
        columns = {"created_at": stamp, "updated_at": stamp, **values}
        names = ", ".join(columns)
        marks = ", ".join("?" for _ in columns)
        with self._lock, self._conn:
            cursor = self._conn.execute(
                f"INSERT INTO {table} ({names}) VALUES ({marks})", tuple(columns.values())
            )
            return int(cursor.lastrowid)

    def _one(self, table: str, row_id: int) -> sqlite3.Row:
        with self._lock:
            row = self._conn.execute(
                f"SELECT * FROM {table} WHERE id = ?", (row_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"{table} row {row_id} not found")
        return row

    def _many(self, table: str, ids: Iterable[int]) -> list[sqlite3.Row]:
        wanted = sorted({int(i) for i in ids})
        if not wanted:
            return []
        marks = ", ".join("?" for _ in wanted)
        with self._lock:
            return self._conn.execute(
                f"SELECT * FROM {table} WHERE id IN ({marks}) ORDER BY id", wanted
            ).fetchall()

    def _update(self, table: str, row_id: int, values: dict[str, Any]) -> None:
        columns = {**values, "updated_at": _now()}
        assignments = ", ".join(f"{name} = ?" for name in columns)
        with self._lock, self._conn:
            cursor = self._conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                (*columns.values(), row_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"{table} row {row_id} not found")

    # -- searches ---------------------------------------------------------

    def insert_search(self, query: str) -> Search:
        """Store a search query."""
        return self.get_search(self._insert("searches", {"query": query}))

    def get_search(self, search_id: int) -> Search:
        """Return one search; raises NotFoundError."""
        return _search(self._one("searches", search_id))

    def list_searches(self) -> list[Search]:
        """Return every search, by id."""
        with self._lock:
            rows = self._conn.execute("SELECT * FROM searches ORDER BY id").fetchall()
        return [_search(row) for row in rows]

    def update_search(self, search_id: int, query: str) -> Search:
        """Replace a search's query; raises NotFoundError."""
        self._update("searches", search_id, {"query": query})
        return self.get_search(search_id)

    def delete_search(self, search_id: int) -> None:
        """Delete a search; raises NotFoundError."""
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM searches WHERE id = ?", (search_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"searches row {search_id} not found")

    # -- files ------------------------------------------------------------

    def insert_file(self, title: str, file_type: Any, path: str) -> File:
        """Store a file record."""
        row_id = self._insert(
            "files", {"title": title, "file_type": _text(file_type), "path": path}
        )
        return self.get_file(row_id)

    def get_file(self, file_id: int) -> File:
        """Return one file; raises NotFoundError."""
        return _file(self._one("files", file_id))

    def list_files(self, limit: int = 50, offset: int = 0) -> list[File]:
        """Return a page of files, by id."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM files ORDER BY id LIMIT ? OFFSET ?", (limit, offset)
            ).fetchall()
        return [_file(row) for row in rows]

    def files_by_ids(self, ids: Iterable[int]) -> list[File]:
        """Return the files whose ids are given; missing ids are skipped."""
        return [_file(row) for row in self._many("files", ids)]

    # -- file chunks ------------------------------------------------------

    def insert_file_chunk(self, content: str, file_id: int) -> FileChunkRecord:
        """Store a chunk of a file's text."""
        row_id = self._insert("file_chunks", {"content": content, "file_id": file_id})
        return self.get_file_chunk(row_id)

    def get_file_chunk(self, chunk_id: int) -> FileChunkRecord:
        """Return one chunk; raises NotFoundError."""
        return _chunk(self._one("file_chunks", chunk_id))

    def chunks_by_ids(self, ids: Iterable[int]) -> list[FileChunkRecord]:
        """Return the chunks whose ids are given; missing ids are skipped."""
        return [_chunk(row) for row in self._many("file_chunks", ids)]

    # -- index tasks ------------------------------------------------------

    def insert_index_task(self, path: str, status: Any, queue: str) -> IndexTask:
        """Store a new index task with zero progress."""
        row_id = self._insert(
            "index_tasks", {"path": path, "status": _text(status), "queue": queue}
        )
        return self.get_index_task(row_id)

    def get_index_task(self, task_id: int) -> IndexTask:
        """Return one index task; raises NotFoundError."""
        return _task(self._one("index_tasks", task_id))

    def list_index_tasks(self) -> list[IndexTask]:
        """Return every index task, by id."""
        with self._lock:
            rows = self._conn.execute("SELECT * FROM index_tasks ORDER BY id").fetchall()
        return [_task(row) for row in rows]

    def update_index_task(
        self,
        task_id: int,
        progress: Optional[float] = None,
        status: Any = None,
        queue: Optional[str] = None,
    ) -> IndexTask:
        """Change the given fields of a task; raises NotFoundError."""
        values: dict[str, Any] = {}
        if progress is not None:
            values["progress"] = float(progress)
        if status is not None:
            values["status"] = _text(status)
        if queue is not None:
            values["queue"] = queue
        self._update("index_tasks", task_id, values)
        return self.get_index_task(task_id)