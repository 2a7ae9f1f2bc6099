"""Allotment record stores.

The reconciler only needs three primitives -- load by id, load by id and
owner, and save -- described by :class:`AllotmentStore`.  Two
implementations ship here: an in-memory dict for tests and demos, and a
single-file SQLite store.
"""

from __future__ import annotations

import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from allotsync.errors import PersistenceError
from allotsync.models import Allotment


class AllotmentStore(Protocol):
    """Protocol for loading and saving allotments."""

    def find_by_id(self, allotment_id: str) -> Allotment | None:
        ...

    def find_by_id_and_owner(self, allotment_id: str, owner: str) -> Allotment | None:
        ...

    def save(self, allotment: Allotment) -> None:
        """Persist *allotment*.  Raises :class:`PersistenceError` on failure."""
        ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryAllotmentStore:
    """Dict-backed store.  Returned records are copies."""

    def __init__(self, allotments: list[Allotment] | None = None) -> None:
        self._rows: dict[str, Allotment] = {}
        for a in allotments or []:
            self._rows[a.id] = a.model_copy(deep=True)

    def find_by_id(self, allotment_id: str) -> Allotment | None:
        row = self._rows.get(allotment_id)
        return row.model_copy(deep=True) if row is not None else None

    def find_by_id_and_owner(self, allotment_id: str, owner: str) -> Allotment | None:
        row = self._rows.get(allotment_id)
        if row is None or row.teacher_email != owner:
            return None
        return row.model_copy(deep=True)

    def save(self, allotment: Allotment) -> None:
        self._rows[allotment.id] = allotment.model_copy(deep=True)


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

_COLUMNS = [
    "id",
    "teacher_email",
    "sheet_title",
    "sheet_row_id",
    "video_link_col",
    "error_col",
    "link_date_col",
    "video_link",
    "question_error_identified",
    "status",
    "last_synced_at",
]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS allotments (
    id TEXT PRIMARY KEY,
    teacher_email TEXT NOT NULL,
    sheet_title TEXT,
    sheet_row_id INTEGER,
    video_link_col INTEGER,
    error_col INTEGER,
    link_date_col INTEGER,
    video_link TEXT,
    question_error_identified TEXT,
    status TEXT,
    last_synced_at TEXT
)
"""


def sqlite_path_from_url(url: str) -> str:
    """Accept ``sqlite:///path/to.db`` or a plain filesystem path."""
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):]
    if "://" in url:
        raise ValueError(f"Unsupported database URL: {url!r}")
    return url


class SqliteAllotmentStore:
    """Single-table SQLite store.

    Parameters
    ----------
    url : str
        ``sqlite:///path`` URL or plain path.  The table is created on
        first use.
    """

    def __init__(self, url: str) -> None:
        self.path = Path(sqlite_path_from_url(url))
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(_SCHEMA)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open allotment database {self.path}: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> Allotment | None:
        try:
            with closing(self._connect()) as conn:
                row = conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Allotment lookup failed: {exc}", params[0]) from exc
        return _row_to_allotment(row) if row is not None else None

    def find_by_id(self, allotment_id: str) -> Allotment | None:
        return self._fetch_one(
            f"SELECT {', '.join(_COLUMNS)} FROM allotments WHERE id = ?",
            (allotment_id,),
        )

    def find_by_id_and_owner(self, allotment_id: str, owner: str) -> Allotment | None:
        return self._fetch_one(
            f"SELECT {', '.join(_COLUMNS)} FROM allotments WHERE id = ? AND teacher_email = ?",
            (allotment_id, owner),
        )

    def save(self, allotment: Allotment) -> None:
        values = _allotment_to_row(allotment)
        placeholders = ", ".join("?" for _ in _COLUMNS)
        assignments = ", ".join(f"{c} = excluded.{c}" for c in _COLUMNS if c != "id")
        sql = (
            f"INSERT INTO allotments ({', '.join(_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {assignments}"
        )
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(sql, values)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Saving allotment failed: {exc}", allotment.id) from exc


def _allotment_to_row(allotment: Allotment) -> tuple[Any, ...]:
    data = allotment.model_dump()
    ts = data["last_synced_at"]
    data["last_synced_at"] = ts.isoformat() if isinstance(ts, datetime) else None
    return tuple(data[c] for c in _COLUMNS)


def _row_to_allotment(row: sqlite3.Row) -> Allotment:
    return Allotment.model_validate({c: row[c] for c in _COLUMNS})
