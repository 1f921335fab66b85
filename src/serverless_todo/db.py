from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from threading import RLock
from typing import Any, Dict, Generator, List, Optional

import structlog

from .errors import CursorDecodeError, NotFoundError, StoreError
from .models import FieldChanges, Page, StoreKey, TodoEntity, UpdatableField
from .repositories import Repository
from .utils import from_iso, next_stamp, to_iso

log = structlog.get_logger()


@dataclass(frozen=True)
class _Cols:
    table: str = "todos"
    id: str = "id"
    title: str = "title"
    completed: str = "completed"
    aged: str = "aged"
    due_date: str = "due_date"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


_COLS = _Cols()

# Allow-list translating update fields to column names. Column names never come from input.
_UPDATE_COLUMNS: Dict[UpdatableField, str] = {
    UpdatableField.TITLE: _COLS.title,
    UpdatableField.COMPLETED: _COLS.completed,
    UpdatableField.DUE_DATE: _COLS.due_date,
    UpdatableField.AGED: _COLS.aged,
}


def _to_column_value(field: UpdatableField, value: Any) -> Any:
    if field in (UpdatableField.COMPLETED, UpdatableField.AGED):
        return 1 if value else 0
    if field is UpdatableField.DUE_DATE:
        return value.isoformat() if value is not None else None
    return value


class SQLiteRepository(Repository):
    """
    Relational repository on SQLite.

    One connection is opened at construction and reused for the lifetime of
    the repository; a lock serializes access because FastAPI runs sync
    endpoints in a thread pool. Listing is ordered by creation time, newest
    first, with a keyset cursor of (createdAt, id).
    """

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._lock = RLock()
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._init_db()

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Connection, None, None]:
        with self._lock:
            try:
                with self._connection:
                    yield self._connection
            except sqlite3.Error as exc:
                log.exception("sqlite_operation_failed", path=self._db_path)
                raise StoreError(str(exc)) from exc

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.id} TEXT PRIMARY KEY,
                    {_COLS.title} TEXT NOT NULL,
                    {_COLS.completed} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.aged} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.due_date} TEXT NULL,
                    {_COLS.created_at} TEXT NOT NULL,
                    {_COLS.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_created_at "
                f"ON {_COLS.table}({_COLS.created_at} DESC, {_COLS.id} DESC)"
            )

    def _row_to_entity(self, row: sqlite3.Row) -> TodoEntity:
        due = row[_COLS.due_date]
        return {
            "id": str(row[_COLS.id]),
            "title": str(row[_COLS.title]),
            "completed": bool(row[_COLS.completed]),
            "aged": bool(row[_COLS.aged]),
            "due_date": date.fromisoformat(due) if due else None,
            "created_at": from_iso(row[_COLS.created_at]),
            "updated_at": from_iso(row[_COLS.updated_at]),
        }

    def _select(self, conn: sqlite3.Connection, todo_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            f"SELECT * FROM {_COLS.table} WHERE {_COLS.id} = ?", (todo_id,)
        ).fetchone()

    def get(self, todo_id: str) -> Optional[TodoEntity]:
        with self._transaction() as conn:
            row = self._select(conn, todo_id)
            return self._row_to_entity(row) if row else None

    def list(self, limit: int, start_key: Optional[StoreKey] = None) -> Page:
        where_sql = ""
        params: List[Any] = []
        if start_key is not None:
            created, last_id = start_key.get("createdAt"), start_key.get("id")
            if set(start_key) != {"createdAt", "id"} or not isinstance(created, str) or not isinstance(last_id, str):
                raise CursorDecodeError()
            where_sql = (
                f"WHERE {_COLS.created_at} < ? "
                f"OR ({_COLS.created_at} = ? AND {_COLS.id} < ?)"
            )
            params.extend([created, created, last_id])

        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {_COLS.table}
                {where_sql}
                ORDER BY {_COLS.created_at} DESC, {_COLS.id} DESC
                LIMIT ?
                """,
                [*params, limit + 1],
            ).fetchall()

        items = [self._row_to_entity(r) for r in rows[:limit]]
        last_key: Optional[StoreKey] = None
        if len(rows) > limit:
            last = rows[limit - 1]
            last_key = {"createdAt": last[_COLS.created_at], "id": last[_COLS.id]}
        return Page(items=items, last_key=last_key)

    def put(self, entity: TodoEntity) -> None:
        due = entity["due_date"]
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT OR REPLACE INTO {_COLS.table} ({_COLS.id}, {_COLS.title}, {_COLS.completed},
                    {_COLS.aged}, {_COLS.due_date}, {_COLS.created_at}, {_COLS.updated_at})
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entity["id"],
                    entity["title"],
                    1 if entity["completed"] else 0,
                    1 if entity["aged"] else 0,
                    due.isoformat() if due else None,
                    to_iso(entity["created_at"]),
                    to_iso(entity["updated_at"]),
                ),
            )

    def update_fields(self, todo_id: str, changes: FieldChanges, updated_at: datetime) -> TodoEntity:
        assignments = [f"{_COLS.updated_at} = ?"]
        values: List[Any] = []
        for field, value in changes.items():
            field = UpdatableField(field)
            assignments.append(f"{_UPDATE_COLUMNS[field]} = ?")
            values.append(_to_column_value(field, value))

        with self._transaction() as conn:
            current = conn.execute(
                f"SELECT {_COLS.updated_at} FROM {_COLS.table} WHERE {_COLS.id} = ?", (todo_id,)
            ).fetchone()
            if current is None:
                raise NotFoundError()
            stamp = next_stamp(updated_at, from_iso(current[_COLS.updated_at]))

            cur = conn.execute(
                f"UPDATE {_COLS.table} SET {', '.join(assignments)} WHERE {_COLS.id} = ?",
                [to_iso(stamp), *values, todo_id],
            )
            row = self._select(conn, todo_id) if cur.rowcount else None
            if row is None:
                raise StoreError(f"todo {todo_id} vanished during update")
            return self._row_to_entity(row)

    def delete(self, todo_id: str) -> None:
        with self._transaction() as conn:
            cur = conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?", (todo_id,))
            if cur.rowcount == 0:
                raise NotFoundError()

    def close(self) -> None:
        with self._lock:
            self._connection.close()
