from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from threading import RLock
from typing import Dict, List, Optional

import structlog

from .errors import CursorDecodeError, NotFoundError
from .models import FieldChanges, Page, StoreKey, TodoEntity, UpdatableField
from .settings import Settings
from .utils import next_stamp

log = structlog.get_logger()


# PUBLIC_INTERFACE
class Repository(ABC):
    """
    Abstract store adapter for todo records.

    Every operation touches a single item; there are no multi-item
    transactions. Listing order is store-defined.
    """

    @abstractmethod
    def get(self, todo_id: str) -> Optional[TodoEntity]:
        """Return a TodoEntity by id, or None if not found."""

    @abstractmethod
    def list(self, limit: int, start_key: Optional[StoreKey] = None) -> Page:
        """
        Return up to `limit` items following `start_key`.

        Page.last_key is the store-native key to resume from, or None when
        the listing is exhausted. Raises CursorDecodeError if `start_key` does
        not have the shape this store produces.
        """

    @abstractmethod
    def put(self, entity: TodoEntity) -> None:
        """Unconditionally write a TodoEntity. Used only at creation."""

    @abstractmethod
    def update_fields(self, todo_id: str, changes: FieldChanges, updated_at: datetime) -> TodoEntity:
        """
        Atomically apply `changes` and stamp `updated_at` on an existing item.
        The stored stamp always moves forward: when `updated_at` is not later
        than the current one, the current one plus a millisecond is used.

        The existence check is part of the same store operation, so an item
        deleted concurrently is never recreated. Raises NotFoundError if the
        item does not exist. Returns the full post-update entity.
        """

    @abstractmethod
    def delete(self, todo_id: str) -> None:
        """Delete an item. Raises NotFoundError if it does not exist."""

    def close(self) -> None:
        """Release connections held by the store. No-op by default."""


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and local runs.

    Items are listed in insertion order. The pagination key is the insertion
    sequence number, so cursors stay valid when items are deleted.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, TodoEntity] = {}
        self._seq: Dict[str, int] = {}
        self._next_seq = 1

    def get(self, todo_id: str) -> Optional[TodoEntity]:
        with self._lock:
            item = self._items.get(todo_id)
            return None if item is None else item.copy()

    def list(self, limit: int, start_key: Optional[StoreKey] = None) -> Page:
        after = 0
        if start_key is not None:
            after = start_key.get("seq")
            if set(start_key) != {"seq"} or not isinstance(after, int) or isinstance(after, bool):
                raise CursorDecodeError()

        with self._lock:
            ordered = sorted(
                (seq, todo_id) for todo_id, seq in self._seq.items() if seq > after
            )
            window = ordered[: limit + 1]
            page: List[TodoEntity] = [self._items[todo_id].copy() for _, todo_id in window[:limit]]

        last_key = {"seq": window[limit - 1][0]} if len(window) > limit else None
        return Page(items=page, last_key=last_key)

    def put(self, entity: TodoEntity) -> None:
        with self._lock:
            if entity["id"] not in self._seq:
                self._seq[entity["id"]] = self._next_seq
                self._next_seq += 1
            self._items[entity["id"]] = entity.copy()

    def update_fields(self, todo_id: str, changes: FieldChanges, updated_at: datetime) -> TodoEntity:
        with self._lock:
            existing = self._items.get(todo_id)
            if existing is None:
                raise NotFoundError()

            updated = existing.copy()
            for field, value in changes.items():
                updated[UpdatableField(field).value] = value  # type: ignore[literal-required]
            updated["updated_at"] = next_stamp(updated_at, existing["updated_at"])

            self._items[todo_id] = updated
            return updated.copy()

    def delete(self, todo_id: str) -> None:
        with self._lock:
            if self._items.pop(todo_id, None) is None:
                raise NotFoundError()
            self._seq.pop(todo_id, None)


# PUBLIC_INTERFACE
def get_repository(settings: Settings) -> Repository:
    """
    Factory to return the configured repository based on settings.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository (relational, ordered by creation time)
    - dynamodb: DynamoDBRepository backed by a boto3 Table
    """
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        log.info("repository_selected", backend="sqlite", path=settings.sqlite_db_path)
        return SQLiteRepository(settings.sqlite_db_path)

    if settings.persistence_backend == "dynamodb":
        from .dynamodb import DynamoDBRepository

        log.info("repository_selected", backend="dynamodb", table=settings.table_name)
        return DynamoDBRepository.from_settings(settings)

    log.info("repository_selected", backend="memory")
    return InMemoryRepository()
