"""
Todo resource service.

Implements create/read/list/update/delete plus the aging callback on top of
a Repository and a Scheduler. Input validation happens here so both HTTP
surfaces (the FastAPI app and the Lambda router) behave the same.

Registering the aging timer is an advisory post-commit action: it runs after
the todo has been written, and its failure is logged and never unwinds the
creation.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from .cursor import decode_cursor, encode_cursor
from .errors import AgingCallbackError, NotFoundError, SchedulingError, StoreError, ValidationError
from .models import TodoEntity, TodoPageResult, UpdatableField
from .repositories import Repository
from .scheduler import DEFAULT_TASK_PREFIX, Scheduler, aging_payload, aging_task_id
from .schemas import TodoCreate, TodoUpdate
from .utils import utc_now

log = structlog.get_logger()

DEFAULT_LIMIT = 20
MIN_LIMIT = 1
MAX_LIMIT = 100

_CREATE_MESSAGES: Dict[str, str] = {
    "title": "title is required",
    "dueDate": "dueDate must be an ISO 8601 date or null",
    "due_date": "dueDate must be an ISO 8601 date or null",
}

_UPDATE_MESSAGES: Dict[str, str] = {
    "title": "title must be a non-empty string",
    "completed": "completed must be a boolean",
    "dueDate": "dueDate must be an ISO 8601 date or null",
    "due_date": "dueDate must be an ISO 8601 date or null",
}


# PUBLIC_INTERFACE
def clamp_limit(raw: Any) -> int:
    """
    Normalize a page size: absent or non-integer values give the default of 20,
    integers are clamped to [1, 100].
    """
    if raw is None or isinstance(raw, bool):
        return DEFAULT_LIMIT
    if isinstance(raw, int):
        value = raw
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            return DEFAULT_LIMIT
    return max(MIN_LIMIT, min(MAX_LIMIT, value))


def _require_object(payload: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValidationError("request body must be a JSON object")
    return payload


def _validation_message(exc: PydanticValidationError, messages: Mapping[str, str]) -> str:
    error = exc.errors()[0]
    field = str(error["loc"][0]) if error.get("loc") else ""
    return messages.get(field, error.get("msg", "invalid request"))


# PUBLIC_INTERFACE
class TodoService:
    """Stateless operations on todos; all state lives in the repository."""

    def __init__(
        self,
        repository: Repository,
        scheduler: Scheduler,
        *,
        aging_delay: timedelta = timedelta(seconds=60),
        task_prefix: str = DEFAULT_TASK_PREFIX,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._repository = repository
        self._scheduler = scheduler
        self._aging_delay = aging_delay
        self._task_prefix = task_prefix
        self._clock = clock
        self._id_factory = id_factory

    # PUBLIC_INTERFACE
    def list(self, limit: Any = None, cursor: Optional[str] = None) -> TodoPageResult:
        """
        Return one page of todos.

        Raises:
            CursorDecodeError: if `cursor` is malformed or was not produced by this store.
        """
        page_size = clamp_limit(limit)
        start_key = decode_cursor(cursor) if cursor else None
        page = self._repository.list(page_size, start_key)
        next_cursor = encode_cursor(page.last_key) if page.last_key else None
        return TodoPageResult(items=page.items, next_cursor=next_cursor)

    # PUBLIC_INTERFACE
    def get(self, todo_id: str) -> TodoEntity:
        """Return a todo or raise NotFoundError."""
        entity = self._repository.get(todo_id)
        if entity is None:
            raise NotFoundError()
        return entity

    # PUBLIC_INTERFACE
    def create(self, payload: Optional[Mapping[str, Any]]) -> TodoEntity:
        """
        Validate and persist a new todo, then register its aging task.

        Raises:
            ValidationError: if title is missing, not a string, or blank, or dueDate is invalid.
        """
        try:
            data = TodoCreate.model_validate(_require_object(payload))
        except PydanticValidationError as exc:
            raise ValidationError(_validation_message(exc, _CREATE_MESSAGES)) from exc

        now = self._clock()
        entity: TodoEntity = {
            "id": self._id_factory(),
            "title": data.title,
            "completed": False,
            "aged": False,
            "due_date": data.due_date,
            "created_at": now,
            "updated_at": now,
        }
        self._repository.put(entity)
        log.info("todo_created", todo_id=entity["id"])

        self._schedule_aging(entity["id"], now)
        return entity

    def _schedule_aging(self, todo_id: str, now: datetime) -> None:
        task_id = aging_task_id(todo_id, self._task_prefix)
        try:
            self._scheduler.schedule_once(task_id, now + self._aging_delay, aging_payload(todo_id))
        except SchedulingError as exc:
            log.error("aging_schedule_failed", todo_id=todo_id, task_id=task_id, error=exc.message)

    # PUBLIC_INTERFACE
    def update(self, todo_id: str, payload: Optional[Mapping[str, Any]]) -> TodoEntity:
        """
        Apply a partial update of title, completed and/or dueDate.

        Raises:
            ValidationError: if no updatable field is present or a value is invalid.
            NotFoundError: if the todo does not exist.
        """
        try:
            data = TodoUpdate.model_validate(_require_object(payload))
        except PydanticValidationError as exc:
            raise ValidationError(_validation_message(exc, _UPDATE_MESSAGES)) from exc

        changes = data.changes()
        if not changes:
            raise ValidationError("no updatable fields")

        entity = self._repository.update_fields(todo_id, changes, self._clock())
        log.info("todo_updated", todo_id=todo_id, fields=sorted(f.value for f in changes))
        return entity

    # PUBLIC_INTERFACE
    def delete(self, todo_id: str) -> None:
        """
        Hard-delete a todo. Not idempotent: deleting a missing todo raises NotFoundError.
        """
        self._repository.delete(todo_id)
        log.info("todo_deleted", todo_id=todo_id)

    # PUBLIC_INTERFACE
    def mark_aged(self, todo_id: str) -> TodoEntity:
        """
        Aging callback, invoked by the queue consumer when the timer has fired.

        Raises:
            AgingCallbackError: if the todo no longer exists or the store failed,
                so the queue redelivers the message.
        """
        try:
            entity = self._repository.update_fields(todo_id, {UpdatableField.AGED: True}, self._clock())
        except NotFoundError as exc:
            raise AgingCallbackError(f"todo {todo_id} not found") from exc
        except StoreError as exc:
            raise AgingCallbackError(f"todo {todo_id} could not be updated: {exc.message}") from exc
        log.info("todo_aged", todo_id=todo_id)
        return entity
