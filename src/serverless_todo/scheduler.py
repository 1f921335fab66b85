"""
Deferred task scheduling for the aging side effect.

When a todo is created, a one-shot timer is registered under a name derived
from the todo id. When it fires, the scheduling system puts the payload
``{"taskId": <todo id>}`` on a queue, and the aging worker marks the todo as
aged. Because the timer name is deterministic, retries can never register a
second timer for the same todo.
"""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional

import boto3
import botocore.exceptions
import structlog

from .errors import SchedulingError
from .settings import Settings

log = structlog.get_logger()

DEFAULT_TASK_PREFIX = "aged-flag-"


# PUBLIC_INTERFACE
def aging_task_id(todo_id: str, prefix: str = DEFAULT_TASK_PREFIX) -> str:
    """Deterministic timer name for the aging task of one todo."""
    return f"{prefix}{todo_id}"


# PUBLIC_INTERFACE
def aging_payload(todo_id: str) -> Dict[str, str]:
    """Message delivered to the aging queue when the timer fires."""
    return {"taskId": todo_id}


# PUBLIC_INTERFACE
class Scheduler(ABC):
    """Registers one-shot timers that deliver a payload to the aging queue."""

    @abstractmethod
    def schedule_once(self, task_id: str, fire_at: datetime, payload: Mapping[str, Any]) -> None:
        """
        Register a timer named `task_id` firing once at `fire_at`.

        Registering an already existing task id is a no-op. Raises
        SchedulingError when the timer could not be registered.
        """


class NullScheduler(Scheduler):
    """Scheduling disabled; todos are never aged."""

    def schedule_once(self, task_id: str, fire_at: datetime, payload: Mapping[str, Any]) -> None:
        log.debug("aging_schedule_skipped", task_id=task_id)


@dataclass(frozen=True)
class ScheduledTask:
    task_id: str
    fire_at: datetime
    payload: Dict[str, Any]
    attempts: int = 0


class InMemoryScheduler(Scheduler):
    """
    Process-local scheduler for tests and local runs.

    Keeps at most one pending task per task id. Due tasks are handed out by
    pop_due and, when their processing fails, re-driven with retry until
    max_attempts deliveries have failed, after which they are dropped.
    """

    def __init__(self, max_attempts: int = 3) -> None:
        self._lock = RLock()
        self._pending: Dict[str, ScheduledTask] = {}
        self._max_attempts = max_attempts

    def schedule_once(self, task_id: str, fire_at: datetime, payload: Mapping[str, Any]) -> None:
        with self._lock:
            if task_id in self._pending:
                log.info("aging_schedule_exists", task_id=task_id)
                return
            self._pending[task_id] = ScheduledTask(task_id, fire_at, dict(payload))

    @property
    def pending(self) -> List[ScheduledTask]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda t: t.fire_at)

    def pop_due(self, now: datetime) -> List[ScheduledTask]:
        """Remove and return every task whose fire time has passed, oldest first."""
        with self._lock:
            due = [t for t in self._pending.values() if t.fire_at <= now]
            for task in due:
                del self._pending[task.task_id]
        return sorted(due, key=lambda t: t.fire_at)

    def retry(self, task: ScheduledTask, fire_at: datetime) -> bool:
        """Re-drive a task whose delivery failed. Returns False once it is dead-lettered."""
        attempts = task.attempts + 1
        if attempts >= self._max_attempts:
            log.error("aging_task_dead_lettered", task_id=task.task_id, attempts=attempts)
            return False
        with self._lock:
            self._pending.setdefault(task.task_id, replace(task, fire_at=fire_at, attempts=attempts))
        return True


class EventBridgeScheduler(Scheduler):
    """
    EventBridge Scheduler adapter.

    Creates an `at(...)` schedule targeting the aging SQS queue. The schedule
    deletes itself after it fires.
    """

    def __init__(
        self,
        client: Any,
        queue_arn: str,
        role_arn: str,
        group_name: Optional[str] = None,
    ) -> None:
        self._client = client
        self._queue_arn = queue_arn
        self._role_arn = role_arn
        self._group_name = group_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "EventBridgeScheduler":
        if not settings.queue_arn or not settings.scheduler_role_arn:
            raise ValueError("QUEUE_ARN and SCHEDULER_ROLE_ARN are required for the eventbridge scheduler")
        client = boto3.client("scheduler", region_name=settings.aws_region)
        return cls(
            client,
            queue_arn=settings.queue_arn,
            role_arn=settings.scheduler_role_arn,
            group_name=settings.schedule_group_name,
        )

    @staticmethod
    def schedule_expression(fire_at: datetime) -> str:
        """One-time schedule expression; EventBridge reads it in UTC without an offset."""
        if fire_at.tzinfo is not None:
            fire_at = fire_at.astimezone(timezone.utc)
        return f"at({fire_at.strftime('%Y-%m-%dT%H:%M:%S')})"

    def schedule_once(self, task_id: str, fire_at: datetime, payload: Mapping[str, Any]) -> None:
        params: Dict[str, Any] = {
            "Name": task_id,
            "ScheduleExpression": self.schedule_expression(fire_at),
            "FlexibleTimeWindow": {"Mode": "OFF"},
            "ActionAfterCompletion": "DELETE",
            "Target": {
                "Arn": self._queue_arn,
                "RoleArn": self._role_arn,
                "Input": json.dumps(dict(payload)),
            },
        }
        if self._group_name:
            params["GroupName"] = self._group_name

        try:
            self._client.create_schedule(**params)
        except botocore.exceptions.ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ConflictException":
                log.info("aging_schedule_exists", task_id=task_id)
                return
            raise SchedulingError(f"{error_code or 'ClientError'}: {e}") from e
        except botocore.exceptions.BotoCoreError as e:
            raise SchedulingError(str(e)) from e

        log.info("aging_scheduled", task_id=task_id, fire_at=fire_at.isoformat())


# PUBLIC_INTERFACE
def get_scheduler(settings: Settings) -> Scheduler:
    """
    Factory to return the configured scheduler based on settings.
    - memory: InMemoryScheduler
    - eventbridge: EventBridgeScheduler (requires QUEUE_ARN and SCHEDULER_ROLE_ARN)
    - none: NullScheduler
    """
    if settings.scheduler_backend == "eventbridge":
        return EventBridgeScheduler.from_settings(settings)
    if settings.scheduler_backend == "none":
        return NullScheduler()
    return InMemoryScheduler(max_attempts=settings.aging_max_attempts)
