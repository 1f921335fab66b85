"""
Aging queue consumer.

Each message carries ``{"taskId": <todo id>}`` and is delivered at least once.
A message whose processing fails is not acknowledged: it is either reported
as a batch item failure or the whole batch is failed, and the queue's own
redelivery takes over from there.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping

import structlog

from .errors import AgingCallbackError
from .scheduler import InMemoryScheduler
from .service import TodoService

log = structlog.get_logger()


# PUBLIC_INTERFACE
class AgingWorker:
    """Marks todos as aged for delivered aging messages."""

    def __init__(self, service: TodoService, *, report_batch_failures: bool = True) -> None:
        self._service = service
        self._report_batch_failures = report_batch_failures

    def process_payload(self, payload: Any) -> None:
        """
        Handle one decoded message.

        Raises:
            AgingCallbackError: if the payload has no usable taskId or the todo
                could not be marked as aged.
        """
        task_id = payload.get("taskId") if isinstance(payload, Mapping) else None
        if not isinstance(task_id, str) or not task_id:
            raise AgingCallbackError("aging message has no taskId")
        self._service.mark_aged(task_id)

    def process_message(self, body: str) -> None:
        """Handle one raw message body."""
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as exc:
            raise AgingCallbackError("aging message is not valid JSON") from exc
        self.process_payload(payload)

    # PUBLIC_INTERFACE
    def handle_batch(self, event: Mapping[str, Any]) -> Dict[str, List[Dict[str, str]]]:
        """
        Process an SQS event.

        Returns a partial batch response listing the message ids that failed.
        When batch failure reporting is disabled, the first failure is raised
        instead and the whole batch is redelivered.
        """
        failures: List[Dict[str, str]] = []
        for record in event.get("Records", []):
            message_id = record.get("messageId", "")
            try:
                self.process_message(record.get("body"))
            except AgingCallbackError as exc:
                log.error("aging_message_failed", message_id=message_id, error=exc.message)
                if not self._report_batch_failures:
                    raise
                failures.append({"itemIdentifier": message_id})
            else:
                log.info("aging_message_processed", message_id=message_id)
        return {"batchItemFailures": failures}


# PUBLIC_INTERFACE
def drain_local_schedule(
    scheduler: InMemoryScheduler,
    worker: AgingWorker,
    now: datetime,
    retry_delay: timedelta = timedelta(seconds=5),
) -> int:
    """
    Deliver every due in-memory task to the worker; re-drive the ones that fail.

    Returns the number of tasks processed successfully.
    """
    delivered = 0
    for task in scheduler.pop_due(now):
        try:
            worker.process_payload(task.payload)
        except AgingCallbackError as exc:
            log.warning("aging_task_failed", task_id=task.task_id, attempts=task.attempts + 1, error=exc.message)
            scheduler.retry(task, now + retry_delay)
        else:
            delivered += 1
    return delivered
