"""
DynamoDB store adapter using a boto3 Table resource.

Items are stored with camelCase attribute names, timestamps as ISO 8601
strings, and `dueDate` as an ISO date string or null. Conditional writes use
`attribute_exists(id)` so update and delete of a missing item fail inside
DynamoDB instead of after a separate read. Updates also require the stored
`updatedAt` to be older than the new one, so it only ever moves forward.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

import boto3
import botocore.exceptions
import structlog

from .errors import CursorDecodeError, NotFoundError, StoreError
from .models import FieldChanges, Page, StoreKey, TodoEntity, UpdatableField
from .repositories import Repository
from .settings import Settings
from .utils import from_iso, next_stamp, to_iso

log = structlog.get_logger()

_CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"
_STAMP_ATTEMPTS = 3

_ATTRIBUTES: Dict[UpdatableField, str] = {
    UpdatableField.TITLE: "title",
    UpdatableField.COMPLETED: "completed",
    UpdatableField.DUE_DATE: "dueDate",
    UpdatableField.AGED: "aged",
}


def _to_attribute_value(field: UpdatableField, value: Any) -> Any:
    if field is UpdatableField.DUE_DATE:
        return value.isoformat() if value is not None else None
    return value


def _to_item(entity: TodoEntity) -> Dict[str, Any]:
    due = entity["due_date"]
    return {
        "id": entity["id"],
        "title": entity["title"],
        "completed": entity["completed"],
        "aged": entity["aged"],
        "dueDate": due.isoformat() if due else None,
        "createdAt": to_iso(entity["created_at"]),
        "updatedAt": to_iso(entity["updated_at"]),
    }


def _from_item(item: Dict[str, Any]) -> TodoEntity:
    due = item.get("dueDate")
    return {
        "id": str(item["id"]),
        "title": str(item["title"]),
        "completed": bool(item.get("completed", False)),
        "aged": bool(item.get("aged", False)),
        "due_date": date.fromisoformat(due[:10]) if due else None,
        "created_at": from_iso(item["createdAt"]),
        "updated_at": from_iso(item["updatedAt"]),
    }


class DynamoDBRepository(Repository):
    """Repository backed by a DynamoDB table keyed by `id`. Listing uses Scan order."""

    def __init__(self, table: Any) -> None:
        self._table = table

    @classmethod
    def from_settings(cls, settings: Settings) -> "DynamoDBRepository":
        """Create the boto3 resource once; the repository is reused across requests."""
        resource = boto3.resource("dynamodb", region_name=settings.aws_region)
        return cls(resource.Table(settings.table_name))

    def _call(self, operation: str, fn: Callable[..., Dict[str, Any]], **kwargs: Any) -> Dict[str, Any]:
        try:
            return fn(**kwargs)
        except botocore.exceptions.ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == _CONDITIONAL_CHECK_FAILED:
                raise NotFoundError() from e
            log.exception("dynamodb_operation_failed", operation=operation, error_code=error_code)
            raise StoreError(str(e)) from e
        except botocore.exceptions.BotoCoreError as e:
            log.exception("dynamodb_operation_failed", operation=operation)
            raise StoreError(str(e)) from e

    def get(self, todo_id: str) -> Optional[TodoEntity]:
        response = self._call("get_item", self._table.get_item, Key={"id": todo_id})
        item = response.get("Item")
        return _from_item(item) if item else None

    def list(self, limit: int, start_key: Optional[StoreKey] = None) -> Page:
        params: Dict[str, Any] = {"Limit": limit}
        if start_key is not None:
            if set(start_key) != {"id"} or not isinstance(start_key["id"], str):
                raise CursorDecodeError()
            params["ExclusiveStartKey"] = start_key

        response = self._call("scan", self._table.scan, **params)
        items: List[TodoEntity] = [_from_item(i) for i in response.get("Items", [])]
        return Page(items=items, last_key=response.get("LastEvaluatedKey"))

    def put(self, entity: TodoEntity) -> None:
        self._call("put_item", self._table.put_item, Item=_to_item(entity))

    def update_fields(self, todo_id: str, changes: FieldChanges, updated_at: datetime) -> TodoEntity:
        """
        Conditional update that also requires the stored updatedAt to be older
        than the new one. When that part of the condition fails, the item is
        re-read and the update retried with a stamp just after the stored one.
        """
        names = {"#id": "id", "#updatedAt": "updatedAt"}
        values: Dict[str, Any] = {}
        sets = ["#updatedAt = :updatedAt"]
        for field, value in changes.items():
            field = UpdatableField(field)
            attribute = _ATTRIBUTES[field]
            names[f"#{attribute}"] = attribute
            values[f":{attribute}"] = _to_attribute_value(field, value)
            sets.append(f"#{attribute} = :{attribute}")

        stamp = updated_at
        for _ in range(_STAMP_ATTEMPTS):
            try:
                response = self._call(
                    "update_item",
                    self._table.update_item,
                    Key={"id": todo_id},
                    UpdateExpression=f"SET {', '.join(sets)}",
                    ConditionExpression="attribute_exists(#id) AND #updatedAt < :updatedAt",
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues={**values, ":updatedAt": to_iso(stamp)},
                    ReturnValues="ALL_NEW",
                )
            except NotFoundError:
                current = self.get(todo_id)
                if current is None:
                    raise
                stamp = next_stamp(updated_at, current["updated_at"])
                continue
            return _from_item(response["Attributes"])

        raise StoreError(f"todo {todo_id} kept changing during update")

    def delete(self, todo_id: str) -> None:
        self._call(
            "delete_item",
            self._table.delete_item,
            Key={"id": todo_id},
            ConditionExpression="attribute_exists(#id)",
            ExpressionAttributeNames={"#id": "id"},
        )
