from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, TypedDict


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    Storage-agnostic record of a Todo item, passed between the service and
    the store adapters.

    Fields:
    - id: Opaque unique identifier (UUID4 string), immutable
    - title: Non-blank title, stored as given
    - completed: Boolean completion flag
    - aged: Set once by the deferred aging task, never reset
    - due_date: Optional due date
    - created_at: UTC creation timestamp
    - updated_at: UTC timestamp of the last mutation
    """

    id: str
    title: str
    completed: bool
    aged: bool
    due_date: Optional[date]
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class UpdatableField(str, Enum):
    """Closed set of fields a conditional update may touch."""

    TITLE = "title"
    COMPLETED = "completed"
    DUE_DATE = "due_date"
    AGED = "aged"


# Changes requested for one conditional update.
FieldChanges = Mapping[UpdatableField, Any]

# Store-native pagination key, e.g. a DynamoDB LastEvaluatedKey.
StoreKey = Dict[str, Any]


@dataclass(frozen=True)
class Page:
    """One page of a store listing; last_key is None when the scan is exhausted."""

    items: List[TodoEntity]
    last_key: Optional[StoreKey] = None


@dataclass(frozen=True)
class TodoPageResult:
    """One page as returned by the service, with the opaque continuation cursor."""

    items: List[TodoEntity]
    next_cursor: Optional[str] = None
