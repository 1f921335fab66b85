from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator
from pydantic.alias_generators import to_camel

from .models import UpdatableField

# Shared type for incoming dueDate which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[date]:
    """
    Internal helper to normalize dueDate input into a date.
    - If value is a string, parse it as an ISO date; a full datetime string is truncated to its date.
    - If value is a datetime, keep its date part.
    - If value is a date, return as-is.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        s = value.strip()
        try:
            return date.fromisoformat(s)
        except ValueError:
            try:
                return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
            except ValueError as e:
                raise ValueError(
                    "Invalid dueDate format. Use an ISO8601 date (e.g., '2025-01-31')."
                ) from e

    raise ValueError("Invalid type for dueDate; expected an ISO8601 date string or null.")


_API_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating a new Todo item.
    """

    model_config = ConfigDict(
        **_API_CONFIG,
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "dueDate": "2025-02-01",
            }
        },
    )

    title: StrictStr = Field(..., description="Short title for the todo item")
    due_date: Optional[date] = Field(default=None, description="Optional due date (ISO8601 date)")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Reject titles that are empty after trimming. The title is stored as given.
        """
        if not v.strip():
            raise ValueError("title is required")
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[date]:
        """
        Normalize dueDate from str/date/datetime to date.
        """
        return _parse_due_date(v)


# PUBLIC_INTERFACE
class TodoUpdate(BaseModel):
    """
    Schema for updating an existing Todo item.
    All fields are optional; only provided fields will be updated, unknown fields are ignored.
    """

    model_config = ConfigDict(
        **_API_CONFIG,
        json_schema_extra={
            "example": {
                "title": "Buy groceries and supplies",
                "completed": True,
                "dueDate": "2025-02-02",
            }
        },
    )

    title: Optional[StrictStr] = Field(default=None, description="Short title for the todo item")
    completed: Optional[StrictBool] = Field(default=None, description="Completion status flag")
    due_date: Optional[date] = Field(default=None, description="Due date, or null to clear it")

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v: Any) -> Any:
        """
        If title is provided it must be a non-blank string; null is not allowed.
        """
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("title must be a non-empty string")
        return v

    @field_validator("completed", mode="before")
    @classmethod
    def validate_completed(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("completed must be a boolean")
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[date]:
        """
        Normalize dueDate from str/date/datetime to date. Explicit null clears the due date.
        """
        return _parse_due_date(v)

    # PUBLIC_INTERFACE
    def changes(self) -> Dict[UpdatableField, Any]:
        """Return the explicitly provided fields keyed by the closed update-field enum."""
        return {UpdatableField(name): getattr(self, name) for name in sorted(self.model_fields_set)}


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "3f1c9a52-7a0e-4d7b-9a55-2c8e0f0b6a11",
                "title": "Buy groceries",
                "completed": False,
                "aged": False,
                "dueDate": "2025-02-01",
                "createdAt": "2025-01-25T10:15:30.123Z",
                "updatedAt": "2025-01-26T09:00:00.000Z",
            }
        },
    )

    id: str = Field(..., description="Unique identifier of the todo item")
    title: str = Field(..., description="Short title for the todo item")
    completed: bool = Field(..., description="Completion status flag")
    aged: bool = Field(..., description="Set once the deferred aging task has fired")
    due_date: Optional[date] = Field(default=None, description="Due date of the todo item")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    updated_at: datetime = Field(..., description="Last update timestamp (UTC)")


# PUBLIC_INTERFACE
class TodoPage(BaseModel):
    """
    Envelope for paginated list responses.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: List[TodoOut] = Field(..., description="List of Todo items")
    next_cursor: Optional[str] = Field(
        default=None, description="Opaque cursor for the next page; null when exhausted"
    )


# PUBLIC_INTERFACE
class IdentityOut(BaseModel):
    """
    The caller's identity as established by the authorizer.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str = Field(..., description="Subject claim of the caller")
    email: Optional[str] = Field(default=None, description="Email claim, when the token carries one")
    email_verified: Optional[bool] = Field(default=None, description="Whether the identity provider verified the email")
    message: str = "You are authenticated!"

    @field_validator("email_verified", mode="before")
    @classmethod
    def parse_email_verified(cls, v: Any) -> Any:
        """REST API authorizers pass every claim as a string."""
        if isinstance(v, str):
            return v.strip().lower() == "true"
        return v

    # PUBLIC_INTERFACE
    @classmethod
    def from_claims(cls, subject: str, claims: Mapping[str, Any]) -> "IdentityOut":
        return cls(user_id=subject, email=claims.get("email"), email_verified=claims.get("email_verified"))
