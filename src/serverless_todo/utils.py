from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
}


# PUBLIC_INTERFACE
def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds, the precision every store keeps."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


# Smallest step every store can represent.
STAMP_RESOLUTION = timedelta(milliseconds=1)


# PUBLIC_INTERFACE
def next_stamp(now: datetime, previous: datetime) -> datetime:
    """Timestamp for a mutation: `now`, but always strictly after `previous`."""
    return max(now, previous + STAMP_RESOLUTION)


# PUBLIC_INTERFACE
def to_iso(value: datetime) -> str:
    """
    Format a timestamp as a UTC ISO 8601 string with millisecond precision,
    e.g. '2025-01-31T13:45:00.123Z'. Naive datetimes are taken as UTC.

    The fixed width keeps string ordering equal to chronological ordering.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# PUBLIC_INTERFACE
def from_iso(value: str) -> datetime:
    """Parse a timestamp written by to_iso (or any ISO 8601 string) into an aware datetime."""
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    parsed = datetime.fromisoformat(s)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# PUBLIC_INTERFACE
def cors_headers(allow_origins: Optional[Sequence[str]] = None, origin: Optional[str] = None) -> Dict[str, str]:
    """
    Return the CORS headers attached to every response.

    With no configured origins or '*', every origin is allowed. Otherwise the
    request origin is echoed back when it is in the allow-list and omitted
    when it is not.
    """
    headers = dict(CORS_HEADERS)
    if not allow_origins or "*" in allow_origins:
        return headers
    if origin and origin in allow_origins:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Vary"] = "Origin"
    else:
        del headers["Access-Control-Allow-Origin"]
    return headers


# PUBLIC_INTERFACE
def json_response(status_code: int, body: Any = None, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Build an API Gateway proxy response envelope with a JSON body.

    Returns:
        Dict with keys: statusCode, headers, body (serialized JSON string).
    """
    merged = {"Content-Type": "application/json", **CORS_HEADERS}
    if headers:
        merged.update(headers)
    return {
        "statusCode": status_code,
        "headers": merged,
        "body": json.dumps({} if body is None else body),
    }


# PUBLIC_INTERFACE
def empty_response(status_code: int = 204, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Build a proxy response envelope without a body (used for 204 No Content)."""
    merged = dict(CORS_HEADERS)
    if headers:
        merged.update(headers)
    return {"statusCode": status_code, "headers": merged, "body": ""}


# PUBLIC_INTERFACE
def page_envelope(
    items: Union[Sequence[Any], Iterable[Any]],
    next_cursor: Optional[str],
) -> Dict[str, Any]:
    """
    Build the standard envelope for list endpoints.

    Args:
        items: The list/iterable of items for the current page.
        next_cursor: Opaque cursor for the next page, or None when exhausted.

    Returns:
        Dict with keys: items, nextCursor.
    """
    materialized: List[Any] = list(items) if not isinstance(items, list) else items
    return {"items": materialized, "nextCursor": next_cursor}
