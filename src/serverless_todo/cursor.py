"""
Opaque pagination cursors.

A cursor is the store-native continuation key (for DynamoDB the
LastEvaluatedKey, for SQLite the keyset position) serialized as compact JSON
and encoded with URL-safe base64 so it can travel in a query parameter.
Clients never need to understand its shape.
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Mapping

from .errors import CursorDecodeError
from .models import StoreKey


# PUBLIC_INTERFACE
def encode_cursor(key: Mapping[str, Any]) -> str:
    """Encode a store-native key into an opaque, URL-safe cursor string."""
    raw = json.dumps(dict(key), separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


# PUBLIC_INTERFACE
def decode_cursor(token: str) -> StoreKey:
    """
    Decode a cursor produced by encode_cursor.

    Standard base64 ('+', '/') is accepted as well as the URL-safe alphabet,
    with or without padding.

    Raises:
        CursorDecodeError: if the token is not valid base64, UTF-8 or JSON, or
            does not decode to a JSON object.
    """
    s = token.strip().replace("+", "-").replace("/", "_").rstrip("=")
    if not s:
        raise CursorDecodeError()
    padded = s + "=" * (-len(s) % 4)
    try:
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
        key = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise CursorDecodeError() from exc
    if not isinstance(key, dict) or not key:
        raise CursorDecodeError()
    return key
