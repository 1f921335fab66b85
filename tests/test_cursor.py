import base64
import json

import pytest

from serverless_todo.cursor import decode_cursor, encode_cursor
from serverless_todo.errors import CursorDecodeError


def test_cursor_is_url_safe_and_unpadded():
    key = {"createdAt": "2025-01-01T09:00:00.000Z", "id": "??>>~~"}
    token = encode_cursor(key)
    assert "=" not in token
    assert "+" not in token and "/" not in token
    assert decode_cursor(token) == key


def test_standard_alphabet_with_padding_is_accepted():
    key = {"id": "??>>~~"}
    token = base64.b64encode(json.dumps(key).encode()).decode()
    assert decode_cursor(token) == key


@pytest.mark.parametrize(
    "token",
    [
        "",
        "   ",
        "not-a-cursor!",
        "%%%",
        base64.urlsafe_b64encode(b"not json").decode(),
        base64.urlsafe_b64encode(b"\xff\xfe").decode(),
        base64.urlsafe_b64encode(b"[1, 2]").decode(),
        base64.urlsafe_b64encode(b"{}").decode(),
        base64.urlsafe_b64encode(b'"id"').decode(),
    ],
)
def test_malformed_tokens(token):
    with pytest.raises(CursorDecodeError):
        decode_cursor(token)
