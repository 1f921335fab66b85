"""
Request router for API Gateway proxy events.

Matches (method, path) against the collection path ``/{resource}`` and the
item path ``/{resource}/{id}``, dispatches to the TodoService and turns the
result or error into a ``{statusCode, headers, body}`` envelope. ``GET /me``
echoes the caller identity taken from the authorizer claims.
"""
from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import structlog

from .errors import InvalidJSONError, RouteNotFoundError, TodoError, UnauthorizedError, ValidationError
from .models import TodoEntity
from .schemas import IdentityOut, TodoOut
from .service import TodoService
from .utils import empty_response, json_response, page_envelope

log = structlog.get_logger()

_ME_PATH = re.compile(r"^/me/?$")


@dataclass(frozen=True)
class RouteRequest:
    """An already-authenticated request as seen by the router."""

    method: str
    path: str
    query: Mapping[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    subject: Optional[str] = None
    claims: Mapping[str, Any] = field(default_factory=dict)

    # PUBLIC_INTERFACE
    @classmethod
    def from_event(cls, event: Mapping[str, Any]) -> "RouteRequest":
        """
        Build a request from an API Gateway proxy event.

        Supports HTTP API (payload v2) and REST API (payload v1) events,
        base64-encoded bodies, and the identity claim set by a JWT or
        Cognito authorizer.
        """
        context = event.get("requestContext") or {}
        http = context.get("http") or {}
        method = http.get("method") or event.get("httpMethod") or ""
        path = http.get("path") or event.get("rawPath") or event.get("path") or "/"

        body = event.get("body")
        if body is not None and event.get("isBase64Encoded"):
            try:
                body = base64.b64decode(body).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                log.warning("request_body_not_base64")

        authorizer = context.get("authorizer") or {}
        claims = (authorizer.get("jwt") or {}).get("claims") or authorizer.get("claims") or {}
        subject = claims.get("sub")

        return cls(
            method=method.upper(),
            path=path,
            query=event.get("queryStringParameters") or {},
            body=body,
            subject=subject or None,
            claims=dict(claims),
        )


# PUBLIC_INTERFACE
def parse_body(body: Optional[str]) -> Dict[str, Any]:
    """
    Parse a JSON request body. An empty body is an empty object.

    Raises:
        InvalidJSONError: if the body is not valid JSON.
        ValidationError: if the body is valid JSON but not an object.
    """
    if body is None or body == "":
        return {}
    try:
        parsed = json.loads(body)
    except ValueError as exc:
        raise InvalidJSONError() from exc
    if not isinstance(parsed, dict):
        raise ValidationError("request body must be a JSON object")
    return parsed


def _item(entity: TodoEntity) -> Dict[str, Any]:
    return TodoOut(**entity).model_dump(mode="json", by_alias=True)


# PUBLIC_INTERFACE
class Router:
    """Dispatches proxy requests for one resource collection to the TodoService."""

    def __init__(self, service: TodoService, *, resource: str = "todos", require_auth: bool = False) -> None:
        self._service = service
        self._require_auth = require_auth
        name = re.escape(resource.strip("/"))
        self._collection = re.compile(rf"^/{name}/?$")
        self._item = re.compile(rf"^/{name}/([^/]+)/?$")

    @staticmethod
    def _last_segment(path: str) -> str:
        return [segment for segment in path.split("/") if segment][-1]

    # PUBLIC_INTERFACE
    def dispatch(self, request: RouteRequest) -> Dict[str, Any]:
        """Route one request and return the proxy response envelope."""
        log.info("request_received", method=request.method, path=request.path)

        if request.method == "OPTIONS":
            return json_response(200, {"ok": True})

        try:
            if self._require_auth and not request.subject:
                raise UnauthorizedError()
            return self._route(request)
        except TodoError as exc:
            if exc.status_code >= 500:
                log.error("request_failed", error=exc.message, error_type=type(exc).__name__)
            return json_response(exc.status_code, {"message": exc.public_message})
        except Exception:
            log.exception("request_failed_unexpectedly", method=request.method, path=request.path)
            return json_response(500, {"message": TodoError.default_message})

    def _route(self, request: RouteRequest) -> Dict[str, Any]:
        method, path = request.method, request.path

        if method == "GET" and _ME_PATH.match(path):
            if not request.subject:
                raise UnauthorizedError()
            identity = IdentityOut.from_claims(request.subject, request.claims)
            return json_response(200, identity.model_dump(mode="json", by_alias=True))

        if self._collection.match(path):
            if method == "GET":
                page = self._service.list(request.query.get("limit"), request.query.get("cursor"))
                return json_response(200, page_envelope([_item(e) for e in page.items], page.next_cursor))
            if method == "POST":
                created = self._service.create(parse_body(request.body))
                return json_response(201, _item(created))

        elif self._item.match(path):
            todo_id = self._last_segment(path)
            if method == "GET":
                return json_response(200, _item(self._service.get(todo_id)))
            if method == "PUT":
                updated = self._service.update(todo_id, parse_body(request.body))
                return json_response(200, _item(updated))
            if method == "DELETE":
                self._service.delete(todo_id)
                return empty_response(204)

        raise RouteNotFoundError()
