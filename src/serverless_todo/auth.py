from __future__ import annotations

import secrets
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .settings import Settings

_security = HTTPBasic(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


# PUBLIC_INTERFACE
async def get_subject(
    request: Request,
    creds: Optional[HTTPBasicCredentials] = Depends(_security),
) -> Optional[str]:
    """
    Resolve the authenticated subject of a request.

    Behavior:
    - If ENABLE_BASIC_AUTH is off (default): no authentication, returns None.
    - If on: validates the credentials against BASIC_AUTH_USERNAME/BASIC_AUTH_PASSWORD
      and returns the username, which is bound into the log context. Missing or
      invalid credentials raise 401 with WWW-Authenticate: Basic.

    The subject is treated as an opaque, already-validated string downstream.
    """
    settings: Settings = request.app.state.container.settings
    if not settings.enable_basic_auth:
        return None

    if creds is None:
        raise _unauthorized("Unauthorized")

    expected_user = settings.basic_auth_username
    expected_pass = settings.basic_auth_password
    if expected_user is None or expected_pass is None:
        raise _unauthorized("Server authentication not configured")

    user_ok = secrets.compare_digest(creds.username.encode("utf-8"), expected_user.encode("utf-8"))
    pass_ok = secrets.compare_digest(creds.password.encode("utf-8"), expected_pass.encode("utf-8"))
    if not (user_ok and pass_ok):
        raise _unauthorized("Invalid authentication credentials")

    structlog.contextvars.bind_contextvars(subject=creds.username)
    return creds.username
