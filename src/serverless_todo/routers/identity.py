from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ..auth import get_subject
from ..schemas import IdentityOut

router = APIRouter(tags=["identity"])


# PUBLIC_INTERFACE
@router.get(
    "/me",
    response_model=IdentityOut,
    summary="Who Am I",
    description="Return the authenticated caller. Requires ENABLE_BASIC_AUTH; without an identity it answers 401.",
    responses={
        200: {"description": "Caller identity"},
        401: {"description": "No authenticated caller"},
    },
)
def read_me(subject: Optional[str] = Depends(get_subject)) -> IdentityOut:
    """
    Echo the subject resolved by the auth dependency.
    """
    if subject is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return IdentityOut.from_claims(subject, {})
