"""Password reset routes.

The emailed link is checked without being consumed (GET) so a client can
show the new-password form; the token is consumed only when the new
password is submitted (POST).
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .. import schemas
from ..dependencies import get_reset_flow
from ..errors import PasswordTooShort
from ..flows import PasswordResetFlow
from ..token_store import RejectionReason
from .auth import INVALID_TOKEN_DETAIL

router = APIRouter()


@router.post("/auth/password/forgot", status_code=status.HTTP_204_NO_CONTENT)
async def forgot_password(
    payload: schemas.EmailOnly,
    flow: PasswordResetFlow = Depends(get_reset_flow),
) -> None:
    """Request a password reset.

    Always returns 204 to avoid revealing which addresses have accounts.
    """
    await flow.request_reset(payload.email)


@router.get("/auth/password/reset", response_model=schemas.TokenStatus)
def check_reset_token(
    token: Optional[str] = None,
    flow: PasswordResetFlow = Depends(get_reset_flow),
) -> schemas.TokenStatus:
    if flow.check(token) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TOKEN_DETAIL)
    return schemas.TokenStatus(valid=True)


@router.post("/auth/password/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_password(
    payload: schemas.ResetPasswordPayload,
    flow: PasswordResetFlow = Depends(get_reset_flow),
) -> None:
    """Reset a password using a one-time token."""
    try:
        outcome = flow.complete(payload.token, payload.new_password)
    except PasswordTooShort as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(outcome, RejectionReason):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TOKEN_DETAIL)
