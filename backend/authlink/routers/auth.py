"""Login-by-email routes.

- POST /auth/login: check (or create) the account and email a login code
- GET /auth/confirm: redeem the emailed code once and release the grant
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .. import schemas
from ..dependencies import get_login_flow
from ..errors import InvalidCredentials, PasswordTooShort
from ..flows import LoginFlow
from ..token_store import RejectionReason

router = APIRouter()

INVALID_TOKEN_DETAIL = "Invalid or expired token"


@router.post("/auth/login", response_model=schemas.LinkSent, status_code=status.HTTP_202_ACCEPTED)
async def request_login_code(
    payload: schemas.LoginRequest,
    flow: LoginFlow = Depends(get_login_flow),
) -> schemas.LinkSent:
    """Email a one-time login link."""
    try:
        await flow.request_code(
            payload.email,
            payload.password,
            client_id=payload.client_id,
            redirect_uri=payload.redirect_uri,
            state=payload.state,
        )
    except PasswordTooShort as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except InvalidCredentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password")
    return schemas.LinkSent()


@router.get("/auth/confirm", response_model=schemas.LoginGrant)
def confirm_login(code: Optional[str] = None, flow: LoginFlow = Depends(get_login_flow)) -> schemas.LoginGrant:
    """Redeem a login code.  Every rejection gets the same response."""
    if not code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing code")
    outcome = flow.confirm(code)
    if isinstance(outcome, RejectionReason):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TOKEN_DETAIL)
    return schemas.LoginGrant(subject_id=outcome.subject_id, **outcome.context)
