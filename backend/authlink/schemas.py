"""
Pydantic schemas for authlink API requests and responses.

Responses never echo a token back and never say which redemption check
failed.
"""

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    """Credentials plus the OAuth-style parameters carried by the code."""

    email: EmailStr
    password: str = Field(..., description="Plaintext password (checked or hashed, never stored)")
    client_id: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    state: str = ""


class LinkSent(BaseModel):
    detail: str = "If the address is valid, a link has been sent."


class LoginGrant(BaseModel):
    """Released by a confirmed login code for the authorization exchange."""

    subject_id: int
    client_id: str
    redirect_uri: str
    state: str


class EmailOnly(BaseModel):
    email: EmailStr


class TokenStatus(BaseModel):
    valid: bool


class ResetPasswordPayload(BaseModel):
    token: str
    new_password: str
