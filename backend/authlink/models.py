"""
SQLAlchemy models for authlink.

Users own long-term bcrypt password hashes.  Two token tables hold the
short-lived, single-use secrets: login auth codes and password-reset
tokens.  Token rows store only the digest of the secret; the plaintext is
never persisted.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import declared_attr

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """An account that can be issued login codes and reset tokens."""

    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)
    email: str = Column(String, unique=True, index=True, nullable=False)
    hashed_password: str = Column(String, nullable=False)
    created_at: datetime = Column(DateTime, default=utcnow, nullable=False)


class TokenColumns:
    """Columns shared by every single-use token table."""

    # Kind-specific context columns copied into an accepted grant.
    context_fields = ()

    id = Column(Integer, primary_key=True, index=True)
    # Unique and indexed: the digest is the lookup key on redemption.
    token_hash = Column(String(255), unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    used_at = Column(DateTime, nullable=True)

    @declared_attr
    def subject_id(cls):
        return Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    @property
    def context(self) -> dict:
        return {name: getattr(self, name) for name in self.context_fields}


class AuthCode(TokenColumns, Base):
    """Emailed login confirmation code.

    Carries the OAuth-style request parameters so a confirmed code can drive
    the subsequent authorization-code exchange.
    """

    __tablename__ = "auth_codes"

    context_fields = ("client_id", "redirect_uri", "state")

    client_id: str = Column(String, nullable=False)
    redirect_uri: str = Column(String, nullable=False)
    state: str = Column(String, nullable=False, default="")


class PasswordResetToken(TokenColumns, Base):
    """Emailed password reset token."""

    __tablename__ = "password_reset_tokens"
