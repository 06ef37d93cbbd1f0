"""
User helpers for the authlink backend.

These functions are the identity side of the login and reset flows: they
look users up by email and store already-hashed passwords.  Hashing itself
lives in `security_core.PasswordHasher`.
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import StoreFailure


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == normalize_email(email)).first()


def create_user(db: Session, email: str, hashed_password: str) -> models.User:
    """Create a user; raises `StoreFailure` if the email is taken."""
    db_user = models.User(email=normalize_email(email), hashed_password=hashed_password)
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise StoreFailure("email already registered") from exc
    db.refresh(db_user)
    return db_user


def update_password(db: Session, user_id: int, hashed_password: str) -> bool:
    """Replace a user's password hash.  Returns False if the user is gone."""
    user = get_user(db, user_id)
    if user is None:
        return False
    user.hashed_password = hashed_password
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreFailure("could not update password") from exc
    return True
