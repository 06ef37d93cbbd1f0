"""FastAPI dependencies wiring settings, sessions and flows together."""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import get_db
from .emailer import EmailSender, build_email_sender
from .flows import LoginFlow, PasswordResetFlow, build_login_flow, build_reset_flow


@lru_cache
def get_email_sender() -> EmailSender:
    return build_email_sender(get_settings())


def get_login_flow(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    sender: EmailSender = Depends(get_email_sender),
) -> LoginFlow:
    return build_login_flow(db, settings, sender)


def get_reset_flow(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    sender: EmailSender = Depends(get_email_sender),
) -> PasswordResetFlow:
    return build_reset_flow(db, settings, sender)
