"""
Celery task definitions for authlink.

The only background work is the expiry sweep: expired auth codes and reset
tokens are deleted on a fixed schedule whether or not they were used.
Request traffic never triggers a sweep.
"""

import logging

from celery import Celery
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_sessionmaker
from .models import AuthCode, PasswordResetToken, utcnow
from .token_store import TokenStore

logger = logging.getLogger(__name__)

settings = get_settings()

celery_app = Celery(
    "authlink_tasks",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend or settings.celery_broker_url,
)

TOKEN_MODELS = (AuthCode, PasswordResetToken)


def sweep_expired(db: Session) -> dict[str, int]:
    """Delete expired records from every token table; return counts per table."""
    now = utcnow()
    removed = {}
    for model in TOKEN_MODELS:
        store = TokenStore(db, model)
        removed[store.kind] = store.cleanup_expired(now)
    return removed


@celery_app.task
def cleanup_expired_tokens() -> dict[str, int]:
    """Periodic sweep of expired tokens."""
    db = get_sessionmaker()()
    try:
        removed = sweep_expired(db)
    finally:
        db.close()
    logger.info("Swept expired tokens: %s", removed)
    return removed


@celery_app.on_after_configure.connect
def setup_periodic_tasks(sender, **kwargs) -> None:
    """Schedule the expiry sweep every `cleanup_interval_minutes`."""
    sender.add_periodic_task(
        settings.cleanup_interval_minutes * 60.0,
        cleanup_expired_tokens.s(),
        name="sweep expired tokens",
    )
