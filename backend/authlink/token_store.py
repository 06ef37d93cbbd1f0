"""
Persistence for single-use tokens.

One `TokenStore` instance wraps one token table (`AuthCode` or
`PasswordResetToken`).  The store only persists and retrieves; judging a
record (used, expired) belongs to the redeemer, except inside `consume`,
where the judgement and the consumption must be a single conditional write
so that two concurrent redemptions of the same token cannot both succeed.

Every write commits or rolls back before returning.  SQLAlchemy errors are
surfaced as `StoreFailure`.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Generic, Optional, Type, TypeVar, Union

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import HashCollision, StoreFailure
from .models import TokenColumns, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=TokenColumns)


class RejectionReason(str, Enum):
    """Why a presented token was not accepted.

    Distinguished for auditing only; users always see the same message.
    """

    INVALID = "invalid"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"


class TokenStore(Generic[T]):
    def __init__(self, db: Session, model: Type[T]) -> None:
        self.db = db
        self.model = model

    @property
    def kind(self) -> str:
        return self.model.__tablename__

    def create(self, record: T) -> int:
        """Insert a new record and return its storage id.

        Raises `HashCollision` if the digest is already present.
        """
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if self._hash_exists(record.token_hash):
                raise HashCollision(f"{self.kind}: digest already stored") from exc
            raise StoreFailure(f"{self.kind}: insert rejected") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to store %s record", self.kind)
            raise StoreFailure(f"{self.kind}: insert failed") from exc
        return record.id

    def find_by_hash(self, digest: str) -> Optional[T]:
        """Return the stored record for `digest`, used or expired alike."""
        try:
            record = self.db.execute(
                select(self.model)
                .where(self.model.token_hash == digest)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            # Keep lookups out of any long-lived transaction.
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreFailure(f"{self.kind}: lookup failed") from exc
        return record

    def mark_used(self, record_id: int, now: Optional[datetime] = None) -> bool:
        """Set `used_at` if it is still empty.

        Returns False when the record is missing or was already consumed,
        so a racing caller learns it lost rather than overwriting the
        earlier timestamp.
        """
        now = now or utcnow()
        stmt = (
            update(self.model)
            .where(self.model.id == record_id, self.model.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreFailure(f"{self.kind}: mark-used failed") from exc
        return result.rowcount == 1

    def consume(self, digest: str, now: Optional[datetime] = None) -> Union[T, RejectionReason]:
        """Atomically consume the unused, unexpired record for `digest`.

        Returns the consumed record, or the `RejectionReason` explaining why
        nothing was consumed.
        """
        now = now or utcnow()
        stmt = (
            update(self.model)
            .where(
                self.model.token_hash == digest,
                self.model.used_at.is_(None),
                self.model.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            record = self.db.execute(
                select(self.model)
                .where(self.model.token_hash == digest)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreFailure(f"{self.kind}: consume failed") from exc

        if result.rowcount == 1 and record is not None:
            return record
        if record is None:
            return RejectionReason.INVALID
        if record.used_at is not None:
            return RejectionReason.ALREADY_USED
        if now >= record.expires_at:
            return RejectionReason.EXPIRED
        # Row exists, unused and unexpired, yet the update missed it.
        logger.warning("%s record %s not consumed despite matching state", self.kind, record.id)
        return RejectionReason.INVALID

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every record whose expiry has passed, used or not."""
        now = now or utcnow()
        stmt = (
            delete(self.model)
            .where(self.model.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to sweep expired %s records", self.kind)
            raise StoreFailure(f"{self.kind}: cleanup failed") from exc
        return result.rowcount

    def _hash_exists(self, digest: str) -> bool:
        try:
            return self.db.execute(
                select(self.model.id).where(self.model.token_hash == digest)
            ).first() is not None
        except SQLAlchemyError:
            self.db.rollback()
            return False
