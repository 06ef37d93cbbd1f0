"""Issuing and redeeming single-use tokens.

`TokenIssuer` mints a secret, stores only its digest and hands the plaintext
back to the caller for delivery.  `TokenRedeemer` turns a presented
plaintext into either an `AcceptedGrant` or a `RejectionReason`.

Neither class caches records between calls: every decision is made against
the store, and the accept decision is the store's conditional consume.
"""

import logging
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Generic, Optional, Type, Union

from .errors import HashCollision, StoreFailure
from .models import utcnow
from .security_core import SecretGenerator, SecretHasher
from .token_store import RejectionReason, T, TokenStore

logger = logging.getLogger(__name__)

# Presented values longer than this, or not hex, are rejected before hashing.
MAX_PRESENTED_LENGTH = 256
HEX_DIGITS = frozenset(string.hexdigits)


@dataclass(frozen=True)
class IssuedToken(Generic[T]):
    record: T
    # Only ever returned to the caller; never stored or logged.
    plaintext: str = field(repr=False)


@dataclass(frozen=True)
class AcceptedGrant:
    """What a successful redemption releases."""

    token_id: int
    subject_id: int
    context: dict
    used_at: datetime


class TokenIssuer(Generic[T]):
    """Mint and persist tokens of one kind."""

    def __init__(
        self,
        store: TokenStore[T],
        generator: SecretGenerator,
        hasher: SecretHasher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.generator = generator
        self.hasher = hasher
        self.clock = clock

    @property
    def model(self) -> Type[T]:
        return self.store.model

    def issue(self, subject_id: int, ttl: timedelta, **context) -> IssuedToken[T]:
        """Create a token for `subject_id` that expires `ttl` from now.

        `context` supplies the kind-specific columns (for auth codes:
        client_id, redirect_uri, state).  A digest collision is retried once
        with a fresh secret; any other failure propagates and nothing is
        returned.
        """
        unknown = set(context) - set(self.model.context_fields)
        if unknown:
            raise TypeError(f"unexpected context for {self.store.kind}: {sorted(unknown)}")

        try:
            return self._issue_once(subject_id, ttl, context)
        except HashCollision:
            logger.warning("Digest collision issuing %s; retrying with a new secret", self.store.kind)
        return self._issue_once(subject_id, ttl, context)

    def _issue_once(self, subject_id: int, ttl: timedelta, context: dict) -> IssuedToken[T]:
        plaintext = self.generator.generate()
        record = self.model(
            token_hash=self.hasher.hash(plaintext),
            subject_id=subject_id,
            expires_at=self.clock() + ttl,
            used_at=None,
            **context,
        )
        self.store.create(record)
        logger.info("Issued %s %s for subject %s", self.store.kind, record.id, subject_id)
        return IssuedToken(record=record, plaintext=plaintext)


class TokenRedeemer(Generic[T]):
    """Validate and consume presented tokens of one kind."""

    def __init__(
        self,
        store: TokenStore[T],
        hasher: SecretHasher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.clock = clock

    def redeem(self, plaintext: Optional[str]) -> Union[AcceptedGrant, RejectionReason]:
        """Consume the token if it is unused and unexpired.

        The record is consumed by one conditional write in the store, so
        concurrent redemptions of the same plaintext yield exactly one
        grant.  A storage failure raises `StoreFailure`; it is never
        reported as acceptance.
        """
        if not self._well_formed(plaintext):
            return self._reject(RejectionReason.INVALID)
        digest = self.hasher.hash(plaintext)
        now = self.clock()
        outcome = self.store.consume(digest, now)
        if isinstance(outcome, RejectionReason):
            return self._reject(outcome)
        if outcome.used_at is None:
            raise StoreFailure(f"{self.store.kind}: consumed record has no used_at")
        logger.info("Redeemed %s %s for subject %s", self.store.kind, outcome.id, outcome.subject_id)
        return AcceptedGrant(
            token_id=outcome.id,
            subject_id=outcome.subject_id,
            context=outcome.context,
            used_at=outcome.used_at,
        )

    def inspect(self, plaintext: Optional[str]) -> Optional[RejectionReason]:
        """Classify a token without consuming it.

        Returns None when the token is currently redeemable.  The answer can
        be stale by the time the caller acts on it; only `redeem` decides.
        """
        if not self._well_formed(plaintext):
            return RejectionReason.INVALID
        record = self.store.find_by_hash(self.hasher.hash(plaintext))
        if record is None:
            return RejectionReason.INVALID
        if record.used_at is not None:
            return RejectionReason.ALREADY_USED
        if self.clock() >= record.expires_at:
            return RejectionReason.EXPIRED
        return None

    @staticmethod
    def _well_formed(plaintext: Optional[str]) -> bool:
        return (
            isinstance(plaintext, str)
            and 0 < len(plaintext) <= MAX_PRESENTED_LENGTH
            and HEX_DIGITS.issuperset(plaintext)
        )

    def _reject(self, reason: RejectionReason) -> RejectionReason:
        # Expected control flow; audit at info level only.
        logger.info("Rejected %s redemption: %s", self.store.kind, reason.value)
        return reason
