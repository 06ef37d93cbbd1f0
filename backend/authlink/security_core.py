"""Security primitives for single-use tokens and passwords.

Tokens are opaque random secrets, hex encoded so they can be embedded in a
URL without any further escaping.  Only a one-way digest of a token is ever
stored.  Because the digest doubles as the lookup key on redemption, token
hashers must be deterministic for a given server configuration:

- `KeyedTokenHasher`: HMAC-SHA256 under the server secret key (default).
- `SlowTokenHasher`: PBKDF2-SHA256 with a server-configured salt and work
  factor, for deployments that want the stored digests to resist offline
  guessing even if the secret key leaks alongside the database.

`PasswordHasher` wraps bcrypt for long-term user passwords.  It satisfies
the same `SecretHasher` interface but salts randomly, so it cannot be used
for token lookup.
"""

import hashlib
import hmac
import secrets
from typing import Protocol

from passlib.context import CryptContext
from passlib.hash import pbkdf2_sha256

from .config import Settings
from .errors import GenerationFailure, HashFailure

MIN_TOKEN_BYTES = 16


class SecretHasher(Protocol):
    def hash(self, plaintext: str) -> str:
        ...

    def compare(self, digest: str, plaintext: str) -> bool:
        ...


class SecretGenerator:
    """Produce hex-encoded secrets from the OS randomness source."""

    def __init__(self, nbytes: int = 32) -> None:
        if nbytes < MIN_TOKEN_BYTES:
            raise ValueError(f"tokens need at least {MIN_TOKEN_BYTES} random bytes, got {nbytes}")
        self.nbytes = nbytes

    def generate(self) -> str:
        try:
            return secrets.token_bytes(self.nbytes).hex()
        except (OSError, NotImplementedError) as exc:
            # Never fall back to a weaker source.
            raise GenerationFailure("system randomness source unavailable") from exc


class KeyedTokenHasher:
    """HMAC-SHA256 keyed with a server-side secret."""

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._key = secret_key.encode("utf-8")

    def hash(self, plaintext: str) -> str:
        try:
            return hmac.new(self._key, plaintext.encode("utf-8"), hashlib.sha256).hexdigest()
        except (TypeError, UnicodeEncodeError) as exc:
            raise HashFailure("could not hash token") from exc

    def compare(self, digest: str, plaintext: str) -> bool:
        try:
            candidate = self.hash(plaintext)
        except HashFailure:
            return False
        return hmac.compare_digest(candidate, digest)


class SlowTokenHasher:
    """PBKDF2-SHA256 with a fixed server salt.

    The salt and round count are embedded in every digest, and `compare`
    re-derives using those embedded values rather than the current settings.
    """

    def __init__(self, salt: bytes, rounds: int = 29000) -> None:
        if not salt:
            raise ValueError("salt must not be empty")
        self._handler = pbkdf2_sha256.using(salt=salt, rounds=rounds)

    def hash(self, plaintext: str) -> str:
        try:
            return self._handler.hash(plaintext)
        except (TypeError, ValueError) as exc:
            raise HashFailure("could not hash token") from exc

    def compare(self, digest: str, plaintext: str) -> bool:
        try:
            return pbkdf2_sha256.verify(plaintext, digest)
        except (TypeError, ValueError):
            return False


class PasswordHasher:
    """bcrypt hashing for long-term user passwords."""

    def __init__(self, context: CryptContext | None = None) -> None:
        self._context = context or CryptContext(schemes=["bcrypt"], deprecated="auto")

    def hash(self, plaintext: str) -> str:
        try:
            return self._context.hash(plaintext)
        except (TypeError, ValueError) as exc:
            raise HashFailure("could not hash password") from exc

    def compare(self, digest: str, plaintext: str) -> bool:
        try:
            return self._context.verify(plaintext, digest)
        except (TypeError, ValueError):
            # Malformed or unknown stored hash
            return False


def build_token_hasher(settings: Settings) -> SecretHasher:
    """Return the token hasher selected by `token_hash_scheme`."""
    if settings.token_hash_scheme == "pbkdf2":
        return SlowTokenHasher(
            settings.token_hash_salt.get_secret_value().encode("utf-8"),
            rounds=settings.token_hash_rounds,
        )
    return KeyedTokenHasher(settings.secret_key.get_secret_value())


def build_secret_generator(settings: Settings) -> SecretGenerator:
    return SecretGenerator(settings.token_bytes)
