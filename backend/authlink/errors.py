"""
Failure types for the token lifecycle.

Issuance and storage problems are exceptions: they abort the enclosing
request.  Redemption rejections are *not* exceptions; see
`authlink.tokens.RejectionReason`.
"""


class TokenError(Exception):
    """Base class for token lifecycle failures."""


class GenerationFailure(TokenError):
    """The system randomness source is unavailable."""


class HashFailure(TokenError):
    """The hashing primitive failed."""


class StoreFailure(TokenError):
    """Persistence is unavailable or rejected a write."""


class HashCollision(StoreFailure):
    """A new record's digest collides with an existing one."""


class DeliveryFailure(TokenError):
    """The delivery collaborator could not send a message."""


class InvalidCredentials(Exception):
    """Email/password pair did not match an existing account."""


class PasswordTooShort(ValueError):
    """A new password does not meet the minimum length."""
