"""
Login-by-email and password reset flows.

Both flows follow the same shape: look the user up, issue a token, email a
link containing the plaintext, and later redeem the plaintext presented by
the link.  A failed redemption is final; the user has to start the flow
again to get a new token.
"""

import logging
from datetime import timedelta
from typing import Optional, Union
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from . import crud
from .config import Settings
from .emailer import EmailSender
from .errors import InvalidCredentials, PasswordTooShort
from .models import AuthCode, PasswordResetToken
from .security_core import PasswordHasher, build_secret_generator, build_token_hasher
from .token_store import RejectionReason, TokenStore
from .tokens import AcceptedGrant, TokenIssuer, TokenRedeemer

logger = logging.getLogger(__name__)


def _link(base_url: str, path: str, **params: str) -> str:
    return f"{base_url.rstrip('/')}{path}?{urlencode(params)}"


class LoginFlow:
    """Password check followed by an emailed confirmation code."""

    def __init__(
        self,
        db: Session,
        issuer: TokenIssuer[AuthCode],
        redeemer: TokenRedeemer[AuthCode],
        passwords: PasswordHasher,
        sender: EmailSender,
        settings: Settings,
    ) -> None:
        self.db = db
        self.issuer = issuer
        self.redeemer = redeemer
        self.passwords = passwords
        self.sender = sender
        self.settings = settings

    async def request_code(
        self,
        email: str,
        password: str,
        client_id: str,
        redirect_uri: str,
        state: str = "",
    ) -> str:
        """Email a login code, creating the account on first use.

        Returns "login" for an existing account and "signup" for a new one.
        """
        if len(password) < self.settings.min_password_length:
            raise PasswordTooShort(f"password must be at least {self.settings.min_password_length} characters")

        user = crud.get_user_by_email(self.db, email)
        if user is not None:
            if not self.passwords.compare(user.hashed_password, password):
                raise InvalidCredentials("invalid email or password")
            outcome, subject = "login", "Login to your account"
        else:
            user = crud.create_user(self.db, email, self.passwords.hash(password))
            logger.info("Created user %s", user.id)
            outcome, subject = "signup", "Confirm your email"

        issued = self.issuer.issue(
            user.id,
            timedelta(minutes=self.settings.auth_code_ttl_minutes),
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=state,
        )
        url = _link(self.settings.base_url, "/auth/confirm", code=issued.plaintext)
        if outcome == "login":
            body = f"Click here to log in: {url}"
        else:
            body = f"Click here to confirm: {url}"
        await self.sender.send(user.email, subject, body)
        return outcome

    def confirm(self, code: Optional[str]) -> Union[AcceptedGrant, RejectionReason]:
        return self.redeemer.redeem(code)


class PasswordResetFlow:
    def __init__(
        self,
        db: Session,
        issuer: TokenIssuer[PasswordResetToken],
        redeemer: TokenRedeemer[PasswordResetToken],
        passwords: PasswordHasher,
        sender: EmailSender,
        settings: Settings,
    ) -> None:
        self.db = db
        self.issuer = issuer
        self.redeemer = redeemer
        self.passwords = passwords
        self.sender = sender
        self.settings = settings

    async def request_reset(self, email: str) -> None:
        """Email a reset link.  Unknown addresses are silently ignored."""
        user = crud.get_user_by_email(self.db, email)
        if user is None:
            return
        issued = self.issuer.issue(user.id, timedelta(minutes=self.settings.reset_token_ttl_minutes))
        url = _link(self.settings.base_url, "/auth/password/reset", token=issued.plaintext)
        await self.sender.send(user.email, "Reset your password", f"Click here to reset: {url}")

    def check(self, token: Optional[str]) -> Optional[RejectionReason]:
        """Non-consuming check used before showing the new-password form."""
        return self.redeemer.inspect(token)

    def complete(self, token: Optional[str], new_password: str) -> Union[AcceptedGrant, RejectionReason]:
        """Consume the reset token and store the new password."""
        if len(new_password) < self.settings.min_password_length:
            raise PasswordTooShort(f"password must be at least {self.settings.min_password_length} characters")
        # Hash first so a hashing failure does not burn the token.
        hashed = self.passwords.hash(new_password)
        outcome = self.redeemer.redeem(token)
        if isinstance(outcome, RejectionReason):
            return outcome
        if not crud.update_password(self.db, outcome.subject_id, hashed):
            logger.warning("Reset token %s redeemed for missing user %s", outcome.token_id, outcome.subject_id)
            return RejectionReason.INVALID
        logger.info("Password reset for user %s", outcome.subject_id)
        return outcome


def build_login_flow(db: Session, settings: Settings, sender: EmailSender) -> LoginFlow:
    store = TokenStore(db, AuthCode)
    hasher = build_token_hasher(settings)
    return LoginFlow(
        db,
        TokenIssuer(store, build_secret_generator(settings), hasher),
        TokenRedeemer(store, hasher),
        PasswordHasher(),
        sender,
        settings,
    )


def build_reset_flow(db: Session, settings: Settings, sender: EmailSender) -> PasswordResetFlow:
    store = TokenStore(db, PasswordResetToken)
    hasher = build_token_hasher(settings)
    return PasswordResetFlow(
        db,
        TokenIssuer(store, build_secret_generator(settings), hasher),
        TokenRedeemer(store, hasher),
        PasswordHasher(),
        sender,
        settings,
    )
