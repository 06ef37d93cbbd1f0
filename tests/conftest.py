"""Pytest configuration and fixtures for authlink.

Every test gets its own SQLite file database so that separate sessions (and
threads) contend for real row locks, which the concurrent redemption tests
rely on.
"""

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from authlink import crud
from authlink.config import Settings, get_settings
from authlink.database import Base, get_db, make_engine, make_sessionmaker
from authlink.dependencies import get_email_sender
from authlink.main import app
from authlink.models import AuthCode, PasswordResetToken
from authlink.security_core import KeyedTokenHasher, PasswordHasher, SecretGenerator
from authlink.token_store import TokenStore
from authlink.tokens import TokenIssuer, TokenRedeemer

TEST_SECRET_KEY = "test-secret-key"
USER_EMAIL = "alice@example.com"
USER_PASSWORD = "correct horse battery"


class RecordingEmailSender:
    """Collects outgoing messages instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'authlink-test.db'}",
        secret_key=SecretStr(TEST_SECRET_KEY),
        token_hash_rounds=1000,
        base_url="http://testserver",
        email_mode="console",
    )


@pytest.fixture
def engine(settings):
    engine = make_engine(settings)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="session")
def password_hasher() -> PasswordHasher:
    return PasswordHasher()


@pytest.fixture(scope="session")
def user_password() -> str:
    return USER_PASSWORD


@pytest.fixture(scope="session")
def user_password_hash(password_hasher, user_password) -> str:
    # bcrypt is slow; hash once for the whole run.
    return password_hasher.hash(user_password)


@pytest.fixture
def user(db, user_password_hash):
    return crud.create_user(db, USER_EMAIL, user_password_hash)


@pytest.fixture
def hasher() -> KeyedTokenHasher:
    return KeyedTokenHasher(TEST_SECRET_KEY)


@pytest.fixture
def generator() -> SecretGenerator:
    return SecretGenerator(32)


@pytest.fixture
def auth_code_store(db) -> TokenStore[AuthCode]:
    return TokenStore(db, AuthCode)


@pytest.fixture
def reset_store(db) -> TokenStore[PasswordResetToken]:
    return TokenStore(db, PasswordResetToken)


@pytest.fixture
def auth_code_issuer(auth_code_store, generator, hasher) -> TokenIssuer[AuthCode]:
    return TokenIssuer(auth_code_store, generator, hasher)


@pytest.fixture
def auth_code_redeemer(auth_code_store, hasher) -> TokenRedeemer[AuthCode]:
    return TokenRedeemer(auth_code_store, hasher)


@pytest.fixture
def reset_issuer(reset_store, generator, hasher) -> TokenIssuer[PasswordResetToken]:
    return TokenIssuer(reset_store, generator, hasher)


@pytest.fixture
def reset_redeemer(reset_store, hasher) -> TokenRedeemer[PasswordResetToken]:
    return TokenRedeemer(reset_store, hasher)


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def client(settings, session_factory, email_sender):
    """HTTP client against the app, wired to the per-test database."""

    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    # Not used as a context manager: the lifespan would touch the default database.
    yield TestClient(app)
    app.dependency_overrides.clear()
