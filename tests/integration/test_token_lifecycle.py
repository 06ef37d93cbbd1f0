"""Issue/redeem behaviour of the token lifecycle, end to end over SQLite."""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import text

from authlink.errors import HashCollision, StoreFailure
from authlink.models import AuthCode, utcnow
from authlink.security_core import SecretGenerator, SlowTokenHasher
from authlink.token_store import RejectionReason, TokenStore
from authlink.tokens import AcceptedGrant, TokenIssuer, TokenRedeemer

TTL = timedelta(minutes=15)
CONTEXT = {"client_id": "client-1", "redirect_uri": "https://client.example/cb", "state": "s-123"}


class FixedGenerator(SecretGenerator):
    """Hands out a scripted sequence of secrets."""

    def __init__(self, *values: str) -> None:
        super().__init__(16)
        self.values = list(values)

    def generate(self) -> str:
        return self.values.pop(0)


class TestIssue:
    def test_record_holds_digest_not_plaintext(self, auth_code_issuer, hasher, user, db) -> None:
        issued = auth_code_issuer.issue(user.id, TTL, **CONTEXT)
        assert issued.record.id is not None
        assert issued.record.token_hash == hasher.hash(issued.plaintext)
        assert issued.plaintext not in repr(issued)

        stored = db.execute(text("SELECT token_hash FROM auth_codes")).scalars().all()
        assert stored == [issued.record.token_hash]
        assert issued.plaintext not in stored

    def test_expiry_is_now_plus_ttl(self, auth_code_store, generator, hasher, user) -> None:
        frozen = utcnow()
        issuer = TokenIssuer(auth_code_store, generator, hasher, clock=lambda: frozen)
        issued = issuer.issue(user.id, TTL, **CONTEXT)
        assert issued.record.expires_at == frozen + TTL
        assert issued.record.used_at is None

    def test_unknown_context_rejected(self, reset_issuer, user) -> None:
        with pytest.raises(TypeError):
            reset_issuer.issue(user.id, TTL, client_id="nope")

    def test_collision_is_retried_with_fresh_secret(self, auth_code_store, hasher, user) -> None:
        first = "aa" * 16
        auth_code_store.create(
            AuthCode(token_hash=hasher.hash(first), subject_id=user.id, expires_at=utcnow() + TTL, **CONTEXT)
        )
        issuer = TokenIssuer(auth_code_store, FixedGenerator(first, "bb" * 16), hasher)
        issued = issuer.issue(user.id, TTL, **CONTEXT)
        assert issued.plaintext == "bb" * 16

    def test_second_collision_surfaces(self, auth_code_store, hasher, user) -> None:
        taken = "aa" * 16
        auth_code_store.create(
            AuthCode(token_hash=hasher.hash(taken), subject_id=user.id, expires_at=utcnow() + TTL, **CONTEXT)
        )
        issuer = TokenIssuer(auth_code_store, FixedGenerator(taken, taken), hasher)
        with pytest.raises(HashCollision):
            issuer.issue(user.id, TTL, **CONTEXT)


class TestRedeem:
    def test_round_trip(self, auth_code_issuer, auth_code_redeemer, user) -> None:
        issued = auth_code_issuer.issue(user.id, TTL, **CONTEXT)
        grant = auth_code_redeemer.redeem(issued.plaintext)
        assert isinstance(grant, AcceptedGrant)
        assert grant.subject_id == user.id
        assert grant.context == CONTEXT
        assert grant.token_id == issued.record.id

    def test_single_use(self, auth_code_issuer, auth_code_redeemer, user) -> None:
        issued = auth_code_issuer.issue(user.id, TTL, **CONTEXT)
        assert isinstance(auth_code_redeemer.redeem(issued.plaintext), AcceptedGrant)
        assert auth_code_redeemer.redeem(issued.plaintext) is RejectionReason.ALREADY_USED
        assert auth_code_redeemer.redeem(issued.plaintext) is RejectionReason.ALREADY_USED

    def test_already_expired_token(self, auth_code_issuer, auth_code_redeemer, user) -> None:
        issued = auth_code_issuer.issue(user.id, timedelta(seconds=-1), **CONTEXT)
        assert auth_code_redeemer.redeem(issued.plaintext) is RejectionReason.EXPIRED

    def test_expires_with_the_clock(self, auth_code_store, generator, hasher, user) -> None:
        now = [utcnow()]
        issuer = TokenIssuer(auth_code_store, generator, hasher, clock=lambda: now[0])
        redeemer = TokenRedeemer(auth_code_store, hasher, clock=lambda: now[0])
        issued = issuer.issue(user.id, TTL, **CONTEXT)
        now[0] += TTL
        assert redeemer.redeem(issued.plaintext) is RejectionReason.EXPIRED

    def test_unknown_token(self, auth_code_redeemer, generator) -> None:
        assert auth_code_redeemer.redeem(generator.generate()) is RejectionReason.INVALID

    @pytest.mark.parametrize("presented", [None, "", "f" * 1000, "\ud800", "zz" * 32, "ab cd"])
    def test_malformed_presentations(self, auth_code_redeemer, presented) -> None:
        assert auth_code_redeemer.redeem(presented) is RejectionReason.INVALID

    def test_other_kind_does_not_redeem(self, auth_code_issuer, reset_redeemer, user) -> None:
        issued = auth_code_issuer.issue(user.id, TTL, **CONTEXT)
        assert reset_redeemer.redeem(issued.plaintext) is RejectionReason.INVALID

    def test_store_failure_is_not_acceptance(self, auth_code_issuer, auth_code_redeemer, user, monkeypatch) -> None:
        issued = auth_code_issuer.issue(user.id, TTL, **CONTEXT)

        def broken(digest, now=None):
            raise StoreFailure("auth_codes: consume failed")

        monkeypatch.setattr(auth_code_redeemer.store, "consume", broken)
        with pytest.raises(StoreFailure):
            auth_code_redeemer.redeem(issued.plaintext)

    def test_slow_hasher_round_trip(self, auth_code_store, generator, user) -> None:
        hasher = SlowTokenHasher(b"test-salt", rounds=1000)
        issued = TokenIssuer(auth_code_store, generator, hasher).issue(user.id, TTL, **CONTEXT)
        assert issued.record.token_hash.startswith("$pbkdf2-sha256$")
        redeemer = TokenRedeemer(auth_code_store, hasher)
        assert isinstance(redeemer.redeem(issued.plaintext), AcceptedGrant)
        assert redeemer.redeem(issued.plaintext) is RejectionReason.ALREADY_USED

    def test_reset_token_round_trip(self, reset_issuer, reset_redeemer, user) -> None:
        issued = reset_issuer.issue(user.id, TTL)
        grant = reset_redeemer.redeem(issued.plaintext)
        assert isinstance(grant, AcceptedGrant)
        assert grant.subject_id == user.id
        assert grant.context == {}


class TestConcurrentRedeem:
    """Two requests racing on the same plaintext get exactly one grant."""

    @pytest.mark.parametrize("attempt", range(5))
    def test_exactly_one_success(self, attempt, auth_code_issuer, session_factory, hasher, user) -> None:
        issued = auth_code_issuer.issue(user.id, TTL, **CONTEXT)
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def worker() -> None:
            db = session_factory()
            try:
                redeemer = TokenRedeemer(TokenStore(db, AuthCode), hasher)
                barrier.wait()
                try:
                    outcome = redeemer.redeem(issued.plaintext)
                except StoreFailure as exc:
                    outcome = exc
                with lock:
                    outcomes.append(outcome)
            finally:
                db.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(outcomes) == 2
        grants = [o for o in outcomes if isinstance(o, AcceptedGrant)]
        assert len(grants) == 1
        loser = next(o for o in outcomes if not isinstance(o, AcceptedGrant))
        assert loser is RejectionReason.ALREADY_USED or isinstance(loser, StoreFailure)


class TestInspect:
    def test_valid_token_not_consumed(self, reset_issuer, reset_redeemer, user) -> None:
        issued = reset_issuer.issue(user.id, TTL)
        assert reset_redeemer.inspect(issued.plaintext) is None
        assert reset_redeemer.inspect(issued.plaintext) is None
        assert isinstance(reset_redeemer.redeem(issued.plaintext), AcceptedGrant)
        assert reset_redeemer.inspect(issued.plaintext) is RejectionReason.ALREADY_USED

    def test_expired_and_unknown(self, reset_issuer, reset_redeemer, user, generator) -> None:
        issued = reset_issuer.issue(user.id, timedelta(seconds=-1))
        assert reset_redeemer.inspect(issued.plaintext) is RejectionReason.EXPIRED
        assert reset_redeemer.inspect(generator.generate()) is RejectionReason.INVALID
        assert reset_redeemer.inspect("") is RejectionReason.INVALID
        assert reset_redeemer.inspect("\ud800") is RejectionReason.INVALID


class TestSweep:
    def test_expired_records_disappear(self, reset_issuer, reset_redeemer, reset_store, hasher, user) -> None:
        expired = reset_issuer.issue(user.id, timedelta(seconds=-1))
        live_used = reset_issuer.issue(user.id, TTL)
        live_unused = reset_issuer.issue(user.id, TTL)
        reset_redeemer.redeem(live_used.plaintext)

        assert reset_store.cleanup_expired() == 1

        assert reset_store.find_by_hash(hasher.hash(expired.plaintext)) is None
        assert reset_store.find_by_hash(hasher.hash(live_used.plaintext)) is not None
        assert reset_store.find_by_hash(hasher.hash(live_unused.plaintext)) is not None
        assert reset_redeemer.redeem(expired.plaintext) is RejectionReason.INVALID
