import os

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("CASHFREE_CLIENT_SECRET", "s3cr3t")
os.environ.setdefault("SESSION_REAP_INTERVAL_MINUTES", "0")

from phrames.config import Settings  # noqa: E402
from phrames.main import create_app  # noqa: E402
from phrames.repositories import payments as payments_repo  # noqa: E402
from phrames.repositories.audit import FirestoreAuditLog  # noqa: E402
from phrames.repositories.payments import FirestorePaymentLedger  # noqa: E402
from phrames.repositories.sessions import FirestoreSessionStore  # noqa: E402
from phrames.repositories.users import FirestoreUserStore  # noqa: E402

from .helpers.fakes import FakeClaimsWriter, FakeFirestore, FakeTokenVerifier, fake_transactional  # noqa: E402


@pytest.fixture(autouse=True)
def _serial_transactions(monkeypatch):
    monkeypatch.setattr(payments_repo.firestore, "transactional", fake_transactional)


@pytest.fixture
def settings():
    return Settings(
        cashfree_client_secret="s3cr3t",
        session_reap_interval_minutes=0,
        cookie_secure=False,
        webhook_retry_base_delay=0,
        admin_grant_policy="require_admin",
        firebase_web_api_key="AIza-test",
    )


@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def session_store(fake_db, settings):
    return FirestoreSessionStore(fake_db, settings.session_ttl_seconds)


@pytest.fixture
def user_store(fake_db):
    return FirestoreUserStore(fake_db)


@pytest.fixture
def verifier():
    return FakeTokenVerifier()


@pytest.fixture
def claims_writer():
    return FakeClaimsWriter()


@pytest.fixture
def make_app(fake_db, session_store, user_store, verifier, claims_writer):
    def _make(settings, **overrides):
        kwargs = dict(
            session_store=session_store,
            user_store=user_store,
            audit_log=FirestoreAuditLog(fake_db),
            payment_ledger=FirestorePaymentLedger(fake_db),
            token_verifier=verifier,
            claims_writer=claims_writer,
        )
        kwargs.update(overrides)
        return create_app(settings, **kwargs)

    return _make


@pytest.fixture
def client(make_app, settings):
    return TestClient(make_app(settings))
