import pytest
from fastapi.testclient import TestClient
from google.cloud import firestore

from suite_api.dependencies import get_firestore, verify_firebase_token
from suite_api.main import app
from suite_api.middleware.rate_limit import limiter

from tests.fakes import ClaimsRecorder, FakeFirestore


@pytest.fixture(autouse=True)
def disable_rate_limits():
    """Keep in-memory rate-limit state out of the tests."""
    previous = limiter.enabled
    limiter.enabled = False
    limiter.reset()
    yield
    limiter.enabled = previous


@pytest.fixture(autouse=True)
def inline_transactions(monkeypatch):
    """Run @firestore.transactional bodies once against the fake transaction."""
    monkeypatch.setattr(firestore, "transactional", lambda fn: fn)


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def claims():
    return ClaimsRecorder()


@pytest.fixture
def client(db):
    app.dependency_overrides[get_firestore] = lambda: db
    app.dependency_overrides[verify_firebase_token] = lambda: {"uid": "user-1"}
    yield TestClient(app)
    app.dependency_overrides.clear()
