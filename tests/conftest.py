"""Shared fixtures: in-memory SQLite, a fixed clock, and an app client with auth stubbed."""
import os

# Must be set before app.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"

import hashlib
import hmac
import json
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import config
from app.core.clock import FixedClock, get_clock
from app.db.base import Base
from app.db.session import get_db
from app.dependencies.auth import get_current_user_id
from app.main import app as fastapi_app

KEY_SECRET = "rzp-key-secret-test"
WEBHOOK_SECRET = "rzp-webhook-secret-test"
NOW = datetime(2026, 10, 18, 9, 30)


def unix(dt: datetime) -> int:
    return int(dt.replace(tzinfo=timezone.utc).timestamp())


def hmac_hex(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(db_engine):
    session = sessionmaker(bind=db_engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def secrets(monkeypatch):
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", KEY_SECRET)
    monkeypatch.setattr(config, "RAZORPAY_WEBHOOK_SECRET", WEBHOOK_SECRET)


@pytest.fixture
def current_user():
    """Mutable holder so a test can switch the authenticated caller."""
    return {"id": "user_alice"}


@pytest.fixture
def client(db, clock, secrets, current_user):
    def override_get_db():
        yield db

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_clock] = lambda: clock
    fastapi_app.dependency_overrides[get_current_user_id] = lambda: current_user["id"]
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def make_event():
    """Build a Razorpay subscription webhook body (bytes)."""

    def _make(event, sub_id="sub_123", status="active", current_end=None, user_id="user_alice",
              plan_id="plan_pro", include_entity=True):
        entity = {"id": sub_id, "plan_id": plan_id, "customer_id": "cust_1", "status": status}
        if current_end is not None:
            entity["current_end"] = current_end
        if user_id is not None:
            entity["notes"] = {"userId": user_id}
        payload = {"subscription": {"entity": entity}} if include_entity else {}
        return json.dumps({"entity": "event", "event": event, "payload": payload}).encode()

    return _make


@pytest.fixture
def post_webhook(client):
    """POST a body to the webhook route with a valid (or given) signature."""

    def _post(body: bytes, signature=None):
        sig = signature if signature is not None else hmac_hex(WEBHOOK_SECRET, body)
        return client.post(
            "/api/razorpay/webhook",
            content=body,
            headers={"X-Razorpay-Signature": sig, "Content-Type": "application/json"},
        )

    return _post
