"""HTTP behaviour of the verify-payment, webhook and subscription routes."""
from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import func, select

from app.core import config
from app.core.errors import StoreFailure
from app.main import app as fastapi_app
from app.models.subscription import RazorpaySubscription
from app.services.razorpay_client import RazorpayAPIError, get_razorpay_client
from app.services.subscription_store import SubscriptionStore

from conftest import KEY_SECRET, NOW, hmac_hex, unix

NOV = datetime(2026, 11, 18)


def row_count(db):
    return db.execute(select(func.count()).select_from(RazorpaySubscription)).scalar_one()


def verify_body(payment_id="pay_1", subscription_id="sub_123", order_id=None, signature=None):
    body = {"razorpay_payment_id": payment_id}
    if subscription_id:
        body["razorpay_subscription_id"] = subscription_id
    if order_id:
        body["razorpay_order_id"] = order_id
    if signature is None:
        signable = f"{payment_id}|{subscription_id}" if subscription_id else f"{order_id}|{payment_id}"
        signature = hmac_hex(KEY_SECRET, signable.encode())
    body["razorpay_signature"] = signature
    return body


class TestVerifyPayment:
    def test_subscription_payment_creates_preliminary_record(self, client, db):
        r = client.post("/api/razorpay/verify-payment", json=verify_body())
        assert r.status_code == 200
        assert r.json()["verified"] is True
        record = SubscriptionStore(db, None).find_by_external_id("sub_123")
        assert record.user_id == "user_alice"
        assert record.status == "created"
        assert record.current_period_end == NOW + timedelta(hours=24)

    def test_order_payment_writes_nothing(self, client, db):
        r = client.post("/api/razorpay/verify-payment", json=verify_body(subscription_id=None, order_id="order_9"))
        assert r.status_code == 200
        assert row_count(db) == 0

    def test_signature_mismatch_is_400_with_no_writes(self, client, db):
        r = client.post("/api/razorpay/verify-payment", json=verify_body(signature="0" * 64))
        assert r.status_code == 400
        assert row_count(db) == 0

    def test_missing_order_and_subscription_is_400(self, client):
        body = {"razorpay_payment_id": "pay_1", "razorpay_signature": "abc"}
        r = client.post("/api/razorpay/verify-payment", json=body)
        assert r.status_code == 400
        assert "Missing order_id or subscription_id" in r.json()["detail"]

    @pytest.mark.parametrize("payload", [b"{not json", b'{"razorpay_signature": "abc"}'])
    def test_malformed_body_is_400(self, client, payload):
        r = client.post(
            "/api/razorpay/verify-payment", content=payload, headers={"Content-Type": "application/json"}
        )
        assert r.status_code == 400

    def test_non_ascii_signature_is_400_with_no_writes(self, client, db):
        r = client.post("/api/razorpay/verify-payment", json=verify_body(signature="\u00e9"))
        assert r.status_code == 400
        assert row_count(db) == 0

    def test_missing_secret_is_500(self, client, monkeypatch):
        monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", "")
        r = client.post("/api/razorpay/verify-payment", json=verify_body())
        assert r.status_code == 500

    def test_other_users_subscription_is_left_alone(self, client, db, current_user, post_webhook, make_event):
        post_webhook(make_event("subscription.activated", current_end=unix(NOV), user_id="user_alice"))
        current_user["id"] = "user_bob"
        r = client.post("/api/razorpay/verify-payment", json=verify_body())
        assert r.status_code == 200
        record = SubscriptionStore(db, None).find_by_external_id("sub_123")
        assert record.user_id == "user_alice"
        assert record.status == "active"


class TestWebhook:
    def test_activation_is_applied(self, post_webhook, make_event, db):
        r = post_webhook(make_event("subscription.activated", current_end=unix(NOV)))
        assert r.status_code == 200
        record = SubscriptionStore(db, None).find_by_external_id("sub_123")
        assert record.status == "active"
        assert record.current_period_end == NOV

    def test_redelivery_is_safe(self, post_webhook, make_event, db):
        body = make_event("subscription.charged", current_end=unix(NOV))
        assert post_webhook(body).status_code == 200
        assert post_webhook(body).status_code == 200
        assert row_count(db) == 1

    def test_tampered_body_is_403_with_no_writes(self, post_webhook, make_event, db):
        body = make_event("subscription.activated", current_end=unix(NOV))
        signature = hmac_hex("rzp-webhook-secret-test", body)
        tampered = body.replace(b"user_alice", b"user_mallo")
        r = post_webhook(tampered, signature=signature)
        assert r.status_code == 403
        assert row_count(db) == 0

    def test_missing_signature_header_is_403(self, client, make_event, db):
        r = client.post("/api/razorpay/webhook", content=make_event("subscription.activated", current_end=unix(NOV)))
        assert r.status_code == 403
        assert row_count(db) == 0

    def test_unparseable_body_is_400(self, post_webhook):
        assert post_webhook(b"<xml/>").status_code == 400

    def test_unhandled_event_is_acknowledged(self, post_webhook):
        r = post_webhook(b'{"event": "payment.captured", "payload": {"payment": {"entity": {"id": "pay_1"}}}}')
        assert r.status_code == 200

    def test_terminal_for_unknown_subscription_is_500(self, post_webhook, make_event, db):
        r = post_webhook(make_event("subscription.cancelled", status="cancelled"))
        assert r.status_code == 500
        assert r.json()["detail"] == "Webhook handler error"
        assert row_count(db) == 0

    def test_missing_owner_is_400(self, post_webhook, make_event):
        r = post_webhook(make_event("subscription.activated", current_end=unix(NOV), user_id=None))
        assert r.status_code == 400

    def test_non_ascii_signature_header_is_403(self, client, make_event, db):
        r = client.post(
            "/api/razorpay/webhook",
            content=make_event("subscription.activated", current_end=unix(NOV)),
            headers={"X-Razorpay-Signature": "\u00e9".encode("utf-8")},
        )
        assert r.status_code == 403
        assert row_count(db) == 0

    def test_unhandled_event_with_loose_entity_is_acknowledged(self, post_webhook, db):
        body = (
            b'{"event": "subscription.authenticated", "payload": {"subscription": {"entity": '
            b'{"status": "authenticated", "notes": []}}}}'
        )
        assert post_webhook(body).status_code == 200
        assert row_count(db) == 0

    def test_empty_notes_list_on_known_event_is_400(self, post_webhook, make_event, db):
        body = make_event("subscription.activated", current_end=unix(NOV), user_id=None)
        body = body.replace(b'"status": "active"', b'"status": "active", "notes": []')
        assert post_webhook(body).status_code == 400
        assert row_count(db) == 0

    def test_missing_webhook_secret_is_500(self, post_webhook, make_event, monkeypatch):
        body = make_event("subscription.activated", current_end=unix(NOV))
        monkeypatch.setattr(config, "RAZORPAY_WEBHOOK_SECRET", "")
        assert post_webhook(body, signature="anything").status_code == 500


class TestSubscriptionStatus:
    def test_no_subscription(self, client):
        r = client.get("/api/razorpay/subscription-status")
        assert r.status_code == 200
        assert r.json() == {"is_subscribed": False, "status": None, "current_period_end": None}

    def test_active_subscription(self, client, post_webhook, make_event):
        post_webhook(make_event("subscription.activated", current_end=unix(NOV)))
        data = client.get("/api/razorpay/subscription-status").json()
        assert data["is_subscribed"] is True
        assert data["status"] == "active"

    def test_lapsed_subscription(self, client, clock, post_webhook, make_event):
        post_webhook(make_event("subscription.activated", current_end=unix(NOV)))
        clock.current = NOV + timedelta(seconds=1)
        assert client.get("/api/razorpay/subscription-status").json()["is_subscribed"] is False


class FakeRazorpayClient:
    def __init__(self, error=None):
        self.error = error
        self.created = []
        self.cancelled = []

    async def create_subscription(self, plan_id, user_id, total_count=12):
        if self.error:
            raise self.error
        self.created.append((plan_id, user_id, total_count))
        return {"id": "sub_new", "status": "created", "notes": {"userId": user_id}}

    async def cancel_subscription(self, subscription_id, at_cycle_end=True):
        if self.error:
            raise self.error
        self.cancelled.append((subscription_id, at_cycle_end))
        return {"id": subscription_id, "status": "active"}


@pytest.fixture
def razorpay_configured(monkeypatch):
    monkeypatch.setattr(config, "RAZORPAY_KEY_ID", "rzp_test_key")
    monkeypatch.setattr(config, "RAZORPAY_PLAN_ID", "plan_pro")


@pytest.fixture
def fake_razorpay(client):
    fake = FakeRazorpayClient()
    fastapi_app.dependency_overrides[get_razorpay_client] = lambda: fake
    return fake


class TestCreateSubscription:
    def test_creates_with_caller_in_notes(self, client, razorpay_configured, fake_razorpay):
        r = client.post("/api/razorpay/create-subscription")
        assert r.status_code == 200
        assert r.json() == {"subscription_id": "sub_new", "key_id": "rzp_test_key"}
        assert fake_razorpay.created == [("plan_pro", "user_alice", config.RAZORPAY_TOTAL_COUNT)]

    def test_not_configured_is_503(self, client, fake_razorpay, monkeypatch):
        monkeypatch.setattr(config, "RAZORPAY_PLAN_ID", "")
        r = client.post("/api/razorpay/create-subscription")
        assert r.status_code == 503
        assert "PLAN_ID" in r.json()["detail"]

    def test_already_active_is_400(self, client, razorpay_configured, fake_razorpay, post_webhook, make_event):
        post_webhook(make_event("subscription.activated", current_end=unix(NOV)))
        r = client.post("/api/razorpay/create-subscription")
        assert r.status_code == 400
        assert fake_razorpay.created == []

    def test_provider_error_status_is_surfaced(self, client, razorpay_configured, fake_razorpay):
        fake_razorpay.error = RazorpayAPIError(401, "Authentication failed")
        r = client.post("/api/razorpay/create-subscription")
        assert r.status_code == 401

    def test_provider_timeout_is_504(self, client, razorpay_configured, fake_razorpay):
        fake_razorpay.error = httpx.ReadTimeout("timed out")
        assert client.post("/api/razorpay/create-subscription").status_code == 504


class TestCancelSubscription:
    def test_requests_cancel_at_cycle_end_without_local_change(
        self, client, db, razorpay_configured, fake_razorpay, post_webhook, make_event
    ):
        post_webhook(make_event("subscription.activated", current_end=unix(NOV)))
        r = client.post("/api/razorpay/cancel-subscription")
        assert r.status_code == 200
        assert fake_razorpay.cancelled == [("sub_123", True)]
        assert SubscriptionStore(db, None).find_by_external_id("sub_123").status == "active"

    def test_no_subscription_is_400(self, client, razorpay_configured, fake_razorpay):
        assert client.post("/api/razorpay/cancel-subscription").status_code == 400


@pytest.fixture
def broken_store(monkeypatch):
    def fail(self, user_id):
        raise StoreFailure(f"lookup for user {user_id} failed")

    monkeypatch.setattr(SubscriptionStore, "find_for_user", fail)


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/razorpay/subscription-status"),
        ("post", "/api/razorpay/create-subscription"),
        ("post", "/api/razorpay/cancel-subscription"),
    ],
)
def test_store_failure_on_lookup_is_500(client, razorpay_configured, fake_razorpay, broken_store, method, path):
    r = getattr(client, method)(path)
    assert r.status_code == 500
    assert r.json()["detail"] == "Could not load subscription"
    assert fake_razorpay.created == []
    assert fake_razorpay.cancelled == []
