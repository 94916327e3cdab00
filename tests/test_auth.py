import time

import jwt
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from app.core import config
from app.dependencies.auth import get_current_user_id, verify_session_token
from app.main import app as fastapi_app

SECRET = "session-secret-for-tests-0123456789"


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setattr(config, "AUTH_JWT_SECRET", SECRET)


def bearer(claims, key=SECRET, algorithm="HS256"):
    return "Bearer " + jwt.encode(claims, key, algorithm=algorithm)


def test_hs256_token_yields_subject():
    token = bearer({"sub": "user_alice", "exp": int(time.time()) + 60})
    assert get_current_user_id(token) == "user_alice"


@pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer ", "Bearer null", "Bearer not-a-jwt"])
def test_malformed_headers_are_401(header):
    with pytest.raises(HTTPException) as exc:
        verify_session_token(header)
    assert exc.value.status_code == 401


def test_wrong_key_is_401():
    with pytest.raises(HTTPException) as exc:
        verify_session_token(bearer({"sub": "user_alice"}, key="another-secret-entirely-0123456789"))
    assert exc.value.status_code == 401


def test_expired_token_is_401():
    with pytest.raises(HTTPException) as exc:
        verify_session_token(bearer({"sub": "user_alice", "exp": int(time.time()) - 60}))
    assert exc.value.status_code == 401


def test_unsupported_algorithm_is_401():
    with pytest.raises(HTTPException) as exc:
        verify_session_token(bearer({"sub": "user_alice"}, algorithm="HS512"))
    assert exc.value.status_code == 401
    assert "HS512" in exc.value.detail


def test_missing_subject_is_401():
    with pytest.raises(HTTPException) as exc:
        get_current_user_id(bearer({"email": "alice@example.com"}))
    assert exc.value.status_code == 401


def test_missing_server_secret_is_500(monkeypatch):
    token = bearer({"sub": "user_alice"})
    monkeypatch.setattr(config, "AUTH_JWT_SECRET", "")
    with pytest.raises(HTTPException) as exc:
        verify_session_token(token)
    assert exc.value.status_code == 500


def test_routes_require_a_session(secrets):
    r = TestClient(fastapi_app).get("/api/razorpay/subscription-status")
    assert r.status_code == 401
