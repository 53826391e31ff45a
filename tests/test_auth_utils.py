"""
Security tests for bearer token handling.

Tests cover:
- Local token round trip (subject and profile claims)
- Expired and tampered tokens
- Trial days remaining rounding
"""
import threading
from datetime import datetime, timedelta

import jwt
import pytest

import auth
from auth import get_current_identity
from auth_utils import ALGORITHM, calculate_trial_days_remaining, create_jwt, decode_jwt
from backend.utils.errors import AuthRequired


def test_token_round_trip():
    token = create_jwt("auth0|abc", email="a@example.com", name="Ann")

    claims = decode_jwt(token)

    assert claims["sub"] == "auth0|abc"
    assert claims["email"] == "a@example.com"
    assert claims["name"] == "Ann"


def test_expired_token_is_rejected():
    token = create_jwt("auth0|abc", expires_in=timedelta(seconds=-1))

    assert decode_jwt(token) is None


def test_token_signed_with_other_key_is_rejected():
    token = jwt.encode({"sub": "auth0|abc"}, "some-other-secret", algorithm=ALGORITHM)

    assert decode_jwt(token) is None


@pytest.mark.asyncio
async def test_identity_dependency_requires_bearer_scheme():
    token = create_jwt("auth0|abc")

    with pytest.raises(AuthRequired):
        await get_current_identity(authorization=token)
    with pytest.raises(AuthRequired):
        await get_current_identity(authorization=None)

    identity = await get_current_identity(authorization=f"Bearer {token}")
    assert identity.subject == "auth0|abc"


@pytest.mark.asyncio
async def test_identity_dependency_requires_subject():
    token = jwt.encode({"email": "a@example.com"}, "test-secret-key-for-local-hs256-tokens", algorithm=ALGORITHM)

    with pytest.raises(AuthRequired):
        await get_current_identity(authorization=f"Bearer {token}")


def test_trial_days_remaining_rounds_up():
    now = datetime(2025, 3, 1, 12, 0, 0)

    assert calculate_trial_days_remaining(now + timedelta(days=6, hours=1), now) == 7
    assert calculate_trial_days_remaining(now + timedelta(days=7), now) == 7
    assert calculate_trial_days_remaining(now - timedelta(days=2), now) == -2
    assert calculate_trial_days_remaining(None, now) is None


@pytest.mark.asyncio
async def test_identity_provider_verification_runs_off_the_event_loop_thread(monkeypatch):
    loop_thread = threading.get_ident()
    seen = {}

    def fake_decode(token):
        seen["thread"] = threading.get_ident()
        return {"sub": "auth0|abc", "email": "a@example.com"}

    monkeypatch.setattr(auth, "auth0_enabled", lambda: True)
    monkeypatch.setattr(auth, "decode_jwt", fake_decode)

    identity = await get_current_identity(authorization="Bearer remote-token")

    assert identity.subject == "auth0|abc"
    assert seen["thread"] != loop_thread
