"""
Endpoint tests: authentication, entitlement gating, chat turns and billing webhooks
"""
import json
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest
import stripe

from conftest import TestAsyncSessionLocal, auth_headers
from crud.entitlement import EntitlementRepository
from main import app
from models.entitlement import utc_now
from routers.billing_router import get_billing_service
from routers.chat_router import get_run_coordinator
from services.assistant_client import AssistantClient
from services.billing_service import BillingService
from services.run_coordinator import RunCoordinator

SUBJECT = "auth0|user-1"


async def seed(**changes):
    async with TestAsyncSessionLocal() as session:
        repo = EntitlementRepository(session)
        record = await repo.get_or_create(SUBJECT)
        if changes:
            record = await repo.save(record.with_changes(**changes))
        return record


async def stored():
    async with TestAsyncSessionLocal() as session:
        return await EntitlementRepository(session).get(SUBJECT)


def assistant_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/openai/threads":
        return httpx.Response(200, json={"id": "thread_9"})
    if path == "/openai/threads/thread_9/messages" and request.method == "POST":
        return httpx.Response(200, json={"id": "msg_user"})
    if path == "/openai/threads/thread_9/messages":
        return httpx.Response(200, json={"data": [{
            "role": "assistant", "run_id": "run_9", "created_at": 1,
            "content": [{"type": "text", "text": {"value": "Hello there!"}}],
        }]})
    if path.startswith("/openai/threads/thread_9/runs"):
        return httpx.Response(200, json={"id": "run_9", "thread_id": "thread_9", "status": "completed"})
    return httpx.Response(404, json={"error": {"message": "no route"}})


@pytest.fixture
def fake_assistant():
    async def no_sleep(seconds):
        return None

    def coordinator():
        client = AssistantClient(
            endpoint="https://example.openai.azure.com",
            api_key="test-key",
            assistant_id="asst_1",
            transport=httpx.MockTransport(assistant_handler),
        )
        return RunCoordinator(client, poll_interval=0, sleep=no_sleep)

    app.dependency_overrides[get_run_coordinator] = coordinator
    yield


@pytest.fixture
def billing():
    service = BillingService(secret_key="sk_test_123", webhook_secret="whsec_test", price_id="price_test")
    app.dependency_overrides[get_billing_service] = lambda: service
    yield service


@pytest.mark.asyncio
async def test_root_health_text(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.text == "Backend is running and accessible!"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_chat_requires_token(client, fake_assistant):
    response = await client.post("/api/chat", json={"threadId": "thread_9", "message": "hi"})

    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"


@pytest.mark.asyncio
async def test_chat_rejects_bad_token(client, fake_assistant):
    response = await client.post(
        "/api/chat",
        json={"threadId": "thread_9", "message": "hi"},
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"message": "hi"},
    {"threadId": "thread_9"},
    {"threadId": "  ", "message": "hi"},
    {},
])
async def test_chat_requires_thread_and_message(client, fake_assistant, body):
    response = await client.post("/api/chat", json=body, headers=auth_headers(SUBJECT))

    assert response.status_code == 400
    assert response.json()["message"] == "threadId and message are required"


@pytest.mark.asyncio
async def test_new_user_can_chat(client, fake_assistant):
    thread = await client.post("/api/new-thread", headers=auth_headers(SUBJECT))
    assert thread.status_code == 200
    assert thread.json()["data"]["thread_id"] == "thread_9"

    response = await client.post(
        "/api/chat",
        json={"threadId": "thread_9", "message": "hello"},
        headers=auth_headers(SUBJECT),
    )

    assert response.status_code == 200
    assert response.json()["data"]["response"] == "Hello there!"
    record = await stored()
    assert record.plan == "trialing"
    assert record.email == "user@example.com"


@pytest.mark.asyncio
async def test_lapsed_trial_gets_403_and_is_expired(client, fake_assistant):
    await seed(trial_expiry=utc_now() - timedelta(minutes=1))

    response = await client.post(
        "/api/chat",
        json={"threadId": "thread_9", "message": "hello"},
        headers=auth_headers(SUBJECT),
    )

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "entitlement_denied"
    assert body["data"]["plan_status"] == "expired"
    assert "trial has expired" in body["data"]["reason"]

    record = await stored()
    assert record.plan == "expired"
    assert record.trial_expiry is None


@pytest.mark.asyncio
async def test_unknown_plan_gets_403(client, fake_assistant):
    await seed(plan="legacy")

    response = await client.post("/api/new-thread", headers=auth_headers(SUBJECT))

    assert response.status_code == 403
    assert response.json()["data"]["plan_status"] == "unknown"


@pytest.mark.asyncio
async def test_user_status_reports_trial(client):
    response = await client.get("/api/user-status", headers=auth_headers(SUBJECT))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["plan"] == "trialing"
    assert data["trial_days_remaining"] == 7
    assert data["trial_expiry"]


@pytest.mark.asyncio
async def test_user_status_requires_token(client):
    response = await client.get("/api/user-status")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_activates_linked_record(client, billing):
    await seed(billing_customer_ref="cus_1")
    payload = json.dumps({
        "id": "evt_1",
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_1", "customer": "cus_1", "status": "active"}},
    })

    with patch.object(stripe.Webhook, "construct_event", return_value={}) as construct:
        response = await client.post(
            "/api/billing/webhook",
            content=payload,
            headers={"stripe-signature": "t=1,v1=abc"},
        )

    assert response.status_code == 200
    assert response.json()["applied"] is True
    construct.assert_called_once()
    record = await stored()
    assert record.plan == "active"
    assert record.billing_subscription_ref == "sub_1"


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client, billing):
    error = stripe.SignatureVerificationError("bad signature", "t=1,v1=abc")

    with patch.object(stripe.Webhook, "construct_event", side_effect=error):
        response = await client.post(
            "/api/billing/webhook",
            content=b"{}",
            headers={"stripe-signature": "t=1,v1=abc"},
        )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_signature"


@pytest.mark.asyncio
async def test_webhook_missing_signature_is_rejected(client, billing):
    response = await client.post("/api/billing/webhook", content=b"{}")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_ignores_unmapped_events(client, billing):
    payload = json.dumps({"id": "evt_2", "type": "charge.refunded", "data": {"object": {"customer": "cus_1"}}})

    with patch.object(stripe.Webhook, "construct_event", return_value={}):
        response = await client.post(
            "/api/billing/webhook",
            content=payload,
            headers={"stripe-signature": "t=1,v1=abc"},
        )

    assert response.status_code == 200
    assert response.json()["ignored"] is True


@pytest.mark.asyncio
async def test_subscribe_links_customer_and_returns_client_secret(client, billing):
    await seed(plan="expired", trial_expiry=None)
    subscription = {"subscription_ref": "sub_new", "client_secret": "pi_secret_123"}

    with patch.object(BillingService, "create_customer", return_value="cus_new") as create_customer, \
            patch.object(BillingService, "create_subscription", return_value=subscription):
        response = await client.post("/api/billing/subscribe", headers=auth_headers(SUBJECT))

    assert response.status_code == 200
    assert response.json()["data"] == {"subscription_id": "sub_new", "client_secret": "pi_secret_123"}
    create_customer.assert_awaited_once()
    record = await stored()
    assert record.billing_customer_ref == "cus_new"
    assert record.billing_subscription_ref == "sub_new"
    # Billing state only changes through webhooks
    assert record.plan == "expired"


@pytest.mark.asyncio
async def test_chat_with_mistyped_field_is_400_envelope(client, fake_assistant):
    response = await client.post(
        "/api/chat",
        json={"threadId": "thread_9", "message": 123},
        headers=auth_headers(SUBJECT),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["error"] == "invalid_request"
    assert body["data"]["detail"][0]["loc"][-1] == "message"


@pytest.mark.asyncio
async def test_chat_with_unparseable_json_is_400_envelope(client, fake_assistant):
    headers = {**auth_headers(SUBJECT), "Content-Type": "application/json"}

    response = await client.post("/api/chat", content=b"{not json", headers=headers)

    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["error"] == "invalid_request"
