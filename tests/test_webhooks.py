import hashlib
import hmac
import json
import time

import pytest
import stripe
from httpx import AsyncClient

from sharesub.services.payment_gateway import PaymentGateway
from tests.helpers import create_plan, join, send_event, signup


def _stripe_signature(payload: str, secret: str, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(test_client: AsyncClient, gateway, db_session):
    owner = await signup(test_client, "owner")
    member = await signup(test_client, "member")
    plan_id = await create_plan(test_client, owner)
    joined = await join(test_client, member, plan_id, 1)

    response = await send_event(
        test_client, "setup_intent.succeeded", {"id": joined["setup_intent_id"]}, signature="t=1,v1=forged"
    )

    assert response.status_code == 400
    listed = (await test_client.get("/plans", headers=member)).json()
    assert listed[0]["status"] == "pending_setup"


@pytest.mark.asyncio
async def test_missing_signature_header_is_rejected(test_client: AsyncClient):
    response = await test_client.post("/webhooks/stripe", content=b"{}")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unhandled_event_type_is_acknowledged(test_client: AsyncClient):
    response = await send_event(test_client, "customer.created", {"id": "cus_1"})
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_handler_failure_is_still_acknowledged(test_client: AsyncClient):
    # Missing items: the handler raises, the error is logged, Stripe gets a 200
    response = await send_event(test_client, "customer.subscription.created", {"id": "sub_broken"})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_payment_failure_is_logged_only(test_client: AsyncClient, gateway, caplog):
    owner = await signup(test_client, "owner")
    member = await signup(test_client, "member")
    plan_id = await create_plan(test_client, owner)
    joined = await join(test_client, member, plan_id, 1)

    response = await send_event(
        test_client,
        "invoice.payment_failed",
        {"id": "in_1", "subscription": joined["subscription_id"], "attempt_count": 2},
    )

    assert response.status_code == 200
    assert any("Payment failed for subscription" in r.getMessage() for r in caplog.records)
    listed = (await test_client.get("/plans", headers=member)).json()
    assert {p["plan_id"]: p["status"] for p in listed}[plan_id] == "pending_setup"


def test_gateway_verifies_real_stripe_signatures(settings):
    gateway = PaymentGateway(settings)
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "setup_intent.succeeded",
                          "data": {"object": {"id": "seti_1"}}})

    event = gateway.construct_event(payload.encode(), _stripe_signature(payload, settings.stripe_webhook_secret))

    assert event["type"] == "setup_intent.succeeded"
    assert event["data"]["object"]["id"] == "seti_1"
    with pytest.raises(stripe.SignatureVerificationError):
        gateway.construct_event(payload.encode(), _stripe_signature(payload, "whsec_other"))
    with pytest.raises(stripe.SignatureVerificationError):
        gateway.construct_event(
            payload.encode(), _stripe_signature(payload, settings.stripe_webhook_secret, timestamp=1)
        )
