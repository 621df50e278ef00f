"""Stripe and mail fakes plus request helpers shared by the test modules."""

import itertools
import json

import stripe
from httpx import AsyncClient

from sharesub.services.payment_gateway import PendingSubscription

VALID_SIGNATURE = "t=1,v1=test"
PASSWORD = "correct-horse-battery"


class FakeGateway:
    """In-memory stand-in for the Stripe gateway.

    ``fail_on`` maps a method name to True (always fail) or a set of ids
    (subscription, price or customer) the call should fail for.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.calls: list[tuple] = []
        self.fail_on: dict[str, object] = {}
        self.prices: dict[str, dict] = {}
        self.subscriptions: dict[str, dict] = {}

    def _next(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def _maybe_fail(self, method: str, key: str | None = None) -> None:
        failing = self.fail_on.get(method)
        if failing is True or (failing and key in failing):
            raise RuntimeError(f"stripe {method} failed for {key}")

    def calls_to(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    async def create_customer(self, name, email):
        self.calls.append(("create_customer", name, email))
        self._maybe_fail("create_customer", email)
        return self._next("cus")

    async def create_product(self, name):
        self.calls.append(("create_product", name))
        self._maybe_fail("create_product")
        return self._next("prod")

    async def create_price(self, product_id, unit_amount, interval):
        self.calls.append(("create_price", product_id, unit_amount, interval))
        self._maybe_fail("create_price", product_id)
        price_id = self._next("price")
        self.prices[price_id] = {
            "product": product_id,
            "unit_amount": unit_amount,
            "interval": interval,
            "active": True,
        }
        return price_id

    async def deactivate_price(self, price_id):
        self.calls.append(("deactivate_price", price_id))
        self._maybe_fail("deactivate_price", price_id)
        self.prices[price_id]["active"] = False

    async def reactivate_price(self, price_id):
        self.calls.append(("reactivate_price", price_id))
        self._maybe_fail("reactivate_price", price_id)
        self.prices[price_id]["active"] = True

    async def price_is_active(self, price_id):
        self._maybe_fail("price_is_active", price_id)
        return self.prices[price_id]["active"]

    async def create_subscription(self, customer_id, price_id, quantity, trial_end, metadata):
        self.calls.append(("create_subscription", customer_id, price_id, quantity))
        self._maybe_fail("create_subscription", customer_id)
        subscription_id = self._next("sub")
        item_id = self._next("si")
        setup_intent_id = self._next("seti")
        self.subscriptions[subscription_id] = {
            "customer": customer_id,
            "item": item_id,
            "price": price_id,
            "quantity": quantity,
            "trial_end": trial_end,
            "metadata": metadata,
            "status": "trialing",
        }
        return PendingSubscription(
            subscription_id=subscription_id,
            subscription_item_id=item_id,
            setup_intent_id=setup_intent_id,
            client_secret=f"{setup_intent_id}_secret",
        )

    async def update_subscription_item(self, subscription_id, item_id, price_id, quantity=None):
        self.calls.append(("update_subscription_item", subscription_id, price_id, quantity))
        self._maybe_fail("update_subscription_item", subscription_id)
        sub = self.subscriptions[subscription_id]
        assert sub["item"] == item_id
        sub["price"] = price_id
        if quantity is not None:
            sub["quantity"] = quantity

    async def cancel_subscription(self, subscription_id):
        self.calls.append(("cancel_subscription", subscription_id))
        self._maybe_fail("cancel_subscription", subscription_id)
        self.subscriptions[subscription_id]["status"] = "canceled"

    async def create_portal_session(self, customer_id, return_url):
        self.calls.append(("create_portal_session", customer_id, return_url))
        return f"https://billing.stripe.test/session/{customer_id}"

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise stripe.SignatureVerificationError("No signatures found", signature)
        return json.loads(payload)

    def subscription_object(self, subscription_id: str, username: str = "") -> dict:
        """A customer.subscription.* payload as Stripe would send it now."""
        sub = self.subscriptions[subscription_id]
        price = self.prices[sub["price"]]
        return {
            "id": subscription_id,
            "object": "subscription",
            "status": sub["status"],
            "metadata": {"username": username, **sub["metadata"]},
            "items": {
                "data": [
                    {
                        "id": sub["item"],
                        "quantity": sub["quantity"],
                        "price": {
                            "id": sub["price"],
                            "product": price["product"],
                            "unit_amount": price["unit_amount"],
                        },
                    }
                ]
            },
        }


class FakeMailer:
    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, to_email, subject, template, **context):
        self.sent.append({"to": to_email, "subject": subject, "template": template, **context})
        return True

    def last(self, template: str) -> dict:
        return [m for m in self.sent if m["template"] == template][-1]



async def signup(client: AsyncClient, username: str, **overrides) -> dict:
    """Sign a user up and return Authorization headers for them."""
    body = {
        "first_name": username.capitalize(),
        "last_name": "Tester",
        "username": username,
        "email": f"{username}@example.com",
        "password": PASSWORD,
        **overrides,
    }
    response = await client.post("/auth/signup", json=body)
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


async def create_plan(client: AsyncClient, headers: dict, **overrides) -> str:
    body = {
        "name": "Streaming",
        "cycle_frequency": "monthly",
        "per_cycle_cost": "10.00",
        "start_date": "2026-01-15",
        **overrides,
    }
    response = await client.post("/plans", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["plan_id"]


async def send_event(client: AsyncClient, event_type: str, obj: dict, signature: str = VALID_SIGNATURE):
    payload = {
        "id": f"evt_{event_type}_{obj.get('id')}",
        "type": event_type,
        "data": {"object": obj},
    }
    return await client.post(
        "/webhooks/stripe",
        content=json.dumps(payload),
        headers={"stripe-signature": signature},
    )


async def join(client: AsyncClient, headers: dict, plan_id: str, quantity: int) -> dict:
    response = await client.post(f"/plans/{plan_id}/join", json={"quantity": quantity}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


async def join_and_activate(
    client: AsyncClient,
    gateway: FakeGateway,
    headers: dict,
    plan_id: str,
    quantity: int,
) -> dict:
    """Join, deliver subscription.created, then confirm the setup intent."""
    joined = await join(client, headers, plan_id, quantity)
    created = await send_event(
        client, "customer.subscription.created", gateway.subscription_object(joined["subscription_id"])
    )
    assert created.status_code == 200
    confirmed = await send_event(client, "setup_intent.succeeded", {"id": joined["setup_intent_id"]})
    assert confirmed.status_code == 200
    return joined
