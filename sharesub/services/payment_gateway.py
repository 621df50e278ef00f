"""Stripe gateway: the only module that talks to the payment processor.

Stripe's Python client is synchronous, so every call is pushed onto a worker
thread with asyncio.to_thread.
"""

import asyncio
import logging
from dataclasses import dataclass

import stripe

from sharesub.config import Settings
from sharesub.constants import PAYMENT_METHOD_TYPES, PRORATION_NONE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingSubscription:
    subscription_id: str
    subscription_item_id: str
    setup_intent_id: str | None
    client_secret: str | None


class PaymentGateway:
    def __init__(self, settings: Settings):
        self._api_key = settings.stripe_secret_key
        self._stripe: stripe.StripeClient | None = None
        self._webhook_secret = settings.stripe_webhook_secret
        self._currency = settings.currency

    @property
    def _client(self) -> stripe.StripeClient:
        # Built on first use so the app starts without a key configured
        if self._stripe is None:
            self._stripe = stripe.StripeClient(self._api_key)
        return self._stripe

    async def create_customer(self, name: str, email: str) -> str:
        customer = await asyncio.to_thread(
            self._client.customers.create,
            params={"name": name, "email": email},
        )
        return customer.id

    async def create_product(self, name: str) -> str:
        product = await asyncio.to_thread(
            self._client.products.create,
            params={"name": name},
        )
        return product.id

    async def create_price(self, product_id: str, unit_amount: int, interval: str) -> str:
        price = await asyncio.to_thread(
            self._client.prices.create,
            params={
                "product": product_id,
                "unit_amount": unit_amount,
                "currency": self._currency,
                "recurring": {"interval": interval},
            },
        )
        logger.info("Created price %s for %s (%d/%s)", price.id, product_id, unit_amount, interval)
        return price.id

    async def deactivate_price(self, price_id: str) -> None:
        await asyncio.to_thread(
            self._client.prices.update,
            price_id,
            params={"active": False},
        )
        logger.info("Archived price %s", price_id)

    async def reactivate_price(self, price_id: str) -> None:
        await asyncio.to_thread(
            self._client.prices.update,
            price_id,
            params={"active": True},
        )
        logger.info("Reactivated price %s", price_id)

    async def price_is_active(self, price_id: str) -> bool:
        price = await asyncio.to_thread(self._client.prices.retrieve, price_id)
        return bool(price.active)

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        quantity: int,
        trial_end: int,
        metadata: dict[str, str],
    ) -> PendingSubscription:
        """Create a subscription that stays incomplete until the customer confirms setup."""
        sub = await asyncio.to_thread(
            self._client.subscriptions.create,
            params={
                "customer": customer_id,
                "items": [{"price": price_id, "quantity": quantity}],
                "payment_behavior": "default_incomplete",
                "payment_settings": {
                    "save_default_payment_method": "on_subscription",
                    "payment_method_types": PAYMENT_METHOD_TYPES,
                },
                "trial_end": trial_end,
                "metadata": metadata,
                "expand": ["pending_setup_intent"],
            },
        )
        setup_intent = sub["pending_setup_intent"]
        return PendingSubscription(
            subscription_id=sub["id"],
            subscription_item_id=sub["items"]["data"][0]["id"],
            setup_intent_id=setup_intent["id"] if setup_intent else None,
            client_secret=setup_intent["client_secret"] if setup_intent else None,
        )

    async def update_subscription_item(
        self,
        subscription_id: str,
        item_id: str,
        price_id: str,
        quantity: int | None = None,
    ) -> None:
        """Move a subscription item to a new price. Amounts change at the next cycle."""
        item: dict = {"id": item_id, "price": price_id}
        if quantity is not None:
            item["quantity"] = quantity
        await asyncio.to_thread(
            self._client.subscriptions.update,
            subscription_id,
            params={"items": [item], "proration_behavior": PRORATION_NONE},
        )

    async def cancel_subscription(self, subscription_id: str) -> None:
        await asyncio.to_thread(self._client.subscriptions.cancel, subscription_id)
        logger.info("Cancelled subscription %s", subscription_id)

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = await asyncio.to_thread(
            self._client.billing_portal.sessions.create,
            params={"customer": customer_id, "return_url": return_url},
        )
        return session.url

    def construct_event(self, payload: bytes, signature: str) -> stripe.Event:
        """Verify the signature and parse the event.

        Raises stripe.SignatureVerificationError or ValueError on bad input.
        """
        return stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
