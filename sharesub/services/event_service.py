"""Stripe webhook event handlers.

Every handler is safe to replay: it compares the ledger with the event before
changing anything. Handler failures are logged and swallowed by
``dispatch_event``; Stripe always gets an acknowledgement once dispatch ran.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.constants import STATUS_PENDING_SETUP
from sharesub.context import AppContext
from sharesub.services import ledger_service, subscription_service

logger = logging.getLogger(__name__)

Handler = Callable[[dict, AsyncSession, AppContext], Awaitable[None]]


def _invoice_subscription_id(invoice: dict) -> str | None:
    """Extract the subscription id, handling Stripe API version differences.

    Newer API versions (2025-03-31+) moved it to parent.subscription_details.
    """
    subscription_id = invoice.get("subscription")
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else subscription_id.get("id")
    try:
        return invoice["parent"]["subscription_details"]["subscription"]
    except (KeyError, TypeError):
        return None


async def _archive_price(ctx: AppContext, price_id: str | None, plan_id: str) -> bool:
    if not price_id:
        return True
    try:
        await ctx.gateway.deactivate_price(price_id)
        return True
    except Exception as e:
        logger.error("Archiving price %s of plan %s failed: %s", price_id, plan_id, e)
        return False


async def _price_is_active(ctx: AppContext, price_id: str) -> bool:
    try:
        return await ctx.gateway.price_is_active(price_id)
    except Exception as e:
        logger.error("Looking up price %s failed; leaving it as is: %s", price_id, e)
        return False


async def handle_subscription_created(sub_data: dict, db: AsyncSession, ctx: AppContext) -> None:
    """Adopt the new subscription's price as the plan price and fan it out.

    Price archival and fan-out run concurrently and independently; a replay
    finds the plan already on the price and every member already moved.
    """
    subscription_id = sub_data["id"]
    item = sub_data["items"]["data"][0]
    price = item["price"]
    new_price_id = price["id"]
    plan_id = price["product"]
    username = (sub_data.get("metadata") or {}).get("username")

    async with ctx.locks.hold(plan_id):
        plan = await ledger_service.get_plan(db, plan_id, for_update=True)
        if plan is None:
            logger.warning("Subscription %s references unknown plan %s", subscription_id, plan_id)
            return

        membership = await ledger_service.get_membership_by_subscription(db, subscription_id)
        if membership is None:
            logger.warning("Subscription %s (user %s) has no membership; ignoring", subscription_id, username)
            return
        if not membership.subscription_item_id:
            membership.subscription_item_id = item["id"]

        # Moved to a newer plan price while still pending: this price is stale
        if membership.price_id and membership.price_id != new_price_id:
            logger.info("Subscription %s price %s already superseded by %s",
                        subscription_id, new_price_id, membership.price_id)
            # Replays of older events find their price already retired by a reprice
            if new_price_id != plan.price_id and await _price_is_active(ctx, new_price_id):
                await _archive_price(ctx, new_price_id, plan_id)
            await db.commit()
            return

        membership.price_id = new_price_id
        previous_price_id = plan.price_id if plan.price_id != new_price_id else None
        others = await subscription_service.members_behind_price(
            db, plan_id, new_price_id, exclude_subscription_id=subscription_id
        )

        archived, fan_out = await asyncio.gather(
            _archive_price(ctx, previous_price_id, plan_id),
            subscription_service.fan_out_price(ctx.gateway, others, new_price_id),
        )

        if plan.price_id != new_price_id:
            plan.price_id = new_price_id
            plan.unit_amount = price.get("unit_amount")
        subscription_service.apply_fan_out(others, fan_out, new_price_id)
        await db.commit()

    failed = [r.subscription_id for r in fan_out if not r.ok]
    logger.info(
        "Subscription %s created for %s on plan %s: archived=%s, fan-out %d/%d ok%s",
        subscription_id, username, plan_id, archived,
        len(fan_out) - len(failed), len(fan_out),
        f", failed {failed}" if failed else "",
    )


async def _activate(db: AsyncSession, ctx: AppContext, plan_id: str, lookup: Callable) -> None:
    async with ctx.locks.hold(plan_id):
        membership = await lookup()
        if membership is None:
            return
        await subscription_service.activate_membership(db, ctx, membership)


async def handle_setup_intent_succeeded(intent_data: dict, db: AsyncSession, ctx: AppContext) -> None:
    """Payment method confirmed for a deferred subscription: PendingSetup -> Active."""
    setup_intent_id = intent_data["id"]
    membership = await ledger_service.get_membership_by_setup_intent(db, setup_intent_id)
    if membership is None:
        logger.info("Setup intent %s matches no membership", setup_intent_id)
        return
    await _activate(
        db, ctx, membership.plan_id,
        lambda: ledger_service.get_membership_by_setup_intent(db, setup_intent_id),
    )


async def handle_invoice_payment_succeeded(invoice_data: dict, db: AsyncSession, ctx: AppContext) -> None:
    """A paid (non-zero) invoice also confirms a pending membership."""
    subscription_id = _invoice_subscription_id(invoice_data)
    if not subscription_id:
        return
    membership = await ledger_service.get_membership_by_subscription(db, subscription_id)
    if membership is None:
        return
    if membership.status != STATUS_PENDING_SETUP:
        logger.debug("Invoice paid for subscription %s (status %s)", subscription_id, membership.status)
        return
    # The $0 trial invoice is issued before any payment method exists
    if not invoice_data.get("amount_paid"):
        logger.debug("Zero-amount invoice for pending subscription %s", subscription_id)
        return
    await _activate(
        db, ctx, membership.plan_id,
        lambda: ledger_service.get_membership_by_subscription(db, subscription_id),
    )


async def handle_invoice_payment_failed(invoice_data: dict, db: AsyncSession, ctx: AppContext) -> None:
    """Dunning hook: record the failure in the log; Stripe's retry schedule applies."""
    subscription_id = _invoice_subscription_id(invoice_data)
    if not subscription_id:
        return
    membership = await ledger_service.get_membership_by_subscription(db, subscription_id)
    if membership is None:
        return
    logger.warning(
        "Payment failed for subscription %s (plan %s, user %s, status %s, attempt %s)",
        subscription_id, membership.plan_id, membership.user_id, membership.status,
        invoice_data.get("attempt_count"),
    )


async def handle_subscription_deleted(sub_data: dict, db: AsyncSession, ctx: AppContext) -> None:
    """Subscription ended outside the app (portal, dunning). Drop it and reprice."""
    subscription_id = sub_data["id"]
    membership = await ledger_service.get_membership_by_subscription(db, subscription_id)
    if membership is None:
        return

    plan_id = membership.plan_id
    async with ctx.locks.hold(plan_id):
        membership = await ledger_service.get_membership_by_subscription(db, subscription_id)
        if membership is None:
            return
        await ledger_service.delete_membership_by_subscription(db, subscription_id)
        await db.commit()
        logger.info("Subscription %s deleted on Stripe; removed from plan %s", subscription_id, plan_id)

        # A pending row holds no quantity, but the plan may already be priced for it
        plan = await ledger_service.get_plan(db, plan_id, for_update=True)
        if plan is not None and plan.price_id:
            await subscription_service.reprice_after_change(db, ctx, plan)


EVENT_HANDLERS: dict[str, Handler] = {
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.deleted": handle_subscription_deleted,
    "setup_intent.succeeded": handle_setup_intent_succeeded,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


async def dispatch_event(event: dict, db: AsyncSession, ctx: AppContext) -> bool:
    """Run the handler for an event. Returns False for unhandled event types."""
    event_type = event["type"]
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled event type %s", event_type)
        return False

    try:
        await handler(event["data"]["object"], db, ctx)
    except Exception:
        logger.exception("Handling %s (%s) failed", event_type, event.get("id"))
        await db.rollback()
    return True
