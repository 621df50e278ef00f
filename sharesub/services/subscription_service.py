"""Membership lifecycle: join, activation, quantity edits, unsubscribe, fan-out.

States: not_joined -> pending_setup -> active -> (row removed).

A join only records the pending Stripe subscription. Quantity becomes durable
in the ledger when a confirmation event from Stripe reaches
``activate_membership``; the join response itself never activates anything.
"""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.constants import STATUS_ACTIVE, STATUS_PENDING_SETUP
from sharesub.context import AppContext
from sharesub.errors import ForbiddenError, InternalError, UserInputError, reraise_as_internal
from sharesub.models.membership import Membership
from sharesub.models.plan import Plan
from sharesub.models.user import User
from sharesub.services import ledger_service, plan_service, pricing_service
from sharesub.services.payment_gateway import PaymentGateway
from sharesub.utils import next_cycle_start, to_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    plan_id: str
    subscription_id: str
    setup_intent_id: str | None
    client_secret: str | None


@dataclass(frozen=True)
class FanOutResult:
    subscription_id: str
    ok: bool
    error: str | None = None


# --- Fan-out ---


async def fan_out_price(
    gateway: PaymentGateway,
    members: list[Membership],
    price_id: str,
) -> list[FanOutResult]:
    """Move every member's subscription item to price_id, independently.

    One member failing never cancels or rolls back the others. Failures are
    logged and left for next-cycle or manual reconciliation (no retry).
    """
    async def _update(member: Membership) -> FanOutResult:
        try:
            await gateway.update_subscription_item(
                member.subscription_id, member.subscription_item_id, price_id
            )
            return FanOutResult(member.subscription_id, ok=True)
        except Exception as e:
            logger.error(
                "Fan-out of price %s to subscription %s (plan %s) failed: %s",
                price_id, member.subscription_id, member.plan_id, e,
            )
            return FanOutResult(member.subscription_id, ok=False, error=str(e))

    if not members:
        return []
    return list(await asyncio.gather(*(_update(m) for m in members)))


def apply_fan_out(members: list[Membership], results: list[FanOutResult], price_id: str) -> None:
    """Record the new price on members whose Stripe update succeeded."""
    updated = {r.subscription_id for r in results if r.ok}
    for member in members:
        if member.subscription_id in updated:
            member.price_id = price_id


async def members_behind_price(
    db: AsyncSession,
    plan_id: str,
    price_id: str,
    exclude_subscription_id: str | None = None,
) -> list[Membership]:
    members = await ledger_service.list_subscribed_members(db, plan_id, exclude_subscription_id)
    return [m for m in members if m.price_id != price_id]


async def sync_members_to_plan_price(
    db: AsyncSession,
    ctx: AppContext,
    plan: Plan,
    exclude_subscription_id: str | None = None,
) -> list[FanOutResult]:
    """Fan the plan's active price out to every subscribed member not on it yet."""
    if not plan.price_id:
        return []
    members = await members_behind_price(db, plan.id, plan.price_id, exclude_subscription_id)
    results = await fan_out_price(ctx.gateway, members, plan.price_id)
    apply_fan_out(members, results, plan.price_id)
    await db.commit()
    return results


async def reprice_after_change(db: AsyncSession, ctx: AppContext, plan: Plan) -> list[FanOutResult]:
    """Reconcile the plan price after a committed membership change, then fan out.

    Caller holds the plan lock. A Stripe failure while repricing is logged and
    leaves the old price authoritative.
    """
    plan_id = plan.id
    try:
        await pricing_service.reconcile_plan_price(db, ctx, plan)
    except Exception as e:
        await db.rollback()
        logger.error("Repricing plan %s failed; old price stays active: %s", plan_id, e)
        return []
    return await sync_members_to_plan_price(db, ctx, plan)


# --- Join ---


async def join_plan(
    db: AsyncSession,
    ctx: AppContext,
    user: User,
    plan_id: str,
    quantity: int,
) -> JoinResult:
    """NotJoined -> PendingSetup: create a deferred-payment subscription for the user."""
    if quantity < 1:
        raise UserInputError("Quantity must be at least 1")

    async with ctx.locks.hold(plan_id):
        plan = await ledger_service.get_plan(db, plan_id, for_update=True)
        if plan is None:
            raise UserInputError("No plan matched search")

        membership = await ledger_service.get_membership(db, user.id, plan_id)
        if membership is not None and membership.status == STATUS_ACTIVE:
            raise UserInputError("You already subscribe to this plan; edit your quantity instead")
        stale_subscription_id = membership.subscription_id if membership is not None else None
        stale_price_id = None
        if membership is not None and membership.price_id != plan.price_id:
            stale_price_id = membership.price_id

        with reraise_as_internal("Unable to create subscription"):
            if not user.stripe_customer_id:
                user.stripe_customer_id = await ctx.gateway.create_customer(user.full_name, user.email)
                await db.commit()

            aggregate = await ledger_service.aggregate_quantity(db, plan_id)
            price_id, _ = await pricing_service.mint_price(ctx.gateway, plan, aggregate + quantity)
            trial_end = to_timestamp(next_cycle_start(plan.start_date, plan.cycle_frequency))
            try:
                pending = await ctx.gateway.create_subscription(
                    customer_id=user.stripe_customer_id,
                    price_id=price_id,
                    quantity=quantity,
                    trial_end=trial_end,
                    metadata={"username": user.username, "plan_id": plan_id},
                )
            except Exception:
                await _drop_price(ctx.gateway, price_id)
                raise

            try:
                await ledger_service.upsert_membership(
                    db, user.id, plan_id,
                    status=STATUS_PENDING_SETUP,
                    pending_quantity=quantity,
                    subscription_id=pending.subscription_id,
                    subscription_item_id=pending.subscription_item_id,
                    setup_intent_id=pending.setup_intent_id,
                    price_id=price_id,
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    if stale_subscription_id:
        try:
            await ctx.gateway.cancel_subscription(stale_subscription_id)
        except Exception as e:
            logger.error("Could not cancel replaced pending subscription %s: %s", stale_subscription_id, e)
    if stale_price_id:
        await _drop_price(ctx.gateway, stale_price_id)

    logger.info("User %s joined plan %s (quantity %d), pending setup %s",
                user.username, plan_id, quantity, pending.setup_intent_id)
    return JoinResult(
        plan_id=plan_id,
        subscription_id=pending.subscription_id,
        setup_intent_id=pending.setup_intent_id,
        client_secret=pending.client_secret,
    )


async def _drop_price(gateway: PaymentGateway, price_id: str) -> None:
    try:
        await gateway.deactivate_price(price_id)
    except Exception as e:
        logger.error("Could not archive unused price %s: %s", price_id, e)


async def cancel_pending_join(db: AsyncSession, ctx: AppContext, user: User, setup_intent_id: str) -> str:
    """Abandon a join whose payment setup was never confirmed. Returns the plan id."""
    membership = await ledger_service.get_membership_by_setup_intent(db, setup_intent_id)
    if membership is None:
        raise UserInputError("No pending subscription matched")
    if membership.user_id != user.id:
        raise ForbiddenError("Unauthorized request")

    plan_id = membership.plan_id
    async with ctx.locks.hold(plan_id):
        membership = await ledger_service.get_membership_by_setup_intent(db, setup_intent_id)
        if membership is None or membership.status != STATUS_PENDING_SETUP:
            raise UserInputError("This subscription is no longer pending")
        with reraise_as_internal("Unable to cancel transaction"):
            await discard_pending_membership(db, ctx, membership)
    return plan_id


async def discard_pending_membership(db: AsyncSession, ctx: AppContext, membership: Membership) -> None:
    """Cancel a pending Stripe subscription and forget it. Caller holds the plan lock.

    Its subscription.created event may already have moved the plan onto a
    price counting the abandoned units, so the plan is reconciled afterwards.
    """
    subscription_id = membership.subscription_id
    plan_id = membership.plan_id
    plan = await ledger_service.get_plan(db, plan_id, for_update=True)
    await ctx.gateway.cancel_subscription(subscription_id)
    if membership.price_id and plan is not None and membership.price_id != plan.price_id:
        await _drop_price(ctx.gateway, membership.price_id)
    await ledger_service.delete_membership_by_subscription(db, subscription_id)
    await db.commit()
    logger.info("Discarded pending subscription %s on plan %s", subscription_id, plan_id)

    if plan is not None and plan.price_id:
        await reprice_after_change(db, ctx, plan)


# --- Activation ---


async def activate_membership(db: AsyncSession, ctx: AppContext, membership: Membership) -> bool:
    """PendingSetup -> Active, on a confirmed payment event only.

    Caller holds the plan lock. Idempotent: an active membership is left
    alone. Returns True if the membership was activated by this call.
    """
    if membership.status == STATUS_ACTIVE:
        logger.info("Subscription %s already active", membership.subscription_id)
        return False
    if membership.status != STATUS_PENDING_SETUP or not membership.pending_quantity:
        logger.warning("Subscription %s is not pending setup (status %s)",
                       membership.subscription_id, membership.status)
        return False

    membership.quantity = membership.pending_quantity
    membership.pending_quantity = None
    membership.status = STATUS_ACTIVE
    await db.commit()
    logger.info("Subscription %s active with quantity %d on plan %s",
                membership.subscription_id, membership.quantity, membership.plan_id)

    # Concurrent joins price against the aggregate they saw; settle it now
    plan = await ledger_service.get_plan(db, membership.plan_id, for_update=True)
    await reprice_after_change(db, ctx, plan)
    return True


# --- Quantity edits ---


async def _owned_membership(db: AsyncSession, user: User, subscription_id: str) -> Membership:
    membership = await ledger_service.get_membership_by_subscription(db, subscription_id)
    if membership is None:
        raise UserInputError("No subscription matched")
    if membership.user_id != user.id:
        raise ForbiddenError("Unauthorized request")
    return membership


async def edit_quantity(
    db: AsyncSession,
    ctx: AppContext,
    user: User,
    subscription_id: str,
    new_quantity: int,
) -> Membership:
    """Change an active member's quantity, reprice the plan, and fan out to the others."""
    if new_quantity < 1:
        raise UserInputError("Quantity must be at least 1")

    membership = await _owned_membership(db, user, subscription_id)
    async with ctx.locks.hold(membership.plan_id):
        membership = await _owned_membership(db, user, subscription_id)
        if membership.status != STATUS_ACTIVE:
            raise UserInputError("This subscription is not active yet")
        if membership.quantity == new_quantity:
            return membership

        plan = await ledger_service.get_plan(db, membership.plan_id, for_update=True)
        with reraise_as_internal("Unable to update quantity"):
            try:
                membership.quantity = new_quantity
                await db.flush()
                await pricing_service.reconcile_plan_price(db, ctx, plan)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        own_update_failed = False
        try:
            await ctx.gateway.update_subscription_item(
                membership.subscription_id,
                membership.subscription_item_id,
                plan.price_id,
                quantity=new_quantity,
            )
            membership.price_id = plan.price_id
        except Exception as e:
            own_update_failed = True
            logger.error("Quantity update of subscription %s failed: %s", subscription_id, e)

        await sync_members_to_plan_price(db, ctx, plan, exclude_subscription_id=subscription_id)

    if own_update_failed:
        raise InternalError("Unable to update quantity")
    logger.info("Subscription %s quantity set to %d", subscription_id, new_quantity)
    return membership


# --- Unsubscribe ---


async def cancel_membership(db: AsyncSession, ctx: AppContext, membership: Membership) -> None:
    """Active -> Cancelled. Caller holds the plan lock.

    Cancels on Stripe first; if that fails nothing changes in the ledger.
    """
    subscription_id = membership.subscription_id
    plan_id = membership.plan_id
    await ctx.gateway.cancel_subscription(subscription_id)
    await ledger_service.delete_membership_by_subscription(db, subscription_id)
    await db.commit()
    logger.info("Subscription %s cancelled on plan %s", subscription_id, plan_id)

    plan = await ledger_service.get_plan(db, plan_id, for_update=True)
    if plan is not None and plan.price_id:
        await reprice_after_change(db, ctx, plan)


async def unsubscribe(db: AsyncSession, ctx: AppContext, user: User, subscription_id: str) -> str:
    """Leave a plan. Owners hand the plan over first (see unsubscribe_as_owner)."""
    membership = await _owned_membership(db, user, subscription_id)
    plan_id = membership.plan_id
    async with ctx.locks.hold(plan_id):
        membership = await _owned_membership(db, user, subscription_id)
        if membership.is_owner:
            raise UserInputError("Transfer ownership before unsubscribing")
        with reraise_as_internal("Unable to unsubscribe"):
            await cancel_membership(db, ctx, membership)
    return plan_id


async def unsubscribe_as_owner(
    db: AsyncSession,
    ctx: AppContext,
    user: User,
    subscription_id: str,
    new_owner_username: str,
) -> str:
    """Hand the plan to another member, then leave it."""
    membership = await _owned_membership(db, user, subscription_id)
    if not membership.is_owner:
        raise UserInputError("Only the plan owner can transfer ownership")
    plan_id = membership.plan_id
    async with ctx.locks.hold(plan_id):
        await plan_service.transfer_ownership_locked(db, user, plan_id, new_owner_username)
        membership = await _owned_membership(db, user, subscription_id)
        with reraise_as_internal("Unable to unsubscribe"):
            await cancel_membership(db, ctx, membership)
    return plan_id


# --- Billing portal ---


async def create_portal_session(ctx: AppContext, user: User) -> str:
    """Create a Stripe Customer Portal session and return the URL."""
    if not user.stripe_customer_id:
        raise UserInputError("You have no billing account yet")

    with reraise_as_internal("Unable to get customer portal link"):
        return await ctx.gateway.create_portal_session(
            user.stripe_customer_id, f"{ctx.settings.app_url}/dashboard/"
        )
