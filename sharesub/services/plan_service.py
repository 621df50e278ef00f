"""Plan management: create, view, delete, transfer ownership."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.constants import STATUS_NOT_JOINED
from sharesub.context import AppContext
from sharesub.errors import ForbiddenError, UserInputError, reraise_as_internal
from sharesub.models.membership import Membership
from sharesub.models.plan import Plan
from sharesub.models.user import User
from sharesub.services import ledger_service
from sharesub.services.ledger_service import PlanSnapshot
from sharesub.utils import to_minor_units

logger = logging.getLogger(__name__)


@dataclass
class PlanListing:
    plan: Plan
    membership: Membership
    owner: User


async def create_plan(
    db: AsyncSession,
    ctx: AppContext,
    owner: User,
    *,
    name: str,
    cycle_frequency: str,
    per_cycle_cost: Decimal,
    start_date: date,
) -> Plan:
    """Create the Stripe product, then the plan and its owner membership together."""
    name = name.strip()
    if not name:
        raise UserInputError("Plan name cannot be empty")
    cycle_frequency = cycle_frequency.lower()
    try:
        cost_cents = to_minor_units(per_cycle_cost)
    except ValueError:
        raise UserInputError("Cost must have at most two decimal places")
    if cost_cents <= 0:
        raise UserInputError("Cost must be greater than zero")

    with reraise_as_internal("Unable to create new plan"):
        product_id = await ctx.gateway.create_product(name)
        plan = await ledger_service.create_plan_with_owner(
            db,
            owner=owner,
            plan_id=product_id,
            name=name,
            cycle_frequency=cycle_frequency,
            per_cycle_cost=cost_cents,
            start_date=start_date,
        )
    logger.info("User %s created plan %s (%s, %d cents/%s)",
                owner.username, plan.id, name, cost_cents, cycle_frequency)
    return plan


async def view_plan(db: AsyncSession, user: User, plan_id: str) -> PlanSnapshot:
    with reraise_as_internal("Unable to retrieve plan information"):
        snapshot = await ledger_service.get_plan_snapshot(db, plan_id, user.id)
    if snapshot is None:
        raise UserInputError("No plan matched search")
    return snapshot


async def view_all_plans(db: AsyncSession, user: User) -> list[PlanListing]:
    with reraise_as_internal("Unable to retrieve plans information"):
        rows = await ledger_service.list_user_plans(db, user.id)
    return [PlanListing(plan=plan, membership=membership, owner=owner) for plan, membership, owner in rows]


async def _owner_membership(db: AsyncSession, user: User, plan_id: str) -> Membership:
    plan = await ledger_service.get_plan(db, plan_id)
    if plan is None:
        raise UserInputError("No plan matched search")
    owner = await ledger_service.get_owner_membership(db, plan_id)
    if owner is None or owner.user_id != user.id:
        raise ForbiddenError("Only the plan owner can do this")
    return owner


async def transfer_ownership_locked(
    db: AsyncSession,
    user: User,
    plan_id: str,
    new_owner_username: str,
) -> Membership:
    """Move the owner flag to another member of the plan. Caller holds the plan lock."""
    current = await _owner_membership(db, user, plan_id)

    new_owner_username = new_owner_username.strip().lower()
    new_owner = await ledger_service.get_user_by_username(db, new_owner_username)
    if new_owner is None:
        raise UserInputError("This username does not exist")
    if new_owner.id == user.id:
        raise UserInputError("You already own this plan")
    target = await ledger_service.get_membership(db, new_owner.id, plan_id)
    if target is None or target.status == STATUS_NOT_JOINED:
        raise UserInputError("The new owner must be a member of this plan")

    with reraise_as_internal("Unable to transfer ownership"):
        try:
            # Clear the old flag first; the partial unique index allows one owner
            current.is_owner = False
            await db.flush()
            target.is_owner = True
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    logger.info("Plan %s ownership moved from %s to %s", plan_id, user.username, new_owner_username)
    return target


async def transfer_ownership(
    db: AsyncSession,
    ctx: AppContext,
    user: User,
    plan_id: str,
    new_owner_username: str,
) -> str:
    async with ctx.locks.hold(plan_id):
        await transfer_ownership_locked(db, user, plan_id, new_owner_username)
    return plan_id


async def delete_plan(db: AsyncSession, ctx: AppContext, user: User, plan_id: str) -> str:
    """Delete a plan nobody else belongs to; ends the owner's subscription and archives the price."""
    async with ctx.locks.hold(plan_id):
        owner = await _owner_membership(db, user, plan_id)
        members = await ledger_service.list_subscribed_members(db, plan_id, owner.subscription_id)
        if members:
            raise UserInputError("This plan still has members")

        plan = await ledger_service.get_plan(db, plan_id, for_update=True)
        with reraise_as_internal("Unable to delete plan"):
            if owner.subscription_id:
                await ctx.gateway.cancel_subscription(owner.subscription_id)
            if plan.price_id:
                await ctx.gateway.deactivate_price(plan.price_id)
            await ledger_service.delete_plan(db, plan.id)
    logger.info("User %s deleted plan %s", user.username, plan_id)
    return plan_id
