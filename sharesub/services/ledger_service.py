"""Ledger store: transactional reads and writes of users, plans and memberships.

Functions that write more than one row commit themselves and roll back on any
failure, so a half-applied change is never visible. Single-row helpers
(``upsert_membership`` and friends) only stage changes in the session; the
calling flow owns the commit.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.constants import STATUS_NOT_JOINED, STATUS_PENDING_SETUP
from sharesub.errors import UserInputError
from sharesub.models.membership import Membership
from sharesub.models.plan import Plan
from sharesub.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class MemberView:
    username: str
    first_name: str
    last_name: str
    stripe_customer_id: str | None
    quantity: int


@dataclass
class PlanSnapshot:
    plan: Plan
    owner: MemberView
    active_members: list[MemberView] = field(default_factory=list)


def _member_view(user: User, membership: Membership) -> MemberView:
    return MemberView(
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        stripe_customer_id=user.stripe_customer_id,
        quantity=membership.quantity,
    )


# --- Users ---


async def find_user_conflict(db: AsyncSession, username: str, email: str) -> str | None:
    """Return the error message for a taken username or email (username first)."""
    result = await db.execute(
        select(User.username, User.email).where(
            or_(User.username == username, User.email == email)
        )
    )
    rows = result.all()
    if any(row.username == username for row in rows):
        return "This username already exists"
    if rows:
        return "This email already exists"
    return None


async def create_user(
    db: AsyncSession,
    *,
    username: str,
    email: str,
    password_hash: str,
    first_name: str,
    last_name: str,
    stripe_customer_id: str | None,
) -> User:
    """Insert a user. The unique constraints are the final authority on races."""
    user = User(
        username=username,
        email=email,
        password_hash=password_hash,
        first_name=first_name,
        last_name=last_name,
        stripe_customer_id=stripe_customer_id,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        conflict = await find_user_conflict(db, username, email)
        raise UserInputError(conflict or "This username already exists")
    await db.refresh(user)
    return user


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def commit_user(db: AsyncSession, user: User) -> User:
    """Persist changes to a user row; a unique-constraint race surfaces as bad input."""
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise UserInputError("This username or email already exists")
    return user


async def get_user_by_username_or_email(db: AsyncSession, identifier: str) -> User | None:
    result = await db.execute(
        select(User).where(or_(User.username == identifier, User.email == identifier))
    )
    return result.scalars().first()


# --- Plans ---


async def create_plan_with_owner(
    db: AsyncSession,
    *,
    owner: User,
    plan_id: str,
    name: str,
    cycle_frequency: str,
    per_cycle_cost: int,
    start_date: date,
) -> Plan:
    """Write the plan row and its owner membership in one transaction."""
    plan = Plan(
        id=plan_id,
        name=name,
        cycle_frequency=cycle_frequency,
        per_cycle_cost=per_cycle_cost,
        start_date=start_date,
    )
    try:
        db.add(plan)
        await db.flush()
        db.add(Membership(
            user_id=owner.id,
            plan_id=plan.id,
            quantity=0,
            is_owner=True,
            status=STATUS_NOT_JOINED,
        ))
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(plan)
    return plan


async def get_plan(db: AsyncSession, plan_id: str, for_update: bool = False) -> Plan | None:
    """Load a plan. for_update row-locks it on PostgreSQL (SQLite ignores it)."""
    stmt = select(Plan).where(Plan.id == plan_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_plan_snapshot(db: AsyncSession, plan_id: str, requester_id: int) -> PlanSnapshot | None:
    """Plan + owner + active members (quantity > 0, excluding the requester).

    Everything is read inside the session's current transaction.
    """
    plan = await get_plan(db, plan_id)
    if plan is None:
        return None

    result = await db.execute(
        select(User, Membership)
        .join(Membership, Membership.user_id == User.id)
        .where(Membership.plan_id == plan_id)
        .where(or_(Membership.is_owner.is_(True), Membership.quantity > 0))
        .order_by(Membership.id)
    )
    owner = None
    active_members = []
    for user, membership in result.all():
        if membership.is_owner:
            owner = _member_view(user, membership)
        if membership.quantity > 0 and user.id != requester_id:
            active_members.append(_member_view(user, membership))

    if owner is None:
        logger.error("Plan %s has no owner membership", plan_id)
        return None
    return PlanSnapshot(plan=plan, owner=owner, active_members=active_members)


async def list_user_plans(db: AsyncSession, user_id: int) -> list[tuple[Plan, Membership, User]]:
    """Every plan the user has a membership on, with their membership and the plan owner."""
    owner_membership = select(Membership.plan_id, Membership.user_id).where(
        Membership.is_owner.is_(True)
    ).subquery()
    result = await db.execute(
        select(Plan, Membership, User)
        .join(Membership, Membership.plan_id == Plan.id)
        .join(owner_membership, owner_membership.c.plan_id == Plan.id)
        .join(User, User.id == owner_membership.c.user_id)
        .where(Membership.user_id == user_id)
        .order_by(Plan.created_at)
    )
    return [tuple(row) for row in result.all()]


async def aggregate_quantity(db: AsyncSession, plan_id: str) -> int:
    """Sum of member quantities on a plan, recomputed from the rows every time."""
    result = await db.execute(
        select(func.coalesce(func.sum(Membership.quantity), 0)).where(
            Membership.plan_id == plan_id
        )
    )
    return int(result.scalar_one())


# --- Memberships ---


async def get_membership(db: AsyncSession, user_id: int, plan_id: str) -> Membership | None:
    result = await db.execute(
        select(Membership).where(
            Membership.user_id == user_id, Membership.plan_id == plan_id
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_membership_by_subscription(db: AsyncSession, subscription_id: str) -> Membership | None:
    result = await db.execute(
        select(Membership)
        .where(Membership.subscription_id == subscription_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_membership_by_setup_intent(db: AsyncSession, setup_intent_id: str) -> Membership | None:
    result = await db.execute(
        select(Membership)
        .where(Membership.setup_intent_id == setup_intent_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_owner_membership(db: AsyncSession, plan_id: str) -> Membership | None:
    result = await db.execute(
        select(Membership).where(
            Membership.plan_id == plan_id, Membership.is_owner.is_(True)
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_subscribed_members(
    db: AsyncSession,
    plan_id: str,
    exclude_subscription_id: str | None = None,
) -> list[Membership]:
    """Members on the plan that carry a Stripe subscription item."""
    stmt = select(Membership).where(
        Membership.plan_id == plan_id,
        Membership.subscription_id.is_not(None),
        Membership.subscription_item_id.is_not(None),
    )
    if exclude_subscription_id:
        stmt = stmt.where(Membership.subscription_id != exclude_subscription_id)
    result = await db.execute(stmt.order_by(Membership.id))
    return list(result.scalars().all())


async def upsert_membership(db: AsyncSession, user_id: int, plan_id: str, **fields) -> Membership:
    """Insert or update the (user, plan) membership; given fields overwrite."""
    membership = await get_membership(db, user_id, plan_id)
    if membership is None:
        membership = Membership(user_id=user_id, plan_id=plan_id, **fields)
        db.add(membership)
    else:
        for key, value in fields.items():
            setattr(membership, key, value)
    await db.flush()
    return membership


def clear_subscription(membership: Membership) -> None:
    """Reset a membership to not joined, keeping the row (used for owners)."""
    membership.quantity = 0
    membership.pending_quantity = None
    membership.status = STATUS_NOT_JOINED
    membership.subscription_id = None
    membership.subscription_item_id = None
    membership.setup_intent_id = None
    membership.price_id = None


async def delete_membership_by_subscription(db: AsyncSession, subscription_id: str) -> Membership | None:
    """Remove the membership holding this subscription. Owner rows are reset instead."""
    membership = await get_membership_by_subscription(db, subscription_id)
    if membership is None:
        return None
    if membership.is_owner:
        clear_subscription(membership)
    else:
        await db.delete(membership)
    await db.flush()
    return membership


async def delete_plan(db: AsyncSession, plan_id: str) -> None:
    """Remove a plan and every membership on it in one transaction."""
    try:
        await db.execute(delete(Membership).where(Membership.plan_id == plan_id))
        await db.execute(delete(Plan).where(Plan.id == plan_id))
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def list_stale_pending(db: AsyncSession, cutoff: datetime) -> list[Membership]:
    """Pending memberships whose payment setup was last touched before cutoff."""
    result = await db.execute(
        select(Membership)
        .where(
            Membership.status == STATUS_PENDING_SETUP,
            Membership.updated_at < cutoff,
        )
        .order_by(Membership.plan_id, Membership.id)
    )
    return list(result.scalars().all())
