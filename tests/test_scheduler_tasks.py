from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.models import Membership, Plan
from sharesub.scheduler_tasks import expire_pending_setups
from sharesub.utils import now_utc
from tests.helpers import create_plan, join, join_and_activate, send_event, signup


async def _age(db: AsyncSession, subscription_id: str, hours: int) -> None:
    await db.execute(
        update(Membership)
        .where(Membership.subscription_id == subscription_id)
        .values(updated_at=now_utc() - timedelta(hours=hours))
    )
    await db.commit()


@pytest.mark.asyncio
async def test_expire_pending_setups(test_client: AsyncClient, gateway, db_session: AsyncSession, ctx):
    owner = await signup(test_client, "owner")
    stale = await signup(test_client, "stale")
    fresh = await signup(test_client, "fresh")
    active = await signup(test_client, "active")
    plan_id = await create_plan(test_client, owner)
    done = await join_and_activate(test_client, gateway, active, plan_id, 1)
    old = await join(test_client, stale, plan_id, 1)
    new = await join(test_client, fresh, plan_id, 1)
    await _age(db_session, old["subscription_id"], hours=30)
    await _age(db_session, done["subscription_id"], hours=30)

    expired = await expire_pending_setups(db_session, ctx)

    assert expired == 1
    assert gateway.subscriptions[old["subscription_id"]]["status"] == "canceled"
    remaining = await db_session.execute(
        select(Membership.subscription_id).where(Membership.plan_id == plan_id)
    )
    subscription_ids = set(remaining.scalars().all())
    assert old["subscription_id"] not in subscription_ids
    assert {new["subscription_id"], done["subscription_id"]} <= subscription_ids


@pytest.mark.asyncio
async def test_expire_continues_past_a_stripe_failure(test_client: AsyncClient, gateway, db_session, ctx):
    owner = await signup(test_client, "owner")
    first = await signup(test_client, "first")
    second = await signup(test_client, "second")
    plan_id = await create_plan(test_client, owner)
    a = await join(test_client, first, plan_id, 1)
    b = await join(test_client, second, plan_id, 1)
    await _age(db_session, a["subscription_id"], hours=48)
    await _age(db_session, b["subscription_id"], hours=48)
    gateway.fail_on["cancel_subscription"] = {a["subscription_id"]}

    expired = await expire_pending_setups(db_session, ctx)

    assert expired == 1
    assert gateway.subscriptions[b["subscription_id"]]["status"] == "canceled"


@pytest.mark.asyncio
async def test_expiring_a_priced_in_join_reprices_the_plan(test_client: AsyncClient, gateway, db_session, ctx):
    owner = await signup(test_client, "owner")
    member = await signup(test_client, "member")
    dropout = await signup(test_client, "dropout")
    plan_id = await create_plan(test_client, owner)
    kept = await join_and_activate(test_client, gateway, member, plan_id, 1)
    abandoned = await join(test_client, dropout, plan_id, 3)
    await send_event(
        test_client, "customer.subscription.created", gateway.subscription_object(abandoned["subscription_id"])
    )
    await _age(db_session, abandoned["subscription_id"], hours=30)

    expired = await expire_pending_setups(db_session, ctx)

    assert expired == 1
    result = await db_session.execute(
        select(Plan).where(Plan.id == plan_id).execution_options(populate_existing=True)
    )
    plan = result.scalar_one()
    assert plan.unit_amount == 1000
    assert gateway.subscriptions[kept["subscription_id"]]["price"] == plan.price_id
