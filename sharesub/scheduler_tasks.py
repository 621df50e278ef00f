"""Scheduler tasks: housekeeping for joins that never finished payment setup."""

import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.constants import PENDING_SETUP_TTL_HOURS, STATUS_PENDING_SETUP
from sharesub.context import AppContext
from sharesub.services import ledger_service, subscription_service
from sharesub.utils import now_utc

logger = logging.getLogger(__name__)


async def expire_pending_setups(db: AsyncSession, ctx: AppContext, ttl_hours: int = PENDING_SETUP_TTL_HOURS) -> int:
    """Cancel pending subscriptions older than ttl_hours and forget them.

    Each membership is re-read under its plan lock, so one confirmed by a
    webhook in the meantime is left alone. Returns how many were discarded.
    """
    cutoff = now_utc() - timedelta(hours=ttl_hours)
    stale = await ledger_service.list_stale_pending(db, cutoff)
    targets = [(m.plan_id, m.subscription_id) for m in stale]

    expired = 0
    for plan_id, subscription_id in targets:
        try:
            async with ctx.locks.hold(plan_id):
                membership = await ledger_service.get_membership_by_subscription(db, subscription_id)
                if membership is None or membership.status != STATUS_PENDING_SETUP:
                    continue
                await subscription_service.discard_pending_membership(db, ctx, membership)
                expired += 1
        except Exception as e:
            await db.rollback()
            logger.error("Expiring pending subscription %s on plan %s failed: %s", subscription_id, plan_id, e)

    logger.info(f"Scheduler: checked {len(targets)} pending setups, expired {expired}")
    return expired
