"""Price reconciliation: recompute the shared per-unit price and supersede Stripe prices.

Per-unit rule: ``ceil(per_cycle_cost / max(aggregate, 1))``. Rounding up keeps
the members' combined payments at or above the plan cost; an empty plan is
priced as a single unit carrying the whole cost.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.constants import RECURRING_INTERVALS
from sharesub.context import AppContext
from sharesub.models.plan import Plan
from sharesub.services import ledger_service
from sharesub.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceTerms:
    product_id: str
    unit_amount: int
    interval: str


@dataclass(frozen=True)
class PriceChange:
    price_id: str
    unit_amount: int
    previous_price_id: str | None


def compute_unit_amount(per_cycle_cost: int, aggregate: int) -> int:
    if per_cycle_cost <= 0:
        raise ValueError("per_cycle_cost must be positive")
    if aggregate < 0:
        raise ValueError("aggregate quantity cannot be negative")
    units = max(aggregate, 1)
    return -(-per_cycle_cost // units)


def price_terms(plan: Plan, aggregate: int) -> PriceTerms:
    return PriceTerms(
        product_id=plan.id,
        unit_amount=compute_unit_amount(plan.per_cycle_cost, aggregate),
        interval=RECURRING_INTERVALS[plan.cycle_frequency],
    )


async def mint_price(gateway: PaymentGateway, plan: Plan, aggregate: int) -> tuple[str, PriceTerms]:
    """Create a new Stripe price for the plan at the given aggregate. Persists nothing."""
    terms = price_terms(plan, aggregate)
    price_id = await gateway.create_price(terms.product_id, terms.unit_amount, terms.interval)
    return price_id, terms


async def reconcile_plan_price(db: AsyncSession, ctx: AppContext, plan: Plan) -> PriceChange | None:
    """Bring the plan's active price in line with its current aggregate quantity.

    Must run under the plan lock. Commits the new plan.price_id / plan.unit_amount
    together with whatever the caller staged. Returns None when the price already
    matches; nothing is committed then. If Stripe or the commit fails, the old
    price is left active and authoritative and the minted one is dropped.
    """
    plan_id = plan.id
    aggregate = await ledger_service.aggregate_quantity(db, plan.id)
    expected = compute_unit_amount(plan.per_cycle_cost, aggregate)
    if plan.price_id and plan.unit_amount == expected:
        return None

    new_price_id, terms = await mint_price(ctx.gateway, plan, aggregate)

    previous = plan.price_id
    archived = False
    if previous and previous != new_price_id:
        try:
            await ctx.gateway.deactivate_price(previous)
            archived = True
        except Exception:
            logger.error("Could not archive price %s for plan %s; dropping new price %s",
                         previous, plan_id, new_price_id)
            await _drop_minted(ctx.gateway, new_price_id, plan_id)
            raise

    try:
        plan.price_id = new_price_id
        plan.unit_amount = terms.unit_amount
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error("Could not store price %s for plan %s; restoring %s", new_price_id, plan_id, previous)
        if archived:
            try:
                await ctx.gateway.reactivate_price(previous)
            except Exception as e:
                logger.error("Plan %s left without an active price (%s): %s", plan_id, previous, e)
        await _drop_minted(ctx.gateway, new_price_id, plan_id)
        raise

    logger.info("Plan %s repriced to %d per unit (aggregate %d, price %s -> %s)",
                plan_id, terms.unit_amount, aggregate, previous, new_price_id)
    return PriceChange(price_id=new_price_id, unit_amount=terms.unit_amount, previous_price_id=previous)


async def _drop_minted(gateway: PaymentGateway, price_id: str, plan_id: str) -> None:
    try:
        await gateway.deactivate_price(price_id)
    except Exception as e:
        logger.error("Orphaned active price %s for plan %s: %s", price_id, plan_id, e)
