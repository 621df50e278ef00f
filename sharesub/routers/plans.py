"""Plan and subscription routes: JSON endpoints over the billing core."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.context import AppContext, get_context
from sharesub.db.session import get_db
from sharesub.models.user import User
from sharesub.schemas.plans import (
    CancelPendingRequest,
    EditQuantityResponse,
    JoinRequest,
    JoinResponse,
    PlanCreate,
    PlanDetail,
    PlanIdResponse,
    PlanMember,
    PlanSummary,
    PortalSession,
    QuantityUpdate,
    TransferRequest,
)
from sharesub.services import plan_service, subscription_service
from sharesub.services.auth_service import get_current_user
from sharesub.utils import from_minor_units

router = APIRouter(tags=["plans"])


# --- Plans ---


@router.post("/plans", response_model=PlanIdResponse, status_code=201)
async def create_plan(
    body: PlanCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    plan = await plan_service.create_plan(db, ctx, user, **body.model_dump())
    return PlanIdResponse(plan_id=plan.id, status="CREATED")


@router.get("/plans", response_model=list[PlanSummary])
async def view_all_plans(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    listings = await plan_service.view_all_plans(db, user)
    return [
        PlanSummary(
            plan_id=item.plan.id,
            name=item.plan.name,
            cycle_frequency=item.plan.cycle_frequency.upper(),
            per_cycle_cost=from_minor_units(item.plan.per_cycle_cost),
            owner=item.owner.username,
            is_owner=item.membership.is_owner,
            status=item.membership.status,
            quantity=item.membership.quantity,
            subscription_id=item.membership.subscription_id,
        )
        for item in listings
    ]


@router.get("/plans/{plan_id}", response_model=PlanDetail)
async def view_one_plan(
    plan_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    snapshot = await plan_service.view_plan(db, user, plan_id)
    plan = snapshot.plan
    return PlanDetail(
        plan_id=plan.id,
        name=plan.name,
        cycle_frequency=plan.cycle_frequency.upper(),
        per_cycle_cost=from_minor_units(plan.per_cycle_cost),
        start_date=plan.start_date,
        unit_cost=from_minor_units(plan.unit_amount) if plan.unit_amount is not None else None,
        owner=PlanMember(**vars(snapshot.owner)),
        active_members=[PlanMember(**vars(m)) for m in snapshot.active_members],
    )


@router.delete("/plans/{plan_id}", response_model=PlanIdResponse)
async def delete_plan(
    plan_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    await plan_service.delete_plan(db, ctx, user, plan_id)
    return PlanIdResponse(plan_id=plan_id, status="DELETED")


@router.post("/plans/{plan_id}/transfer", response_model=PlanIdResponse)
async def transfer_ownership(
    plan_id: str,
    body: TransferRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    await plan_service.transfer_ownership(db, ctx, user, plan_id, body.new_owner)
    return PlanIdResponse(plan_id=plan_id, status="UPDATED")


@router.post("/plans/{plan_id}/join", response_model=JoinResponse)
async def join_plan(
    plan_id: str,
    body: JoinRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    result = await subscription_service.join_plan(db, ctx, user, plan_id, body.quantity)
    return JoinResponse(**vars(result))


# --- Subscriptions ---


@router.post("/subscriptions/cancel-pending")
async def cancel_pending(
    body: CancelPendingRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> bool:
    await subscription_service.cancel_pending_join(db, ctx, user, body.setup_intent_id)
    return True


@router.patch("/subscriptions/{subscription_id}", response_model=EditQuantityResponse)
async def edit_quantity(
    subscription_id: str,
    body: QuantityUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    membership = await subscription_service.edit_quantity(db, ctx, user, subscription_id, body.quantity)
    return EditQuantityResponse(plan_id=membership.plan_id, quantity=membership.quantity)


@router.delete("/subscriptions/{subscription_id}", response_model=PlanIdResponse)
async def unsubscribe(
    subscription_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    plan_id = await subscription_service.unsubscribe(db, ctx, user, subscription_id)
    return PlanIdResponse(plan_id=plan_id, status="DELETED")


@router.post("/subscriptions/{subscription_id}/unsubscribe-as-owner", response_model=PlanIdResponse)
async def unsubscribe_as_owner(
    subscription_id: str,
    body: TransferRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    plan_id = await subscription_service.unsubscribe_as_owner(db, ctx, user, subscription_id, body.new_owner)
    return PlanIdResponse(plan_id=plan_id, status="DELETED")


# --- Billing ---


@router.post("/billing/portal", response_model=PortalSession)
async def billing_portal(
    user: User = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
):
    url = await subscription_service.create_portal_session(ctx, user)
    return PortalSession(url=url)
