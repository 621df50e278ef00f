"""Plan and subscription Pydantic schemas."""

from datetime import date
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class PlanCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    cycle_frequency: Literal["weekly", "monthly", "yearly"]
    per_cycle_cost: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    start_date: date


class PlanMember(BaseModel):
    username: str
    first_name: str
    last_name: str
    quantity: int


class PlanDetail(BaseModel):
    plan_id: str
    name: str
    cycle_frequency: str
    per_cycle_cost: Decimal
    start_date: date
    unit_cost: Decimal | None = None
    owner: PlanMember
    active_members: list[PlanMember]


class PlanSummary(BaseModel):
    plan_id: str
    name: str
    cycle_frequency: str
    per_cycle_cost: Decimal
    owner: str
    is_owner: bool
    status: str
    quantity: int
    subscription_id: str | None = None


class PlanIdResponse(BaseModel):
    plan_id: str
    status: Literal["CREATED", "DELETED", "ARCHIVED", "UPDATED"]


class JoinRequest(BaseModel):
    quantity: int = Field(ge=1, le=100)


class JoinResponse(BaseModel):
    plan_id: str
    subscription_id: str
    setup_intent_id: str | None = None
    client_secret: str | None = None


class CancelPendingRequest(BaseModel):
    setup_intent_id: str


class QuantityUpdate(BaseModel):
    quantity: int = Field(ge=1, le=100)


class EditQuantityResponse(BaseModel):
    plan_id: str
    quantity: int


class TransferRequest(BaseModel):
    new_owner: str = Field(min_length=1)


class PortalSession(BaseModel):
    url: str
