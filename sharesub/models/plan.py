"""Plan model: a recurring shared expense backed by a Stripe product."""

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharesub.utils import now_utc
from .base import Base


class Plan(Base):
    __tablename__ = "plans"
    __table_args__ = (
        CheckConstraint("per_cycle_cost > 0", name="ck_plans_per_cycle_cost_positive"),
        CheckConstraint(
            "cycle_frequency IN ('weekly', 'monthly', 'yearly')",
            name="ck_plans_cycle_frequency",
        ),
    )

    # Stripe product id
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    cycle_frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    per_cycle_cost: Mapped[int] = mapped_column(Integer, nullable=False)  # cents
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Currently active Stripe price; superseded, never edited
    price_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    unit_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    memberships: Mapped[list["Membership"]] = relationship(back_populates="plan", passive_deletes=True)
