"""Membership model: one user's billing state on one plan."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharesub.constants import STATUS_NOT_JOINED
from sharesub.utils import now_utc
from .base import Base


class Membership(Base):
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "plan_id", name="uq_memberships_user_plan"),
        CheckConstraint("quantity >= 0", name="ck_memberships_quantity_non_negative"),
        # Exactly one owner per plan
        Index(
            "uq_memberships_plan_owner",
            "plan_id",
            unique=True,
            sqlite_where=text("is_owner"),
            postgresql_where=text("is_owner"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    plan_id: Mapped[str] = mapped_column(ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_owner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_NOT_JOINED)
    # Requested on join; becomes quantity once payment setup is confirmed
    pending_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    subscription_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    setup_intent_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    # Price the member's Stripe subscription item is currently on
    price_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    user: Mapped["User"] = relationship(back_populates="memberships")
    plan: Mapped["Plan"] = relationship(back_populates="memberships")
