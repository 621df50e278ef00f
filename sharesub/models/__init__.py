"""SQLAlchemy models for the billing ledger."""

from .base import Base
from .user import User
from .plan import Plan
from .membership import Membership

__all__ = [
    "Base",
    "User",
    "Plan",
    "Membership",
]
