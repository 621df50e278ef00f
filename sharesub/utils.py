"""Shared utility functions for Sharesub."""

import calendar
import logging
from datetime import date, datetime, timedelta, UTC
from decimal import Decimal

from sharesub.constants import MINOR_UNITS_PER_MAJOR

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def to_minor_units(amount: Decimal) -> int:
    """
    Convert a decimal amount entered by a user to integer cents.

    Args:
        amount: Decimal with at most two fractional digits (e.g. 19.99).

    Returns:
        Integer minor units (e.g. 1999).
    """
    cents = Decimal(amount) * MINOR_UNITS_PER_MAJOR
    if cents != cents.to_integral_value():
        raise ValueError(f"Amount {amount} has more than two decimal places")
    return int(cents)


def from_minor_units(cents: int) -> Decimal:
    """Convert stored cents back to the decimal shown to users (1999 -> 19.99)."""
    return (Decimal(cents) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def next_cycle_start(start_date: date, cycle_frequency: str, today: date | None = None) -> date:
    """
    Return the first cycle boundary of a plan that is strictly after today.

    A plan starting in the future bills from its start date. A plan that has
    already started bills from its next anniversary (weekly, monthly or yearly).
    """
    today = today or now_utc().date()
    if start_date > today:
        return start_date

    step = 0
    boundary = start_date
    while boundary <= today:
        step += 1
        if cycle_frequency == "weekly":
            boundary = start_date + timedelta(weeks=step)
        elif cycle_frequency == "monthly":
            boundary = _add_months(start_date, step)
        elif cycle_frequency == "yearly":
            boundary = _add_months(start_date, 12 * step)
        else:
            raise ValueError(f"Unknown cycle frequency: {cycle_frequency}")
    return boundary


def to_timestamp(day: date) -> int:
    """Midnight UTC of the given day as a unix timestamp."""
    return int(datetime(day.year, day.month, day.day, tzinfo=UTC).timestamp())


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, set DEBUG level; otherwise INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
