"""
vesting.py - Release Schedules and Time Arithmetic

Two release policies share one clock helper:

    MonthlyUnlock: buyer tokens unlock in equal monthly slices after the sale
                   ends, with everything left released once the window closes.
    CliffRelease:  the reserved allocation unlocks all at once at a fixed time.

A "month" is a flat 30 days and a "day" is 24 hours, counted from an epoch.
Nothing here reads a clock; callers pass the current time in.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Tuple

from .core import ScheduleError, StateError


DAY = timedelta(days=1)
MONTH = timedelta(days=30)


def months_elapsed(epoch: datetime, now: datetime) -> int:
    """Whole 30-day months from epoch to now (0 before the epoch)."""
    if now < epoch:
        return 0
    return (now - epoch) // MONTH


def days_elapsed(epoch: datetime, now: datetime) -> int:
    """Whole days from epoch to now (0 before the epoch)."""
    if now < epoch:
        return 0
    return (now - epoch) // DAY


def next_daily_boundary(timestamp: datetime, hour: int = 10) -> datetime:
    """
    The first hour:00:00 at or after timestamp.

    Example:
        >>> next_daily_boundary(datetime(2025, 1, 1, 8, 0))
        datetime.datetime(2025, 1, 1, 10, 0)
        >>> next_daily_boundary(datetime(2025, 1, 1, 11, 0))
        datetime.datetime(2025, 1, 2, 10, 0)
    """
    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be in [0, 23], got {hour}")
    candidate = timestamp.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate < timestamp:
        candidate += DAY
    return candidate


@dataclass(frozen=True, slots=True)
class MonthlyUnlock:
    """
    Linear monthly unlock of a buyer's locked tokens.

    Each elapsed month since ``epoch`` unlocks ``monthly_fraction`` of the
    buyer's initial purchase. At most one withdrawal per month marker; once
    ``window_months`` have passed the whole locked balance is released.
    """
    epoch: datetime
    monthly_fraction: Decimal = Decimal("0.30")
    window_months: int = 3
    decimal_places: int = 6

    def months(self, now: datetime) -> int:
        return months_elapsed(self.epoch, now)

    def is_open(self, now: datetime) -> bool:
        return self.months(now) > 0

    def check_open(self, now: datetime) -> int:
        """Return the month marker for now, or raise if the window has not opened."""
        months = self.months(now)
        if months == 0:
            raise ScheduleError("UNLOCK_NOT_OPEN", f"unlock opens at {self.epoch + MONTH}")
        return months

    def check_withdrawable(self, months: int, last_unlock_month: int) -> None:
        if last_unlock_month >= self.window_months:
            raise ScheduleError("UNLOCK_WINDOW_CLOSED", "all monthly unlocks already taken")
        if months == last_unlock_month:
            raise ScheduleError(
                "ALREADY_WITHDRAWN_THIS_MONTH", f"already withdrew for month {months}"
            )
        if months < last_unlock_month:
            raise ScheduleError(
                "TIMESTAMP_IN_PAST", f"month {months} is before last withdrawal month {last_unlock_month}"
            )

    def release_amount(
        self,
        months: int,
        last_unlock_month: int,
        initial_purchased_total: Decimal,
        locked_balance: Decimal,
    ) -> Tuple[Decimal, bool]:
        """
        Quantity to release at month marker ``months``.

        Returns:
            (amount, final) where final is True when the account is fully
            unlocked and should be removed
        """
        if months >= self.window_months:
            return locked_balance, True
        quantizer = Decimal(10) ** -self.decimal_places
        amount = (
            initial_purchased_total * self.monthly_fraction * (months - last_unlock_month)
        ).quantize(quantizer, rounding=ROUND_DOWN)
        return min(amount, locked_balance), False


@dataclass(frozen=True, slots=True)
class CliffRelease:
    """One-shot release of a fixed allocation at release_time."""
    release_time: datetime

    def check(self, now: datetime, released: bool) -> None:
        if now < self.release_time:
            raise ScheduleError("RELEASE_NOT_DUE", f"share unlocks at {self.release_time}")
        if released:
            raise StateError("SHARE_RELEASED", "reserved share was already released")
