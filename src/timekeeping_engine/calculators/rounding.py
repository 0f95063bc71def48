"""Punch time rounding."""

from __future__ import annotations

from datetime import datetime, timedelta


def apply_rounding(time: datetime, rounding_minutes: int) -> datetime:
    """Round ``time`` to the nearest multiple of ``rounding_minutes``.

    Multiples are counted from the start of the wall-clock day, so a
    15-minute rule always lands on :00, :15, :30 or :45. Exact halves round
    up, which may carry a punch past midnight into the next day.
    A rule of zero (or less) leaves the time unchanged.
    """
    if rounding_minutes <= 0:
        return time

    step = timedelta(minutes=rounding_minutes)
    day_start = time.replace(hour=0, minute=0, second=0, microsecond=0)
    steps, remainder = divmod(time - day_start, step)
    if remainder * 2 >= step:
        steps += 1
    return day_start + steps * step
