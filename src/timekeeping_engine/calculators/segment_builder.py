"""Segment builder - turns an ordered punch list into time segments."""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Iterable, Protocol

from timekeeping_engine.calculators.types import (
    PayBucket,
    PunchState,
    SegmentCandidate,
    SegmentType,
    round_half_up,
)


class PunchLike(Protocol):
    """The punch attributes the builder reads."""

    rounded_time: datetime
    state_after: str


def next_midnight(moment: datetime) -> datetime:
    """Start of the calendar day following ``moment``."""
    return datetime.combine(moment.date() + timedelta(days=1), time.min, tzinfo=moment.tzinfo)


def duration_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two times, halves rounded up."""
    return round_half_up((end - start).total_seconds() / 60)


def is_paid_state(state: PunchState) -> bool:
    """Meal periods are unpaid; work and short breaks are paid."""
    return state != PunchState.MEAL


def initial_bucket_for(state: PunchState) -> PayBucket:
    """Starting bucket; the overtime classifier reassigns REG later."""
    if state == PunchState.MEAL:
        return PayBucket.UNPAID
    return PayBucket.REG


def build_span(
    start: datetime,
    end: datetime,
    state: PunchState,
) -> list[SegmentCandidate]:
    """Build segments for one open interval, cutting at every midnight.

    Pieces produced by a cut are flagged ``is_split``. Piece durations are
    taken from the running total since ``start`` so they always add up to
    the whole span; pieces that come to zero minutes are dropped.
    """
    segments: list[SegmentCandidate] = []
    crosses_midnight = end > next_midnight(start)
    cursor = start
    emitted = 0

    while cursor < end:
        piece_end = min(end, next_midnight(cursor))
        minutes = duration_minutes(start, piece_end) - emitted
        if minutes > 0:
            segments.append(
                SegmentCandidate(
                    segment_type=SegmentType(state.value),
                    start_time=cursor,
                    end_time=piece_end,
                    duration_minutes=minutes,
                    segment_date=cursor.date(),
                    is_paid=is_paid_state(state),
                    pay_bucket=initial_bucket_for(state),
                    is_split=crosses_midnight,
                )
            )
            emitted += minutes
        cursor = piece_end

    return segments


def compute_segments(punches: Iterable[PunchLike]) -> list[SegmentCandidate]:
    """Build WORK/MEAL/BREAK segments from punches ordered by rounded time.

    Each punch closes the interval opened by the previous one and, unless it
    leaves the employee OUT, opens a new interval in its resulting state.
    An interval still open after the last punch yields nothing; it is
    realized once the next punch arrives.
    """
    segments: list[SegmentCandidate] = []
    open_start: datetime | None = None
    open_state: PunchState | None = None

    for punch in punches:
        if open_state is not None and open_start is not None:
            segments.extend(build_span(open_start, punch.rounded_time, open_state))
            open_start = None
            open_state = None

        state_after = PunchState(punch.state_after)
        if state_after != PunchState.OUT:
            open_start = punch.rounded_time
            open_state = state_after

    return segments
