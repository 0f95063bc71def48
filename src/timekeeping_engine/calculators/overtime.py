"""Overtime classifier - daily, consecutive-day and weekly rules.

Classification runs in two phases over the WORK segments of one timesheet:

Phase A (daily), per calendar date with ``w`` worked minutes:
    dt       = max(0, w - daily_dt_minutes)
    below_dt = w - dt
    consecutive-OT date:  ot = below_dt, reg = 0
    otherwise:            ot = max(0, below_dt - daily_ot_minutes), reg = below_dt - ot

Phase B (weekly), per Monday-start week:
    converted = max(0, sum(reg) - weekly_ot_minutes)
    converted REG minutes become OT, taken from the end of the week backward.

Segment reclassification cuts each day's segments so cumulative minutes
[0, reg) are REG, [reg, reg + ot) are OT and the rest DT, then walks each
week in reverse flipping trailing REG pieces to OT. Total WORK minutes are
conserved exactly; any violation raises ClassificationInvariantError.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable

from timekeeping_engine.calculators.types import (
    DayBreakdown,
    OvertimeResult,
    PayBucket,
    RuleSetConfig,
    SegmentCandidate,
    SegmentType,
)


class ClassificationInvariantError(Exception):
    """Raised when classification would drop or double-count minutes."""


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def find_consecutive_ot_dates(work_dates: Iterable[date], threshold: int) -> set[date]:
    """Dates at or beyond position ``threshold`` in a run of consecutive days."""
    if threshold <= 0:
        return set()

    ordered = sorted(set(work_dates))
    ot_dates: set[date] = set()
    streak = 0
    previous: date | None = None

    for current in ordered:
        if previous is not None and current - previous == timedelta(days=1):
            streak += 1
        else:
            streak = 1
        if streak >= threshold:
            ot_dates.add(current)
        previous = current

    return ot_dates


def calc_day_buckets(
    work_minutes: int,
    rules: RuleSetConfig,
    is_consecutive_ot_day: bool,
) -> tuple[int, int, int]:
    """Split one day's minutes into (reg, ot, dt)."""
    dt_minutes = max(0, work_minutes - rules.daily_dt_minutes)
    below_dt = work_minutes - dt_minutes

    if is_consecutive_ot_day:
        return 0, below_dt, dt_minutes

    ot_minutes = max(0, below_dt - rules.daily_ot_minutes)
    reg_minutes = below_dt - ot_minutes
    return reg_minutes, ot_minutes, dt_minutes


def _work_only(segments: Iterable[SegmentCandidate]) -> list[SegmentCandidate]:
    return [s for s in segments if s.segment_type == SegmentType.WORK]


def compute_overtime(
    segments: Iterable[SegmentCandidate],
    rules: RuleSetConfig,
) -> OvertimeResult:
    """Compute daily and weekly REG/OT/DT totals. Does not touch storage."""
    minutes_by_date: dict[date, int] = defaultdict(int)
    for seg in _work_only(segments):
        minutes_by_date[seg.segment_date] += seg.duration_minutes

    # Zero-minute dates carry no entry
    work_dates = sorted(d for d, m in minutes_by_date.items() if m > 0)
    consecutive_dates = find_consecutive_ot_dates(work_dates, rules.consecutive_day_ot_day)

    days: list[DayBreakdown] = []
    for day in work_dates:
        work_minutes = minutes_by_date[day]
        is_consecutive = day in consecutive_dates
        reg, ot, dt = calc_day_buckets(work_minutes, rules, is_consecutive)
        if reg < 0 or ot < 0 or dt < 0 or reg + ot + dt != work_minutes:
            raise ClassificationInvariantError(
                f"Day {day}: {work_minutes} worked minutes split into "
                f"reg={reg} ot={ot} dt={dt}"
            )
        days.append(
            DayBreakdown(
                date=day,
                work_minutes=work_minutes,
                reg_minutes=reg,
                ot_minutes=ot,
                dt_minutes=dt,
                is_consecutive_ot_day=is_consecutive,
            )
        )

    reg_by_week: dict[date, int] = defaultdict(int)
    for day in days:
        reg_by_week[week_start(day.date)] += day.reg_minutes

    weekly_conversions = {
        week: max(0, reg - rules.weekly_ot_minutes)
        for week, reg in sorted(reg_by_week.items())
    }
    converted = sum(weekly_conversions.values())

    return OvertimeResult(
        days=days,
        total_reg=sum(d.reg_minutes for d in days) - converted,
        total_ot=sum(d.ot_minutes for d in days) + converted,
        total_dt=sum(d.dt_minutes for d in days),
        weekly_conversions=weekly_conversions,
    )


def _cut(seg: SegmentCandidate, offset: int, length: int, bucket: PayBucket) -> SegmentCandidate:
    """Sub-segment covering ``length`` minutes starting ``offset`` minutes in."""
    start = seg.start_time + timedelta(minutes=offset)
    end = seg.end_time if offset + length == seg.duration_minutes else start + timedelta(minutes=length)
    return SegmentCandidate(
        segment_type=seg.segment_type,
        start_time=start,
        end_time=end,
        duration_minutes=length,
        segment_date=seg.segment_date,
        is_paid=seg.is_paid,
        pay_bucket=bucket,
        is_split=seg.is_split or length < seg.duration_minutes,
        leave_request_id=seg.leave_request_id,
    )


def _split_day(segments: list[SegmentCandidate], day: DayBreakdown) -> list[SegmentCandidate]:
    """Cut a day's segments at the REG/OT and OT/DT boundaries."""
    boundaries = (
        (day.reg_minutes, PayBucket.REG),
        (day.reg_minutes + day.ot_minutes, PayBucket.OT),
    )

    def bucket_at(minute: int) -> tuple[PayBucket, int | None]:
        for limit, bucket in boundaries:
            if minute < limit:
                return bucket, limit
        return PayBucket.DT, None

    output: list[SegmentCandidate] = []
    elapsed = 0
    for seg in sorted(segments, key=lambda s: s.start_time):
        offset = 0
        while offset < seg.duration_minutes:
            bucket, limit = bucket_at(elapsed + offset)
            remaining = seg.duration_minutes - offset
            length = remaining if limit is None else min(remaining, limit - (elapsed + offset))
            output.append(_cut(seg, offset, length, bucket))
            offset += length
        elapsed += seg.duration_minutes

    return output


def _apply_weekly_conversion(
    segments: list[SegmentCandidate],
    minutes_to_convert: int,
) -> list[SegmentCandidate]:
    """Flip the latest ``minutes_to_convert`` REG minutes of a week to OT."""
    if minutes_to_convert <= 0:
        return segments

    remaining = minutes_to_convert
    output: list[SegmentCandidate] = []
    for seg in sorted(segments, key=lambda s: s.start_time, reverse=True):
        if remaining == 0 or seg.pay_bucket != PayBucket.REG:
            output.append(seg)
            continue

        if seg.duration_minutes <= remaining:
            output.append(seg.with_bucket(PayBucket.OT))
            remaining -= seg.duration_minutes
            continue

        keep = seg.duration_minutes - remaining
        output.append(_cut(seg, keep, remaining, PayBucket.OT))
        output.append(_cut(seg, 0, keep, PayBucket.REG))
        remaining = 0

    if remaining:
        raise ClassificationInvariantError(
            f"Weekly conversion left {remaining} of {minutes_to_convert} minutes unassigned"
        )

    output.sort(key=lambda s: s.start_time)
    return output


def reclassify_segments(
    segments: Iterable[SegmentCandidate],
    result: OvertimeResult,
) -> list[SegmentCandidate]:
    """Assign REG/OT/DT buckets to WORK segments, splitting where needed.

    Non-WORK segments are ignored. The returned list is ordered by start
    time and holds exactly as many minutes as the WORK input.
    """
    work = _work_only(segments)
    by_date: dict[date, list[SegmentCandidate]] = defaultdict(list)
    for seg in work:
        by_date[seg.segment_date].append(seg)

    days = {d.date: d for d in result.days}
    by_week: dict[date, list[SegmentCandidate]] = defaultdict(list)
    for day_date, day_segments in sorted(by_date.items()):
        day = days.get(day_date)
        if day is None:
            # Only zero-minute segments land on a date without a breakdown
            by_week[week_start(day_date)].extend(day_segments)
            continue
        by_week[week_start(day_date)].extend(_split_day(day_segments, day))

    output: list[SegmentCandidate] = []
    for week, week_segments in sorted(by_week.items()):
        output.extend(
            _apply_weekly_conversion(week_segments, result.weekly_conversions.get(week, 0))
        )

    before = sum(s.duration_minutes for s in work)
    after = sum(s.duration_minutes for s in output)
    if before != after or after != result.total_work:
        raise ClassificationInvariantError(
            f"Duration not conserved: {before} minutes in, {after} out, "
            f"{result.total_work} classified"
        )

    output.sort(key=lambda s: s.start_time)
    return output


def classify(
    segments: Iterable[SegmentCandidate],
    rules: RuleSetConfig,
) -> tuple[OvertimeResult, list[SegmentCandidate]]:
    """Compute totals and the reclassified WORK segments in one pass."""
    work = _work_only(segments)
    result = compute_overtime(work, rules)
    return result, reclassify_segments(work, result)
