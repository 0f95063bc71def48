"""Type definitions for the time accounting pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID


class PunchState(str, Enum):
    """Physical state of an employee between punches."""

    OUT = "OUT"
    WORK = "WORK"
    MEAL = "MEAL"
    BREAK = "BREAK"


class PunchType(str, Enum):
    """Clock event types."""

    CLOCK_IN = "CLOCK_IN"
    CLOCK_OUT = "CLOCK_OUT"
    MEAL_START = "MEAL_START"
    MEAL_END = "MEAL_END"
    BREAK_START = "BREAK_START"
    BREAK_END = "BREAK_END"


class PunchSource(str, Enum):
    """Where a punch was captured."""

    WEB = "WEB"
    KIOSK = "KIOSK"
    MANUAL = "MANUAL"
    IMPORT = "IMPORT"


class SegmentType(str, Enum):
    """Work segment types."""

    WORK = "WORK"
    MEAL = "MEAL"
    BREAK = "BREAK"
    LEAVE = "LEAVE"


class PayBucket(str, Enum):
    """Category a minute of time is paid (or not paid) under."""

    REG = "REG"
    OT = "OT"
    DT = "DT"
    PTO = "PTO"
    SICK = "SICK"
    HOLIDAY = "HOLIDAY"
    FMLA = "FMLA"
    BEREAVEMENT = "BEREAVEMENT"
    JURY_DUTY = "JURY_DUTY"
    MILITARY = "MILITARY"
    UNPAID = "UNPAID"


class LeaveCategory(str, Enum):
    """Leave type categories. Each maps 1:1 onto a pay bucket."""

    PTO = "PTO"
    SICK = "SICK"
    HOLIDAY = "HOLIDAY"
    FMLA = "FMLA"
    BEREAVEMENT = "BEREAVEMENT"
    JURY_DUTY = "JURY_DUTY"
    MILITARY = "MILITARY"
    UNPAID = "UNPAID"

    @property
    def pay_bucket(self) -> PayBucket:
        return PayBucket(self.value)


class TimesheetStatus(str, Enum):
    """Timesheet approval workflow status."""

    OPEN = "OPEN"
    SUBMITTED = "SUBMITTED"
    SUP_APPROVED = "SUP_APPROVED"
    PAYROLL_APPROVED = "PAYROLL_APPROVED"
    LOCKED = "LOCKED"


class LeaveRequestStatus(str, Enum):
    """Leave request lifecycle status."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    POSTED = "POSTED"


class PayPeriodStatus(str, Enum):
    """Pay period lifecycle status."""

    OPEN = "OPEN"
    READY = "READY"
    LOCKED = "LOCKED"


class LedgerAction(str, Enum):
    """Leave balance ledger actions."""

    ACCRUAL = "ACCRUAL"
    USAGE = "USAGE"
    ADJUSTMENT = "ADJUSTMENT"


# Buckets written by the overtime classifier
WORK_BUCKETS: frozenset[PayBucket] = frozenset({PayBucket.REG, PayBucket.OT, PayBucket.DT})

# Buckets written by the leave segment synchronizer
LEAVE_BUCKETS: frozenset[PayBucket] = frozenset(c.pay_bucket for c in LeaveCategory)

# Segment types produced from punches
PUNCH_SEGMENT_TYPES: frozenset[SegmentType] = frozenset(
    {SegmentType.WORK, SegmentType.MEAL, SegmentType.BREAK}
)

# A daily threshold at or above this value can never be reached
MINUTES_PER_DAY = 1440


def round_half_up(value: Decimal | int | float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class RuleSetConfig:
    """Overtime policy applied to one calculation.

    Thresholds are minutes. A daily threshold >= 1440 disables that daily
    rule; ``consecutive_day_ot_day`` <= 0 disables the consecutive-day rule.
    """

    daily_ot_minutes: int
    daily_dt_minutes: int
    weekly_ot_minutes: int
    consecutive_day_ot_day: int
    punch_rounding_minutes: int = 0


@dataclass
class SegmentCandidate:
    """A work segment before persistence."""

    segment_type: SegmentType
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    segment_date: date
    is_paid: bool
    pay_bucket: PayBucket
    is_split: bool = False
    leave_request_id: UUID | None = None

    def with_bucket(self, bucket: PayBucket) -> SegmentCandidate:
        return replace(self, pay_bucket=bucket)

    def to_canonical_dict(self) -> dict[str, str | int | bool | None]:
        """Return a stable dict for comparing segment sets."""
        return {
            "segment_type": self.segment_type.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "segment_date": self.segment_date.isoformat(),
            "is_paid": self.is_paid,
            "pay_bucket": self.pay_bucket.value,
            "is_split": self.is_split,
            "leave_request_id": str(self.leave_request_id) if self.leave_request_id else None,
        }


@dataclass
class DayBreakdown:
    """Daily REG/OT/DT split for one calendar date."""

    date: date
    work_minutes: int
    reg_minutes: int
    ot_minutes: int
    dt_minutes: int
    is_consecutive_ot_day: bool


@dataclass
class OvertimeResult:
    """Outcome of the two-phase overtime classification."""

    days: list[DayBreakdown]
    total_reg: int
    total_ot: int
    total_dt: int
    # Monday of each week -> REG minutes converted to OT by the weekly rule
    weekly_conversions: dict[date, int] = field(default_factory=dict)

    @property
    def weekly_ot_converted(self) -> int:
        return sum(self.weekly_conversions.values())

    @property
    def total_work(self) -> int:
        return self.total_reg + self.total_ot + self.total_dt

    def bucket_totals(self) -> dict[PayBucket, int]:
        return {
            PayBucket.REG: self.total_reg,
            PayBucket.OT: self.total_ot,
            PayBucket.DT: self.total_dt,
        }
