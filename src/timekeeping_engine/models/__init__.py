"""ORM models."""

from timekeeping_engine.models.audit import AuditEvent
from timekeeping_engine.models.base import Base, TimestampMixin
from timekeeping_engine.models.leave import (
    LeaveAccrualLedger,
    LeaveBalance,
    LeaveRequest,
    LedgerImmutableError,
)
from timekeeping_engine.models.organization import Employee, LeaveType, PayPeriod, RuleSet
from timekeeping_engine.models.timekeeping import (
    OvertimeBucket,
    Punch,
    Timesheet,
    TimesheetException,
    WorkSegment,
)

__all__ = [
    "AuditEvent",
    "Base",
    "Employee",
    "LeaveAccrualLedger",
    "LeaveBalance",
    "LeaveRequest",
    "LeaveType",
    "LedgerImmutableError",
    "OvertimeBucket",
    "PayPeriod",
    "Punch",
    "RuleSet",
    "Timesheet",
    "TimesheetException",
    "TimestampMixin",
    "WorkSegment",
]
