"""Pay period readiness checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeping_engine.calculators.types import TimesheetStatus
from timekeeping_engine.errors import NotFoundError
from timekeeping_engine.models import Employee, PayPeriod, Timesheet, TimesheetException

# Timesheet statuses that count as done for payroll
APPROVED_STATUSES = frozenset(
    {TimesheetStatus.PAYROLL_APPROVED.value, TimesheetStatus.LOCKED.value}
)


@dataclass
class TimesheetIssue:
    """Why one timesheet blocks the pay period."""

    timesheet_id: UUID
    employee_name: str
    reason: str


@dataclass
class ValidationResult:
    """Readiness of a pay period for locking."""

    pay_period_id: UUID
    total_timesheets: int = 0
    approved_timesheets: int = 0
    unresolved_exceptions: int = 0
    issues: list[TimesheetIssue] = field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict:
        return {
            "pay_period_id": str(self.pay_period_id),
            "is_ready": self.is_ready,
            "total_timesheets": self.total_timesheets,
            "approved_timesheets": self.approved_timesheets,
            "unresolved_exceptions": self.unresolved_exceptions,
            "issues": [
                {
                    "timesheet_id": str(issue.timesheet_id),
                    "employee_name": issue.employee_name,
                    "reason": issue.reason,
                }
                for issue in self.issues
            ],
        }


class ValidationService:
    """Read-only checks gating the OPEN -> READY pay period transition."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def validate_pay_period(self, pay_period_id: UUID) -> ValidationResult:
        """Flag timesheets that are not payroll-approved or have open exceptions.

        A timesheet can produce two issues, one per reason.
        """
        period = await self.session.get(PayPeriod, pay_period_id)
        if period is None:
            raise NotFoundError("PayPeriod", pay_period_id)

        rows = await self.session.execute(
            select(Timesheet.timesheet_id, Timesheet.status, Employee)
            .join(Employee, Employee.employee_id == Timesheet.employee_id)
            .where(Timesheet.pay_period_id == pay_period_id)
            .order_by(Employee.last_name, Employee.first_name, Timesheet.timesheet_id)
        )
        timesheets = rows.all()

        open_exceptions = await self.session.execute(
            select(TimesheetException.timesheet_id, func.count())
            .join(Timesheet, Timesheet.timesheet_id == TimesheetException.timesheet_id)
            .where(
                Timesheet.pay_period_id == pay_period_id,
                TimesheetException.resolved_at.is_(None),
            )
            .group_by(TimesheetException.timesheet_id)
        )
        exception_counts = {timesheet_id: count for timesheet_id, count in open_exceptions.all()}

        result = ValidationResult(pay_period_id=pay_period_id, total_timesheets=len(timesheets))
        for timesheet_id, status, employee in timesheets:
            name = employee.full_name.strip() or f"Employee {employee.employee_id}"

            if status in APPROVED_STATUSES:
                result.approved_timesheets += 1
            else:
                result.issues.append(
                    TimesheetIssue(
                        timesheet_id=timesheet_id,
                        employee_name=name,
                        reason=f"Timesheet is {status}, not yet payroll-approved",
                    )
                )

            unresolved = exception_counts.get(timesheet_id, 0)
            if unresolved:
                result.unresolved_exceptions += unresolved
                result.issues.append(
                    TimesheetIssue(
                        timesheet_id=timesheet_id,
                        employee_name=name,
                        reason=f"{unresolved} unresolved exception(s)",
                    )
                )

        return result
