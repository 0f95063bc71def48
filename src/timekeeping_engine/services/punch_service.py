"""Punch recording and supervisor corrections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeping_engine.calculators import apply_rounding
from timekeeping_engine.calculators.types import (
    PayPeriodStatus,
    PunchSource,
    PunchState,
    PunchType,
    TimesheetStatus,
)
from timekeeping_engine.database import lock_timesheet, unit_of_work
from timekeeping_engine.errors import NotFoundError
from timekeeping_engine.models import PayPeriod, Punch, Timesheet
from timekeeping_engine.services.audit import record_audit
from timekeeping_engine.services.segment_service import RebuildResult, SegmentService
from timekeeping_engine.services.state_machine import transition
from timekeeping_engine.services.timesheet_service import TimesheetService

logger = logging.getLogger(__name__)


class AlreadyCorrectedError(Exception):
    """Raised when correcting a punch that has already been superseded."""

    def __init__(self, punch_id: UUID, corrected_by_id: UUID):
        self.punch_id = punch_id
        self.corrected_by_id = corrected_by_id
        super().__init__(f"Punch {punch_id} was already corrected by punch {corrected_by_id}")


class TimesheetLockedError(Exception):
    """Raised when punches or a rebuild would change a LOCKED timesheet."""

    def __init__(self, timesheet_id: UUID):
        self.timesheet_id = timesheet_id
        super().__init__(f"Timesheet {timesheet_id} is locked")


@dataclass
class PunchResult:
    """A stored punch and the rebuild it triggered."""

    punch_id: UUID
    timesheet_id: UUID
    state_before: PunchState
    state_after: PunchState
    rounded_time: datetime
    rebuild: RebuildResult


def _punch_snapshot(punch: Punch) -> dict[str, str | None]:
    return {
        "punch_id": str(punch.punch_id),
        "punch_type": punch.punch_type,
        "punch_time": punch.punch_time.isoformat(),
        "rounded_time": punch.rounded_time.isoformat(),
        "state_before": punch.state_before,
        "state_after": punch.state_after,
    }


class PunchService:
    """Validates and stores punches, then rebuilds the affected timesheet."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.timesheets = TimesheetService(session)
        self.segments = SegmentService(session)

    async def get_current_punch_state(self, employee_id: UUID) -> PunchState:
        """State after the employee's latest approved, non-superseded punch."""
        result = await self.session.execute(
            select(Punch.state_after)
            .where(
                Punch.employee_id == employee_id,
                Punch.is_approved.is_(True),
                Punch.corrected_by_id.is_(None),
            )
            .order_by(Punch.rounded_time.desc(), Punch.punch_time.desc())
            .limit(1)
        )
        state = result.scalar_one_or_none()
        return PunchState(state) if state is not None else PunchState.OUT

    async def find_open_pay_period(self, day: date) -> PayPeriod:
        result = await self.session.execute(
            select(PayPeriod)
            .where(
                PayPeriod.start_date <= day,
                PayPeriod.end_date >= day,
                PayPeriod.status == PayPeriodStatus.OPEN.value,
            )
            .order_by(PayPeriod.start_date)
            .limit(1)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundError("Open pay period for", day)
        return period

    async def record_punch(
        self,
        employee_id: UUID,
        punch_type: PunchType | str,
        punch_time: datetime,
        source: PunchSource | str = PunchSource.WEB,
        note: str | None = None,
    ) -> PunchResult:
        """Record a clock event for an employee.

        Raises:
            NotFoundError: If the employee or an open pay period is missing
            MissingConfigurationError: If the employee has no rule set
            TimesheetLockedError: If the timesheet is LOCKED
            InvalidTransitionError: If the punch is impossible from the current state
        """
        punch_type = PunchType(punch_type)
        source = PunchSource(source)

        async with unit_of_work(self.session):
            rules = await self.timesheets.get_rule_set(employee_id)
            period = await self.find_open_pay_period(punch_time.date())
            timesheet = await self.timesheets.find_or_create_timesheet(
                employee_id, period.pay_period_id
            )
            if timesheet.status == TimesheetStatus.LOCKED.value:
                raise TimesheetLockedError(timesheet.timesheet_id)
            await lock_timesheet(self.session, timesheet.timesheet_id)

            state_before = await self.get_current_punch_state(employee_id)
            state_after = transition(state_before, punch_type)
            rounded = apply_rounding(punch_time, rules.punch_rounding_minutes)

            punch = Punch(
                employee_id=employee_id,
                timesheet_id=timesheet.timesheet_id,
                punch_type=punch_type.value,
                punch_time=punch_time,
                rounded_time=rounded,
                source=source.value,
                state_before=state_before.value,
                state_after=state_after.value,
                is_approved=True,
                note=note,
            )
            self.session.add(punch)
            await self.session.flush()

            await record_audit(
                self.session,
                action="PUNCH_RECORDED",
                entity_type="Punch",
                entity_id=punch.punch_id,
                actor_id=employee_id,
                after=_punch_snapshot(punch),
            )
            rebuild = await self.segments.rebuild_segments(timesheet.timesheet_id)

        logger.info(
            "Recorded %s for employee %s at %s (%s -> %s)",
            punch_type.value,
            employee_id,
            rounded.isoformat(),
            state_before.value,
            state_after.value,
        )
        return PunchResult(
            punch_id=punch.punch_id,
            timesheet_id=timesheet.timesheet_id,
            state_before=state_before,
            state_after=state_after,
            rounded_time=rounded,
            rebuild=rebuild,
        )

    async def correct_punch(
        self,
        original_punch_id: UUID,
        new_punch_time: datetime,
        reason: str,
        supervisor_id: UUID,
    ) -> PunchResult:
        """Supersede a punch with a corrected time.

        The original row is kept and linked to its replacement; only the
        replacement feeds segment building from then on.

        Raises:
            NotFoundError: If the original punch does not exist
            AlreadyCorrectedError: If the original was already superseded
            TimesheetLockedError: If the punch's timesheet is LOCKED
        """
        async with unit_of_work(self.session):
            original = await self.session.get(Punch, original_punch_id)
            if original is None:
                raise NotFoundError("Punch", original_punch_id)
            if original.corrected_by_id is not None:
                raise AlreadyCorrectedError(original.punch_id, original.corrected_by_id)

            timesheet = await self.session.get(Timesheet, original.timesheet_id)
            if timesheet is None:
                raise NotFoundError("Timesheet", original.timesheet_id)
            if timesheet.status == TimesheetStatus.LOCKED.value:
                raise TimesheetLockedError(timesheet.timesheet_id)
            await lock_timesheet(self.session, timesheet.timesheet_id)

            rules = await self.timesheets.get_rule_set(original.employee_id)
            rounded = apply_rounding(new_punch_time, rules.punch_rounding_minutes)

            correction = Punch(
                employee_id=original.employee_id,
                timesheet_id=original.timesheet_id,
                punch_type=original.punch_type,
                punch_time=new_punch_time,
                rounded_time=rounded,
                source=PunchSource.MANUAL.value,
                state_before=original.state_before,
                state_after=original.state_after,
                is_approved=True,
                approved_by_id=supervisor_id,
                approved_at=datetime.now(),
                note=reason,
                corrects_id=original.punch_id,
            )
            self.session.add(correction)
            await self.session.flush()

            before = _punch_snapshot(original)
            original.corrected_by_id = correction.punch_id
            await self.session.flush()

            await record_audit(
                self.session,
                action="PUNCH_CORRECTED",
                entity_type="Punch",
                entity_id=original.punch_id,
                actor_id=supervisor_id,
                before=before,
                after={**_punch_snapshot(correction), "reason": reason},
            )
            rebuild = await self.segments.rebuild_segments(original.timesheet_id)

        logger.info(
            "Punch %s corrected by %s to %s",
            original_punch_id,
            correction.punch_id,
            rounded.isoformat(),
        )
        return PunchResult(
            punch_id=correction.punch_id,
            timesheet_id=correction.timesheet_id,
            state_before=PunchState(correction.state_before),
            state_after=PunchState(correction.state_after),
            rounded_time=rounded,
            rebuild=rebuild,
        )
