"""Tests for punch recording and correction."""

from datetime import datetime, time
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from timekeeping_engine.calculators.types import PunchState, PunchType, TimesheetStatus
from timekeeping_engine.errors import NotFoundError
from timekeeping_engine.models import AuditEvent, Punch
from timekeeping_engine.services.punch_service import (
    AlreadyCorrectedError,
    PunchService,
    TimesheetLockedError,
)
from timekeeping_engine.services.state_machine import InvalidTransitionError

from tests.conftest import PERIOD_START, load_buckets, load_segments


def at(hour: int, minute: int = 0) -> datetime:
    return datetime.combine(PERIOD_START, time(hour, minute))


async def audit_actions(session) -> list[str]:
    result = await session.execute(select(AuditEvent.action).order_by(AuditEvent.action))
    return list(result.scalars())


class TestRecordPunch:
    """Test record_punch."""

    async def test_full_day_builds_segments(self, session, test_employee, test_pay_period):
        service = PunchService(session)
        employee_id = test_employee.employee_id

        await service.record_punch(employee_id, PunchType.CLOCK_IN, at(8))
        await service.record_punch(employee_id, PunchType.MEAL_START, at(12))
        await service.record_punch(employee_id, PunchType.MEAL_END, at(12, 30))
        result = await service.record_punch(employee_id, PunchType.CLOCK_OUT, at(17))

        assert result.state_before == PunchState.WORK
        assert result.state_after == PunchState.OUT
        segments = await load_segments(session, result.timesheet_id)
        assert [(s.segment_type, s.pay_bucket, s.duration_minutes) for s in segments] == [
            ("WORK", "REG", 240),
            ("MEAL", "UNPAID", 30),
            ("WORK", "REG", 240),
            ("WORK", "OT", 30),
        ]
        assert await load_buckets(session, result.timesheet_id) == {"REG": 480, "OT": 30}
        assert await service.get_current_punch_state(employee_id) == PunchState.OUT

    async def test_current_state_defaults_to_out(self, session, test_employee):
        state = await PunchService(session).get_current_punch_state(test_employee.employee_id)
        assert state == PunchState.OUT

    async def test_invalid_transition_is_rejected(self, session, test_employee, test_pay_period):
        with pytest.raises(InvalidTransitionError, match="Cannot CLOCK_OUT when current state is OUT"):
            await PunchService(session).record_punch(
                test_employee.employee_id, PunchType.CLOCK_OUT, at(8)
            )

    async def test_rounding_from_rule_set(
        self, session, test_employee, test_rule_set, test_pay_period
    ):
        test_rule_set.punch_rounding_minutes = 15
        await session.flush()

        result = await PunchService(session).record_punch(
            test_employee.employee_id, "CLOCK_IN", at(8, 7), source="KIOSK"
        )

        assert result.rounded_time == at(8)
        punch = await session.get(Punch, result.punch_id)
        assert punch.punch_time == at(8, 7)
        assert punch.source == "KIOSK"

    async def test_no_open_pay_period(self, session, test_employee):
        with pytest.raises(NotFoundError):
            await PunchService(session).record_punch(
                test_employee.employee_id, PunchType.CLOCK_IN, at(8)
            )

    async def test_locked_timesheet_is_refused(self, session, test_employee, test_pay_period):
        service = PunchService(session)
        first = await service.record_punch(test_employee.employee_id, PunchType.CLOCK_IN, at(8))
        timesheet = await service.timesheets.get_timesheet(first.timesheet_id)
        timesheet.status = TimesheetStatus.LOCKED.value
        await session.flush()

        with pytest.raises(TimesheetLockedError):
            await service.record_punch(test_employee.employee_id, PunchType.CLOCK_OUT, at(17))

    async def test_punch_is_audited(self, session, test_employee, test_pay_period):
        await PunchService(session).record_punch(
            test_employee.employee_id, PunchType.CLOCK_IN, at(8)
        )

        assert await audit_actions(session) == ["PUNCH_RECORDED"]


class TestCorrectPunch:
    """Test correct_punch."""

    async def test_correction_supersedes_original(
        self, session, test_employee, test_supervisor, test_pay_period
    ):
        service = PunchService(session)
        await service.record_punch(test_employee.employee_id, PunchType.CLOCK_IN, at(8))
        clock_out = await service.record_punch(
            test_employee.employee_id, PunchType.CLOCK_OUT, at(16)
        )
        assert clock_out.rebuild.overtime.total_work == 480

        result = await service.correct_punch(
            clock_out.punch_id, at(17), "Forgot to clock out", test_supervisor.employee_id
        )

        assert result.rebuild.overtime.total_work == 540
        original = await session.get(Punch, clock_out.punch_id)
        correction = await session.get(Punch, result.punch_id)
        assert original.corrected_by_id == correction.punch_id
        assert correction.corrects_id == original.punch_id
        assert correction.source == "MANUAL"
        assert correction.approved_by_id == test_supervisor.employee_id
        assert correction.state_after == "OUT"
        assert await load_buckets(session, result.timesheet_id) == {"REG": 480, "OT": 60}
        assert await audit_actions(session) == [
            "PUNCH_CORRECTED",
            "PUNCH_RECORDED",
            "PUNCH_RECORDED",
        ]

    async def test_second_correction_is_rejected(
        self, session, test_employee, test_supervisor, test_pay_period
    ):
        service = PunchService(session)
        clock_in = await service.record_punch(test_employee.employee_id, PunchType.CLOCK_IN, at(8))
        await service.correct_punch(
            clock_in.punch_id, at(7, 45), "Early start", test_supervisor.employee_id
        )

        with pytest.raises(AlreadyCorrectedError):
            await service.correct_punch(
                clock_in.punch_id, at(7, 30), "Earlier start", test_supervisor.employee_id
            )

        count = await session.scalar(select(func.count()).select_from(Punch))
        assert count == 2

    async def test_missing_punch(self, session, test_supervisor):
        with pytest.raises(NotFoundError):
            await PunchService(session).correct_punch(
                uuid4(), at(9), "Typo", test_supervisor.employee_id
            )
