"""Tests for lifecycle transitions and the engine work they trigger."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from timekeeping_engine.calculators.types import (
    LeaveRequestStatus,
    PayPeriodStatus,
    TimesheetStatus,
)
from timekeeping_engine.errors import NotFoundError
from timekeeping_engine.models import (
    AuditEvent,
    LeaveBalance,
    LeaveRequest,
    Timesheet,
    TimesheetException,
    WorkSegment,
)
from timekeeping_engine.services.state_machine import (
    InvalidTransitionError,
    LeaveEvent,
    TimesheetEvent,
)
from timekeeping_engine.services.workflow_service import PeriodNotReadyError, WorkflowService

from tests.conftest import PERIOD_START


async def add_request(session, employee, leave_type, status, minutes=960) -> LeaveRequest:
    request = LeaveRequest(
        leave_request_id=uuid4(),
        employee_id=employee.employee_id,
        leave_type_id=leave_type.leave_type_id,
        start_date=PERIOD_START,
        end_date=PERIOD_START + timedelta(days=1),
        duration_minutes=minutes,
        status=status.value,
    )
    session.add(request)
    await session.flush()
    return request


async def add_timesheet(session, employee, pay_period, status) -> Timesheet:
    timesheet = Timesheet(
        timesheet_id=uuid4(),
        employee_id=employee.employee_id,
        pay_period_id=pay_period.pay_period_id,
        status=status.value,
    )
    session.add(timesheet)
    await session.flush()
    return timesheet


async def request_segments(session, leave_request_id) -> list[WorkSegment]:
    result = await session.execute(
        select(WorkSegment).where(WorkSegment.leave_request_id == leave_request_id)
    )
    return list(result.scalars())


async def audit_actions(session, entity_id) -> list[str]:
    result = await session.execute(
        select(AuditEvent.action).where(AuditEvent.entity_id == entity_id)
    )
    return sorted(result.scalars())


class TestTimesheetTransitions:
    """Test transition_timesheet."""

    async def test_approval_chain_ends_locked(self, session, test_employee, test_pay_period):
        timesheet = await add_timesheet(
            session, test_employee, test_pay_period, TimesheetStatus.OPEN
        )
        service = WorkflowService(session)

        for event in ("SUBMIT", "SUP_APPROVE", "PAYROLL_APPROVE"):
            await service.transition_timesheet(timesheet.timesheet_id, event)
        status = await service.transition_timesheet(timesheet.timesheet_id, TimesheetEvent.LOCK)

        assert status == TimesheetStatus.LOCKED
        assert timesheet.locked_at is not None
        assert len(await audit_actions(session, timesheet.timesheet_id)) == 4
        lock_event = await session.scalar(
            select(AuditEvent).where(AuditEvent.action == "TIMESHEET_LOCK")
        )
        assert lock_event.before_json == {"status": "PAYROLL_APPROVED"}
        assert lock_event.after_json["status"] == "LOCKED"
        assert "engine_version" in lock_event.after_json

    async def test_rejection_returns_to_open(self, session, test_employee, test_pay_period):
        timesheet = await add_timesheet(
            session, test_employee, test_pay_period, TimesheetStatus.SUBMITTED
        )

        status = await WorkflowService(session).transition_timesheet(
            timesheet.timesheet_id, TimesheetEvent.SUP_REJECT
        )

        assert status == TimesheetStatus.OPEN

    async def test_locked_timesheet_accepts_nothing(
        self, session, test_employee, test_pay_period
    ):
        timesheet = await add_timesheet(
            session, test_employee, test_pay_period, TimesheetStatus.LOCKED
        )

        with pytest.raises(InvalidTransitionError, match="timesheet in LOCKED status"):
            await WorkflowService(session).transition_timesheet(
                timesheet.timesheet_id, TimesheetEvent.SUBMIT
            )

    async def test_missing_timesheet(self, session):
        with pytest.raises(NotFoundError):
            await WorkflowService(session).transition_timesheet(uuid4(), TimesheetEvent.SUBMIT)


class TestLeaveTransitions:
    """Test transition_leave_request."""

    async def test_approve_creates_segments(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        request = await add_request(
            session, test_employee, pto_leave_type, LeaveRequestStatus.PENDING
        )

        result = await WorkflowService(session).transition_leave_request(
            request.leave_request_id, LeaveEvent.APPROVE
        )

        assert result.to_status == LeaveRequestStatus.APPROVED
        assert result.sync.created_segments == 2
        assert len(await request_segments(session, request.leave_request_id)) == 2
        assert await audit_actions(session, request.leave_request_id) == [
            "LEAVE_REQUEST_APPROVE"
        ]

    async def test_cancel_removes_segments(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        request = await add_request(
            session, test_employee, pto_leave_type, LeaveRequestStatus.PENDING
        )
        service = WorkflowService(session)
        await service.transition_leave_request(request.leave_request_id, LeaveEvent.APPROVE)

        result = await service.transition_leave_request(
            request.leave_request_id, LeaveEvent.CANCEL
        )

        assert result.sync.removed_segments == 2
        assert await request_segments(session, request.leave_request_id) == []

    async def test_submit_does_not_sync(self, session, test_employee, pto_leave_type):
        request = await add_request(session, test_employee, pto_leave_type, LeaveRequestStatus.DRAFT)

        result = await WorkflowService(session).transition_leave_request(
            request.leave_request_id, LeaveEvent.SUBMIT
        )

        assert result.to_status == LeaveRequestStatus.PENDING
        assert result.sync is None

    async def test_post_debits_usage_and_keeps_segments(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        balance = LeaveBalance(
            leave_balance_id=uuid4(),
            employee_id=test_employee.employee_id,
            leave_type_id=pto_leave_type.leave_type_id,
            accrual_year=PERIOD_START.year,
            balance_minutes=1200,
        )
        session.add(balance)
        request = await add_request(
            session, test_employee, pto_leave_type, LeaveRequestStatus.PENDING
        )
        service = WorkflowService(session)
        await service.transition_leave_request(request.leave_request_id, LeaveEvent.APPROVE)

        result = await service.transition_leave_request(request.leave_request_id, "POST")

        assert result.to_status == LeaveRequestStatus.POSTED
        assert result.usage.delta_minutes == -960
        assert balance.balance_minutes == 240
        assert len(await request_segments(session, request.leave_request_id)) == 2

    async def test_invalid_transition(self, session, test_employee, pto_leave_type):
        request = await add_request(
            session, test_employee, pto_leave_type, LeaveRequestStatus.PENDING
        )

        with pytest.raises(InvalidTransitionError, match="Cannot POST a leave request"):
            await WorkflowService(session).transition_leave_request(
                request.leave_request_id, LeaveEvent.POST
            )


class TestPayPeriodTransitions:
    """Test mark_pay_period_ready, lock_pay_period and reopen_pay_period."""

    async def test_mark_ready_refuses_unvalidated_period(
        self, session, test_employee, test_pay_period
    ):
        timesheet = await add_timesheet(
            session, test_employee, test_pay_period, TimesheetStatus.PAYROLL_APPROVED
        )
        session.add(
            TimesheetException(
                timesheet_id=timesheet.timesheet_id, exception_type="MISSING_PUNCH"
            )
        )
        await session.flush()

        with pytest.raises(PeriodNotReadyError) as exc_info:
            await WorkflowService(session).mark_pay_period_ready(test_pay_period.pay_period_id)

        assert exc_info.value.validation.unresolved_exceptions == 1
        assert test_pay_period.status == PayPeriodStatus.OPEN.value

    async def test_lock_locks_approved_timesheets_and_posts_accruals(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        timesheet = await add_timesheet(
            session, test_employee, test_pay_period, TimesheetStatus.PAYROLL_APPROVED
        )
        service = WorkflowService(session)

        ready = await service.mark_pay_period_ready(test_pay_period.pay_period_id)
        locked = await service.lock_pay_period(test_pay_period.pay_period_id)

        assert ready.to_status == PayPeriodStatus.READY
        assert locked.to_status == PayPeriodStatus.LOCKED
        assert locked.timesheets_updated == 1
        assert [p.delta_minutes for p in locked.accruals.postings] == [160]
        refreshed = await session.get(Timesheet, timesheet.timesheet_id)
        assert refreshed.status == TimesheetStatus.LOCKED.value
        assert await audit_actions(session, test_pay_period.pay_period_id) == [
            "PAY_PERIOD_LOCK",
            "PAY_PERIOD_MARK_READY",
        ]

    async def test_lock_requires_ready(self, session, test_pay_period):
        with pytest.raises(InvalidTransitionError):
            await WorkflowService(session).lock_pay_period(test_pay_period.pay_period_id)

    async def test_reopen_unlocks_timesheets(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        timesheet = await add_timesheet(
            session, test_employee, test_pay_period, TimesheetStatus.PAYROLL_APPROVED
        )
        service = WorkflowService(session)
        await service.mark_pay_period_ready(test_pay_period.pay_period_id)
        await service.lock_pay_period(test_pay_period.pay_period_id)

        result = await service.reopen_pay_period(test_pay_period.pay_period_id)

        assert result.from_status == PayPeriodStatus.LOCKED
        assert result.to_status == PayPeriodStatus.OPEN
        assert result.timesheets_updated == 1
        refreshed = await session.get(Timesheet, timesheet.timesheet_id)
        assert refreshed.status == TimesheetStatus.PAYROLL_APPROVED.value
        assert refreshed.locked_at is None

    async def test_relock_after_reopen_does_not_accrue_twice(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        service = WorkflowService(session)
        period_id = test_pay_period.pay_period_id
        await service.mark_pay_period_ready(period_id)
        await service.lock_pay_period(period_id)
        await service.reopen_pay_period(period_id)
        await service.mark_pay_period_ready(period_id)

        relocked = await service.lock_pay_period(period_id)

        assert relocked.accruals.postings == []
        balance = await session.scalar(
            select(LeaveBalance).where(
                LeaveBalance.employee_id == test_employee.employee_id,
                LeaveBalance.leave_type_id == pto_leave_type.leave_type_id,
            )
        )
        assert balance.balance_minutes == 160

    async def test_missing_period(self, session):
        with pytest.raises(NotFoundError):
            await WorkflowService(session).mark_pay_period_ready(uuid4())
