"""Tests for the leave segment synchronizer."""

from datetime import date, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from timekeeping_engine.calculators.types import LeaveCategory, LeaveRequestStatus, SegmentType
from timekeeping_engine.errors import InvalidLeaveRequestError, NotFoundError
from timekeeping_engine.models import LeaveRequest, LeaveType, Timesheet, WorkSegment
from timekeeping_engine.services.leave_segment_service import (
    LeaveSegmentService,
    leave_segment_window,
    per_day_minutes,
)

from tests.conftest import PERIOD_START, load_buckets


async def make_request(
    session,
    employee,
    leave_type,
    start: date,
    end: date,
    minutes: int,
    status: LeaveRequestStatus = LeaveRequestStatus.APPROVED,
) -> LeaveRequest:
    request = LeaveRequest(
        leave_request_id=uuid4(),
        employee_id=employee.employee_id,
        leave_type_id=leave_type.leave_type_id,
        start_date=start,
        end_date=end,
        duration_minutes=minutes,
        status=status.value,
    )
    session.add(request)
    await session.flush()
    return request


async def leave_segments(session, leave_request_id) -> list[WorkSegment]:
    result = await session.execute(
        select(WorkSegment)
        .where(WorkSegment.leave_request_id == leave_request_id)
        .order_by(WorkSegment.start_time)
    )
    return list(result.scalars())


async def employee_timesheets(session, employee) -> list[Timesheet]:
    result = await session.execute(
        select(Timesheet).where(Timesheet.employee_id == employee.employee_id)
    )
    return list(result.scalars())


class TestLeaveHelpers:
    """Test the pure helpers."""

    def test_per_day_minutes_rounds_half_up(self):
        assert per_day_minutes(1440, 3) == 480
        assert per_day_minutes(1000, 3) == 333
        assert per_day_minutes(5, 2) == 3

    def test_window_starts_at_display_hour(self):
        start, end = leave_segment_window(date(2026, 1, 6), 480, 9)

        assert start == datetime(2026, 1, 6, 9, 0)
        assert end == datetime(2026, 1, 6, 17, 0)

    def test_window_is_pulled_back_before_midnight(self):
        start, end = leave_segment_window(date(2026, 1, 6), 1200, 9)

        assert end == datetime(2026, 1, 7, 0, 0)
        assert start == datetime(2026, 1, 6, 4, 0)

    def test_window_longer_than_a_day_raises(self):
        with pytest.raises(InvalidLeaveRequestError):
            leave_segment_window(date(2026, 1, 6), 1441, 9)


class TestSyncLeaveSegments:
    """Test sync_leave_segments."""

    async def test_approved_request_creates_one_segment_per_day(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        request = await make_request(
            session,
            test_employee,
            pto_leave_type,
            PERIOD_START + timedelta(days=1),
            PERIOD_START + timedelta(days=3),
            1440,
        )

        result = await LeaveSegmentService(session).sync_leave_segments(request.leave_request_id)

        assert result.created_segments == 3
        assert result.per_day_minutes == 480
        segments = await leave_segments(session, request.leave_request_id)
        assert [s.segment_date for s in segments] == [
            PERIOD_START + timedelta(days=i) for i in range(1, 4)
        ]
        assert all(s.segment_type == SegmentType.LEAVE.value for s in segments)
        assert all(s.pay_bucket == "PTO" and s.is_paid for s in segments)
        assert all(s.start_time.hour == 9 for s in segments)
        (timesheet,) = await employee_timesheets(session, test_employee)
        assert await load_buckets(session, timesheet.timesheet_id) == {"PTO": 1440}

    async def test_sync_twice_is_idempotent(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        request = await make_request(
            session, test_employee, pto_leave_type, PERIOD_START, PERIOD_START, 240
        )
        service = LeaveSegmentService(session)

        await service.sync_leave_segments(request.leave_request_id)
        first = [
            s.to_candidate().to_canonical_dict()
            for s in await leave_segments(session, request.leave_request_id)
        ]
        second_result = await service.sync_leave_segments(request.leave_request_id)
        second = [
            s.to_candidate().to_canonical_dict()
            for s in await leave_segments(session, request.leave_request_id)
        ]

        assert first == second
        assert second_result.removed_segments == 1
        assert second_result.created_segments == 1

    async def test_cancellation_removes_segments_and_buckets(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        request = await make_request(
            session,
            test_employee,
            pto_leave_type,
            PERIOD_START,
            PERIOD_START + timedelta(days=1),
            960,
        )
        service = LeaveSegmentService(session)
        await service.sync_leave_segments(request.leave_request_id)

        request.status = LeaveRequestStatus.CANCELLED.value
        await session.flush()
        result = await service.sync_leave_segments(request.leave_request_id)

        assert result.removed_segments == 2
        assert result.created_segments == 0
        assert await leave_segments(session, request.leave_request_id) == []
        (timesheet,) = await employee_timesheets(session, test_employee)
        assert await load_buckets(session, timesheet.timesheet_id) == {}

    async def test_request_spanning_two_pay_periods(
        self, session, test_employee, test_pay_period, next_pay_period, pto_leave_type
    ):
        request = await make_request(
            session,
            test_employee,
            pto_leave_type,
            test_pay_period.end_date - timedelta(days=1),
            next_pay_period.start_date + timedelta(days=1),
            1920,
        )

        result = await LeaveSegmentService(session).sync_leave_segments(request.leave_request_id)

        assert result.created_segments == 4
        assert len(result.affected_timesheet_ids) == 2
        timesheets = await employee_timesheets(session, test_employee)
        assert len(timesheets) == 2
        for timesheet in timesheets:
            assert await load_buckets(session, timesheet.timesheet_id) == {"PTO": 960}

    async def test_days_outside_any_pay_period_get_no_segment(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        request = await make_request(
            session,
            test_employee,
            pto_leave_type,
            test_pay_period.end_date,
            test_pay_period.end_date + timedelta(days=1),
            960,
        )

        result = await LeaveSegmentService(session).sync_leave_segments(request.leave_request_id)

        assert result.created_segments == 1
        assert result.per_day_minutes == 480

    async def test_other_requests_on_the_same_timesheet_are_kept(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        sick = LeaveType(
            leave_type_id=uuid4(),
            name="Sick",
            category=LeaveCategory.SICK.value,
            is_paid=True,
        )
        session.add(sick)
        await session.flush()
        pto_request = await make_request(
            session, test_employee, pto_leave_type, PERIOD_START, PERIOD_START, 480
        )
        sick_request = await make_request(
            session,
            test_employee,
            sick,
            PERIOD_START + timedelta(days=1),
            PERIOD_START + timedelta(days=1),
            240,
        )
        service = LeaveSegmentService(session)
        await service.sync_leave_segments(pto_request.leave_request_id)
        await service.sync_leave_segments(sick_request.leave_request_id)

        sick_request.status = LeaveRequestStatus.REJECTED.value
        await session.flush()
        await service.sync_leave_segments(sick_request.leave_request_id)

        (timesheet,) = await employee_timesheets(session, test_employee)
        assert await load_buckets(session, timesheet.timesheet_id) == {"PTO": 480}

    async def test_pending_request_gets_no_segments(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        request = await make_request(
            session,
            test_employee,
            pto_leave_type,
            PERIOD_START,
            PERIOD_START,
            480,
            status=LeaveRequestStatus.PENDING,
        )

        result = await LeaveSegmentService(session).sync_leave_segments(request.leave_request_id)

        assert result.created_segments == 0
        assert await employee_timesheets(session, test_employee) == []

    async def test_more_than_a_day_per_day_is_rejected(
        self, session, test_employee, test_pay_period, pto_leave_type
    ):
        request = await make_request(
            session, test_employee, pto_leave_type, PERIOD_START, PERIOD_START, 1500
        )

        with pytest.raises(InvalidLeaveRequestError) as exc_info:
            await LeaveSegmentService(session).sync_leave_segments(request.leave_request_id)

        assert exc_info.value.leave_request_id == request.leave_request_id
        assert await leave_segments(session, request.leave_request_id) == []

    async def test_missing_request(self, session):
        with pytest.raises(NotFoundError):
            await LeaveSegmentService(session).sync_leave_segments(uuid4())
