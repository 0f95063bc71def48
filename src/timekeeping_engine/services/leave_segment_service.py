"""Leave segment synchronizer.

Approved and posted leave requests are materialized as LEAVE work segments,
one per calendar day of the request, on the timesheet of whichever pay
period covers that day. Every sync is delete-then-recreate, so a request
that was cancelled or rejected simply ends up with no segments.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeping_engine.calculators.segment_builder import next_midnight
from timekeeping_engine.calculators.types import (
    LEAVE_BUCKETS,
    MINUTES_PER_DAY,
    LeaveCategory,
    SegmentType,
    round_half_up,
)
from timekeeping_engine.config import get_settings
from timekeeping_engine.database import unit_of_work
from timekeeping_engine.errors import InvalidLeaveRequestError, NotFoundError
from timekeeping_engine.models import (
    LeaveRequest,
    LeaveType,
    OvertimeBucket,
    PayPeriod,
    WorkSegment,
)
from timekeeping_engine.services.state_machine import LeaveRequestStateMachine
from timekeeping_engine.services.timesheet_service import TimesheetService

logger = logging.getLogger(__name__)


@dataclass
class LeaveSyncResult:
    """Outcome of one leave request sync."""

    leave_request_id: UUID
    removed_segments: int = 0
    created_segments: int = 0
    per_day_minutes: int = 0
    affected_timesheet_ids: set[UUID] = field(default_factory=set)


def per_day_minutes(total_minutes: int, day_count: int) -> int:
    """Even share of a request's minutes for one day, rounded half up."""
    return round_half_up(Decimal(total_minutes) / Decimal(day_count))


def leave_segment_window(day: date, minutes: int, start_hour: int) -> tuple[datetime, datetime]:
    """Nominal display interval for a day's leave.

    Starts at ``start_hour``; a block that would run past midnight is moved
    earlier so it ends exactly at midnight and stays on ``day``.
    """
    if minutes > MINUTES_PER_DAY:
        raise InvalidLeaveRequestError(f"Leave of {minutes} minutes does not fit on {day}")

    start = datetime.combine(day, time(hour=start_hour))
    end = start + timedelta(minutes=minutes)
    midnight = next_midnight(start)
    if end > midnight:
        start = midnight - timedelta(minutes=minutes)
        end = midnight
    return start, end


class LeaveSegmentService:
    """Keeps LEAVE segments and leave-category buckets in step with requests."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.timesheets = TimesheetService(session)

    async def refresh_leave_buckets(self, timesheet_id: UUID) -> dict[str, int]:
        """Recompute leave-category bucket rows from the timesheet's LEAVE segments.

        REG/OT/DT rows are left as they are.
        """
        leave_bucket_values = [b.value for b in LEAVE_BUCKETS]

        await self.session.execute(
            delete(OvertimeBucket).where(
                OvertimeBucket.timesheet_id == timesheet_id,
                OvertimeBucket.bucket.in_(leave_bucket_values),
            )
        )

        rows = await self.session.execute(
            select(WorkSegment.pay_bucket, func.sum(WorkSegment.duration_minutes))
            .where(
                WorkSegment.timesheet_id == timesheet_id,
                WorkSegment.segment_type == SegmentType.LEAVE.value,
                WorkSegment.pay_bucket.in_(leave_bucket_values),
            )
            .group_by(WorkSegment.pay_bucket)
        )
        totals = {bucket: int(minutes or 0) for bucket, minutes in rows.all()}

        for bucket, minutes in sorted(totals.items()):
            if minutes > 0:
                self.session.add(
                    OvertimeBucket(timesheet_id=timesheet_id, bucket=bucket, total_minutes=minutes)
                )
        await self.session.flush()
        return totals

    async def _overlapping_periods(self, start: date, end: date) -> list[PayPeriod]:
        result = await self.session.execute(
            select(PayPeriod)
            .where(PayPeriod.start_date <= end, PayPeriod.end_date >= start)
            .order_by(PayPeriod.start_date)
        )
        return list(result.scalars())

    async def sync_leave_segments(self, leave_request_id: UUID) -> LeaveSyncResult:
        """Rewrite every LEAVE segment belonging to one leave request.

        Raises:
            NotFoundError: If the leave request does not exist
            InvalidLeaveRequestError: If a day's share of the request exceeds a full day
        """
        sync = LeaveSyncResult(leave_request_id=leave_request_id)

        async with unit_of_work(self.session):
            existing = await self.session.execute(
                select(WorkSegment.timesheet_id).where(
                    WorkSegment.leave_request_id == leave_request_id
                )
            )
            previous_timesheets = {row[0] for row in existing.all()}

            removed = await self.session.execute(
                delete(WorkSegment).where(WorkSegment.leave_request_id == leave_request_id)
            )
            sync.removed_segments = removed.rowcount or 0
            await self.session.flush()

            for timesheet_id in sorted(previous_timesheets):
                await self.refresh_leave_buckets(timesheet_id)
            sync.affected_timesheet_ids |= previous_timesheets

            request = await self.session.get(LeaveRequest, leave_request_id)
            if request is None:
                raise NotFoundError("LeaveRequest", leave_request_id)

            if not LeaveRequestStateMachine.has_segments(request.status):
                logger.info(
                    "Leave request %s is %s: removed %d segments",
                    leave_request_id,
                    request.status,
                    sync.removed_segments,
                )
                return sync

            # Later periods win if two periods ever claim the same day
            timesheet_by_day: dict[date, UUID] = {}
            for period in await self._overlapping_periods(request.start_date, request.end_date):
                timesheet = await self.timesheets.find_or_create_timesheet(
                    request.employee_id, period.pay_period_id
                )
                day = max(period.start_date, request.start_date)
                last = min(period.end_date, request.end_date)
                while day <= last:
                    timesheet_by_day[day] = timesheet.timesheet_id
                    day += timedelta(days=1)

            minutes = per_day_minutes(request.duration_minutes, request.day_count)
            if minutes > MINUTES_PER_DAY:
                raise InvalidLeaveRequestError(
                    f"Leave request {leave_request_id} needs {minutes} minutes per day, "
                    "more than a full day",
                    leave_request_id,
                )
            sync.per_day_minutes = minutes
            leave_type = await self.session.get(LeaveType, request.leave_type_id)
            if leave_type is None:
                raise NotFoundError("LeaveType", request.leave_type_id)
            pay_bucket = LeaveCategory(leave_type.category).pay_bucket

            created: dict[UUID, int] = defaultdict(int)
            if minutes > 0:
                for day, timesheet_id in sorted(timesheet_by_day.items()):
                    start, end = leave_segment_window(
                        day, minutes, self.settings.leave_display_start_hour
                    )
                    self.session.add(
                        WorkSegment(
                            timesheet_id=timesheet_id,
                            segment_type=SegmentType.LEAVE.value,
                            start_time=start,
                            end_time=end,
                            duration_minutes=minutes,
                            segment_date=day,
                            is_paid=leave_type.is_paid,
                            pay_bucket=pay_bucket.value,
                            is_split=False,
                            leave_request_id=leave_request_id,
                        )
                    )
                    created[timesheet_id] += 1
                await self.session.flush()

            for timesheet_id in sorted(created):
                await self.refresh_leave_buckets(timesheet_id)

            sync.created_segments = sum(created.values())
            sync.affected_timesheet_ids |= set(created)

        logger.info(
            "Synced leave request %s: removed %d, created %d segments across %d timesheets",
            leave_request_id,
            sync.removed_segments,
            sync.created_segments,
            len(sync.affected_timesheet_ids),
        )
        return sync
