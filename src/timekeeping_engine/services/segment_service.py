"""Rebuild derived work segments from punches."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeping_engine.calculators import compute_segments
from timekeeping_engine.calculators.types import PUNCH_SEGMENT_TYPES, OvertimeResult
from timekeeping_engine.database import lock_timesheet, unit_of_work
from timekeeping_engine.models import Punch, WorkSegment
from timekeeping_engine.services.overtime_service import OvertimeService
from timekeeping_engine.services.timesheet_service import TimesheetService

logger = logging.getLogger(__name__)


@dataclass
class RebuildResult:
    """Summary of one segment rebuild."""

    timesheet_id: UUID
    punch_count: int
    segment_count: int
    overtime: OvertimeResult


class SegmentService:
    """Regenerates WORK/MEAL/BREAK segments and overtime buckets.

    A rebuild is a full replacement: it deletes every punch-derived segment
    of the timesheet and writes what the current approved punches produce,
    so running it twice leaves the same rows. LEAVE segments are left alone.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.timesheets = TimesheetService(session)
        self.overtime = OvertimeService(session)

    async def load_effective_punches(self, timesheet_id: UUID) -> list[Punch]:
        """Approved punches that have not been superseded, by rounded time."""
        result = await self.session.execute(
            select(Punch)
            .where(
                Punch.timesheet_id == timesheet_id,
                Punch.is_approved.is_(True),
                Punch.corrected_by_id.is_(None),
            )
            .order_by(Punch.rounded_time, Punch.punch_time)
        )
        return list(result.scalars())

    async def rebuild_segments(self, timesheet_id: UUID) -> RebuildResult:
        """Rebuild segments and overtime for one timesheet atomically.

        Raises:
            NotFoundError: If the timesheet does not exist
            MissingConfigurationError: If the employee has no rule set
        """
        async with unit_of_work(self.session):
            timesheet = await self.timesheets.get_timesheet(timesheet_id)
            await lock_timesheet(self.session, timesheet_id)
            rules = await self.timesheets.get_rule_set(timesheet.employee_id)

            punches = await self.load_effective_punches(timesheet_id)
            candidates = compute_segments(punches)

            await self.session.execute(
                delete(WorkSegment).where(
                    WorkSegment.timesheet_id == timesheet_id,
                    WorkSegment.segment_type.in_([t.value for t in PUNCH_SEGMENT_TYPES]),
                )
            )
            self.session.add_all(
                WorkSegment.from_candidate(timesheet_id, candidate) for candidate in candidates
            )
            await self.session.flush()

            overtime = await self.overtime.apply_overtime(timesheet_id, rules)

        logger.info(
            "Rebuilt timesheet %s: %d punches, %d segments, %d work minutes",
            timesheet_id,
            len(punches),
            len(candidates),
            overtime.total_work,
        )
        return RebuildResult(
            timesheet_id=timesheet_id,
            punch_count=len(punches),
            segment_count=len(candidates),
            overtime=overtime,
        )
