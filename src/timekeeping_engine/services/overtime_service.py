"""Persist overtime classification for a timesheet."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeping_engine.calculators import classify
from timekeeping_engine.calculators.types import (
    WORK_BUCKETS,
    OvertimeResult,
    RuleSetConfig,
    SegmentType,
)
from timekeeping_engine.models import OvertimeBucket, WorkSegment

logger = logging.getLogger(__name__)


class OvertimeService:
    """Reclassify a timesheet's WORK segments and rewrite its REG/OT/DT buckets.

    Leave buckets belong to the leave synchronizer and are never touched
    here, nor are MEAL, BREAK or LEAVE segments.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def apply_overtime(self, timesheet_id: UUID, rules: RuleSetConfig) -> OvertimeResult:
        """Classify stored WORK segments and replace them with the split result.

        Must run inside the caller's transaction, after the WORK segments
        for the timesheet have been written.
        """
        rows = await self.session.execute(
            select(WorkSegment)
            .where(
                WorkSegment.timesheet_id == timesheet_id,
                WorkSegment.segment_type == SegmentType.WORK.value,
            )
            .order_by(WorkSegment.start_time)
        )
        candidates = [row.to_candidate() for row in rows.scalars()]

        result, classified = classify(candidates, rules)

        await self.session.execute(
            delete(WorkSegment).where(
                WorkSegment.timesheet_id == timesheet_id,
                WorkSegment.segment_type == SegmentType.WORK.value,
            )
        )
        self.session.add_all(
            WorkSegment.from_candidate(timesheet_id, candidate) for candidate in classified
        )

        await self.session.execute(
            delete(OvertimeBucket).where(
                OvertimeBucket.timesheet_id == timesheet_id,
                OvertimeBucket.bucket.in_([b.value for b in WORK_BUCKETS]),
            )
        )
        for bucket, minutes in result.bucket_totals().items():
            if minutes > 0:
                self.session.add(
                    OvertimeBucket(
                        timesheet_id=timesheet_id,
                        bucket=bucket.value,
                        total_minutes=minutes,
                    )
                )
        await self.session.flush()

        logger.debug(
            "Classified timesheet %s: reg=%d ot=%d dt=%d weekly_converted=%d",
            timesheet_id,
            result.total_reg,
            result.total_ot,
            result.total_dt,
            result.weekly_ot_converted,
        )
        return result
