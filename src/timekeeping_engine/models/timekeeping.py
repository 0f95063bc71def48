"""Timesheet, punch and derived segment/bucket models."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timekeeping_engine.calculators.types import (
    PayBucket,
    PunchSource,
    PunchState,
    PunchType,
    SegmentCandidate,
    SegmentType,
    TimesheetStatus,
)
from timekeeping_engine.models.base import Base, TimestampMixin, enum_check

if TYPE_CHECKING:
    from timekeeping_engine.models.organization import Employee, PayPeriod


class Timesheet(Base, TimestampMixin):
    """One employee's time for one pay period."""

    __tablename__ = "timesheet"

    timesheet_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    pay_period_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_period.pay_period_id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=TimesheetStatus.OPEN.value
    )
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    __table_args__ = (
        UniqueConstraint("employee_id", "pay_period_id", name="timesheet_employee_period_unique"),
        enum_check("status", TimesheetStatus, "timesheet_status_check"),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="timesheets")
    pay_period: Mapped[PayPeriod] = relationship(back_populates="timesheets")


class Punch(Base, TimestampMixin):
    """One physical clock event. Never deleted; corrections supersede it."""

    __tablename__ = "punch"

    punch_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    timesheet_id: Mapped[UUID] = mapped_column(
        ForeignKey("timesheet.timesheet_id", ondelete="CASCADE"),
        nullable=False,
    )
    punch_type: Mapped[str] = mapped_column(String, nullable=False)
    punch_time: Mapped[datetime] = mapped_column(nullable=False)
    rounded_time: Mapped[datetime] = mapped_column(nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default=PunchSource.WEB.value)
    state_before: Mapped[str] = mapped_column(String, nullable=False)
    state_after: Mapped[str] = mapped_column(String, nullable=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    corrects_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("punch.punch_id"),
        nullable=True,
    )
    corrected_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("punch.punch_id"),
        nullable=True,
    )

    __table_args__ = (
        enum_check("punch_type", PunchType, "punch_type_check"),
        enum_check("source", PunchSource, "punch_source_check"),
        enum_check("state_before", PunchState, "punch_state_before_check"),
        enum_check("state_after", PunchState, "punch_state_after_check"),
        Index("punch_timesheet_rounded_idx", "timesheet_id", "rounded_time"),
        Index("punch_employee_rounded_idx", "employee_id", "rounded_time"),
    )

    @property
    def is_superseded(self) -> bool:
        return self.corrected_by_id is not None


class WorkSegment(Base, TimestampMixin):
    """Derived time interval. Regenerated on every rebuild, never hand-edited."""

    __tablename__ = "work_segment"

    work_segment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(
        ForeignKey("timesheet.timesheet_id", ondelete="CASCADE"),
        nullable=False,
    )
    segment_type: Mapped[str] = mapped_column(String, nullable=False)
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    segment_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    pay_bucket: Mapped[str] = mapped_column(String, nullable=False)
    is_split: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    leave_request_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("leave_request.leave_request_id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        enum_check("segment_type", SegmentType, "work_segment_type_check"),
        enum_check("pay_bucket", PayBucket, "work_segment_bucket_check"),
        CheckConstraint("duration_minutes >= 0", name="work_segment_duration_check"),
        CheckConstraint("end_time >= start_time", name="work_segment_times_check"),
        Index("work_segment_timesheet_idx", "timesheet_id", "segment_type"),
        Index("work_segment_leave_request_idx", "leave_request_id"),
    )

    @classmethod
    def from_candidate(cls, timesheet_id: UUID, candidate: SegmentCandidate) -> WorkSegment:
        return cls(
            timesheet_id=timesheet_id,
            segment_type=candidate.segment_type.value,
            start_time=candidate.start_time,
            end_time=candidate.end_time,
            duration_minutes=candidate.duration_minutes,
            segment_date=candidate.segment_date,
            is_paid=candidate.is_paid,
            pay_bucket=candidate.pay_bucket.value,
            is_split=candidate.is_split,
            leave_request_id=candidate.leave_request_id,
        )

    def to_candidate(self) -> SegmentCandidate:
        return SegmentCandidate(
            segment_type=SegmentType(self.segment_type),
            start_time=self.start_time,
            end_time=self.end_time,
            duration_minutes=self.duration_minutes,
            segment_date=self.segment_date,
            is_paid=self.is_paid,
            pay_bucket=PayBucket(self.pay_bucket),
            is_split=self.is_split,
            leave_request_id=self.leave_request_id,
        )


class OvertimeBucket(Base, TimestampMixin):
    """Aggregate minutes per (timesheet, bucket). Absent row means zero."""

    __tablename__ = "overtime_bucket"

    overtime_bucket_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(
        ForeignKey("timesheet.timesheet_id", ondelete="CASCADE"),
        nullable=False,
    )
    bucket: Mapped[str] = mapped_column(String, nullable=False)
    total_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("timesheet_id", "bucket", name="overtime_bucket_timesheet_bucket_unique"),
        enum_check("bucket", PayBucket, "overtime_bucket_bucket_check"),
        CheckConstraint("total_minutes >= 0", name="overtime_bucket_minutes_check"),
    )


class TimesheetException(Base, TimestampMixin):
    """A flagged problem on a timesheet (missing punch, long shift, ...)."""

    __tablename__ = "timesheet_exception"

    timesheet_exception_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(
        ForeignKey("timesheet.timesheet_id", ondelete="CASCADE"),
        nullable=False,
    )
    exception_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None
