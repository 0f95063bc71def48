"""Reference data read by the engine: rule sets, employees, pay periods, leave types."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timekeeping_engine.calculators.types import LeaveCategory, PayPeriodStatus, RuleSetConfig
from timekeeping_engine.models.base import Base, TimestampMixin, enum_check

if TYPE_CHECKING:
    from timekeeping_engine.models.timekeeping import Timesheet


class RuleSet(Base, TimestampMixin):
    """Overtime and rounding policy for a group of employees."""

    __tablename__ = "rule_set"

    rule_set_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    daily_ot_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=1440)
    daily_dt_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=1440)
    weekly_ot_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=2400)
    consecutive_day_ot_day: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
    punch_rounding_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("daily_ot_minutes >= 0", name="rule_set_daily_ot_check"),
        CheckConstraint("daily_dt_minutes >= 0", name="rule_set_daily_dt_check"),
        CheckConstraint("weekly_ot_minutes >= 0", name="rule_set_weekly_ot_check"),
        CheckConstraint("punch_rounding_minutes >= 0", name="rule_set_rounding_check"),
    )

    def to_config(self) -> RuleSetConfig:
        """Snapshot used for one calculation."""
        return RuleSetConfig(
            daily_ot_minutes=self.daily_ot_minutes,
            daily_dt_minutes=self.daily_dt_minutes,
            weekly_ot_minutes=self.weekly_ot_minutes,
            consecutive_day_ot_day=self.consecutive_day_ot_day,
            punch_rounding_minutes=self.punch_rounding_minutes,
        )


class Employee(Base, TimestampMixin):
    """Employee record."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    rule_set_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("rule_set.rule_set_id"),
        nullable=True,
    )

    # Relationships
    rule_set: Mapped[RuleSet | None] = relationship()
    timesheets: Mapped[list[Timesheet]] = relationship(back_populates="employee")

    @property
    def full_name(self) -> str:
        """Get full name."""
        return f"{self.first_name} {self.last_name}"


class PayPeriod(Base, TimestampMixin):
    """Pay period instance."""

    __tablename__ = "pay_period"

    pay_period_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=PayPeriodStatus.OPEN.value
    )

    __table_args__ = (
        enum_check("status", PayPeriodStatus, "pay_period_status_check"),
        CheckConstraint("end_date >= start_date", name="pay_period_dates_check"),
    )

    # Relationships
    timesheets: Mapped[list[Timesheet]] = relationship(back_populates="pay_period")

    @property
    def length_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class LeaveType(Base, TimestampMixin):
    """Leave type configuration."""

    __tablename__ = "leave_type"

    leave_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Flat per-pay-period accrual
    accrual_rate_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_balance_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    carry_over_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        enum_check("category", LeaveCategory, "leave_type_category_check"),
        CheckConstraint("accrual_rate_minutes >= 0", name="leave_type_accrual_rate_check"),
        CheckConstraint(
            "max_balance_minutes IS NULL OR max_balance_minutes >= 0",
            name="leave_type_max_balance_check",
        ),
    )
