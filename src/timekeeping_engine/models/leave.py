"""Leave request, balance and append-only ledger models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timekeeping_engine.calculators.types import LedgerAction, LeaveRequestStatus
from timekeeping_engine.models.base import Base, TimestampMixin, enum_check

if TYPE_CHECKING:
    from timekeeping_engine.models.organization import LeaveType


class LedgerImmutableError(Exception):
    """Raised on any attempt to update or delete a ledger row."""


class LeaveRequest(Base, TimestampMixin):
    """An employee's request for leave over an inclusive date range."""

    __tablename__ = "leave_request"

    leave_request_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_type.leave_type_id"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=LeaveRequestStatus.DRAFT.value
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        enum_check("status", LeaveRequestStatus, "leave_request_status_check"),
        CheckConstraint("end_date >= start_date", name="leave_request_dates_check"),
        CheckConstraint("duration_minutes > 0", name="leave_request_duration_check"),
    )

    # Relationships
    leave_type: Mapped[LeaveType] = relationship()

    @property
    def day_count(self) -> int:
        return (self.end_date - self.start_date).days + 1


class LeaveBalance(Base, TimestampMixin):
    """Balance for one (employee, leave type, accrual year)."""

    __tablename__ = "leave_balance"

    leave_balance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_type.leave_type_id", ondelete="CASCADE"),
        nullable=False,
    )
    accrual_year: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    used_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Employee-specific entitlement overriding the leave type's flat rate
    annual_days_entitled: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "employee_id",
            "leave_type_id",
            "accrual_year",
            name="leave_balance_employee_type_year_unique",
        ),
        CheckConstraint("used_minutes >= 0", name="leave_balance_used_check"),
    )


class LeaveAccrualLedger(Base, TimestampMixin):
    """Append-only record of every balance change."""

    __tablename__ = "leave_accrual_ledger"

    # Integer key doubles as the insertion sequence for replay
    leave_accrual_ledger_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_type.leave_type_id", ondelete="CASCADE"),
        nullable=False,
    )
    accrual_year: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    delta_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    pay_period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    leave_request_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("leave_request.leave_request_id"),
        nullable=True,
    )
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        enum_check("action", LedgerAction, "leave_ledger_action_check"),
        CheckConstraint("delta_minutes <> 0", name="leave_ledger_delta_check"),
        Index(
            "leave_ledger_balance_idx",
            "employee_id",
            "leave_type_id",
            "accrual_year",
        ),
    )


@event.listens_for(LeaveAccrualLedger, "before_update")
def _reject_ledger_update(mapper: Any, connection: Any, target: LeaveAccrualLedger) -> None:
    raise LedgerImmutableError(
        f"Ledger row {target.leave_accrual_ledger_id} is immutable and cannot be updated"
    )


@event.listens_for(LeaveAccrualLedger, "before_delete")
def _reject_ledger_delete(mapper: Any, connection: Any, target: LeaveAccrualLedger) -> None:
    raise LedgerImmutableError(
        f"Ledger row {target.leave_accrual_ledger_id} is immutable and cannot be deleted"
    )
