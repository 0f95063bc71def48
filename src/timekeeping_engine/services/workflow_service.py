"""Lifecycle transitions that drive the engine.

Leave request and pay period status changes are the points where derived
data must be brought up to date: leave segments are resynced, usage is
debited, and accruals are posted when a period locks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeping_engine.calculators.types import (
    LeaveRequestStatus,
    PayPeriodStatus,
    TimesheetStatus,
)
from timekeeping_engine.database import unit_of_work
from timekeeping_engine.errors import NotFoundError
from timekeeping_engine.models import LeaveRequest, PayPeriod, Timesheet
from timekeeping_engine.services.accrual_service import (
    AccrualRunResult,
    AccrualService,
    LedgerPosting,
)
from timekeeping_engine.services.audit import record_audit
from timekeeping_engine.services.leave_segment_service import (
    LeaveSegmentService,
    LeaveSyncResult,
)
from timekeeping_engine.services.state_machine import (
    LeaveEvent,
    LeaveRequestStateMachine,
    PayPeriodEvent,
    PayPeriodStateMachine,
    TimesheetEvent,
    TimesheetStateMachine,
)
from timekeeping_engine.services.validation_service import ValidationResult, ValidationService

logger = logging.getLogger(__name__)

# Leave events after which the request's segments must be resynced
SYNC_EVENTS = frozenset(
    {LeaveEvent.APPROVE, LeaveEvent.REJECT, LeaveEvent.CANCEL, LeaveEvent.POST}
)


class PeriodNotReadyError(Exception):
    """Raised when a pay period fails validation on MARK_READY."""

    def __init__(self, validation: ValidationResult):
        self.validation = validation
        super().__init__(
            f"Pay period {validation.pay_period_id} has "
            f"{len(validation.issues)} unresolved issue(s)"
        )


@dataclass
class LeaveTransitionResult:
    leave_request_id: UUID
    from_status: LeaveRequestStatus
    to_status: LeaveRequestStatus
    usage: LedgerPosting | None = None
    sync: LeaveSyncResult | None = None


@dataclass
class PeriodTransitionResult:
    pay_period_id: UUID
    from_status: PayPeriodStatus
    to_status: PayPeriodStatus
    timesheets_updated: int = 0
    accruals: AccrualRunResult | None = None


class WorkflowService:
    """Applies validated status transitions and their engine side effects.

    Each method is one unit of work: the status change, the audit event and
    every engine call it triggers commit or roll back together.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.accruals = AccrualService(session)
        self.leave_segments = LeaveSegmentService(session)
        self.validation = ValidationService(session)

    async def transition_timesheet(
        self,
        timesheet_id: UUID,
        event: TimesheetEvent | str,
        actor_id: UUID | None = None,
    ) -> TimesheetStatus:
        """Move a timesheet through its approval workflow."""
        event = TimesheetEvent(event)
        async with unit_of_work(self.session):
            timesheet = await self.session.get(Timesheet, timesheet_id)
            if timesheet is None:
                raise NotFoundError("Timesheet", timesheet_id)

            from_status = timesheet.status
            to_status = TimesheetStateMachine.next_state(from_status, event)
            timesheet.status = to_status
            if to_status == TimesheetStatus.LOCKED.value:
                timesheet.locked_at = datetime.now()

            await record_audit(
                self.session,
                action=f"TIMESHEET_{event.value}",
                entity_type="Timesheet",
                entity_id=timesheet_id,
                actor_id=actor_id,
                before={"status": from_status},
                after={"status": to_status},
            )
            await self.session.flush()

        logger.info("Timesheet %s %s -> %s", timesheet_id, from_status, to_status)
        return TimesheetStatus(to_status)

    async def transition_leave_request(
        self,
        leave_request_id: UUID,
        event: LeaveEvent | str,
        actor_id: UUID | None = None,
    ) -> LeaveTransitionResult:
        """Change a leave request's status and resync what depends on it.

        POST debits the balance before the segments are resynced.
        """
        event = LeaveEvent(event)
        async with unit_of_work(self.session):
            request = await self.session.get(LeaveRequest, leave_request_id)
            if request is None:
                raise NotFoundError("LeaveRequest", leave_request_id)

            from_status = request.status
            to_status = LeaveRequestStateMachine.next_state(from_status, event)
            request.status = to_status
            await self.session.flush()

            await record_audit(
                self.session,
                action=f"LEAVE_REQUEST_{event.value}",
                entity_type="LeaveRequest",
                entity_id=leave_request_id,
                actor_id=actor_id,
                before={"status": from_status},
                after={"status": to_status},
            )

            result = LeaveTransitionResult(
                leave_request_id=leave_request_id,
                from_status=LeaveRequestStatus(from_status),
                to_status=LeaveRequestStatus(to_status),
            )
            if event == LeaveEvent.POST:
                result.usage = await self.accruals.post_leave_usage(leave_request_id)
            if event in SYNC_EVENTS:
                result.sync = await self.leave_segments.sync_leave_segments(leave_request_id)

        logger.info("Leave request %s %s -> %s", leave_request_id, from_status, to_status)
        return result

    async def _load_period(self, pay_period_id: UUID) -> PayPeriod:
        period = await self.session.get(PayPeriod, pay_period_id)
        if period is None:
            raise NotFoundError("PayPeriod", pay_period_id)
        return period

    async def _set_period_status(
        self,
        period: PayPeriod,
        event: PayPeriodEvent,
        actor_id: UUID | None,
        extra: dict | None = None,
    ) -> tuple[str, str]:
        from_status = period.status
        to_status = PayPeriodStateMachine.next_state(from_status, event)
        period.status = to_status
        await record_audit(
            self.session,
            action=f"PAY_PERIOD_{event.value}",
            entity_type="PayPeriod",
            entity_id=period.pay_period_id,
            actor_id=actor_id,
            before={"status": from_status},
            after={"status": to_status, **(extra or {})},
        )
        return from_status, to_status

    async def mark_pay_period_ready(
        self,
        pay_period_id: UUID,
        actor_id: UUID | None = None,
    ) -> PeriodTransitionResult:
        """OPEN -> READY, only when every timesheet passes validation.

        Raises:
            PeriodNotReadyError: If validation reports any issue
        """
        async with unit_of_work(self.session):
            period = await self._load_period(pay_period_id)
            PayPeriodStateMachine.next_state(period.status, PayPeriodEvent.MARK_READY)

            validation = await self.validation.validate_pay_period(pay_period_id)
            if not validation.is_ready:
                raise PeriodNotReadyError(validation)

            from_status, to_status = await self._set_period_status(
                period, PayPeriodEvent.MARK_READY, actor_id
            )
            await self.session.flush()

        logger.info("Pay period %s marked ready", pay_period_id)
        return PeriodTransitionResult(
            pay_period_id=pay_period_id,
            from_status=PayPeriodStatus(from_status),
            to_status=PayPeriodStatus(to_status),
        )

    async def lock_pay_period(
        self,
        pay_period_id: UUID,
        actor_id: UUID | None = None,
    ) -> PeriodTransitionResult:
        """READY -> LOCKED: lock approved timesheets and post accruals."""
        async with unit_of_work(self.session):
            period = await self._load_period(pay_period_id)
            PayPeriodStateMachine.next_state(period.status, PayPeriodEvent.LOCK)

            locked = await self.session.execute(
                update(Timesheet)
                .where(
                    Timesheet.pay_period_id == pay_period_id,
                    Timesheet.status == TimesheetStatus.PAYROLL_APPROVED.value,
                )
                .values(status=TimesheetStatus.LOCKED.value, locked_at=datetime.now())
                .execution_options(synchronize_session="fetch")
            )
            timesheets_updated = locked.rowcount or 0

            from_status, to_status = await self._set_period_status(
                period,
                PayPeriodEvent.LOCK,
                actor_id,
                extra={"timesheets_locked": timesheets_updated},
            )
            await self.session.flush()

            accruals = await self.accruals.post_accruals(pay_period_id)

        logger.info(
            "Pay period %s locked: %d timesheets, %d accrual rows",
            pay_period_id,
            timesheets_updated,
            len(accruals.postings),
        )
        return PeriodTransitionResult(
            pay_period_id=pay_period_id,
            from_status=PayPeriodStatus(from_status),
            to_status=PayPeriodStatus(to_status),
            timesheets_updated=timesheets_updated,
            accruals=accruals,
        )

    async def reopen_pay_period(
        self,
        pay_period_id: UUID,
        actor_id: UUID | None = None,
    ) -> PeriodTransitionResult:
        """READY or LOCKED -> OPEN. Accruals already posted stay posted."""
        async with unit_of_work(self.session):
            period = await self._load_period(pay_period_id)
            PayPeriodStateMachine.next_state(period.status, PayPeriodEvent.REOPEN)

            timesheets_updated = 0
            if period.status == PayPeriodStatus.LOCKED.value:
                unlocked = await self.session.execute(
                    update(Timesheet)
                    .where(
                        Timesheet.pay_period_id == pay_period_id,
                        Timesheet.status == TimesheetStatus.LOCKED.value,
                    )
                    .values(status=TimesheetStatus.PAYROLL_APPROVED.value, locked_at=None)
                    .execution_options(synchronize_session="fetch")
                )
                timesheets_updated = unlocked.rowcount or 0

            from_status, to_status = await self._set_period_status(
                period,
                PayPeriodEvent.REOPEN,
                actor_id,
                extra={"timesheets_unlocked": timesheets_updated},
            )
            await self.session.flush()

        logger.info("Pay period %s reopened from %s", pay_period_id, from_status)
        return PeriodTransitionResult(
            pay_period_id=pay_period_id,
            from_status=PayPeriodStatus(from_status),
            to_status=PayPeriodStatus(to_status),
            timesheets_updated=timesheets_updated,
        )
