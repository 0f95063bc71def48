"""Leave accrual, usage and adjustment posting against the balance ledger.

Every change to a LeaveBalance goes through ``AccrualService._append_ledger``,
which moves the balance and writes exactly one ledger row whose
``balance_after`` equals the previous balance plus ``delta_minutes``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timekeeping_engine.calculators.types import LedgerAction, round_half_up
from timekeeping_engine.config import get_settings
from timekeeping_engine.database import lock_employee, unit_of_work, upsert_insert
from timekeeping_engine.errors import MissingConfigurationError, NotFoundError
from timekeeping_engine.models import (
    Employee,
    LeaveAccrualLedger,
    LeaveBalance,
    LeaveRequest,
    LeaveType,
    PayPeriod,
)

logger = logging.getLogger(__name__)


def periods_per_year(period_length_days: int) -> int:
    """Pay periods per year implied by a period's length.

    7 days gives 52, 14 gives 26, 15 gives 24.
    """
    if period_length_days <= 0:
        raise ValueError("Pay period length must be positive")
    return max(1, round_half_up(Decimal(365) / Decimal(period_length_days)))


@dataclass(frozen=True)
class AccrualPolicy:
    """Accrual settings of one active leave type."""

    leave_type_id: UUID
    accrual_rate_minutes: int
    max_balance_minutes: int | None

    @classmethod
    def from_leave_type(cls, leave_type: LeaveType) -> AccrualPolicy:
        return cls(
            leave_type_id=leave_type.leave_type_id,
            accrual_rate_minutes=leave_type.accrual_rate_minutes,
            max_balance_minutes=leave_type.max_balance_minutes,
        )


@dataclass
class LedgerPosting:
    """One ledger row as written."""

    employee_id: UUID
    leave_type_id: UUID
    accrual_year: int
    action: LedgerAction
    delta_minutes: int
    balance_after: int


@dataclass
class LedgerDiscrepancy:
    """A ledger row whose balance does not follow from its predecessor."""

    ledger_id: int
    expected_balance: int
    recorded_balance: int


@dataclass
class AccrualRunResult:
    """Summary of accruals posted for one pay period."""

    pay_period_id: UUID
    accrual_year: int
    periods_per_year: int
    employee_count: int = 0
    skipped: int = 0
    postings: list[LedgerPosting] = field(default_factory=list)

    @property
    def total_minutes(self) -> int:
        return sum(p.delta_minutes for p in self.postings)


@dataclass
class _EmployeeAccruals:
    postings: list[LedgerPosting] = field(default_factory=list)
    skipped: int = 0


class AccrualService:
    """Posts accruals, usage and adjustments to leave balances."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()

    async def get_balance(
        self,
        employee_id: UUID,
        leave_type_id: UUID,
        accrual_year: int,
    ) -> LeaveBalance | None:
        result = await self.session.execute(
            select(LeaveBalance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.accrual_year == accrual_year,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_balance(
        self,
        employee_id: UUID,
        leave_type_id: UUID,
        accrual_year: int,
    ) -> LeaveBalance:
        """Return the balance row, provisioning a zero balance if absent."""
        stmt = (
            upsert_insert(self.session, LeaveBalance)
            .values(
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                accrual_year=accrual_year,
            )
            .on_conflict_do_nothing(
                index_elements=["employee_id", "leave_type_id", "accrual_year"]
            )
        )
        await self.session.execute(stmt)

        balance = await self.get_balance(employee_id, leave_type_id, accrual_year)
        if balance is None:
            raise MissingConfigurationError(
                f"Leave balance for employee {employee_id} could not be provisioned"
            )
        return balance

    def _append_ledger(
        self,
        balance: LeaveBalance,
        action: LedgerAction,
        delta_minutes: int,
        *,
        pay_period_end: date | None = None,
        leave_request_id: UUID | None = None,
        actor_id: UUID | None = None,
        note: str | None = None,
    ) -> LedgerPosting:
        """Move ``balance`` by ``delta_minutes`` and record the ledger row."""
        if delta_minutes == 0:
            raise ValueError("Ledger rows must carry a non-zero delta")

        balance_after = balance.balance_minutes + delta_minutes
        balance.balance_minutes = balance_after
        self.session.add(
            LeaveAccrualLedger(
                employee_id=balance.employee_id,
                leave_type_id=balance.leave_type_id,
                accrual_year=balance.accrual_year,
                action=action.value,
                delta_minutes=delta_minutes,
                balance_after=balance_after,
                pay_period_end=pay_period_end,
                leave_request_id=leave_request_id,
                actor_id=actor_id,
                note=note,
            )
        )
        return LedgerPosting(
            employee_id=balance.employee_id,
            leave_type_id=balance.leave_type_id,
            accrual_year=balance.accrual_year,
            action=action,
            delta_minutes=delta_minutes,
            balance_after=balance_after,
        )

    def accrual_rate(self, balance: LeaveBalance, policy: AccrualPolicy, per_year: int) -> int:
        """Per-period accrual in minutes.

        An employee's annual entitlement, when set, overrides the leave
        type's flat rate.
        """
        if balance.annual_days_entitled is not None:
            annual_minutes = Decimal(balance.annual_days_entitled) * self.settings.minutes_per_leave_day
            return round_half_up(annual_minutes / per_year)
        return policy.accrual_rate_minutes

    async def _load_run_inputs(
        self, pay_period_id: UUID
    ) -> tuple[PayPeriod, list[UUID], list[AccrualPolicy]]:
        period = await self.session.get(PayPeriod, pay_period_id)
        if period is None:
            raise NotFoundError("PayPeriod", pay_period_id)

        employees = await self.session.execute(
            select(Employee.employee_id)
            .where(Employee.is_active.is_(True))
            .order_by(Employee.employee_number)
        )
        leave_types = await self.session.execute(
            select(LeaveType).where(LeaveType.is_active.is_(True)).order_by(LeaveType.name)
        )
        policies = [AccrualPolicy.from_leave_type(lt) for lt in leave_types.scalars()]
        return period, list(employees.scalars()), policies

    async def _already_accrued(self, balance: LeaveBalance, pay_period_end: date) -> bool:
        """True when an ACCRUAL row already exists for this balance and period.

        A period that is reopened and locked again must not accrue twice.
        """
        existing = await self.session.scalar(
            select(LeaveAccrualLedger.leave_accrual_ledger_id)
            .where(
                LeaveAccrualLedger.employee_id == balance.employee_id,
                LeaveAccrualLedger.leave_type_id == balance.leave_type_id,
                LeaveAccrualLedger.accrual_year == balance.accrual_year,
                LeaveAccrualLedger.action == LedgerAction.ACCRUAL.value,
                LeaveAccrualLedger.pay_period_end == pay_period_end,
            )
            .limit(1)
        )
        return existing is not None

    async def _post_employee_accruals(
        self,
        employee_id: UUID,
        policies: list[AccrualPolicy],
        accrual_year: int,
        per_year: int,
        pay_period_end: date,
    ) -> _EmployeeAccruals:
        outcome = _EmployeeAccruals()
        await lock_employee(self.session, employee_id)

        for policy in policies:
            balance = await self.get_or_create_balance(
                employee_id, policy.leave_type_id, accrual_year
            )
            if await self._already_accrued(balance, pay_period_end):
                logger.debug(
                    "Employee %s leave type %s already accrued for period ending %s",
                    employee_id,
                    policy.leave_type_id,
                    pay_period_end,
                )
                outcome.skipped += 1
                continue

            rate = self.accrual_rate(balance, policy, per_year)
            if rate <= 0:
                outcome.skipped += 1
                continue

            current = balance.balance_minutes
            new_balance = current + rate
            if policy.max_balance_minutes is not None:
                new_balance = min(new_balance, policy.max_balance_minutes)

            delta = new_balance - current
            if delta <= 0:
                logger.debug(
                    "Employee %s leave type %s at cap %s, no accrual",
                    employee_id,
                    policy.leave_type_id,
                    policy.max_balance_minutes,
                )
                outcome.skipped += 1
                continue

            outcome.postings.append(
                self._append_ledger(
                    balance,
                    LedgerAction.ACCRUAL,
                    delta,
                    pay_period_end=pay_period_end,
                )
            )

        await self.session.flush()
        return outcome

    async def post_accruals(self, pay_period_id: UUID) -> AccrualRunResult:
        """Accrue every active leave type for every active employee.

        Raises:
            NotFoundError: If the pay period does not exist
        """
        async with unit_of_work(self.session):
            period, employee_ids, policies = await self._load_run_inputs(pay_period_id)
            per_year = periods_per_year(period.length_days)
            run = AccrualRunResult(
                pay_period_id=pay_period_id,
                accrual_year=period.end_date.year,
                periods_per_year=per_year,
                employee_count=len(employee_ids),
            )

            for employee_id in employee_ids:
                outcome = await self._post_employee_accruals(
                    employee_id, policies, run.accrual_year, per_year, period.end_date
                )
                run.postings.extend(outcome.postings)
                run.skipped += outcome.skipped

        logger.info(
            "Posted accruals for pay period %s: %d rows, %d minutes, %d skipped",
            pay_period_id,
            len(run.postings),
            run.total_minutes,
            run.skipped,
        )
        return run

    async def post_leave_usage(self, leave_request_id: UUID) -> LedgerPosting:
        """Debit a posted leave request from the balance of its start year.

        Raises:
            NotFoundError: If the leave request does not exist
            MissingConfigurationError: If there is no balance row to debit
        """
        async with unit_of_work(self.session):
            request = await self.session.get(LeaveRequest, leave_request_id)
            if request is None:
                raise NotFoundError("LeaveRequest", leave_request_id)

            await lock_employee(self.session, request.employee_id)
            accrual_year = request.start_date.year
            balance = await self.get_balance(
                request.employee_id, request.leave_type_id, accrual_year
            )
            if balance is None:
                raise MissingConfigurationError(
                    f"No leave balance for employee {request.employee_id}, "
                    f"leave type {request.leave_type_id}, year {accrual_year}"
                )

            minutes = request.duration_minutes
            balance.used_minutes += minutes
            posting = self._append_ledger(
                balance,
                LedgerAction.USAGE,
                -minutes,
                leave_request_id=leave_request_id,
            )
            await self.session.flush()

        logger.info(
            "Posted usage of %d minutes for leave request %s, balance now %d",
            minutes,
            leave_request_id,
            posting.balance_after,
        )
        return posting

    async def record_adjustment(
        self,
        employee_id: UUID,
        leave_type_id: UUID,
        accrual_year: int,
        new_balance_minutes: int,
        actor_id: UUID | None = None,
        note: str | None = None,
    ) -> LedgerPosting | None:
        """Set a balance directly. Returns None when it already holds that value."""
        async with unit_of_work(self.session):
            await lock_employee(self.session, employee_id)
            balance = await self.get_or_create_balance(employee_id, leave_type_id, accrual_year)
            delta = new_balance_minutes - balance.balance_minutes
            if delta == 0:
                return None

            posting = self._append_ledger(
                balance,
                LedgerAction.ADJUSTMENT,
                delta,
                actor_id=actor_id,
                note=note,
            )
            await self.session.flush()

        logger.info(
            "Adjusted balance of employee %s leave type %s year %d by %d to %d",
            employee_id,
            leave_type_id,
            accrual_year,
            delta,
            new_balance_minutes,
        )
        return posting

    async def verify_ledger(
        self,
        employee_id: UUID,
        leave_type_id: UUID,
        accrual_year: int,
        opening_balance: int = 0,
    ) -> list[LedgerDiscrepancy]:
        """Replay the ledger in insertion order and report rows that do not reconcile."""
        result = await self.session.execute(
            select(LeaveAccrualLedger)
            .where(
                LeaveAccrualLedger.employee_id == employee_id,
                LeaveAccrualLedger.leave_type_id == leave_type_id,
                LeaveAccrualLedger.accrual_year == accrual_year,
            )
            .order_by(LeaveAccrualLedger.leave_accrual_ledger_id)
        )

        discrepancies: list[LedgerDiscrepancy] = []
        running = opening_balance
        for row in result.scalars():
            expected = running + row.delta_minutes
            if row.balance_after != expected:
                discrepancies.append(
                    LedgerDiscrepancy(
                        ledger_id=row.leave_accrual_ledger_id,
                        expected_balance=expected,
                        recorded_balance=row.balance_after,
                    )
                )
            running = row.balance_after
        return discrepancies


async def post_accruals_concurrently(
    session_factory: async_sessionmaker[AsyncSession],
    pay_period_id: UUID,
    max_concurrency: int | None = None,
) -> AccrualRunResult:
    """Post accruals with one session and transaction per employee.

    At most ``max_concurrency`` employees (default ``ACCRUAL_CONCURRENCY``)
    are posted at once. An employee whose posting fails rolls back alone;
    the first failure is re-raised after the other employees finish.
    """
    limit = max_concurrency or get_settings().accrual_concurrency

    async with session_factory() as session:
        period, employee_ids, policies = await AccrualService(session)._load_run_inputs(
            pay_period_id
        )
        per_year = periods_per_year(period.length_days)
        accrual_year = period.end_date.year
        period_end = period.end_date

    semaphore = asyncio.Semaphore(limit)

    async def post_one(employee_id: UUID) -> _EmployeeAccruals:
        async with semaphore:
            async with session_factory() as employee_session:
                async with employee_session.begin():
                    return await AccrualService(employee_session)._post_employee_accruals(
                        employee_id, policies, accrual_year, per_year, period_end
                    )

    outcomes = await asyncio.gather(
        *(post_one(employee_id) for employee_id in employee_ids),
        return_exceptions=True,
    )

    run = AccrualRunResult(
        pay_period_id=pay_period_id,
        accrual_year=accrual_year,
        periods_per_year=per_year,
        employee_count=len(employee_ids),
    )
    failures: list[BaseException] = []
    for employee_id, outcome in zip(employee_ids, outcomes):
        if isinstance(outcome, BaseException):
            logger.error("Accrual posting failed for employee %s: %s", employee_id, outcome)
            failures.append(outcome)
            continue
        run.postings.extend(outcome.postings)
        run.skipped += outcome.skipped

    logger.info(
        "Posted accruals concurrently for pay period %s: %d employees, %d rows, %d failed",
        pay_period_id,
        len(employee_ids),
        len(run.postings),
        len(failures),
    )
    if failures:
        raise failures[0]
    return run
