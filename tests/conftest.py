"""Pytest fixtures for timekeeping engine tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import AsyncGenerator
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from timekeeping_engine.calculators.types import (
    LeaveCategory,
    PayBucket,
    PunchState,
    PunchType,
    RuleSetConfig,
    SegmentCandidate,
    SegmentType,
)
from timekeeping_engine.models import (
    Base,
    Employee,
    LeaveType,
    OvertimeBucket,
    PayPeriod,
    Punch,
    RuleSet,
    Timesheet,
    WorkSegment,
)

# Use in-memory SQLite for tests (with async support)
# Advisory locks are skipped on this dialect
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Monday
PERIOD_START = date(2026, 1, 5)


@pytest.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def california_rules() -> RuleSetConfig:
    """Daily OT after 8h, DT after 12h, weekly OT after 40h, 7th day OT."""
    return RuleSetConfig(
        daily_ot_minutes=480,
        daily_dt_minutes=720,
        weekly_ot_minutes=2400,
        consecutive_day_ot_day=7,
    )


@pytest.fixture
def flsa_rules() -> RuleSetConfig:
    """Weekly-only overtime."""
    return RuleSetConfig(
        daily_ot_minutes=1440,
        daily_dt_minutes=1440,
        weekly_ot_minutes=2400,
        consecutive_day_ot_day=7,
    )


@pytest.fixture
async def test_rule_set(session: AsyncSession) -> RuleSet:
    """California-style rule set without punch rounding."""
    rule_set = RuleSet(
        rule_set_id=uuid4(),
        name="California",
        daily_ot_minutes=480,
        daily_dt_minutes=720,
        weekly_ot_minutes=2400,
        consecutive_day_ot_day=7,
        punch_rounding_minutes=0,
    )
    session.add(rule_set)
    await session.flush()
    return rule_set


@pytest.fixture
async def test_employee(session: AsyncSession, test_rule_set: RuleSet) -> Employee:
    """Create a test employee on the California rule set."""
    employee = Employee(
        employee_id=uuid4(),
        employee_number="E001",
        first_name="Jane",
        last_name="Doe",
        rule_set_id=test_rule_set.rule_set_id,
    )
    session.add(employee)
    await session.flush()
    return employee


@pytest.fixture
async def test_supervisor(session: AsyncSession, test_rule_set: RuleSet) -> Employee:
    supervisor = Employee(
        employee_id=uuid4(),
        employee_number="S001",
        first_name="Sam",
        last_name="Super",
        rule_set_id=test_rule_set.rule_set_id,
    )
    session.add(supervisor)
    await session.flush()
    return supervisor


@pytest.fixture
async def test_pay_period(session: AsyncSession) -> PayPeriod:
    """Biweekly pay period starting on a Monday."""
    period = PayPeriod(
        pay_period_id=uuid4(),
        start_date=PERIOD_START,
        end_date=PERIOD_START + timedelta(days=13),
    )
    session.add(period)
    await session.flush()
    return period


@pytest.fixture
async def next_pay_period(session: AsyncSession, test_pay_period: PayPeriod) -> PayPeriod:
    period = PayPeriod(
        pay_period_id=uuid4(),
        start_date=test_pay_period.end_date + timedelta(days=1),
        end_date=test_pay_period.end_date + timedelta(days=14),
    )
    session.add(period)
    await session.flush()
    return period


@pytest.fixture
async def pto_leave_type(session: AsyncSession) -> LeaveType:
    """Capped, paid PTO accruing 160 minutes per period."""
    leave_type = LeaveType(
        leave_type_id=uuid4(),
        name="PTO",
        category=LeaveCategory.PTO.value,
        is_paid=True,
        accrual_rate_minutes=160,
        max_balance_minutes=4800,
    )
    session.add(leave_type)
    await session.flush()
    return leave_type


def work_segment(start: datetime, minutes: int) -> SegmentCandidate:
    """Unclassified WORK segment starting at ``start``."""
    return SegmentCandidate(
        segment_type=SegmentType.WORK,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
        segment_date=start.date(),
        is_paid=True,
        pay_bucket=PayBucket.REG,
    )


class FakePunch:
    """Minimal punch for the pure segment builder."""

    def __init__(self, rounded_time: datetime, state_after: PunchState):
        self.rounded_time = rounded_time
        self.state_after = state_after.value


def add_punch(
    session: AsyncSession,
    timesheet: Timesheet,
    punch_type: PunchType,
    when: datetime,
    before: PunchState,
    after: PunchState,
    **extra,
) -> Punch:
    punch = Punch(
        punch_id=uuid4(),
        employee_id=timesheet.employee_id,
        timesheet_id=timesheet.timesheet_id,
        punch_type=punch_type.value,
        punch_time=when,
        rounded_time=when,
        state_before=before.value,
        state_after=after.value,
        **extra,
    )
    session.add(punch)
    return punch


def add_shift(session: AsyncSession, timesheet: Timesheet, start: datetime, minutes: int) -> None:
    """Approved CLOCK_IN/CLOCK_OUT pair."""
    add_punch(session, timesheet, PunchType.CLOCK_IN, start, PunchState.OUT, PunchState.WORK)
    add_punch(
        session,
        timesheet,
        PunchType.CLOCK_OUT,
        start + timedelta(minutes=minutes),
        PunchState.WORK,
        PunchState.OUT,
    )


async def load_segments(session: AsyncSession, timesheet_id) -> list[WorkSegment]:
    result = await session.execute(
        select(WorkSegment)
        .where(WorkSegment.timesheet_id == timesheet_id)
        .order_by(WorkSegment.start_time, WorkSegment.segment_type)
    )
    return list(result.scalars())


async def load_buckets(session: AsyncSession, timesheet_id) -> dict[str, int]:
    result = await session.execute(
        select(OvertimeBucket.bucket, OvertimeBucket.total_minutes).where(
            OvertimeBucket.timesheet_id == timesheet_id
        )
    )
    return {bucket: minutes for bucket, minutes in result.all()}
