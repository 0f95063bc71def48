"""Timesheet lookup and creation."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeping_engine.calculators.types import RuleSetConfig
from timekeeping_engine.database import upsert_insert
from timekeeping_engine.errors import MissingConfigurationError, NotFoundError
from timekeeping_engine.models import Employee, RuleSet, Timesheet


class TimesheetService:
    """Find, create and resolve configuration for timesheets."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_timesheet(self, timesheet_id: UUID) -> Timesheet:
        """Load a timesheet or raise NotFoundError."""
        timesheet = await self.session.get(Timesheet, timesheet_id)
        if timesheet is None:
            raise NotFoundError("Timesheet", timesheet_id)
        return timesheet

    async def find_or_create_timesheet(
        self,
        employee_id: UUID,
        pay_period_id: UUID,
    ) -> Timesheet:
        """Return the employee's timesheet for the period, creating it if absent.

        The insert ignores a conflicting row so two concurrent callers end up
        with the same timesheet.
        """
        stmt = (
            upsert_insert(self.session, Timesheet)
            .values(employee_id=employee_id, pay_period_id=pay_period_id)
            .on_conflict_do_nothing(index_elements=["employee_id", "pay_period_id"])
        )
        await self.session.execute(stmt)

        result = await self.session.execute(
            select(Timesheet).where(
                Timesheet.employee_id == employee_id,
                Timesheet.pay_period_id == pay_period_id,
            )
        )
        return result.scalar_one()

    async def get_rule_set(self, employee_id: UUID) -> RuleSetConfig:
        """Rule set snapshot for an employee.

        An employee without a rule set is a configuration error, never a
        reason to fall back to defaults.
        """
        result = await self.session.execute(
            select(RuleSet)
            .join(Employee, Employee.rule_set_id == RuleSet.rule_set_id)
            .where(Employee.employee_id == employee_id)
        )
        rule_set = result.scalar_one_or_none()
        if rule_set is None:
            employee = await self.session.get(Employee, employee_id)
            if employee is None:
                raise NotFoundError("Employee", employee_id)
            raise MissingConfigurationError(f"No rule set assigned to employee {employee_id}")
        return rule_set.to_config()
