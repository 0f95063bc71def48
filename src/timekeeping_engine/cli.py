"""Timekeeping engine command line interface.

Operational entry points for re-running the engine by hand:
- Segment rebuilds
- Leave segment syncs
- Accrual and usage posting
- Pay period validation

Usage:
    python -m timekeeping_engine.cli init-db
    python -m timekeeping_engine.cli rebuild-segments --timesheet-id X
    python -m timekeeping_engine.cli sync-leave --leave-request-id X
    python -m timekeeping_engine.cli post-accruals --pay-period-id X [--concurrent]
    python -m timekeeping_engine.cli post-usage --leave-request-id X
    python -m timekeeping_engine.cli validate-period --pay-period-id X
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from timekeeping_engine.calculators.types import TimesheetStatus
from timekeeping_engine.config import get_settings
from timekeeping_engine.database import get_session, init_db
from timekeeping_engine.errors import (
    InvalidLeaveRequestError,
    MissingConfigurationError,
    NotFoundError,
)
from timekeeping_engine.models import Base
from timekeeping_engine.services.accrual_service import (
    AccrualRunResult,
    AccrualService,
    post_accruals_concurrently,
)
from timekeeping_engine.services.leave_segment_service import LeaveSegmentService
from timekeeping_engine.services.punch_service import TimesheetLockedError
from timekeeping_engine.services.segment_service import RebuildResult, SegmentService
from timekeeping_engine.services.timesheet_service import TimesheetService
from timekeeping_engine.services.validation_service import ValidationService


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


async def rebuild_unlocked_timesheet(session: AsyncSession, timesheet_id: UUID) -> RebuildResult:
    """Rebuild a timesheet's segments unless it is LOCKED.

    Raises:
        TimesheetLockedError: If the timesheet is LOCKED
    """
    timesheet = await TimesheetService(session).get_timesheet(timesheet_id)
    if timesheet.status == TimesheetStatus.LOCKED.value:
        raise TimesheetLockedError(timesheet_id)
    return await SegmentService(session).rebuild_segments(timesheet_id)


class TimekeepingCli:
    """Timekeeping engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m timekeeping_engine.cli",
            description="Timekeeping engine operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser(
            "init-db",
            help="Create all tables in the configured database",
        )

        rebuild = subparsers.add_parser(
            "rebuild-segments",
            help="Rebuild work segments and overtime buckets for a timesheet",
        )
        rebuild.add_argument(
            "--timesheet-id",
            type=parse_uuid,
            required=True,
            help="Timesheet to rebuild",
        )

        sync = subparsers.add_parser(
            "sync-leave",
            help="Resync leave segments for a leave request",
        )
        sync.add_argument(
            "--leave-request-id",
            type=parse_uuid,
            required=True,
            help="Leave request to sync",
        )

        accruals = subparsers.add_parser(
            "post-accruals",
            help="Post leave accruals for a pay period",
        )
        accruals.add_argument(
            "--pay-period-id",
            type=parse_uuid,
            required=True,
            help="Pay period to accrue for",
        )
        accruals.add_argument(
            "--concurrent",
            action="store_true",
            help="Post each employee in its own transaction, in parallel",
        )
        accruals.add_argument(
            "--max-concurrency",
            type=int,
            help="Employees posted at once with --concurrent (default: $ACCRUAL_CONCURRENCY)",
        )

        usage = subparsers.add_parser(
            "post-usage",
            help="Debit a posted leave request from its balance",
        )
        usage.add_argument(
            "--leave-request-id",
            type=parse_uuid,
            required=True,
            help="Leave request to debit",
        )

        validate = subparsers.add_parser(
            "validate-period",
            help="Check whether a pay period is ready to lock",
        )
        validate.add_argument(
            "--pay-period-id",
            type=parse_uuid,
            required=True,
            help="Pay period to validate",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "init-db": self._cmd_init_db,
            "rebuild-segments": self._cmd_rebuild_segments,
            "sync-leave": self._cmd_sync_leave,
            "post-accruals": self._cmd_post_accruals,
            "post-usage": self._cmd_post_usage,
            "validate-period": self._cmd_validate_period,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return asyncio.run(handler(parsed))
        except (
            NotFoundError,
            MissingConfigurationError,
            InvalidLeaveRequestError,
            TimesheetLockedError,
        ) as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    def _print_json(self, data: Any) -> None:
        print(json.dumps(data, indent=2, default=str))

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create tables."""
        engine, _ = init_db()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        print("Database schema created.")
        return 0

    async def _cmd_rebuild_segments(self, args: argparse.Namespace) -> int:
        """Rebuild one timesheet."""
        async with get_session() as session:
            result = await rebuild_unlocked_timesheet(session, args.timesheet_id)

        self._print_json(
            {
                "timesheet_id": result.timesheet_id,
                "punches": result.punch_count,
                "segments": result.segment_count,
                "reg_minutes": result.overtime.total_reg,
                "ot_minutes": result.overtime.total_ot,
                "dt_minutes": result.overtime.total_dt,
                "weekly_ot_converted": result.overtime.weekly_ot_converted,
            }
        )
        return 0

    async def _cmd_sync_leave(self, args: argparse.Namespace) -> int:
        """Resync one leave request."""
        async with get_session() as session:
            result = await LeaveSegmentService(session).sync_leave_segments(
                args.leave_request_id
            )

        self._print_json(
            {
                "leave_request_id": result.leave_request_id,
                "removed_segments": result.removed_segments,
                "created_segments": result.created_segments,
                "per_day_minutes": result.per_day_minutes,
                "timesheets": sorted(str(t) for t in result.affected_timesheet_ids),
            }
        )
        return 0

    async def _cmd_post_accruals(self, args: argparse.Namespace) -> int:
        """Post accruals for one pay period."""
        result: AccrualRunResult
        if args.concurrent:
            _, factory = init_db()
            result = await post_accruals_concurrently(
                factory, args.pay_period_id, args.max_concurrency
            )
        else:
            async with get_session() as session:
                result = await AccrualService(session).post_accruals(args.pay_period_id)

        self._print_json(
            {
                "pay_period_id": result.pay_period_id,
                "accrual_year": result.accrual_year,
                "periods_per_year": result.periods_per_year,
                "employees": result.employee_count,
                "rows_posted": len(result.postings),
                "minutes_posted": result.total_minutes,
                "skipped": result.skipped,
            }
        )
        return 0

    async def _cmd_post_usage(self, args: argparse.Namespace) -> int:
        """Post usage for one leave request."""
        async with get_session() as session:
            posting = await AccrualService(session).post_leave_usage(args.leave_request_id)

        self._print_json(
            {
                "leave_request_id": args.leave_request_id,
                "delta_minutes": posting.delta_minutes,
                "balance_after": posting.balance_after,
            }
        )
        return 0

    async def _cmd_validate_period(self, args: argparse.Namespace) -> int:
        """Validate one pay period. Exit code 1 when not ready."""
        async with get_session() as session:
            result = await ValidationService(session).validate_pay_period(args.pay_period_id)

        self._print_json(result.to_dict())
        return 0 if result.is_ready else 1


def main() -> int:
    """CLI entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = TimekeepingCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
