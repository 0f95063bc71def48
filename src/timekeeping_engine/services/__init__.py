"""Timekeeping engine services."""

from timekeeping_engine.services.state_machine import (
    InvalidTransitionError,
    LeaveRequestStateMachine,
    PayPeriodStateMachine,
    PunchStateMachine,
    TimesheetStateMachine,
    transition,
)
from timekeeping_engine.services.segment_service import SegmentService
from timekeeping_engine.services.overtime_service import OvertimeService
from timekeeping_engine.services.leave_segment_service import LeaveSegmentService
from timekeeping_engine.services.accrual_service import AccrualService, post_accruals_concurrently
from timekeeping_engine.services.validation_service import ValidationService
from timekeeping_engine.services.punch_service import PunchService
from timekeeping_engine.services.workflow_service import WorkflowService

__all__ = [
    "InvalidTransitionError",
    "LeaveRequestStateMachine",
    "PayPeriodStateMachine",
    "PunchStateMachine",
    "TimesheetStateMachine",
    "transition",
    "SegmentService",
    "OvertimeService",
    "LeaveSegmentService",
    "AccrualService",
    "post_accruals_concurrently",
    "ValidationService",
    "PunchService",
    "WorkflowService",
]
