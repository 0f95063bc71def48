"""Punch and lifecycle state machines with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar

from timekeeping_engine.calculators.types import (
    LeaveRequestStatus,
    PayPeriodStatus,
    PunchState,
    PunchType,
    TimesheetStatus,
)


class TimesheetEvent(str, Enum):
    SUBMIT = "SUBMIT"
    SUP_APPROVE = "SUP_APPROVE"
    SUP_REJECT = "SUP_REJECT"
    PAYROLL_APPROVE = "PAYROLL_APPROVE"
    PAYROLL_REJECT = "PAYROLL_REJECT"
    LOCK = "LOCK"


class LeaveEvent(str, Enum):
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    POST = "POST"
    CANCEL = "CANCEL"


class PayPeriodEvent(str, Enum):
    MARK_READY = "MARK_READY"
    LOCK = "LOCK"
    REOPEN = "REOPEN"


class InvalidTransitionError(Exception):
    """Raised when an event is not allowed from the current state."""

    def __init__(self, from_state: str, event: str, message: str | None = None):
        self.from_state = from_state
        self.event = event
        super().__init__(message or f"Cannot {event} when current state is {from_state}")


def _value(member: str | Enum) -> str:
    return member.value if isinstance(member, Enum) else member


class TransitionTable:
    """Exhaustive (state, event) -> next state lookup.

    Any pair missing from ``TRANSITIONS`` is invalid; there is no other
    place a transition can be allowed.
    """

    TRANSITIONS: ClassVar[dict[str, dict[str, str]]] = {}
    ENTITY: ClassVar[str] = "record"

    @classmethod
    def _error(cls, from_state: str, event: str) -> InvalidTransitionError:
        return InvalidTransitionError(
            from_state, event, f"Cannot {event} a {cls.ENTITY} in {from_state} status"
        )

    @classmethod
    def can_transition(cls, from_state: str | Enum, event: str | Enum) -> bool:
        """Check if ``event`` is allowed from ``from_state``."""
        return _value(event) in cls.TRANSITIONS.get(_value(from_state), {})

    @classmethod
    def next_state(cls, from_state: str | Enum, event: str | Enum) -> str:
        """Return the resulting state, raising InvalidTransitionError if invalid."""
        state, evt = _value(from_state), _value(event)
        try:
            return cls.TRANSITIONS[state][evt]
        except KeyError:
            raise cls._error(state, evt) from None

    @classmethod
    def available_events(cls, state: str | Enum) -> list[str]:
        """Events accepted in ``state``."""
        return list(cls.TRANSITIONS.get(_value(state), {}))


class PunchStateMachine(TransitionTable):
    """Physical punch state machine.

    OUT --CLOCK_IN--> WORK --CLOCK_OUT--> OUT
    WORK --MEAL_START--> MEAL --MEAL_END--> WORK
    WORK --BREAK_START--> BREAK --BREAK_END--> WORK
    """

    ENTITY = "punch"
    TRANSITIONS = {
        PunchState.OUT.value: {PunchType.CLOCK_IN.value: PunchState.WORK.value},
        PunchState.WORK.value: {
            PunchType.CLOCK_OUT.value: PunchState.OUT.value,
            PunchType.MEAL_START.value: PunchState.MEAL.value,
            PunchType.BREAK_START.value: PunchState.BREAK.value,
        },
        PunchState.MEAL.value: {PunchType.MEAL_END.value: PunchState.WORK.value},
        PunchState.BREAK.value: {PunchType.BREAK_END.value: PunchState.WORK.value},
    }

    @classmethod
    def _error(cls, from_state: str, event: str) -> InvalidTransitionError:
        return InvalidTransitionError(from_state, event)


def transition(current_state: PunchState | str, punch_type: PunchType | str) -> PunchState:
    """Validate a punch against the current state and return the next state."""
    return PunchState(PunchStateMachine.next_state(current_state, punch_type))


class TimesheetStateMachine(TransitionTable):
    """Timesheet approval workflow."""

    ENTITY = "timesheet"
    TRANSITIONS = {
        TimesheetStatus.OPEN.value: {
            TimesheetEvent.SUBMIT.value: TimesheetStatus.SUBMITTED.value,
        },
        TimesheetStatus.SUBMITTED.value: {
            TimesheetEvent.SUP_APPROVE.value: TimesheetStatus.SUP_APPROVED.value,
            TimesheetEvent.SUP_REJECT.value: TimesheetStatus.OPEN.value,
        },
        TimesheetStatus.SUP_APPROVED.value: {
            TimesheetEvent.PAYROLL_APPROVE.value: TimesheetStatus.PAYROLL_APPROVED.value,
            TimesheetEvent.PAYROLL_REJECT.value: TimesheetStatus.OPEN.value,
        },
        TimesheetStatus.PAYROLL_APPROVED.value: {
            TimesheetEvent.LOCK.value: TimesheetStatus.LOCKED.value,
        },
        TimesheetStatus.LOCKED.value: {},
    }


class LeaveRequestStateMachine(TransitionTable):
    """Leave request lifecycle."""

    ENTITY = "leave request"
    TRANSITIONS = {
        LeaveRequestStatus.DRAFT.value: {
            LeaveEvent.SUBMIT.value: LeaveRequestStatus.PENDING.value,
            LeaveEvent.CANCEL.value: LeaveRequestStatus.CANCELLED.value,
        },
        LeaveRequestStatus.PENDING.value: {
            LeaveEvent.APPROVE.value: LeaveRequestStatus.APPROVED.value,
            LeaveEvent.REJECT.value: LeaveRequestStatus.REJECTED.value,
            LeaveEvent.CANCEL.value: LeaveRequestStatus.CANCELLED.value,
        },
        LeaveRequestStatus.APPROVED.value: {
            LeaveEvent.POST.value: LeaveRequestStatus.POSTED.value,
            LeaveEvent.REJECT.value: LeaveRequestStatus.REJECTED.value,
            LeaveEvent.CANCEL.value: LeaveRequestStatus.CANCELLED.value,
        },
        LeaveRequestStatus.REJECTED.value: {},
        LeaveRequestStatus.CANCELLED.value: {},
        LeaveRequestStatus.POSTED.value: {},
    }

    # Statuses for which leave segments exist
    SEGMENTS_ACTIVE = frozenset(
        {LeaveRequestStatus.APPROVED.value, LeaveRequestStatus.POSTED.value}
    )

    @classmethod
    def has_segments(cls, status: str | Enum) -> bool:
        return _value(status) in cls.SEGMENTS_ACTIVE


class PayPeriodStateMachine(TransitionTable):
    """Pay period lifecycle. Locking posts accruals; see workflow_service."""

    ENTITY = "pay period"
    TRANSITIONS = {
        PayPeriodStatus.OPEN.value: {
            PayPeriodEvent.MARK_READY.value: PayPeriodStatus.READY.value,
        },
        PayPeriodStatus.READY.value: {
            PayPeriodEvent.LOCK.value: PayPeriodStatus.LOCKED.value,
            PayPeriodEvent.REOPEN.value: PayPeriodStatus.OPEN.value,
        },
        PayPeriodStatus.LOCKED.value: {
            PayPeriodEvent.REOPEN.value: PayPeriodStatus.OPEN.value,
        },
    }
