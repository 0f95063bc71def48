"""Errors shared across engine services."""

from __future__ import annotations

from typing import Any


class NotFoundError(Exception):
    """Raised when a referenced record does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class MissingConfigurationError(Exception):
    """Raised when required configuration (rule set, leave balance) is absent.

    This is a data-integrity problem, never something to default around.
    """


class InvalidLeaveRequestError(ValueError):
    """Raised when a leave request cannot be laid out as daily segments."""

    def __init__(self, message: str, leave_request_id: Any = None):
        self.leave_request_id = leave_request_id
        super().__init__(message)
