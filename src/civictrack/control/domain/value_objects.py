"""
Control Value Objects
=====================

Immutable value objects and stateless domain services for request control.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from civictrack.config import ControlStatus, RequestStatus
from civictrack.core import StateConflictException, ValidationException

DueDateInput = Union[datetime, str, None]


def ensure_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_due_date(value: DueDateInput) -> Optional[datetime]:
    """
    Parse a due date into an aware datetime.

    Raises:
        ValidationException: If a non-empty value cannot be parsed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, str):
        try:
            return ensure_aware(datetime.fromisoformat(value.strip()))
        except ValueError:
            pass
    raise ValidationException(f"Invalid due_date: {value!r}", {"field": "due_date"})


class ControlStatusCalculator:
    """
    Pure function mapping (due date, now) to a control status.

    For a fixed due date the result only ever moves
    normal -> approaching -> overdue as time advances.
    """

    def __init__(self, approaching_threshold_hours: int = 48):
        self.approaching_threshold = timedelta(hours=approaching_threshold_hours)

    def calculate(self, due_date: DueDateInput, now: Optional[datetime] = None) -> ControlStatus:
        """
        Calculate the control status of a deadline.

        Never raises: a missing or unparsable due date yields ``no``.
        """
        if due_date is None or due_date == "":
            return ControlStatus.NO

        try:
            deadline = parse_due_date(due_date)
        except ValidationException:
            return ControlStatus.NO
        if deadline is None:
            return ControlStatus.NO

        current_time = ensure_aware(now) if now else datetime.now(timezone.utc)
        remaining = deadline - current_time

        if remaining < timedelta(0):
            return ControlStatus.OVERDUE
        if remaining <= self.approaching_threshold:
            return ControlStatus.APPROACHING
        return ControlStatus.NORMAL


class WorkflowPolicy:
    """
    Central place for workflow status rules.

    Terminal statuses freeze deadline monitoring; ``removed`` is reachable
    only through removal from control.
    """

    @staticmethod
    def parse_status(value: Any) -> RequestStatus:
        try:
            return RequestStatus(value)
        except ValueError:
            raise ValidationException(
                f"Unsupported status value: {value!r}", {"field": "status"}
            ) from None

    @staticmethod
    def ensure_valid_initial_status(status: RequestStatus) -> None:
        if status == RequestStatus.REMOVED:
            raise ValidationException(
                "Status 'removed' can only be set by removing a request from control",
                {"field": "status"}
            )

    @staticmethod
    def ensure_transition(current: RequestStatus, target: RequestStatus) -> None:
        """
        Validate a status change requested through an update.

        Raises:
            StateConflictException: If the transition is not allowed
        """
        current = RequestStatus(current)
        target = RequestStatus(target)
        if current == target:
            return
        if target == RequestStatus.REMOVED:
            raise StateConflictException(
                "Status 'removed' can only be set by removing a request from control",
                current.value
            )
        if current == RequestStatus.REMOVED:
            raise StateConflictException(
                "Request is removed from control and cannot change status",
                current.value
            )
        if current.is_terminal:
            # Finished or cancelled requests may still be archived
            if target == RequestStatus.ARCHIVED and current in (
                RequestStatus.COMPLETED, RequestStatus.CANCELLED
            ):
                return
            raise StateConflictException(
                f"Cannot change status of a {current.value} request to {target.value}",
                current.value
            )

    @staticmethod
    def ensure_can_remove_from_control(current: RequestStatus) -> None:
        current = RequestStatus(current)
        if current == RequestStatus.REMOVED:
            raise StateConflictException(
                "Request is already removed from control", current.value
            )
        if current in (RequestStatus.COMPLETED, RequestStatus.ARCHIVED):
            raise StateConflictException(
                "Cannot remove completed or archived requests from control",
                current.value
            )


@dataclass(frozen=True)
class MutationEvent:
    """
    One lifecycle mutation of a request.

    Consumed by the audit trail (structured payload) and the proceedings
    timeline (human-readable summary).
    """
    request_id: int
    action: str
    summary: str
    payload: Dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[int] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
