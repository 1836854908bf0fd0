"""Matching engine error taxonomy.

Every error carries the HTTP status the API layer renders it with and a
stable ``code`` clients can switch on.
"""

from __future__ import annotations


class MatchingError(Exception):
    status_code = 400
    code = "matching_error"
    default_detail = "Matching error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class TaskNotFound(MatchingError):
    status_code = 404
    code = "task_not_found"
    default_detail = "Task not found"


class TaskNotOpen(MatchingError):
    status_code = 409
    code = "task_not_open"

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Task is not open (status: {status})")


class TaskClosed(MatchingError):
    status_code = 409
    code = "task_closed"

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Task is {status} and can no longer be cancelled")


class TooManyReservations(MatchingError):
    status_code = 429
    code = "too_many_reservations"

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Maximum concurrent reservations reached ({limit})")


class NotReservedByExpert(MatchingError):
    status_code = 409
    code = "not_reserved_by_expert"
    default_detail = "Task is not reserved by this expert"


class ReservationExpired(MatchingError):
    status_code = 410
    code = "reservation_expired"
    default_detail = "Reservation has expired"


class InviteNotFound(MatchingError):
    status_code = 404
    code = "invite_not_found"
    default_detail = "Invite not found"


class Unauthorized(MatchingError):
    status_code = 403
    code = "unauthorized"
    default_detail = "Not authorized to update this invite"


class PreconditionFailed(MatchingError):
    """A conditional write matched no row. Transient: callers re-validate and retry."""

    status_code = 409
    code = "precondition_failed"
    default_detail = "Task changed concurrently, please retry"


class InviteClosed(MatchingError):
    status_code = 409
    code = "invite_closed"

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Invite already {status}")
