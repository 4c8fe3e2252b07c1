"""Failure taxonomy raised by the rescheduling engine and its stores."""

from __future__ import annotations

from datetime import date


class HorizonExceeded(LookupError):
    """No work date exists within the student's look-ahead horizon."""

    def __init__(self, student_id: str, from_date: date, horizon_days: int) -> None:
        self.student_id = student_id
        self.from_date = from_date
        self.horizon_days = horizon_days
        super().__init__(
            f"No work date for '{student_id}' within {horizon_days} day(s) after {from_date.isoformat()}."
        )


class TransactionConflict(RuntimeError):
    """Another transaction mutated the same student's rows concurrently."""


class PolicyInvalid(ValueError):
    """A policy write carried values outside the accepted ranges."""


class LeaveConflict(ValueError):
    """A leave request collides with existing leave, rest or completed work."""


class TaskNotFound(LookupError):
    pass


__all__ = [
    "HorizonExceeded",
    "LeaveConflict",
    "PolicyInvalid",
    "TaskNotFound",
    "TransactionConflict",
]
