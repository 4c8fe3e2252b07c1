"""Domain models shared by the ledger, policy store, audit log and engine."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

DEFAULT_DAILY_TASK_CAP = 4
DEFAULT_CARRY_OVER_THRESHOLD = 3
DEFAULT_LOOKAHEAD_DAYS = 5
DEFAULT_CUTOFF_TIME = time(23, 59)


class TaskStatus(str, Enum):
    NORMAL = "normal"
    DEFERRED = "deferred"
    CARRIED_OVER = "carried_over"


class SentinelCategory(str, Enum):
    """Categories that mark a whole day as excluded from scheduling."""

    REST = "rest"
    LEAVE = "leave"


SENTINEL_CATEGORIES = frozenset(category.value for category in SentinelCategory)


def is_sentinel_category(category: str) -> bool:
    return category in SENTINEL_CATEGORIES


class AuditAction(str, Enum):
    DEFER = "defer"
    CARRY_OVER = "carry_over"
    DELETE = "delete"
    MIDNIGHT_PROCESS = "midnight_process"


# Written only by a closeout. Leave moves also write `defer`, and every block
# defer carries a `midnight_process` summary, so `defer` is left out.
CLOSEOUT_ACTIONS = frozenset({AuditAction.CARRY_OVER.value, AuditAction.MIDNIGHT_PROCESS.value})


class RescheduleAction(str, Enum):
    NO_ACTION = "no_action"
    INDIVIDUAL_CARRY_OVER = "individual_carry_over"
    BLOCK_DEFER = "block_defer"


class Task(BaseModel):
    """A unit of work assigned to a student on one date."""

    id: str = Field(..., min_length=1)
    student_id: str = Field(..., min_length=1)
    task_date: date
    category: str = Field(..., min_length=1)
    title: str = ""
    completed: bool = False
    status: TaskStatus = TaskStatus.NORMAL
    original_date: Optional[date] = None
    defer_reason: Optional[str] = None

    @model_validator(mode="after")
    def _check_sentinel_state(self) -> "Task":
        if self.original_date is None:
            self.original_date = self.task_date
        if self.is_sentinel and self.status != TaskStatus.NORMAL:
            raise ValueError(f"A '{self.category}' day marker cannot carry status '{self.status.value}'.")
        return self

    @property
    def is_sentinel(self) -> bool:
        return is_sentinel_category(self.category)


class SchedulePolicy(BaseModel):
    """Per-student scheduling configuration; ranges are checked by the policy store."""

    student_id: str
    daily_task_cap: int = DEFAULT_DAILY_TASK_CAP
    carry_over_threshold: int = DEFAULT_CARRY_OVER_THRESHOLD
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS
    cutoff_time: time = DEFAULT_CUTOFF_TIME


class AuditEntry(BaseModel):
    student_id: str
    task_id: Optional[str] = None
    category: Optional[str] = None
    title: Optional[str] = None
    original_date: Optional[date] = None
    moved_from: date
    moved_to: Optional[date] = None
    action: AuditAction
    reason: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None


class RescheduleOutcome(BaseModel):
    """Result of one (student, date) closeout."""

    student_id: str
    closing_date: date
    action: RescheduleAction
    moved_task_ids: List[str] = Field(default_factory=list)
    destination_date: Optional[date] = None
    skipped_reason: Optional[str] = None
    over_cap: bool = False

    @property
    def moved_count(self) -> int:
        return len(self.moved_task_ids)


class LeaveOutcome(BaseModel):
    student_id: str
    leave_date: date
    moved_task_ids: List[str] = Field(default_factory=list)
    destination_date: Optional[date] = None


class StudentCloseoutResult(BaseModel):
    student_id: str
    outcome: Optional[RescheduleOutcome] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class CloseoutReport(BaseModel):
    closing_date: date
    started_at: datetime
    finished_at: datetime
    results: List[StudentCloseoutResult] = Field(default_factory=list)

    @property
    def failed(self) -> List[StudentCloseoutResult]:
        return [result for result in self.results if not result.succeeded]


class ScheduleStatus(BaseModel):
    is_enabled: bool
    next_scheduled_run: Optional[datetime] = None
    cron_expression: str
    timezone: str


__all__ = [
    "AuditAction",
    "AuditEntry",
    "CLOSEOUT_ACTIONS",
    "CloseoutReport",
    "DEFAULT_CARRY_OVER_THRESHOLD",
    "DEFAULT_CUTOFF_TIME",
    "DEFAULT_DAILY_TASK_CAP",
    "DEFAULT_LOOKAHEAD_DAYS",
    "LeaveOutcome",
    "RescheduleAction",
    "RescheduleOutcome",
    "SENTINEL_CATEGORIES",
    "ScheduleStatus",
    "SchedulePolicy",
    "SentinelCategory",
    "StudentCloseoutResult",
    "Task",
    "TaskStatus",
    "is_sentinel_category",
]
