"""Session-scoped facades over the repositories for external collaborators."""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional

from .db.session import session_scope
from .repositories.audit import schedule_audit
from .repositories.leave_records import leave_records
from .repositories.policies import schedule_policies
from .repositories.tasks import task_ledger
from .schedule_models import AuditEntry, SchedulePolicy, Task
from .work_calendar import work_calendar


class PolicyStore:
    def get(self, student_id: str) -> SchedulePolicy:
        with session_scope(commit=False) as session:
            return schedule_policies.get(session, student_id)

    def upsert(self, student_id: str, policy: SchedulePolicy) -> SchedulePolicy:
        with session_scope() as session:
            return schedule_policies.upsert(session, student_id, policy)


class AuditLog:
    def append(self, entry: AuditEntry) -> AuditEntry:
        with session_scope() as session:
            return schedule_audit.append(session, entry)

    def query(self, student_id: str, start: date, end: date) -> List[AuditEntry]:
        if end < start:
            raise ValueError("End date must not precede start date.")
        with session_scope(commit=False) as session:
            return schedule_audit.query(session, student_id, start, end)


class TaskStore:
    """Task read/write contract used by the assignment process and by tests."""

    def add(self, tasks: Iterable[Task]) -> List[Task]:
        with session_scope() as session:
            return task_ledger.add_many(session, tasks)

    def get(self, task_id: str) -> Optional[Task]:
        with session_scope(commit=False) as session:
            return task_ledger.get(session, task_id)

    def tasks_on(self, student_id: str, day: date) -> List[Task]:
        with session_scope(commit=False) as session:
            return task_ledger.tasks_on(session, student_id, day)

    def leave_dates(self, student_id: str) -> List[date]:
        with session_scope(commit=False) as session:
            return leave_records.list_dates(session, student_id)


class CalendarView:
    def is_non_work_day(self, student_id: str, day: date) -> bool:
        with session_scope(commit=False) as session:
            return work_calendar.is_non_work_day(session, student_id, day)

    def next_work_date(self, student_id: str, from_date: date) -> date:
        with session_scope(commit=False) as session:
            policy = schedule_policies.get(session, student_id)
            return work_calendar.next_work_date(session, student_id, from_date, policy.lookahead_days)

    def mixed_days(self, student_id: str, start: date, end: date) -> List[date]:
        with session_scope(commit=False) as session:
            return work_calendar.mixed_days(session, student_id, start, end)


policy_store = PolicyStore()
audit_log = AuditLog()
task_store = TaskStore()
calendar_view = CalendarView()

__all__ = [
    "AuditLog",
    "CalendarView",
    "PolicyStore",
    "TaskStore",
    "audit_log",
    "calendar_view",
    "policy_store",
    "task_store",
]
