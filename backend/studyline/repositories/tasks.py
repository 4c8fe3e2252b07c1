"""Database-backed task ledger."""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional, Set

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..db.models import TaskModel
from ..errors import TaskNotFound
from ..schedule_models import SENTINEL_CATEGORIES, Task, TaskStatus

_SENTINELS = tuple(sorted(SENTINEL_CATEGORIES))


class TaskLedgerRepository:
    """Reads and moves task rows; every method runs inside the caller's session."""

    def get(self, session: Session, task_id: str) -> Optional[Task]:
        model = session.get(TaskModel, task_id)
        return self._to_domain(model) if model else None

    def add(self, session: Session, task: Task) -> Task:
        model = TaskModel(
            id=task.id,
            student_id=task.student_id,
            task_date=task.task_date,
            category=task.category,
            title=task.title,
            completed=task.completed,
            status=task.status.value,
            original_date=task.original_date or task.task_date,
            defer_reason=task.defer_reason,
        )
        session.add(model)
        session.flush()
        return self._to_domain(model)

    def add_many(self, session: Session, tasks: Iterable[Task]) -> List[Task]:
        return [self.add(session, task) for task in tasks]

    def tasks_on(self, session: Session, student_id: str, day: date) -> List[Task]:
        stmt = (
            select(TaskModel)
            .where(TaskModel.student_id == student_id, TaskModel.task_date == day)
            .order_by(TaskModel.created_at.asc(), TaskModel.id.asc())
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars()]

    def incomplete_work_tasks(self, session: Session, student_id: str, day: date) -> List[Task]:
        stmt = (
            select(TaskModel)
            .where(
                TaskModel.student_id == student_id,
                TaskModel.task_date == day,
                TaskModel.completed.is_(False),
                TaskModel.category.not_in(_SENTINELS),
            )
            .order_by(TaskModel.created_at.asc(), TaskModel.id.asc())
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars()]

    def count_work_tasks(self, session: Session, student_id: str, day: date) -> int:
        stmt = select(func.count(TaskModel.id)).where(
            TaskModel.student_id == student_id,
            TaskModel.task_date == day,
            TaskModel.category.not_in(_SENTINELS),
        )
        return int(session.execute(stmt).scalar_one())

    def sentinel_dates(self, session: Session, student_id: str, start: date, end: date) -> Set[date]:
        """Dates in ``[start, end]`` holding a rest or leave marker."""
        stmt = (
            select(TaskModel.task_date)
            .where(
                TaskModel.student_id == student_id,
                TaskModel.task_date >= start,
                TaskModel.task_date <= end,
                TaskModel.category.in_(_SENTINELS),
            )
            .distinct()
        )
        return set(session.execute(stmt).scalars())

    def work_dates(self, session: Session, student_id: str, start: date, end: date) -> Set[date]:
        stmt = (
            select(TaskModel.task_date)
            .where(
                TaskModel.student_id == student_id,
                TaskModel.task_date >= start,
                TaskModel.task_date <= end,
                TaskModel.category.not_in(_SENTINELS),
            )
            .distinct()
        )
        return set(session.execute(stmt).scalars())

    def students_with_open_tasks(self, session: Session, day: date) -> List[str]:
        stmt = (
            select(TaskModel.student_id)
            .where(
                TaskModel.task_date == day,
                TaskModel.completed.is_(False),
                TaskModel.category.not_in(_SENTINELS),
            )
            .distinct()
            .order_by(TaskModel.student_id.asc())
        )
        return list(session.execute(stmt).scalars())

    def move(
        self,
        session: Session,
        task_ids: Iterable[str],
        *,
        to_date: date,
        status: TaskStatus,
        defer_reason: str,
    ) -> int:
        """Relocate tasks to ``to_date``. ``original_date`` is never written here."""
        ids = list(task_ids)
        if not ids:
            return 0
        result = session.execute(
            update(TaskModel)
            .where(TaskModel.id.in_(ids))
            .values(task_date=to_date, status=status.value, defer_reason=defer_reason)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    def delete(self, session: Session, task_id: str) -> Task:
        model = session.get(TaskModel, task_id)
        if model is None:
            raise TaskNotFound(f"Task '{task_id}' was not found.")
        task = self._to_domain(model)
        session.delete(model)
        session.flush()
        return task

    @staticmethod
    def _to_domain(model: TaskModel) -> Task:
        return Task(
            id=model.id,
            student_id=model.student_id,
            task_date=model.task_date,
            category=model.category,
            title=model.title,
            completed=model.completed,
            status=TaskStatus(model.status),
            original_date=model.original_date,
            defer_reason=model.defer_reason,
        )


task_ledger = TaskLedgerRepository()

__all__ = ["TaskLedgerRepository", "task_ledger"]
