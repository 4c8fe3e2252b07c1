"""Append-only audit trail of scheduler moves."""

from __future__ import annotations

from datetime import date
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import ScheduleAuditEntryModel
from ..schedule_models import CLOSEOUT_ACTIONS, AuditAction, AuditEntry

_CLOSEOUT_ACTIONS = tuple(sorted(CLOSEOUT_ACTIONS))


class ScheduleAuditRepository:
    """Exposes inserts and reads only; rows are never updated or removed here."""

    def append(self, session: Session, entry: AuditEntry) -> AuditEntry:
        model = ScheduleAuditEntryModel(
            student_id=entry.student_id,
            task_id=entry.task_id,
            category=entry.category,
            title=entry.title,
            original_date=entry.original_date,
            moved_from=entry.moved_from,
            moved_to=entry.moved_to,
            action=entry.action.value,
            reason=entry.reason,
            created_at=entry.created_at,
        )
        session.add(model)
        session.flush()
        return self._to_domain(model)

    def query(self, session: Session, student_id: str, start: date, end: date) -> List[AuditEntry]:
        stmt = (
            select(ScheduleAuditEntryModel)
            .where(
                ScheduleAuditEntryModel.student_id == student_id,
                ScheduleAuditEntryModel.moved_from >= start,
                ScheduleAuditEntryModel.moved_from <= end,
            )
            .order_by(ScheduleAuditEntryModel.id.asc())
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars()]

    def has_processed(self, session: Session, student_id: str, day: date) -> bool:
        """True when a closeout for ``day`` already moved tasks for the student.

        Leave moves are not closeouts and never count here.
        """
        stmt = (
            select(ScheduleAuditEntryModel.id)
            .where(
                ScheduleAuditEntryModel.student_id == student_id,
                ScheduleAuditEntryModel.moved_from == day,
                ScheduleAuditEntryModel.action.in_(_CLOSEOUT_ACTIONS),
            )
            .limit(1)
        )
        return session.execute(stmt).first() is not None

    @staticmethod
    def _to_domain(model: ScheduleAuditEntryModel) -> AuditEntry:
        return AuditEntry(
            id=model.id,
            student_id=model.student_id,
            task_id=model.task_id,
            category=model.category,
            title=model.title,
            original_date=model.original_date,
            moved_from=model.moved_from,
            moved_to=model.moved_to,
            action=AuditAction(model.action),
            reason=model.reason,
            created_at=model.created_at,
        )


schedule_audit = ScheduleAuditRepository()

__all__ = ["ScheduleAuditRepository", "schedule_audit"]
