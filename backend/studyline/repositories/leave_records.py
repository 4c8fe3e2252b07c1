"""Leave requests recorded alongside the `leave` day marker."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.models import LeaveRecordModel


class LeaveRecordRepository:
    def exists(self, session: Session, student_id: str, leave_date: date) -> bool:
        stmt = select(LeaveRecordModel.id).where(
            LeaveRecordModel.student_id == student_id,
            LeaveRecordModel.leave_date == leave_date,
        )
        return session.execute(stmt).first() is not None

    def add(self, session: Session, student_id: str, leave_date: date, reason: Optional[str] = None) -> None:
        session.add(LeaveRecordModel(student_id=student_id, leave_date=leave_date, reason=reason))
        session.flush()

    def remove(self, session: Session, student_id: str, leave_date: date) -> int:
        result = session.execute(
            delete(LeaveRecordModel).where(
                LeaveRecordModel.student_id == student_id,
                LeaveRecordModel.leave_date == leave_date,
            )
        )
        return int(result.rowcount or 0)

    def list_dates(self, session: Session, student_id: str) -> List[date]:
        stmt = (
            select(LeaveRecordModel.leave_date)
            .where(LeaveRecordModel.student_id == student_id)
            .order_by(LeaveRecordModel.leave_date.desc())
        )
        return list(session.execute(stmt).scalars())


leave_records = LeaveRecordRepository()

__all__ = ["LeaveRecordRepository", "leave_records"]
