"""Work-calendar resolution: which dates a student can be scheduled on."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List

from sqlalchemy.orm import Session

from .errors import HorizonExceeded
from .repositories.tasks import TaskLedgerRepository, task_ledger

logger = logging.getLogger(__name__)


class WorkCalendar:
    """Classifies dates from the student's rest/leave markers in the task ledger."""

    def __init__(self, ledger: TaskLedgerRepository = task_ledger) -> None:
        self._ledger = ledger

    def is_non_work_day(self, session: Session, student_id: str, day: date) -> bool:
        return bool(self._ledger.sentinel_dates(session, student_id, day, day))

    def next_work_date(self, session: Session, student_id: str, from_date: date, horizon_days: int) -> date:
        """Earliest work date in ``from_date + 1 .. from_date + horizon_days``.

        The start date is never a candidate, even when it is itself a rest day.
        """
        if horizon_days < 1:
            raise HorizonExceeded(student_id, from_date, horizon_days)
        window_start = from_date + timedelta(days=1)
        window_end = from_date + timedelta(days=horizon_days)
        blocked = self._ledger.sentinel_dates(session, student_id, window_start, window_end)

        candidate = window_start
        while candidate <= window_end:
            if candidate not in blocked:
                return candidate
            candidate += timedelta(days=1)

        logger.warning(
            "No work date for student=%s within %s day(s) after %s (blocked=%s)",
            student_id,
            horizon_days,
            from_date.isoformat(),
            len(blocked),
        )
        raise HorizonExceeded(student_id, from_date, horizon_days)

    def mixed_days(self, session: Session, student_id: str, start: date, end: date) -> List[date]:
        """Dates where a rest/leave marker sits next to regular work."""
        if end < start:
            raise ValueError("End date must not precede start date.")
        sentinel = self._ledger.sentinel_dates(session, student_id, start, end)
        if not sentinel:
            return []
        work = self._ledger.work_dates(session, student_id, start, end)
        return sorted(sentinel & work)


work_calendar = WorkCalendar()

__all__ = ["WorkCalendar", "work_calendar"]
