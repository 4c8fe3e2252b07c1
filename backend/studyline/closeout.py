"""Batch closeout run by the daily trigger, plus schedule visibility."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from .config import get_settings
from .db.session import session_scope
from .repositories.tasks import task_ledger
from .rescheduler import RescheduleEngine, reschedule_engine
from .schedule_models import CloseoutReport, ScheduleStatus, StudentCloseoutResult
from .telemetry import emit_event

logger = logging.getLogger(__name__)


def _closeout_zone() -> ZoneInfo:
    name = get_settings().closeout_timezone
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        raise RuntimeError(f"Unknown closeout timezone '{name}'.") from exc


def current_closing_date(now: Optional[datetime] = None) -> date:
    """Today's date in the closeout timezone."""
    moment = now or datetime.now(timezone.utc)
    return moment.astimezone(_closeout_zone()).date()


def students_to_close(closing_date: date) -> List[str]:
    with session_scope(commit=False) as session:
        return task_ledger.students_with_open_tasks(session, closing_date)


def _close_student(engine: RescheduleEngine, student_id: str, closing_date: date) -> StudentCloseoutResult:
    try:
        outcome = engine.reschedule(student_id, closing_date)
    except Exception as exc:  # noqa: BLE001
        # Traceback already logged by the engine.
        return StudentCloseoutResult(
            student_id=student_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )
    return StudentCloseoutResult(student_id=student_id, outcome=outcome)


def run_daily_closeout(
    closing_date: Optional[date] = None,
    *,
    max_workers: Optional[int] = None,
    engine: Optional[RescheduleEngine] = None,
) -> CloseoutReport:
    """Close out ``closing_date`` for every student with open work on it."""
    target = closing_date or current_closing_date()
    workers = max_workers or get_settings().closeout_workers
    active_engine = engine or reschedule_engine
    started_at = datetime.now(timezone.utc)

    students = students_to_close(target)
    logger.info("Closeout for %s: %s student(s) with open tasks", target.isoformat(), len(students))

    if workers <= 1 or len(students) <= 1:
        results = [_close_student(active_engine, student, target) for student in students]
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="closeout") as pool:
            results = list(pool.map(lambda student: _close_student(active_engine, student, target), students))

    report = CloseoutReport(
        closing_date=target,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
        results=results,
    )
    failed = report.failed
    if failed:
        logger.error(
            "Closeout for %s finished with %s failure(s): %s",
            target.isoformat(),
            len(failed),
            ", ".join(result.student_id for result in failed),
        )
    else:
        logger.info("Closeout for %s finished for %s student(s)", target.isoformat(), len(results))
    emit_event(
        "closeout_batch_completed",
        closing_date=target,
        students=len(results),
        failures=len(failed),
    )
    return report


def get_schedule_status(now: Optional[datetime] = None) -> ScheduleStatus:
    settings = get_settings()
    if not croniter.is_valid(settings.closeout_cron):
        raise RuntimeError(f"Invalid closeout cron expression '{settings.closeout_cron}'.")
    next_run: Optional[datetime] = None
    if settings.closeout_enabled:
        local_now = (now or datetime.now(timezone.utc)).astimezone(_closeout_zone())
        next_run = croniter(settings.closeout_cron, local_now).get_next(datetime)
    return ScheduleStatus(
        is_enabled=settings.closeout_enabled,
        next_scheduled_run=next_run,
        cron_expression=settings.closeout_cron,
        timezone=settings.closeout_timezone,
    )


__all__ = [
    "current_closing_date",
    "get_schedule_status",
    "run_daily_closeout",
    "students_to_close",
]
