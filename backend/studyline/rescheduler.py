"""Daily closeout engine: moves a student's unfinished tasks off a closed date.

One invocation handles exactly one (student, date) pair and takes one of three
paths:

* ``no_action`` when the date is a rest/leave day, was already closed out, or
  has nothing left to move;
* ``individual_carry_over`` when fewer tasks than the student's threshold
  remain; each task moves on its own and is marked ``carried_over``;
* ``block_defer`` when the threshold is met; the whole remainder moves as one
  unit, is marked ``deferred`` and gets a ``midnight_process`` summary entry.

Tasks always land on the next work date after the closed date. The destination
is not re-evaluated in the same call, so longer cascades only happen through
the following days' closeouts. Every read and write of one invocation shares a
single transaction guarded by a per-student lock.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date
from typing import Callable, ContextManager, Dict, Iterator, List, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .db.session import session_scope
from .errors import LeaveConflict, TaskNotFound, TransactionConflict
from .repositories.audit import ScheduleAuditRepository, schedule_audit
from .repositories.leave_records import LeaveRecordRepository, leave_records
from .repositories.policies import SchedulePolicyRepository, schedule_policies
from .repositories.tasks import TaskLedgerRepository, task_ledger
from .schedule_models import (
    AuditAction,
    AuditEntry,
    LeaveOutcome,
    RescheduleAction,
    RescheduleOutcome,
    SentinelCategory,
    Task,
    TaskStatus,
)
from .telemetry import emit_event
from .work_calendar import WorkCalendar, work_calendar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}
_CONFLICT_MARKERS = ("database is locked", "deadlock", "could not serialize", "lock timeout")


def _is_conflict(exc: Exception) -> bool:
    if isinstance(exc, (IntegrityError, StaleDataError)):
        return True
    if isinstance(exc, DBAPIError):
        sqlstate = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
        if sqlstate in _CONFLICT_SQLSTATES:
            return True
        message = str(exc.orig).lower()
        return any(marker in message for marker in _CONFLICT_MARKERS)
    return False


class _LockSlot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class _StudentLocks:
    """Process-local mutex per student id; idle entries are dropped."""

    def __init__(self) -> None:
        self._slots: Dict[str, _LockSlot] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    @contextmanager
    def hold(self, student_id: str) -> Iterator[None]:
        with self._guard:
            slot = self._slots.get(student_id)
            if slot is None:
                slot = self._slots[student_id] = _LockSlot()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._guard:
                slot.users -= 1
                if not slot.users:
                    del self._slots[student_id]


class RescheduleEngine:
    def __init__(
        self,
        *,
        ledger: TaskLedgerRepository = task_ledger,
        policies: SchedulePolicyRepository = schedule_policies,
        audit: ScheduleAuditRepository = schedule_audit,
        leaves: LeaveRecordRepository = leave_records,
        calendar: WorkCalendar = work_calendar,
        session_factory: Callable[[], ContextManager[Session]] = session_scope,
    ) -> None:
        self._ledger = ledger
        self._policies = policies
        self._audit = audit
        self._leaves = leaves
        self._calendar = calendar
        self._session_factory = session_factory
        self._locks = _StudentLocks()

    # ------------------------------------------------------------------
    # Closeout
    # ------------------------------------------------------------------

    def reschedule(self, student_id: str, closing_date: date) -> RescheduleOutcome:
        student = _normalize_student_id(student_id)
        try:
            with self._locks.hold(student):
                outcome = self._transact(
                    lambda session: self._close_out(session, student, closing_date),
                    label=f"reschedule student={student} date={closing_date.isoformat()}",
                )
        except Exception as exc:
            logger.exception(
                "Reschedule failed for student=%s date=%s", student, closing_date.isoformat()
            )
            emit_event(
                "reschedule_failed",
                student_id=student,
                closing_date=closing_date,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        emit_event(
            "reschedule_completed",
            student_id=student,
            closing_date=closing_date,
            action=outcome.action.value,
            moved=outcome.moved_count,
            destination_date=outcome.destination_date,
            skipped_reason=outcome.skipped_reason,
        )
        if outcome.over_cap:
            emit_event(
                "daily_cap_exceeded",
                student_id=student,
                destination_date=outcome.destination_date,
            )
        return outcome

    def _close_out(self, session: Session, student: str, closing_date: date) -> RescheduleOutcome:
        policy = self._policies.lock(session, student)

        if self._calendar.is_non_work_day(session, student, closing_date):
            return self._no_action(student, closing_date, "non_work_day")
        if self._audit.has_processed(session, student, closing_date):
            logger.info(
                "Closeout for student=%s date=%s already recorded; skipping",
                student,
                closing_date.isoformat(),
            )
            return self._no_action(student, closing_date, "already_processed")

        pending = self._ledger.incomplete_work_tasks(session, student, closing_date)
        if not pending:
            return self._no_action(student, closing_date, "no_incomplete_tasks")

        destination = self._calendar.next_work_date(
            session, student, closing_date, policy.lookahead_days
        )
        if len(pending) < policy.carry_over_threshold:
            action = RescheduleAction.INDIVIDUAL_CARRY_OVER
            self._carry_over(session, student, closing_date, destination, pending)
        else:
            action = RescheduleAction.BLOCK_DEFER
            self._block_defer(session, student, closing_date, destination, pending, policy.carry_over_threshold)

        load = self._ledger.count_work_tasks(session, student, destination)
        over_cap = load > policy.daily_task_cap
        if over_cap:
            logger.warning(
                "Destination %s for student=%s now holds %s task(s), above the daily cap of %s",
                destination.isoformat(),
                student,
                load,
                policy.daily_task_cap,
            )

        return RescheduleOutcome(
            student_id=student,
            closing_date=closing_date,
            action=action,
            moved_task_ids=[task.id for task in pending],
            destination_date=destination,
            over_cap=over_cap,
        )

    def _carry_over(
        self,
        session: Session,
        student: str,
        closing_date: date,
        destination: date,
        pending: List[Task],
    ) -> None:
        for task in pending:
            self._ledger.move(
                session,
                [task.id],
                to_date=destination,
                status=TaskStatus.CARRIED_OVER,
                defer_reason="incomplete",
            )
            self._audit.append(
                session,
                self._move_entry(task, closing_date, destination, AuditAction.CARRY_OVER, "Incomplete at closeout"),
            )
        logger.info(
            "Carried over %s task(s) for student=%s from %s to %s",
            len(pending),
            student,
            closing_date.isoformat(),
            destination.isoformat(),
        )

    def _block_defer(
        self,
        session: Session,
        student: str,
        closing_date: date,
        destination: date,
        pending: List[Task],
        threshold: int,
    ) -> None:
        self._ledger.move(
            session,
            [task.id for task in pending],
            to_date=destination,
            status=TaskStatus.DEFERRED,
            defer_reason="block_defer",
        )
        for task in pending:
            self._audit.append(
                session,
                self._move_entry(task, closing_date, destination, AuditAction.DEFER, "Deferred with the day's remaining work"),
            )
        self._audit.append(
            session,
            AuditEntry(
                student_id=student,
                moved_from=closing_date,
                moved_to=destination,
                action=AuditAction.MIDNIGHT_PROCESS,
                reason=(
                    f"Closeout of {closing_date.isoformat()}: {len(pending)} incomplete task(s) "
                    f"deferred as a block (threshold {threshold})"
                ),
            ),
        )
        logger.info(
            "Deferred %s task(s) as a block for student=%s from %s to %s",
            len(pending),
            student,
            closing_date.isoformat(),
            destination.isoformat(),
        )

    # ------------------------------------------------------------------
    # Leave and administrative removal
    # ------------------------------------------------------------------

    def request_leave(self, student_id: str, leave_date: date, reason: Optional[str] = None) -> LeaveOutcome:
        student = _normalize_student_id(student_id)
        with self._locks.hold(student):
            outcome = self._transact(
                lambda session: self._apply_leave(session, student, leave_date, reason),
                label=f"leave student={student} date={leave_date.isoformat()}",
            )
        emit_event(
            "leave_recorded",
            student_id=student,
            leave_date=leave_date,
            moved=len(outcome.moved_task_ids),
            destination_date=outcome.destination_date,
        )
        return outcome

    def _apply_leave(self, session: Session, student: str, leave_date: date, reason: Optional[str]) -> LeaveOutcome:
        policy = self._policies.lock(session, student)
        if self._leaves.exists(session, student, leave_date):
            raise LeaveConflict(f"Leave for {leave_date.isoformat()} was already requested.")

        day_tasks = self._ledger.tasks_on(session, student, leave_date)
        if any(task.is_sentinel for task in day_tasks):
            raise LeaveConflict(f"{leave_date.isoformat()} is already a non-work day.")
        if any(task.completed for task in day_tasks):
            raise LeaveConflict(
                f"{leave_date.isoformat()} already has completed work; leave would create a mixed day."
            )

        destination: Optional[date] = None
        if day_tasks:
            destination = self._calendar.next_work_date(session, student, leave_date, policy.lookahead_days)
            self._ledger.move(
                session,
                [task.id for task in day_tasks],
                to_date=destination,
                status=TaskStatus.DEFERRED,
                defer_reason="leave",
            )
            for task in day_tasks:
                self._audit.append(
                    session,
                    self._move_entry(task, leave_date, destination, AuditAction.DEFER, "Leave requested"),
                )

        self._leaves.add(session, student, leave_date, reason)
        self._ledger.add(
            session,
            Task(
                id=f"leave-{student}-{leave_date.isoformat()}",
                student_id=student,
                task_date=leave_date,
                category=SentinelCategory.LEAVE.value,
                title="On leave",
                completed=True,
            ),
        )
        logger.info(
            "Recorded leave for student=%s on %s; moved %s task(s) to %s",
            student,
            leave_date.isoformat(),
            len(day_tasks),
            destination.isoformat() if destination else "-",
        )
        return LeaveOutcome(
            student_id=student,
            leave_date=leave_date,
            moved_task_ids=[task.id for task in day_tasks],
            destination_date=destination,
        )

    def remove_task(self, task_id: str, reason: Optional[str] = None) -> Task:
        with self._session_factory() as session:
            existing = self._ledger.get(session, task_id)
        if existing is None:
            raise TaskNotFound(f"Task '{task_id}' was not found.")
        student = existing.student_id

        def _remove(session: Session) -> Task:
            self._policies.lock(session, student)
            task = self._ledger.delete(session, task_id)
            if task.category == SentinelCategory.LEAVE.value:
                self._leaves.remove(session, task.student_id, task.task_date)
            self._audit.append(
                session,
                AuditEntry(
                    student_id=task.student_id,
                    task_id=task.id,
                    category=task.category,
                    title=task.title,
                    original_date=task.original_date,
                    moved_from=task.task_date,
                    moved_to=None,
                    action=AuditAction.DELETE,
                    reason=(reason or "Removed by administrator").strip(),
                ),
            )
            return task

        with self._locks.hold(student):
            removed = self._transact(_remove, label=f"remove task={task_id}")
        logger.info("Removed task %s for student=%s", removed.id, removed.student_id)
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transact(self, work: Callable[[Session], T], *, label: str) -> T:
        """Run ``work`` in one transaction, retrying a single time on conflict."""
        for attempt in (1, 2):
            try:
                with self._session_factory() as session:
                    return work(session)
            except (DBAPIError, StaleDataError) as exc:
                if not _is_conflict(exc):
                    raise
                if attempt == 2:
                    raise TransactionConflict(f"Concurrent update while running {label}.") from exc
                logger.warning("Transaction conflict during %s; retrying once", label)
        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def _move_entry(
        task: Task,
        moved_from: date,
        moved_to: date,
        action: AuditAction,
        reason: str,
    ) -> AuditEntry:
        return AuditEntry(
            student_id=task.student_id,
            task_id=task.id,
            category=task.category,
            title=task.title,
            original_date=task.original_date,
            moved_from=moved_from,
            moved_to=moved_to,
            action=action,
            reason=reason,
        )

    @staticmethod
    def _no_action(student: str, closing_date: date, reason: str) -> RescheduleOutcome:
        return RescheduleOutcome(
            student_id=student,
            closing_date=closing_date,
            action=RescheduleAction.NO_ACTION,
            skipped_reason=reason,
        )


def _normalize_student_id(student_id: str) -> str:
    normalized = (student_id or "").strip()
    if not normalized:
        raise ValueError("Student id cannot be empty.")
    return normalized


reschedule_engine = RescheduleEngine()


def reschedule(student_id: str, closing_date: date) -> RescheduleOutcome:
    return reschedule_engine.reschedule(student_id, closing_date)


__all__ = ["RescheduleEngine", "reschedule", "reschedule_engine"]
