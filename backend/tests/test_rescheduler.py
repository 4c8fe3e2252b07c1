"""Closeout behaviour of the rescheduling engine."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, timedelta
from typing import List

import pytest
from sqlalchemy.exc import OperationalError

from studyline.db.session import session_scope
from studyline.errors import HorizonExceeded, TransactionConflict
from studyline.rescheduler import RescheduleEngine, reschedule
from studyline.schedule_models import (
    AuditAction,
    RescheduleAction,
    RescheduleOutcome,
    SchedulePolicy,
    Task,
    TaskStatus,
)
from studyline.stores import audit_log, calendar_view, policy_store, task_store

STUDENT = "st001"
DAY = date(2025, 7, 14)


def _day(offset: int) -> date:
    return DAY + timedelta(days=offset)


def _work(day: date, index: int, *, completed: bool = False, student: str = STUDENT) -> Task:
    return Task(
        id=f"{student}-{day.isoformat()}-{index}",
        student_id=student,
        task_date=day,
        category="math" if index % 2 else "english",
        title=f"Exercise set {index}",
        completed=completed,
    )


def _rest(day: date, student: str = STUDENT) -> Task:
    return Task(
        id=f"rest-{student}-{day.isoformat()}",
        student_id=student,
        task_date=day,
        category="rest",
        title="Rest day",
    )


def _audit(start: date = DAY, end: date = DAY) -> list:
    return audit_log.query(STUDENT, start, end)


def test_scenario_block_defer_skips_rest_day(database) -> None:
    task_store.add(
        [
            _work(DAY, 1, completed=True),
            _work(DAY, 2, completed=True),
            _work(DAY, 3),
            _work(DAY, 4),
            _work(DAY, 5),
            _rest(_day(1)),
            _work(_day(2), 1),
            _work(_day(2), 2),
            _work(_day(2), 3, completed=True),
        ]
    )

    outcome = reschedule(STUDENT, DAY)

    assert outcome.action == RescheduleAction.BLOCK_DEFER
    assert outcome.destination_date == _day(2)
    assert sorted(outcome.moved_task_ids) == [f"{STUDENT}-{DAY.isoformat()}-{i}" for i in (3, 4, 5)]

    remaining = task_store.tasks_on(STUDENT, DAY)
    assert len(remaining) == 2
    assert all(task.completed for task in remaining)

    destination = task_store.tasks_on(STUDENT, _day(2))
    assert len(destination) == 6
    moved = [task for task in destination if task.id in outcome.moved_task_ids]
    assert {task.status for task in moved} == {TaskStatus.DEFERRED}
    assert {task.original_date for task in moved} == {DAY}
    assert {task.defer_reason for task in moved} == {"block_defer"}

    entries = _audit()
    assert [entry.action for entry in entries].count(AuditAction.DEFER) == 3
    summaries = [entry for entry in entries if entry.action == AuditAction.MIDNIGHT_PROCESS]
    assert len(summaries) == 1
    assert summaries[0].moved_to == _day(2)
    assert "3 incomplete" in summaries[0].reason


def test_scenario_individual_carry_over(database) -> None:
    task_store.add([_work(DAY, 1), _work(DAY, 2), _work(DAY, 3, completed=True)])

    outcome = reschedule(STUDENT, DAY)

    assert outcome.action == RescheduleAction.INDIVIDUAL_CARRY_OVER
    assert outcome.destination_date == _day(1)
    assert outcome.moved_count == 2
    moved = [task_store.get(task_id) for task_id in outcome.moved_task_ids]
    for task in moved:
        assert task is not None
        assert task.task_date == _day(1)
        assert task.status == TaskStatus.CARRIED_OVER
        assert task.original_date == DAY

    entries = _audit()
    assert [entry.action for entry in entries] == [AuditAction.CARRY_OVER, AuditAction.CARRY_OVER]
    assert all(entry.moved_to == _day(1) for entry in entries)

    completed = task_store.get(f"{STUDENT}-{DAY.isoformat()}-3")
    assert completed is not None
    assert completed.task_date == DAY
    assert completed.status == TaskStatus.NORMAL


def test_scenario_rest_day_is_left_alone(database) -> None:
    task_store.add([_rest(DAY)])

    outcome = reschedule(STUDENT, DAY)

    assert outcome.action == RescheduleAction.NO_ACTION
    assert outcome.skipped_reason == "non_work_day"
    assert outcome.destination_date is None
    assert _audit() == []


def test_no_incomplete_tasks_is_no_action(database) -> None:
    task_store.add([_work(DAY, 1, completed=True)])

    outcome = reschedule(STUDENT, DAY)

    assert outcome.action == RescheduleAction.NO_ACTION
    assert outcome.skipped_reason == "no_incomplete_tasks"
    assert task_store.get(f"{STUDENT}-{DAY.isoformat()}-1").task_date == DAY  # type: ignore[union-attr]


def test_second_run_for_same_date_changes_nothing(database) -> None:
    task_store.add([_work(DAY, index) for index in range(1, 5)])

    first = reschedule(STUDENT, DAY)
    placement = {task.id: (task.task_date, task.status) for task in task_store.tasks_on(STUDENT, _day(1))}
    audit_before = _audit()

    second = reschedule(STUDENT, DAY)

    assert first.action == RescheduleAction.BLOCK_DEFER
    assert second.action == RescheduleAction.NO_ACTION
    assert second.skipped_reason == "already_processed"
    after = {task.id: (task.task_date, task.status) for task in task_store.tasks_on(STUDENT, _day(1))}
    assert after == placement
    assert len(_audit()) == len(audit_before)


def test_tasks_landing_on_a_closed_date_are_not_moved_again(database) -> None:
    task_store.add([_work(DAY, 1)])
    reschedule(STUDENT, DAY)

    task_store.add([_work(DAY, 7)])
    outcome = reschedule(STUDENT, DAY)

    assert outcome.skipped_reason == "already_processed"
    late = task_store.get(f"{STUDENT}-{DAY.isoformat()}-7")
    assert late is not None and late.task_date == DAY


def test_daily_invocations_cascade_one_hop_at_a_time(database) -> None:
    task_store.add([_work(DAY, 1), _work(DAY, 2), _work(DAY, 3), _work(_day(1), 1)])

    first = reschedule(STUDENT, DAY)
    assert first.destination_date == _day(1)
    assert task_store.tasks_on(STUDENT, _day(2)) == []

    second = reschedule(STUDENT, _day(1))
    assert second.action == RescheduleAction.BLOCK_DEFER
    assert second.destination_date == _day(2)
    moved = task_store.tasks_on(STUDENT, _day(2))
    assert len(moved) == 4
    # Original dates survive repeated moves.
    assert sorted(task.original_date for task in moved) == [DAY, DAY, DAY, _day(1)]


def test_policy_threshold_controls_the_branch(database) -> None:
    policy_store.upsert(STUDENT, SchedulePolicy(student_id=STUDENT, carry_over_threshold=1))
    task_store.add([_work(DAY, 1)])

    outcome = reschedule(STUDENT, DAY)

    assert outcome.action == RescheduleAction.BLOCK_DEFER
    assert task_store.get(outcome.moved_task_ids[0]).status == TaskStatus.DEFERRED  # type: ignore[union-attr]


def test_horizon_exceeded_rolls_back(database, telemetry_events) -> None:
    policy_store.upsert(STUDENT, SchedulePolicy(student_id=STUDENT, lookahead_days=2))
    task_store.add([_work(DAY, 1), _work(DAY, 2), _rest(_day(1)), _rest(_day(2))])

    with pytest.raises(HorizonExceeded):
        reschedule(STUDENT, DAY)

    tasks = task_store.tasks_on(STUDENT, DAY)
    assert len(tasks) == 2
    assert {task.status for task in tasks} == {TaskStatus.NORMAL}
    assert _audit(DAY, _day(5)) == []
    failures = [event for event in telemetry_events if event.name == "reschedule_failed"]
    assert failures and failures[0].payload["error_type"] == "HorizonExceeded"


def test_over_cap_destination_is_flagged(database, telemetry_events) -> None:
    policy_store.upsert(STUDENT, SchedulePolicy(student_id=STUDENT, daily_task_cap=2))
    task_store.add([_work(DAY, 1), _work(_day(1), 1), _work(_day(1), 2)])

    outcome = reschedule(STUDENT, DAY)

    assert outcome.over_cap is True
    assert len(task_store.tasks_on(STUDENT, _day(1))) == 3
    assert "daily_cap_exceeded" in [event.name for event in telemetry_events]


def test_next_work_date_never_lands_on_rest_or_earlier(database) -> None:
    task_store.add([_rest(_day(1)), _rest(_day(2)), _rest(_day(3))])

    resolved = calendar_view.next_work_date(STUDENT, DAY)

    assert resolved == _day(4)
    assert resolved > DAY
    assert not calendar_view.is_non_work_day(STUDENT, resolved)


def _locked_error() -> OperationalError:
    return OperationalError("UPDATE tasks", {}, sqlite3.OperationalError("database is locked"))


def test_transaction_conflict_is_retried_once(database) -> None:
    task_store.add([_work(DAY, 1)])
    attempts: List[int] = []

    @contextmanager
    def flaky_scope():
        attempts.append(1)
        if len(attempts) == 1:
            raise _locked_error()
        with session_scope() as session:
            yield session

    engine = RescheduleEngine(session_factory=flaky_scope)
    outcome = engine.reschedule(STUDENT, DAY)

    assert len(attempts) == 2
    assert outcome.action == RescheduleAction.INDIVIDUAL_CARRY_OVER


def test_repeated_conflict_surfaces(database) -> None:
    @contextmanager
    def always_locked():
        raise _locked_error()
        yield  # pragma: no cover

    engine = RescheduleEngine(session_factory=always_locked)
    with pytest.raises(TransactionConflict):
        engine.reschedule(STUDENT, DAY)


def test_blank_student_is_rejected(database) -> None:
    with pytest.raises(ValueError):
        reschedule("  ", DAY)


def test_concurrent_closeouts_for_one_student_do_not_interleave(database) -> None:
    policy_store.upsert(STUDENT, SchedulePolicy(student_id=STUDENT))
    task_store.add([_work(DAY, index) for index in range(1, 4)])
    barrier = threading.Barrier(2)
    outcomes: List[RescheduleOutcome] = []
    errors: List[BaseException] = []

    def run() -> None:
        engine = RescheduleEngine()
        barrier.wait()
        try:
            outcomes.append(engine.reschedule(STUDENT, DAY))
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    workers = [threading.Thread(target=run) for _ in range(2)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=60)

    assert errors == []
    assert sorted((outcome.action.value, outcome.skipped_reason or "") for outcome in outcomes) == [
        ("block_defer", ""),
        ("no_action", "already_processed"),
    ]
    assert len(_audit()) == 4
    assert len(task_store.tasks_on(STUDENT, _day(1))) == 3


def test_remove_task_waits_for_the_student_lock(database) -> None:
    task_store.add([_work(DAY, 1)])
    task_id = f"{STUDENT}-{DAY.isoformat()}-1"
    engine = RescheduleEngine()
    removed: List[Task] = []

    worker = threading.Thread(target=lambda: removed.append(engine.remove_task(task_id)))
    with engine._locks.hold(STUDENT):
        worker.start()
        worker.join(timeout=0.3)
        assert worker.is_alive()
        assert task_store.get(task_id) is not None
    worker.join(timeout=30)

    assert [task.id for task in removed] == [task_id]
    assert task_store.get(task_id) is None
    assert len(engine._locks) == 0


def test_student_locks_are_released_after_use(database) -> None:
    task_store.add([_work(DAY, 1), _work(DAY, 1, student="st002")])
    engine = RescheduleEngine()

    with engine._locks.hold(STUDENT):
        assert len(engine._locks) == 1
    engine.reschedule(STUDENT, DAY)
    engine.reschedule("st002", DAY)

    assert len(engine._locks) == 0
