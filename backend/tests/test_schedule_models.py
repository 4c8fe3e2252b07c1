from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from studyline.schedule_models import (
    AuditAction,
    CLOSEOUT_ACTIONS,
    RescheduleAction,
    RescheduleOutcome,
    Task,
    TaskStatus,
    is_sentinel_category,
)


def test_original_date_defaults_to_task_date() -> None:
    task = Task(id="t1", student_id="st060", task_date=date(2025, 2, 3), category="art")

    assert task.original_date == date(2025, 2, 3)
    assert task.status == TaskStatus.NORMAL
    assert not task.is_sentinel


def test_explicit_original_date_is_kept() -> None:
    task = Task(
        id="t2",
        student_id="st060",
        task_date=date(2025, 2, 5),
        category="art",
        status=TaskStatus.DEFERRED,
        original_date=date(2025, 2, 3),
    )

    assert task.original_date == date(2025, 2, 3)


@pytest.mark.parametrize("status", [TaskStatus.DEFERRED, TaskStatus.CARRIED_OVER])
def test_day_markers_cannot_be_moved_states(status: TaskStatus) -> None:
    with pytest.raises(ValidationError):
        Task(id="rest-1", student_id="st060", task_date=date(2025, 2, 3), category="rest", status=status)


def test_sentinel_categories() -> None:
    assert is_sentinel_category("rest")
    assert is_sentinel_category("leave")
    assert not is_sentinel_category("Rest")
    assert not is_sentinel_category("math")


def test_only_closeout_writes_count_as_closeout_actions() -> None:
    assert AuditAction.DELETE.value not in CLOSEOUT_ACTIONS
    assert AuditAction.DEFER.value not in CLOSEOUT_ACTIONS
    assert AuditAction.MIDNIGHT_PROCESS.value in CLOSEOUT_ACTIONS


def test_outcome_counts_moved_tasks() -> None:
    outcome = RescheduleOutcome(
        student_id="st060",
        closing_date=date(2025, 2, 3),
        action=RescheduleAction.BLOCK_DEFER,
        moved_task_ids=["a", "b", "c"],
    )

    assert outcome.moved_count == 3
    assert outcome.model_dump(mode="json")["action"] == "block_defer"
