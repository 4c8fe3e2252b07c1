from __future__ import annotations

from datetime import time

import pytest

from studyline.db.session import session_scope
from studyline.errors import PolicyInvalid
from studyline.repositories.policies import schedule_policies
from studyline.schedule_models import SchedulePolicy
from studyline.stores import policy_store


def test_missing_policy_returns_defaults(database) -> None:
    policy = policy_store.get("fresh-student")

    assert policy.student_id == "fresh-student"
    assert policy.daily_task_cap == 4
    assert policy.carry_over_threshold == 3
    assert policy.lookahead_days == 5
    assert policy.cutoff_time == time(23, 59)


def test_upsert_then_get_round_trips(database) -> None:
    stored = policy_store.upsert(
        " st010 ",
        SchedulePolicy(
            student_id="st010",
            daily_task_cap=6,
            carry_over_threshold=2,
            lookahead_days=7,
            cutoff_time=time(22, 30),
        ),
    )

    assert stored.student_id == "st010"
    assert policy_store.get("st010") == stored

    policy_store.upsert("st010", SchedulePolicy(student_id="st010", daily_task_cap=3))
    assert policy_store.get("st010").daily_task_cap == 3
    assert policy_store.get("st010").lookahead_days == 5


@pytest.mark.parametrize(
    "field",
    ["daily_task_cap", "carry_over_threshold", "lookahead_days"],
)
def test_non_positive_values_are_rejected(database, field: str) -> None:
    with pytest.raises(PolicyInvalid) as excinfo:
        policy_store.upsert("st011", SchedulePolicy(student_id="st011", **{field: 0}))

    assert field in str(excinfo.value)
    assert policy_store.get("st011") == SchedulePolicy(student_id="st011")


def test_lock_creates_default_row(database) -> None:
    with session_scope() as session:
        locked = schedule_policies.lock(session, "st012")
        assert locked == SchedulePolicy(student_id="st012")

    with session_scope(commit=False) as session:
        assert schedule_policies.get(session, "st012") == locked


def test_blank_student_id_is_rejected(database) -> None:
    with pytest.raises(ValueError):
        policy_store.get("   ")
