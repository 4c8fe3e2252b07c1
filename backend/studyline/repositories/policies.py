"""Database-backed per-student scheduling policies."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import SchedulePolicyModel
from ..errors import PolicyInvalid
from ..schedule_models import SchedulePolicy


def _normalize_student_id(student_id: str) -> str:
    normalized = student_id.strip()
    if not normalized:
        raise ValueError("Student id cannot be empty.")
    return normalized


class SchedulePolicyRepository:
    """Stores one policy row per student; a missing row means the defaults."""

    def get(self, session: Session, student_id: str) -> SchedulePolicy:
        normalized = _normalize_student_id(student_id)
        model = session.get(SchedulePolicyModel, normalized)
        if model is None:
            return SchedulePolicy(student_id=normalized)
        return self._to_domain(model)

    def upsert(self, session: Session, student_id: str, policy: SchedulePolicy) -> SchedulePolicy:
        normalized = _normalize_student_id(student_id)
        self._validate(policy)
        model = session.get(SchedulePolicyModel, normalized)
        if model is None:
            model = SchedulePolicyModel(student_id=normalized)
            session.add(model)
        model.daily_task_cap = policy.daily_task_cap
        model.carry_over_threshold = policy.carry_over_threshold
        model.lookahead_days = policy.lookahead_days
        model.cutoff_time = policy.cutoff_time
        session.flush()
        return self._to_domain(model)

    def lock(self, session: Session, student_id: str) -> SchedulePolicy:
        """Row-lock the student's policy, creating the default row on first need."""
        normalized = _normalize_student_id(student_id)
        stmt = (
            select(SchedulePolicyModel)
            .where(SchedulePolicyModel.student_id == normalized)
            .with_for_update()
        )
        model = session.execute(stmt).scalar_one_or_none()
        if model is None:
            defaults = SchedulePolicy(student_id=normalized)
            model = SchedulePolicyModel(
                student_id=normalized,
                daily_task_cap=defaults.daily_task_cap,
                carry_over_threshold=defaults.carry_over_threshold,
                lookahead_days=defaults.lookahead_days,
                cutoff_time=defaults.cutoff_time,
            )
            session.add(model)
        else:
            # SQLite ignores FOR UPDATE; the write takes its database lock.
            model.updated_at = datetime.now(timezone.utc)
        session.flush()
        return self._to_domain(model)

    @staticmethod
    def _validate(policy: SchedulePolicy) -> None:
        problems = []
        if policy.daily_task_cap < 1:
            problems.append(f"daily_task_cap must be >= 1 (got {policy.daily_task_cap})")
        if policy.carry_over_threshold < 1:
            problems.append(f"carry_over_threshold must be >= 1 (got {policy.carry_over_threshold})")
        if policy.lookahead_days < 1:
            problems.append(f"lookahead_days must be >= 1 (got {policy.lookahead_days})")
        if problems:
            raise PolicyInvalid("; ".join(problems))

    @staticmethod
    def _to_domain(model: SchedulePolicyModel) -> SchedulePolicy:
        return SchedulePolicy(
            student_id=model.student_id,
            daily_task_cap=model.daily_task_cap,
            carry_over_threshold=model.carry_over_threshold,
            lookahead_days=model.lookahead_days,
            cutoff_time=model.cutoff_time,
        )


schedule_policies = SchedulePolicyRepository()

__all__ = ["SchedulePolicyRepository", "schedule_policies"]
