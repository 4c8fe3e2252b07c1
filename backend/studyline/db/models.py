"""ORM models backing the task ledger, scheduling policies and audit trail."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class TaskModel(TimestampMixin, Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_student_date", "student_id", "task_date"),
        Index("ix_tasks_date_completed", "task_date", "completed"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    task_date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(Text, default="", nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="normal", nullable=False)
    original_date: Mapped[date] = mapped_column(Date, nullable=False)
    defer_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


class SchedulePolicyModel(TimestampMixin, Base):
    __tablename__ = "schedule_policies"

    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    daily_task_cap: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    carry_over_threshold: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    lookahead_days: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    cutoff_time: Mapped[time] = mapped_column(Time, default=time(23, 59), nullable=False)


class ScheduleAuditEntryModel(Base):
    __tablename__ = "schedule_audit_entries"
    __table_args__ = (
        Index("ix_schedule_audit_student_from", "student_id", "moved_from"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    original_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    moved_from: Mapped[date] = mapped_column(Date, nullable=False)
    moved_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


class LeaveRecordModel(Base):
    __tablename__ = "leave_records"
    __table_args__ = (
        UniqueConstraint("student_id", "leave_date", name="uq_leave_student_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    leave_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


__all__ = [
    "LeaveRecordModel",
    "ScheduleAuditEntryModel",
    "SchedulePolicyModel",
    "TaskModel",
]
