"""Task ledger, scheduling policies, audit trail and leave records.

Revision ID: 20261019_01_scheduler_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_01_scheduler_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("student_id", sa.String(length=64), nullable=False),
        sa.Column("task_date", sa.Date(), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="normal"),
        sa.Column("original_date", sa.Date(), nullable=False),
        sa.Column("defer_reason", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_tasks_student_date", "tasks", ["student_id", "task_date"])
    op.create_index("ix_tasks_date_completed", "tasks", ["task_date", "completed"])

    op.create_table(
        "schedule_policies",
        sa.Column("student_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("daily_task_cap", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("carry_over_threshold", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("lookahead_days", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("cutoff_time", sa.Time(), nullable=False, server_default="23:59:00"),
    )

    op.create_table(
        "schedule_audit_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("student_id", sa.String(length=64), nullable=False),
        sa.Column("task_id", sa.String(length=128), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("original_date", sa.Date(), nullable=True),
        sa.Column("moved_from", sa.Date(), nullable=False),
        sa.Column("moved_to", sa.Date(), nullable=True),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_schedule_audit_student_from", "schedule_audit_entries", ["student_id", "moved_from"])

    op.create_table(
        "leave_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("student_id", sa.String(length=64), nullable=False),
        sa.Column("leave_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("student_id", "leave_date", name="uq_leave_student_date"),
    )


def downgrade() -> None:
    op.drop_table("leave_records")
    op.drop_index("ix_schedule_audit_student_from", table_name="schedule_audit_entries")
    op.drop_table("schedule_audit_entries")
    op.drop_table("schedule_policies")
    op.drop_index("ix_tasks_date_completed", table_name="tasks")
    op.drop_index("ix_tasks_student_date", table_name="tasks")
    op.drop_table("tasks")
