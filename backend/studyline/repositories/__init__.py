"""SQLAlchemy repositories for the scheduler's tables."""

from .audit import ScheduleAuditRepository, schedule_audit
from .leave_records import LeaveRecordRepository, leave_records
from .policies import SchedulePolicyRepository, schedule_policies
from .tasks import TaskLedgerRepository, task_ledger

__all__ = [
    "LeaveRecordRepository",
    "ScheduleAuditRepository",
    "SchedulePolicyRepository",
    "TaskLedgerRepository",
    "leave_records",
    "schedule_audit",
    "schedule_policies",
    "task_ledger",
]
