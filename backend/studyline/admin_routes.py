"""Administrative endpoints for manual closeouts, policies and the audit trail."""

from __future__ import annotations

import logging
from datetime import date, time, timedelta
from typing import List, NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from .closeout import current_closing_date, get_schedule_status, run_daily_closeout
from .errors import HorizonExceeded, LeaveConflict, PolicyInvalid, TaskNotFound, TransactionConflict
from .rescheduler import reschedule_engine
from .schedule_models import (
    AuditEntry,
    CloseoutReport,
    LeaveOutcome,
    RescheduleOutcome,
    SchedulePolicy,
    ScheduleStatus,
    Task,
)
from .stores import audit_log, calendar_view, policy_store, task_store

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)

MAX_QUERY_SPAN_DAYS = 366


class RescheduleRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    closing_date: date


class CloseoutRequest(BaseModel):
    closing_date: Optional[date] = None


class PolicyUpdateRequest(BaseModel):
    daily_task_cap: int = 4
    carry_over_threshold: int = 3
    lookahead_days: int = 5
    cutoff_time: time = time(23, 59)


class LeaveRequest(BaseModel):
    leave_date: date
    reason: Optional[str] = Field(default=None, max_length=200)


class IntegrityReport(BaseModel):
    student_id: str
    start: date
    end: date
    mixed_days: List[date] = Field(default_factory=list)


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, HorizonExceeded):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, PolicyInvalid):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, (TransactionConflict, LeaveConflict)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, TaskNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    raise exc


def _resolve_range(start: Optional[date], end: Optional[date]) -> tuple[date, date]:
    end_date = end or current_closing_date()
    start_date = start or end_date - timedelta(days=30)
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="End date must not precede start date.",
        )
    if (end_date - start_date).days > MAX_QUERY_SPAN_DAYS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Date range cannot exceed {MAX_QUERY_SPAN_DAYS} days.",
        )
    return start_date, end_date


@router.post("/reschedule", response_model=RescheduleOutcome, status_code=status.HTTP_200_OK)
def manual_reschedule(payload: RescheduleRequest) -> RescheduleOutcome:
    try:
        return reschedule_engine.reschedule(payload.student_id, payload.closing_date)
    except (HorizonExceeded, TransactionConflict, ValueError) as exc:
        _raise_http(exc)


@router.post("/closeout", response_model=CloseoutReport, status_code=status.HTTP_200_OK)
def manual_closeout(payload: CloseoutRequest) -> CloseoutReport:
    return run_daily_closeout(payload.closing_date)


@router.get("/schedule/status", response_model=ScheduleStatus)
def schedule_status() -> ScheduleStatus:
    try:
        return get_schedule_status()
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/students/{student_id}/policy", response_model=SchedulePolicy)
def read_policy(student_id: str) -> SchedulePolicy:
    try:
        return policy_store.get(student_id)
    except ValueError as exc:
        _raise_http(exc)


@router.put("/students/{student_id}/policy", response_model=SchedulePolicy)
def write_policy(student_id: str, payload: PolicyUpdateRequest) -> SchedulePolicy:
    policy = SchedulePolicy(student_id=student_id.strip(), **payload.model_dump())
    try:
        stored = policy_store.upsert(student_id, policy)
    except ValueError as exc:
        _raise_http(exc)
    logger.info("Updated scheduling policy for student=%s", stored.student_id)
    return stored


@router.get("/students/{student_id}/audit", response_model=List[AuditEntry])
def read_audit(
    student_id: str,
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
) -> List[AuditEntry]:
    start_date, end_date = _resolve_range(start, end)
    return audit_log.query(student_id.strip(), start_date, end_date)


@router.get("/students/{student_id}/integrity", response_model=IntegrityReport)
def read_integrity(
    student_id: str,
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
) -> IntegrityReport:
    start_date, end_date = _resolve_range(start, end)
    normalized = student_id.strip()
    return IntegrityReport(
        student_id=normalized,
        start=start_date,
        end=end_date,
        mixed_days=calendar_view.mixed_days(normalized, start_date, end_date),
    )


@router.post("/students/{student_id}/leave", response_model=LeaveOutcome, status_code=status.HTTP_201_CREATED)
def request_leave(student_id: str, payload: LeaveRequest) -> LeaveOutcome:
    try:
        return reschedule_engine.request_leave(student_id, payload.leave_date, payload.reason)
    except (HorizonExceeded, TransactionConflict, ValueError) as exc:
        _raise_http(exc)


@router.get("/students/{student_id}/leave", response_model=List[date])
def list_leave(student_id: str) -> List[date]:
    return task_store.leave_dates(student_id.strip())


@router.delete("/tasks/{task_id}", response_model=Task)
def remove_task(task_id: str, reason: Optional[str] = Query(default=None, max_length=200)) -> Task:
    try:
        return reschedule_engine.remove_task(task_id, reason)
    except (TaskNotFound, TransactionConflict) as exc:
        _raise_http(exc)


__all__ = ["router"]
