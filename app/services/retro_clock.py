from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.audit import log_audit
from app.errors import InvalidInputError, InvalidStateError, NotFoundError
from app.models import (
    AttendanceEvent,
    AuditActorType,
    DaySummary,
    EventSource,
    EventType,
    RequestStatus,
    RetroClockRequest,
    RetroClockType,
)
from app.services.day_summary import load_work_rules, recompute_day
from app.services.local_time import combine_local_utc, month_date_range, parse_hhmm
from app.services.users import get_active_user
from app.services.work_hours import ConfigReader

logger = logging.getLogger("app.retro_clock")

EVENT_TYPE_BY_RETRO_TYPE: dict[RetroClockType, EventType] = {
    RetroClockType.WORK_ONSITE_START: EventType.WORK_ONSITE_START,
    RetroClockType.WORK_ONSITE_END: EventType.WORK_ONSITE_END,
    RetroClockType.WORK_REMOTE_START: EventType.WORK_REMOTE_START,
    RetroClockType.WORK_REMOTE_END: EventType.WORK_REMOTE_END,
    RetroClockType.BREAK_START: EventType.BREAK_OFFSITE_START,
    RetroClockType.BREAK_END: EventType.BREAK_OFFSITE_END,
}


@dataclass
class RetroApproval:
    request: RetroClockRequest
    event: AttendanceEvent
    summary: DaySummary | None


def _required_text(value: str, *, field_name: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidInputError(code="FIELD_REQUIRED", message=f"{field_name} is required.")
    return cleaned


def create_retro_request(
    db: Session,
    *,
    user_id: int,
    target_date: date,
    target_time: str,
    retro_type: RetroClockType,
    reason: str,
    improvement_plan: str,
    attachment_ids: list[str] | None = None,
) -> RetroClockRequest:
    get_active_user(db, user_id)
    try:
        parsed_time = parse_hhmm(target_time)
    except ValueError as exc:
        raise InvalidInputError(code="INVALID_TIME", message="time must be formatted as HH:MM.") from exc

    request = RetroClockRequest(
        user_id=user_id,
        target_date=target_date,
        target_time=parsed_time,
        type=retro_type,
        reason=_required_text(reason, field_name="reason"),
        improvement_plan=_required_text(improvement_plan, field_name="improvement_plan"),
        attachment_ids=list(attachment_ids or []),
        status=RequestStatus.PENDING,
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info(
        "retro_request_created",
        extra={"request_id_db": request.id, "user_id": user_id, "target_date": target_date.isoformat()},
    )
    return request


def list_retro_requests(
    db: Session,
    *,
    user_id: int | None = None,
    status: RequestStatus | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[RetroClockRequest]:
    stmt = select(RetroClockRequest).options(selectinload(RetroClockRequest.user))
    if user_id is not None:
        stmt = stmt.where(RetroClockRequest.user_id == user_id)
    if status is not None:
        stmt = stmt.where(RetroClockRequest.status == status)
    if start_date is not None:
        stmt = stmt.where(RetroClockRequest.target_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(RetroClockRequest.target_date <= end_date)
    stmt = stmt.order_by(RetroClockRequest.created_at.desc(), RetroClockRequest.id.desc())
    return list(db.scalars(stmt).all())


def get_retro_request(db: Session, request_id: int) -> RetroClockRequest:
    request = db.get(RetroClockRequest, request_id)
    if request is None:
        raise NotFoundError(code="RETRO_REQUEST_NOT_FOUND", message="Retro clock request not found.")
    return request


def _ensure_pending(request: RetroClockRequest) -> None:
    if request.status != RequestStatus.PENDING:
        raise InvalidStateError(code="REQUEST_NOT_PENDING", message="Retro clock request is not pending.")


def approve_retro_request(
    db: Session,
    *,
    request_id: int,
    approver_id: int,
    config: ConfigReader,
    notes: str | None = None,
    request_trace_id: str | None = None,
) -> RetroApproval:
    """Approve a pending request and append its event at the target local date and time.

    The target day is recomputed afterwards, not the approval day.
    """
    request = get_retro_request(db, request_id)
    _ensure_pending(request)
    load_work_rules(config)

    event = AttendanceEvent(
        user_id=request.user_id,
        type=EVENT_TYPE_BY_RETRO_TYPE[request.type],
        ts_utc=combine_local_utc(request.target_date, request.target_time),
        source=EventSource.RETRO_APPROVED,
        related_request_id=request.id,
        event_metadata={
            "approved_by": approver_id,
            "reason": request.reason,
            "improvement_plan": request.improvement_plan,
        },
    )
    try:
        db.add(event)
        request.status = RequestStatus.APPROVED
        request.approver_id = approver_id
        request.review_notes = notes
        db.flush()
        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id=str(approver_id),
            action="RETRO_REQUEST_APPROVED",
            entity_type="retro_clock_request",
            entity_id=str(request.id),
            details={"status": RequestStatus.APPROVED.value, "notes": notes, "event_id": event.id},
            request_id=request_trace_id,
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(request)
    db.refresh(event)

    summary = recompute_day(db, user_id=request.user_id, day=request.target_date, config=config)
    logger.info(
        "retro_request_approved",
        extra={
            "request_id_db": request.id,
            "user_id": request.user_id,
            "approver_id": approver_id,
            "event_id": event.id,
            "target_date": request.target_date.isoformat(),
        },
    )
    return RetroApproval(request=request, event=event, summary=summary)


def reject_retro_request(
    db: Session,
    *,
    request_id: int,
    approver_id: int,
    reason: str,
    request_trace_id: str | None = None,
) -> RetroClockRequest:
    request = get_retro_request(db, request_id)
    _ensure_pending(request)
    cleaned_reason = _required_text(reason, field_name="reason")
    try:
        request.status = RequestStatus.REJECTED
        request.approver_id = approver_id
        request.review_notes = cleaned_reason
        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id=str(approver_id),
            action="RETRO_REQUEST_REJECTED",
            entity_type="retro_clock_request",
            entity_id=str(request.id),
            details={"status": RequestStatus.REJECTED.value, "reason": cleaned_reason},
            request_id=request_trace_id,
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(request)
    logger.info("retro_request_rejected", extra={"request_id_db": request.id, "approver_id": approver_id})
    return request


def retro_stats(db: Session, *, user_id: int, year_month: str) -> dict[str, int]:
    try:
        start_date, end_date = month_date_range(year_month)
    except ValueError as exc:
        raise InvalidInputError(code="INVALID_MONTH", message="month must be formatted as YYYY-MM.") from exc
    requests = list_retro_requests(db, user_id=user_id, start_date=start_date, end_date=end_date)
    return {
        "total": len(requests),
        "approved": sum(1 for item in requests if item.status == RequestStatus.APPROVED),
        "rejected": sum(1 for item in requests if item.status == RequestStatus.REJECTED),
        "pending": sum(1 for item in requests if item.status == RequestStatus.PENDING),
    }
