from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from app.audit import log_audit
from app.errors import InvalidInputError, InvalidStateError, NotFoundError
from app.models import AdvanceNotice, AuditActorType, LeaveRequest, LeaveType, NoticeType, RequestStatus
from app.services.local_time import combine_local_utc, local_date_from_utc, month_date_range, normalize_ts
from app.services.users import get_active_user

logger = logging.getLogger("app.leaves")


def _leave_notice_filter(user_id: int, start_utc: datetime, end_utc: datetime) -> list:
    return [
        AdvanceNotice.user_id == user_id,
        AdvanceNotice.notice_type == NoticeType.LEAVE,
        AdvanceNotice.expected_date >= local_date_from_utc(start_utc),
        AdvanceNotice.expected_date <= local_date_from_utc(end_utc),
        AdvanceNotice.is_used.is_(False),
    ]


def create_leave_request(
    db: Session,
    *,
    user_id: int,
    start_ts: datetime,
    end_ts: datetime,
    leave_type: LeaveType,
    reason: str,
    has_advance_notice: bool = False,
    attachment_ids: list[str] | None = None,
) -> LeaveRequest:
    get_active_user(db, user_id)
    start_utc = normalize_ts(start_ts)
    end_utc = normalize_ts(end_ts)
    if end_utc <= start_utc:
        raise InvalidInputError(code="INVALID_DATE_RANGE", message="End time must be after start time.")
    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise InvalidInputError(code="FIELD_REQUIRED", message="reason is required.")

    advance_notice_at: datetime | None = None
    if has_advance_notice:
        # Linked here, consumed on approval.
        notice = db.scalar(
            select(AdvanceNotice)
            .where(*_leave_notice_filter(user_id, start_utc, end_utc))
            .order_by(AdvanceNotice.created_at.asc(), AdvanceNotice.id.asc())
            .limit(1)
        )
        if notice is not None:
            advance_notice_at = notice.created_at

    leave = LeaveRequest(
        user_id=user_id,
        start_ts_utc=start_utc,
        end_ts_utc=end_utc,
        type=leave_type,
        reason=cleaned_reason,
        has_advance_notice=advance_notice_at is not None,
        advance_notice_at=advance_notice_at,
        attachment_ids=list(attachment_ids or []),
        status=RequestStatus.PENDING,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)
    logger.info(
        "leave_request_created",
        extra={
            "leave_id": leave.id,
            "user_id": user_id,
            "leave_type": leave_type.value,
            "has_advance_notice": leave.has_advance_notice,
        },
    )
    return leave


def list_leave_requests(
    db: Session,
    *,
    user_id: int | None = None,
    status: RequestStatus | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[LeaveRequest]:
    stmt = select(LeaveRequest).options(selectinload(LeaveRequest.user))
    if user_id is not None:
        stmt = stmt.where(LeaveRequest.user_id == user_id)
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    if start_date is not None:
        stmt = stmt.where(LeaveRequest.start_ts_utc >= combine_local_utc(start_date, datetime.min.time()))
    if end_date is not None:
        stmt = stmt.where(LeaveRequest.start_ts_utc <= combine_local_utc(end_date, datetime.max.time()))
    stmt = stmt.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    return list(db.scalars(stmt).all())


def get_leave_request(db: Session, leave_id: int) -> LeaveRequest:
    leave = db.get(LeaveRequest, leave_id)
    if leave is None:
        raise NotFoundError(code="LEAVE_REQUEST_NOT_FOUND", message="Leave request not found.")
    return leave


def _ensure_pending(leave: LeaveRequest) -> None:
    if leave.status != RequestStatus.PENDING:
        raise InvalidStateError(code="REQUEST_NOT_PENDING", message="Leave request is not pending.")


def approve_leave_request(
    db: Session,
    *,
    leave_id: int,
    approver_id: int,
    notes: str | None = None,
    request_trace_id: str | None = None,
) -> LeaveRequest:
    leave = get_leave_request(db, leave_id)
    _ensure_pending(leave)
    consumed = 0
    try:
        leave.status = RequestStatus.APPROVED
        leave.approver_id = approver_id
        leave.review_notes = notes
        if leave.has_advance_notice:
            result = db.execute(
                update(AdvanceNotice)
                .where(*_leave_notice_filter(leave.user_id, leave.start_ts_utc, leave.end_ts_utc))
                .values(is_used=True)
                .execution_options(synchronize_session=False)
            )
            consumed = int(result.rowcount or 0)
        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id=str(approver_id),
            action="LEAVE_REQUEST_APPROVED",
            entity_type="leave_request",
            entity_id=str(leave.id),
            details={"status": RequestStatus.APPROVED.value, "notes": notes, "notices_used": consumed},
            request_id=request_trace_id,
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    logger.info(
        "leave_request_approved",
        extra={"leave_id": leave.id, "approver_id": approver_id, "notices_used": consumed},
    )
    return leave


def reject_leave_request(
    db: Session,
    *,
    leave_id: int,
    approver_id: int,
    reason: str,
    request_trace_id: str | None = None,
) -> LeaveRequest:
    leave = get_leave_request(db, leave_id)
    _ensure_pending(leave)
    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise InvalidInputError(code="FIELD_REQUIRED", message="reason is required.")
    try:
        leave.status = RequestStatus.REJECTED
        leave.approver_id = approver_id
        leave.review_notes = cleaned_reason
        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id=str(approver_id),
            action="LEAVE_REQUEST_REJECTED",
            entity_type="leave_request",
            entity_id=str(leave.id),
            details={"status": RequestStatus.REJECTED.value, "reason": cleaned_reason},
            request_id=request_trace_id,
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    logger.info("leave_request_rejected", extra={"leave_id": leave.id, "approver_id": approver_id})
    return leave


def leave_stats(db: Session, *, user_id: int, year_month: str) -> dict[str, int]:
    try:
        start_date, end_date = month_date_range(year_month)
    except ValueError as exc:
        raise InvalidInputError(code="INVALID_MONTH", message="month must be formatted as YYYY-MM.") from exc
    requests = list_leave_requests(db, user_id=user_id, start_date=start_date, end_date=end_date)
    return {
        "total": len(requests),
        "approved": sum(1 for item in requests if item.status == RequestStatus.APPROVED),
        "rejected": sum(1 for item in requests if item.status == RequestStatus.REJECTED),
        "pending": sum(1 for item in requests if item.status == RequestStatus.PENDING),
        "with_advance_notice": sum(1 for item in requests if item.has_advance_notice),
    }
