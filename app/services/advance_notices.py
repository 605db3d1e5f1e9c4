from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import InvalidInputError, InvalidStateError, NotFoundError
from app.models import AdvanceNotice, EventSource, NoticeType
from app.services.day_summary import find_unused_notice
from app.services.local_time import month_date_range
from app.services.users import get_active_user

logger = logging.getLogger("app.advance_notices")


def create_notice(
    db: Session,
    *,
    user_id: int,
    notice_type: NoticeType,
    expected_date: date,
    reason: str,
    expected_minutes: int | None = None,
    source: EventSource = EventSource.WEB,
) -> AdvanceNotice:
    get_active_user(db, user_id)
    if expected_minutes is not None and expected_minutes < 1:
        raise InvalidInputError(code="INVALID_EXPECTED_MINUTES", message="expected_minutes must be at least 1.")
    cleaned_reason = reason.strip()
    if not cleaned_reason:
        raise InvalidInputError(code="REASON_REQUIRED", message="reason is required.")

    notice = AdvanceNotice(
        user_id=user_id,
        notice_type=notice_type,
        expected_date=expected_date,
        expected_minutes=expected_minutes,
        reason=cleaned_reason,
        source=source,
        is_used=False,
    )
    db.add(notice)
    db.commit()
    db.refresh(notice)
    logger.info(
        "advance_notice_created",
        extra={
            "user_id": user_id,
            "notice_id": notice.id,
            "notice_type": notice_type.value,
            "expected_date": expected_date.isoformat(),
        },
    )
    return notice


def list_user_notices(db: Session, *, user_id: int, is_used: bool | None = None) -> list[AdvanceNotice]:
    stmt = select(AdvanceNotice).where(AdvanceNotice.user_id == user_id)
    if is_used is not None:
        stmt = stmt.where(AdvanceNotice.is_used.is_(is_used))
    return list(db.scalars(stmt.order_by(AdvanceNotice.created_at.desc(), AdvanceNotice.id.desc())).all())


def get_notice_for_date(db: Session, *, user_id: int, day: date) -> AdvanceNotice | None:
    return find_unused_notice(db, user_id=user_id, day=day)


def mark_notice_used(db: Session, *, notice_id: int, related_event_id: int | None = None) -> AdvanceNotice:
    notice = db.get(AdvanceNotice, notice_id)
    if notice is None:
        raise NotFoundError(code="NOTICE_NOT_FOUND", message="Advance notice not found.")
    if notice.is_used:
        raise InvalidStateError(code="NOTICE_ALREADY_USED", message="Advance notice was already used.")
    notice.is_used = True
    notice.related_event_id = related_event_id
    db.commit()
    db.refresh(notice)
    return notice


def notice_stats(db: Session, *, user_id: int, year_month: str) -> dict[str, int]:
    try:
        start_date, end_date = month_date_range(year_month)
    except ValueError as exc:
        raise InvalidInputError(code="INVALID_MONTH", message="month must be formatted as YYYY-MM.") from exc
    notices = list(
        db.scalars(
            select(AdvanceNotice).where(
                AdvanceNotice.user_id == user_id,
                AdvanceNotice.expected_date >= start_date,
                AdvanceNotice.expected_date <= end_date,
            )
        ).all()
    )
    return {
        "total": len(notices),
        "late": sum(1 for item in notices if item.notice_type == NoticeType.LATE),
        "leave": sum(1 for item in notices if item.notice_type == NoticeType.LEAVE),
        "used": sum(1 for item in notices if item.is_used),
        "unused": sum(1 for item in notices if not item.is_used),
    }
