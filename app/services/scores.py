from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.audit import log_audit
from app.errors import ApiError, InvalidInputError, NotFoundError
from app.models import (
    AuditActorType,
    RequestStatus,
    RetroClockRequest,
    ScoreDetail,
    ScoreReasonType,
    ScoreRecord,
    ScoreStatus,
    User,
)
from app.services.day_summary import list_summaries_in_range
from app.services.local_time import month_date_range
from app.services.locks import month_locks
from app.services.work_hours import ConfigReader
from app.settings import get_settings

logger = logging.getLogger("app.score")

BASE_SCORE = Decimal("100")
# Applied to every with-notice late day beyond advance_notice_late_limit.
OVER_NOTICE_LIMIT_POINTS = Decimal("-0.5")
ZERO = Decimal("0")


class DayFacts(Protocol):
    day_date: date
    is_late: bool
    late_minutes: int
    is_early_leave: bool
    early_leave_minutes: int
    is_absent: bool
    has_advance_notice: bool


def _points(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("points must be numeric")
    return Decimal(str(value))


def _table_points(table: Mapping[str, Any], key: str, default: str) -> Decimal:
    return _points(table.get(key, default))


@dataclass(frozen=True, slots=True)
class ScoreRules:
    with_notice_le_30: Decimal
    with_notice_gt_30: Decimal
    no_notice_le_30: Decimal
    no_notice_30_60: Decimal
    no_notice_gt_60: Decimal
    advance_notice_late_limit: int
    early_leave_first_time: Decimal
    early_leave_repeat: Decimal
    retro_1_2: Decimal
    retro_3_4: Decimal
    retro_5_plus: Decimal
    perfect_attendance_bonus: Decimal

    @classmethod
    def from_config(cls, config: ConfigReader) -> ScoreRules:
        with_notice = config.get("late_points_with_notice") or {}
        no_notice = config.get("late_points_no_notice") or {}
        retro = config.get("retro_clock_limit") or {}
        return cls(
            with_notice_le_30=_table_points(with_notice, "<=30", "0"),
            with_notice_gt_30=_table_points(with_notice, ">30", "-1"),
            no_notice_le_30=_table_points(no_notice, "<=30", "-1"),
            no_notice_30_60=_table_points(no_notice, "30-60", "-2"),
            no_notice_gt_60=_table_points(no_notice, ">60", "-3"),
            advance_notice_late_limit=int(config.get("advance_notice_late_limit")),
            early_leave_first_time=_points(config.get("early_leave_first_time")),
            early_leave_repeat=_points(config.get("early_leave_repeat")),
            retro_1_2=_table_points(retro, "1-2", "0"),
            retro_3_4=_table_points(retro, "3-4", "-1"),
            retro_5_plus=_table_points(retro, ">=5", "-2"),
            perfect_attendance_bonus=_points(config.get("perfect_attendance_bonus")),
        )


@dataclass(frozen=True, slots=True)
class ScoreLine:
    reason_type: ScoreReasonType
    points_delta: Decimal
    related_date: date | None = None
    has_advance_notice: bool = False
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class ScoreTotals:
    total_deduction: Decimal
    bonus_points: Decimal
    final_score: Decimal


def late_deduction_lines(days: Sequence[DayFacts], rules: ScoreRules) -> list[ScoreLine]:
    ordered = sorted((day for day in days if day.is_late), key=lambda item: item.day_date)
    lines: list[ScoreLine] = []

    with_notice = [day for day in ordered if day.has_advance_notice]
    for index, day in enumerate(with_notice):
        if index < rules.advance_notice_late_limit:
            points = rules.with_notice_gt_30 if day.late_minutes > 30 else rules.with_notice_le_30
        else:
            points = OVER_NOTICE_LIMIT_POINTS
        if points < 0:
            lines.append(
                ScoreLine(
                    reason_type=ScoreReasonType.LATE,
                    points_delta=points,
                    related_date=day.day_date,
                    has_advance_notice=True,
                    notes=f"Late {day.late_minutes} min (with advance notice, occurrence {index + 1})",
                )
            )

    for day in ordered:
        if day.has_advance_notice:
            continue
        if day.late_minutes <= 30:
            points = rules.no_notice_le_30
        elif day.late_minutes <= 60:
            points = rules.no_notice_30_60
        else:
            points = rules.no_notice_gt_60
        lines.append(
            ScoreLine(
                reason_type=ScoreReasonType.LATE,
                points_delta=points,
                related_date=day.day_date,
                has_advance_notice=False,
                notes=f"Late {day.late_minutes} min (no advance notice)",
            )
        )
    return lines


def early_leave_lines(days: Sequence[DayFacts], rules: ScoreRules) -> list[ScoreLine]:
    ordered = sorted((day for day in days if day.is_early_leave), key=lambda item: item.day_date)
    lines: list[ScoreLine] = []
    for index, day in enumerate(ordered):
        first = index == 0
        lines.append(
            ScoreLine(
                reason_type=ScoreReasonType.EARLY_LEAVE,
                points_delta=rules.early_leave_first_time if first else rules.early_leave_repeat,
                related_date=day.day_date,
                notes=f"Early leave {day.early_leave_minutes} min ({'1st time' if first else 'repeat'})",
            )
        )
    return lines


def retro_clock_lines(count: int, rules: ScoreRules) -> list[ScoreLine]:
    if count <= 0:
        return []
    if count <= 2:
        if rules.retro_1_2 >= 0:
            return []
        return [
            ScoreLine(
                reason_type=ScoreReasonType.RETRO,
                points_delta=rules.retro_1_2,
                notes=f"Retro clock {count} times (1-2 range)",
            )
        ]
    if count <= 4:
        rate, bracket = rules.retro_3_4, "3-4"
    else:
        rate, bracket = rules.retro_5_plus, ">=5"
    return [
        ScoreLine(
            reason_type=ScoreReasonType.RETRO,
            points_delta=rate * (count - 2),
            notes=f"Retro clock {count} times ({bracket} range)",
        )
    ]


def perfect_attendance_lines(days: Sequence[DayFacts], rules: ScoreRules) -> list[ScoreLine]:
    if not days:
        return []
    if any(day.is_late or day.is_early_leave or day.is_absent for day in days):
        return []
    return [
        ScoreLine(
            reason_type=ScoreReasonType.BONUS,
            points_delta=rules.perfect_attendance_bonus,
            notes="Perfect attendance bonus",
        )
    ]


def build_score_lines(days: Sequence[DayFacts], *, retro_count: int, rules: ScoreRules) -> list[ScoreLine]:
    return [
        *late_deduction_lines(days, rules),
        *early_leave_lines(days, rules),
        *retro_clock_lines(retro_count, rules),
        *perfect_attendance_lines(days, rules),
    ]


def summarize_points(deltas: Iterable[Decimal]) -> ScoreTotals:
    """Unclamped: the final score may drop below zero or exceed the base."""
    total_deduction = ZERO
    bonus_points = ZERO
    for delta in deltas:
        if delta < 0:
            total_deduction += abs(delta)
        elif delta > 0:
            bonus_points += delta
    return ScoreTotals(
        total_deduction=total_deduction,
        bonus_points=bonus_points,
        final_score=BASE_SCORE - total_deduction + bonus_points,
    )


def _validate_year_month(year_month: str) -> tuple[date, date]:
    try:
        return month_date_range(year_month)
    except ValueError as exc:
        raise InvalidInputError(code="INVALID_MONTH", message="month must be formatted as YYYY-MM.") from exc


def _score_rules(config: ConfigReader) -> ScoreRules:
    try:
        return ScoreRules.from_config(config)
    except (ValueError, TypeError, ArithmeticError) as exc:
        raise ApiError(status_code=500, code="CONFIG_INVALID", message=f"Scoring configuration is invalid: {exc}") from exc


def _get_record(db: Session, *, user_id: int, year_month: str) -> ScoreRecord | None:
    return db.scalar(
        select(ScoreRecord)
        .options(selectinload(ScoreRecord.details), selectinload(ScoreRecord.user))
        .where(ScoreRecord.user_id == user_id, ScoreRecord.year_month == year_month)
    )


def _get_or_create_record(db: Session, *, user_id: int, year_month: str) -> ScoreRecord:
    record = _get_record(db, user_id=user_id, year_month=year_month)
    if record is not None:
        return record
    record = ScoreRecord(
        user_id=user_id,
        year_month=year_month,
        base_score=BASE_SCORE,
        total_deduction=ZERO,
        bonus_points=ZERO,
        final_score=BASE_SCORE,
        status=ScoreStatus.CALCULATING,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _get_record(db, user_id=user_id, year_month=year_month)
        if existing is None:
            raise
        return existing
    db.refresh(record)
    return record


def count_approved_retro_requests(db: Session, *, user_id: int, start_date: date, end_date: date) -> int:
    return int(
        db.scalar(
            select(func.count(RetroClockRequest.id)).where(
                RetroClockRequest.user_id == user_id,
                RetroClockRequest.status == RequestStatus.APPROVED,
                RetroClockRequest.target_date >= start_date,
                RetroClockRequest.target_date <= end_date,
            )
        )
        or 0
    )


def _apply_totals(record: ScoreRecord, totals: ScoreTotals) -> None:
    record.base_score = BASE_SCORE
    record.total_deduction = totals.total_deduction
    record.bonus_points = totals.bonus_points
    record.final_score = totals.final_score


def _ensure_user(db: Session, user_id: int) -> None:
    if db.get(User, user_id) is None:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found.")


def _calculate(db: Session, *, user_id: int, year_month: str, config: ConfigReader) -> ScoreRecord:
    start_date, end_date = _validate_year_month(year_month)
    rules = _score_rules(config)
    record = _get_or_create_record(db, user_id=user_id, year_month=year_month)

    summaries = list_summaries_in_range(db, user_id=user_id, start_date=start_date, end_date=end_date)
    retro_count = count_approved_retro_requests(db, user_id=user_id, start_date=start_date, end_date=end_date)
    lines = build_score_lines(summaries, retro_count=retro_count, rules=rules)

    try:
        record.details.clear()
        db.flush()
        for line in lines:
            record.details.append(
                ScoreDetail(
                    reason_type=line.reason_type,
                    related_date=line.related_date,
                    points_delta=line.points_delta,
                    has_advance_notice=line.has_advance_notice,
                    notes=line.notes,
                )
            )
        totals = summarize_points(line.points_delta for line in lines)
        _apply_totals(record, totals)
        record.status = ScoreStatus.FINAL
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)

    logger.info(
        "monthly_score_calculated",
        extra={
            "user_id": user_id,
            "year_month": year_month,
            "day_count": len(summaries),
            "retro_count": retro_count,
            "detail_count": len(lines),
            "final_score": totals.final_score,
        },
    )
    return record


def calculate_monthly_score(db: Session, *, user_id: int, year_month: str, config: ConfigReader) -> ScoreRecord:
    """Rebuild every detail row of the month from day summaries and approved retro requests."""
    _ensure_user(db, user_id)
    with month_locks.hold((user_id, year_month)):
        return _calculate(db, user_id=user_id, year_month=year_month, config=config)


def get_monthly_score(db: Session, *, user_id: int, year_month: str, config: ConfigReader) -> ScoreRecord:
    """Return the month's record, calculating it first when missing or unfinished."""
    _validate_year_month(year_month)
    record = _get_record(db, user_id=user_id, year_month=year_month)
    if record is not None and record.status == ScoreStatus.FINAL:
        return record
    return calculate_monthly_score(db, user_id=user_id, year_month=year_month, config=config)


def get_all_scores_for_month(db: Session, *, year_month: str) -> list[ScoreRecord]:
    _validate_year_month(year_month)
    return list(
        db.scalars(
            select(ScoreRecord)
            .options(selectinload(ScoreRecord.details), selectinload(ScoreRecord.user))
            .where(ScoreRecord.year_month == year_month)
            .order_by(ScoreRecord.final_score.desc(), ScoreRecord.user_id.asc())
        ).all()
    )


def adjustment_reason_type(points: Decimal, *, tag_by_sign: bool) -> ScoreReasonType:
    if tag_by_sign and points < 0:
        return ScoreReasonType.MISCONDUCT
    return ScoreReasonType.BONUS


def adjust_score(
    db: Session,
    *,
    user_id: int,
    year_month: str,
    points: Decimal | int | float,
    reason: str,
    adjusted_by: str,
    config: ConfigReader,
    request_id: str | None = None,
) -> ScoreRecord:
    """Append a manual detail on top of the current details and recompute the totals.

    Status is left untouched; a later full recalculation drops the adjustment.
    """
    _ensure_user(db, user_id)
    delta = _points(points)
    with month_locks.hold((user_id, year_month)):
        record = _get_record(db, user_id=user_id, year_month=year_month)
        if record is None or record.status != ScoreStatus.FINAL:
            record = _calculate(db, user_id=user_id, year_month=year_month, config=config)

        previous_score = record.final_score
        reason_type = adjustment_reason_type(delta, tag_by_sign=get_settings().score_adjustment_tag_by_sign)
        try:
            record.details.append(
                ScoreDetail(
                    reason_type=reason_type,
                    points_delta=delta,
                    notes=f"Manual adjustment: {reason}",
                )
            )
            totals = summarize_points(detail.points_delta for detail in record.details)
            _apply_totals(record, totals)
            log_audit(
                db,
                actor_type=AuditActorType.ADMIN,
                actor_id=adjusted_by,
                action="SCORE_ADJUSTED",
                entity_type="score_record",
                entity_id=str(record.id),
                details={
                    "user_id": user_id,
                    "year_month": year_month,
                    "adjustment": str(delta),
                    "reason": reason,
                    "reason_type": reason_type.value,
                    "previous_score": str(previous_score),
                    "new_score": str(totals.final_score),
                },
                request_id=request_id,
                commit=False,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(record)

    logger.info(
        "monthly_score_adjusted",
        extra={
            "user_id": user_id,
            "year_month": year_month,
            "adjustment": delta,
            "final_score": record.final_score,
        },
    )
    return record
