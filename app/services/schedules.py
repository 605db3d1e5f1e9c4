from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, time
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ApiError, InvalidInputError, InvalidStateError, NotFoundError
from app.models import InternshipTerm, TermStatus, User
from app.services.local_time import parse_hhmm

logger = logging.getLogger("app.schedules")

WEEKDAY_NAMES: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


@dataclass(frozen=True, slots=True)
class DaySchedule:
    start: time
    end: time


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def parse_weekly_schedule(raw: Mapping[str, Any] | None) -> dict[str, DaySchedule]:
    """Validate a stored ``base_schedule`` and turn it into ``DaySchedule`` entries.

    Days that are missing or mapped to ``None`` are non-workdays. Raises
    ``ValueError`` for unknown weekday names, malformed ``HH:MM`` strings or an
    end time that is not after the start time.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValueError("base_schedule must be an object keyed by weekday name")

    parsed: dict[str, DaySchedule] = {}
    for raw_name, entry in raw.items():
        name = str(raw_name).strip().lower()
        if name not in WEEKDAY_NAMES:
            raise ValueError(f"Unknown weekday in schedule: {raw_name!r}")
        if entry is None:
            continue
        if not isinstance(entry, Mapping):
            raise ValueError(f"Schedule entry for {name} must have start and end")
        start = parse_hhmm(entry.get("start"))
        end = parse_hhmm(entry.get("end"))
        if end <= start:
            raise ValueError(f"Schedule end must be after start on {name}")
        parsed[name] = DaySchedule(start=start, end=end)
    return parsed


def resolve_best_term(terms: list[InternshipTerm], *, day: date) -> InternshipTerm | None:
    """Pick the confirmed term covering ``day``.

    Overlaps are rejected on write, but older data may still contain them: the
    term with the latest start date wins, then the most recently updated, then
    the highest id.
    """
    applicable = [
        term
        for term in terms
        if term.status == TermStatus.CONFIRMED and term.start_date <= day <= term.end_date
    ]
    if not applicable:
        return None

    applicable.sort(
        key=lambda item: (
            item.start_date.toordinal(),
            item.updated_at.timestamp() if item.updated_at else 0.0,
            item.id or 0,
        ),
        reverse=True,
    )
    if len(applicable) > 1:
        logger.warning(
            "overlapping_terms_resolved",
            extra={
                "user_id": applicable[0].user_id,
                "day": day.isoformat(),
                "term_ids": [item.id for item in applicable],
                "selected_term_id": applicable[0].id,
            },
        )
    return applicable[0]


def list_confirmed_terms_in_range(
    db: Session,
    *,
    user_id: int,
    start_date: date,
    end_date: date,
) -> list[InternshipTerm]:
    return list(
        db.scalars(
            select(InternshipTerm)
            .where(
                InternshipTerm.user_id == user_id,
                InternshipTerm.status == TermStatus.CONFIRMED,
                InternshipTerm.start_date <= end_date,
                InternshipTerm.end_date >= start_date,
            )
            .order_by(InternshipTerm.id.asc())
        ).all()
    )


def current_schedule(db: Session, *, user_id: int, day: date) -> InternshipTerm | None:
    terms = list_confirmed_terms_in_range(db, user_id=user_id, start_date=day, end_date=day)
    return resolve_best_term(terms, day=day)


def load_weekly_schedule(term: InternshipTerm | None) -> dict[str, DaySchedule] | None:
    if term is None:
        return None
    try:
        return parse_weekly_schedule(term.base_schedule)
    except ValueError as exc:
        logger.error(
            "schedule_term_invalid",
            extra={"term_id": term.id, "user_id": term.user_id, "error": str(exc)},
        )
        raise ApiError(
            status_code=500,
            code="SCHEDULE_CONFIG_INVALID",
            message=f"Schedule term {term.id} is malformed: {exc}",
        ) from exc


def list_user_terms(db: Session, *, user_id: int) -> list[InternshipTerm]:
    return list(
        db.scalars(
            select(InternshipTerm)
            .where(InternshipTerm.user_id == user_id)
            .order_by(InternshipTerm.start_date.desc(), InternshipTerm.id.desc())
        ).all()
    )


def create_term(
    db: Session,
    *,
    user_id: int,
    start_date: date,
    end_date: date,
    status: TermStatus,
    base_schedule: Mapping[str, Any],
) -> InternshipTerm:
    if db.get(User, user_id) is None:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found.")
    if end_date < start_date:
        raise InvalidInputError(code="INVALID_DATE_RANGE", message="end_date must be on or after start_date.")
    try:
        parsed = parse_weekly_schedule(base_schedule)
    except ValueError as exc:
        raise InvalidInputError(code="INVALID_SCHEDULE", message=str(exc)) from exc

    if status == TermStatus.CONFIRMED:
        overlapping = list_confirmed_terms_in_range(
            db,
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
        )
        if overlapping:
            raise InvalidStateError(
                code="TERM_OVERLAP",
                message="A confirmed term already covers part of this date range.",
            )

    normalized = {
        name: {"start": entry.start.strftime("%H:%M"), "end": entry.end.strftime("%H:%M")}
        for name, entry in parsed.items()
    }
    term = InternshipTerm(
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
        base_schedule=normalized,
    )
    db.add(term)
    db.commit()
    db.refresh(term)
    logger.info(
        "schedule_term_created",
        extra={"term_id": term.id, "user_id": user_id, "status": status.value},
    )
    return term
