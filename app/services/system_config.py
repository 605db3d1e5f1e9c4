from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from numbers import Real
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.errors import ApiError, ConfigNotFoundError, InvalidInputError
from app.models import SystemConfig
from app.services.local_time import parse_hhmm

logger = logging.getLogger("app.config_store")

SYSTEM_ACTOR = "system"


@dataclass(frozen=True, slots=True)
class ConfigDefault:
    key: str
    value: Any
    category: str
    description: str


DEFAULT_CONFIGS: tuple[ConfigDefault, ...] = (
    ConfigDefault("work_start_time", "08:30", "schedule", "Standard start of the work day"),
    ConfigDefault("work_end_time", "18:00", "schedule", "Standard end of the work day"),
    ConfigDefault("lunch_start_time", "12:00", "schedule", "Lunch window start"),
    ConfigDefault("lunch_end_time", "13:30", "schedule", "Lunch window end"),
    ConfigDefault("late_grace_minutes", 5, "rules", "Minutes after the scheduled start before a clock-in is late"),
    ConfigDefault("advance_notice_minutes", 30, "rules", "Notice must be given N minutes before the start"),
    ConfigDefault("advance_notice_late_limit", 3, "rules", "Late days per month covered by the notice rate table"),
    ConfigDefault("late_points_with_notice", {"<=30": 0, ">30": -1}, "scoring", "Late deduction with advance notice"),
    ConfigDefault(
        "late_points_no_notice",
        {"<=30": -1, "30-60": -2, ">60": -3},
        "scoring",
        "Late deduction without advance notice",
    ),
    ConfigDefault("early_leave_first_time", -3, "scoring", "Deduction for the first early leave of the month"),
    ConfigDefault("early_leave_repeat", -5, "scoring", "Deduction for each further early leave"),
    ConfigDefault("retro_clock_limit", {"1-2": 0, "3-4": -1, ">=5": -2}, "scoring", "Retro clock deduction by count"),
    ConfigDefault("perfect_attendance_bonus", 3, "scoring", "Bonus for a month without issues"),
    ConfigDefault("token_expiry_days", 30, "security", "Personal access token lifetime in days"),
)

_DEFAULTS_BY_KEY: dict[str, ConfigDefault] = {item.key: item for item in DEFAULT_CONFIGS}


def _require_hhmm(value: Any) -> None:
    parse_hhmm(value)


def _require_non_negative_int(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError("must be a non-negative integer")


def _require_number(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValueError("must be a number")


def _require_point_table(*keys: str) -> Callable[[Any], None]:
    def _validate(value: Any) -> None:
        if not isinstance(value, dict):
            raise ValueError(f"must be an object with keys {', '.join(keys)}")
        missing = [key for key in keys if key not in value]
        if missing:
            raise ValueError(f"missing keys: {', '.join(missing)}")
        for key in keys:
            _require_number(value[key])

    return _validate


_VALIDATORS: dict[str, Callable[[Any], None]] = {
    "work_start_time": _require_hhmm,
    "work_end_time": _require_hhmm,
    "lunch_start_time": _require_hhmm,
    "lunch_end_time": _require_hhmm,
    "late_grace_minutes": _require_non_negative_int,
    "advance_notice_minutes": _require_non_negative_int,
    "advance_notice_late_limit": _require_non_negative_int,
    "late_points_with_notice": _require_point_table("<=30", ">30"),
    "late_points_no_notice": _require_point_table("<=30", "30-60", ">60"),
    "early_leave_first_time": _require_number,
    "early_leave_repeat": _require_number,
    "retro_clock_limit": _require_point_table("1-2", "3-4", ">=5"),
    "perfect_attendance_bonus": _require_number,
    "token_expiry_days": _require_non_negative_int,
}


def validate_config_value(key: str, value: Any) -> None:
    validator = _VALIDATORS.get(key)
    if validator is None:
        return
    try:
        validator(value)
    except ValueError as exc:
        raise InvalidInputError(code="INVALID_CONFIG_VALUE", message=f"{key}: {exc}") from exc


# Keys validated together; the value maps each key to its partner.
_LUNCH_WINDOW_PARTNERS: dict[str, str] = {
    "lunch_start_time": "lunch_end_time",
    "lunch_end_time": "lunch_start_time",
}


def validate_lunch_window(lunch_start: Any, lunch_end: Any) -> None:
    try:
        start = parse_hhmm(lunch_start)
        end = parse_hhmm(lunch_end)
    except ValueError as exc:
        raise InvalidInputError(code="INVALID_CONFIG_VALUE", message=f"lunch window: {exc}") from exc
    if end < start:
        raise InvalidInputError(
            code="INVALID_CONFIG_VALUE",
            message=f"lunch_end_time {lunch_end} is before lunch_start_time {lunch_start}.",
        )


def _fetch_config_row(db: Session, key: str) -> SystemConfig | None:
    return db.scalar(select(SystemConfig).where(SystemConfig.key == key))


def _fetch_all_rows(db: Session, *, category: str | None = None) -> list[SystemConfig]:
    stmt = select(SystemConfig).order_by(SystemConfig.category.asc(), SystemConfig.key.asc())
    if category is not None:
        stmt = stmt.where(SystemConfig.category == category)
    return list(db.scalars(stmt).all())


def _decode(row: SystemConfig) -> Any:
    try:
        return json.loads(row.value)
    except (TypeError, ValueError) as exc:
        raise ApiError(
            status_code=500,
            code="CONFIG_INVALID",
            message=f"Configuration {row.key} is not valid JSON.",
        ) from exc


class ConfigStore:
    """Read-through cache over the ``system_configs`` table.

    Values are cached until :meth:`reload` or :meth:`set`; there is no TTL.
    Cache misses go to the database under a lock so concurrent cold reads load
    a key once.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._cache: dict[str, Any] = {}
        self._lock = threading.RLock()

    def seed_defaults(self, *, updated_by: str = SYSTEM_ACTOR) -> list[str]:
        created: list[str] = []
        with self._lock, self._session_factory() as db:
            for item in DEFAULT_CONFIGS:
                if _fetch_config_row(db, item.key) is not None:
                    continue
                db.add(
                    SystemConfig(
                        key=item.key,
                        value=json.dumps(item.value),
                        category=item.category,
                        description=item.description,
                        updated_by=updated_by,
                    )
                )
                created.append(item.key)
            if created:
                try:
                    db.commit()
                except IntegrityError:
                    # Another process seeded the same keys first.
                    db.rollback()
                    logger.warning("config_seed_conflict", extra={"keys": created})
                    return []
        for key in created:
            logger.info("config_seeded", extra={"key": key})
        return created

    def load_all(self) -> int:
        with self._lock, self._session_factory() as db:
            rows = _fetch_all_rows(db)
            for row in rows:
                try:
                    self._cache[row.key] = _decode(row)
                except ApiError:
                    logger.error("config_parse_failed", extra={"key": row.key})
        logger.info("config_loaded", extra={"count": len(rows)})
        return len(rows)

    def get(self, key: str) -> Any:
        if key in self._cache:
            return self._cache[key]
        with self._lock:
            if key in self._cache:
                return self._cache[key]
            with self._session_factory() as db:
                row = _fetch_config_row(db, key)
                if row is None:
                    raise ConfigNotFoundError(key)
                value = _decode(row)
            self._cache[key] = value
            return value

    def set(self, key: str, value: Any, updated_by: str) -> Any:
        validate_config_value(key, value)
        with self._lock, self._session_factory() as db:
            row = _fetch_config_row(db, key)
            if row is None:
                raise ConfigNotFoundError(key)
            partner = _LUNCH_WINDOW_PARTNERS.get(key)
            if partner is not None:
                self._check_lunch_window(db, key, value, partner)
            previous = _decode(row)
            row.value = json.dumps(value)
            row.updated_by = updated_by
            db.commit()
            self._cache[key] = value
        logger.info("config_updated", extra={"key": key, "updated_by": updated_by})
        return previous

    def _check_lunch_window(self, db: Session, key: str, value: Any, partner: str) -> None:
        if partner in self._cache:
            partner_value = self._cache[partner]
        else:
            partner_row = _fetch_config_row(db, partner)
            if partner_row is None:
                return
            partner_value = _decode(partner_row)
        if key == "lunch_start_time":
            validate_lunch_window(value, partner_value)
        else:
            validate_lunch_window(partner_value, value)

    def reload(self) -> int:
        with self._lock:
            self._cache.clear()
            return self.load_all()

    def get_by_category(self, category: str) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            rows = _fetch_all_rows(db, category=category)
            return [
                {"key": row.key, "value": _decode(row), "description": row.description}
                for row in rows
            ]

    def list_entries(self) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            return [
                {
                    "key": row.key,
                    "value": _decode(row),
                    "category": row.category,
                    "description": row.description,
                    "updated_by": row.updated_by,
                    "updated_at": row.updated_at,
                }
                for row in _fetch_all_rows(db)
            ]

    def get_all(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._cache)

    def describe(self, key: str) -> dict[str, Any]:
        with self._session_factory() as db:
            row = _fetch_config_row(db, key)
            if row is None:
                raise ConfigNotFoundError(key)
            return {
                "key": row.key,
                "value": _decode(row),
                "category": row.category,
                "description": row.description,
                "updated_by": row.updated_by,
                "updated_at": row.updated_at,
            }


def default_value(key: str) -> Any:
    item = _DEFAULTS_BY_KEY.get(key)
    return None if item is None else item.value


@lru_cache
def get_config_store() -> ConfigStore:
    return ConfigStore(SessionLocal)
