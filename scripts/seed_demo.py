#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import date, datetime, timezone
from pathlib import Path

from sqlalchemy import select

from app.db import SessionLocal
from app.models import InternshipTerm, TermStatus, UserRole
from app.services.local_time import local_today
from app.services.schedules import create_term
from app.services.system_config import ConfigStore
from app.services.users import create_user, find_user_by_code, issue_access_token

STANDARD_WEEK = {
    "monday": {"start": "08:30", "end": "18:00"},
    "tuesday": {"start": "08:30", "end": "18:00"},
    "wednesday": {"start": "08:30", "end": "18:00"},
    "thursday": {"start": "08:30", "end": "18:00"},
    "friday": {"start": "08:30", "end": "18:00"},
}

DEMO_USERS = (
    {"code": "SYSTEM", "name": "System Administrator", "email": "system@timeclock.internal", "role": UserRole.SYSTEM_ADMIN},
    {"code": "ADMIN", "name": "Administrator", "email": "admin@example.com", "role": UserRole.ADMIN},
    {"code": "I86", "name": "Test Intern One", "email": "i86@example.com", "role": UserRole.INTERN, "discord_id": "test_discord_id_1"},
    {"code": "I87", "name": "Test Intern Two", "email": "i87@example.com", "role": UserRole.INTERN, "discord_id": "test_discord_id_2"},
)

# I86 has a class on Wednesday mornings.
DEMO_SCHEDULES = {
    "I86": {**STANDARD_WEEK, "wednesday": {"start": "10:00", "end": "18:00"}},
    "I87": STANDARD_WEEK,
}


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def _term_bounds(today: date) -> tuple[date, date]:
    start = today.replace(day=1)
    end_month = start.month + 3
    end_year = start.year + (end_month - 1) // 12
    end_month = (end_month - 1) % 12 + 1
    return start, date.fromordinal(date(end_year, end_month, 1).toordinal() - 1)


def run() -> dict:
    load_env_if_exists()
    admin_password = os.environ.get("DEMO_ADMIN_PASSWORD")
    if not admin_password:
        raise RuntimeError("DEMO_ADMIN_PASSWORD not found (.env or env vars).")

    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "config_seeded": [],
        "users": [],
        "terms": [],
        "intern_tokens": {},
    }

    store = ConfigStore(SessionLocal)
    report["config_seeded"] = store.seed_defaults()
    store.load_all()

    start_date, end_date = _term_bounds(local_today())
    with SessionLocal() as db:
        for entry in DEMO_USERS:
            user = find_user_by_code(db, entry["code"])
            if user is None:
                user = create_user(
                    db,
                    code=entry["code"],
                    name=entry["name"],
                    email=entry["email"],
                    role=entry["role"],
                    discord_id=entry.get("discord_id"),
                    password=admin_password if entry["role"] != UserRole.INTERN else None,
                )
                report["users"].append({"code": user.code, "status": "created"})
            else:
                report["users"].append({"code": user.code, "status": "exists"})

            schedule = DEMO_SCHEDULES.get(user.code)
            if schedule is None:
                continue

            existing_term = db.scalar(
                select(InternshipTerm.id).where(
                    InternshipTerm.user_id == user.id,
                    InternshipTerm.status == TermStatus.CONFIRMED,
                    InternshipTerm.start_date <= end_date,
                    InternshipTerm.end_date >= start_date,
                )
            )
            if existing_term is None:
                term = create_term(
                    db,
                    user_id=user.id,
                    start_date=start_date,
                    end_date=end_date,
                    status=TermStatus.CONFIRMED,
                    base_schedule=schedule,
                )
                report["terms"].append({"code": user.code, "term_id": term.id, "status": "created"})
            else:
                report["terms"].append({"code": user.code, "term_id": existing_term, "status": "exists"})

            token, expires_at = issue_access_token(db, user=user, config=store)
            report["intern_tokens"][user.code] = {"token": token, "expires_at": expires_at.isoformat()}

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
