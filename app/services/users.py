from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import ApiError, NotFoundError
from app.models import User, UserRole
from app.security import hash_password, verify_password
from app.services.local_time import normalize_ts, utcnow
from app.services.work_hours import ConfigReader

logger = logging.getLogger("app.users")

ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SYSTEM_ADMIN})


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found.")
    return user


def get_active_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found or inactive.")
    return user


def find_user_by_code(db: Session, code: str) -> User | None:
    return db.scalar(select(User).where(User.code == code.strip()))


def list_users(db: Session, *, include_inactive: bool = False) -> list[User]:
    stmt = select(User).order_by(User.code.asc())
    if not include_inactive:
        stmt = stmt.where(User.is_active.is_(True))
    return list(db.scalars(stmt).all())


def create_user(
    db: Session,
    *,
    code: str,
    name: str,
    email: str,
    role: UserRole = UserRole.INTERN,
    discord_id: str | None = None,
    password: str | None = None,
) -> User:
    user = User(
        code=code.strip(),
        name=name.strip(),
        email=email.strip().lower(),
        role=role,
        is_active=True,
        discord_id=(discord_id or "").strip() or None,
        password_hash=hash_password(password) if password else None,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="USER_ALREADY_EXISTS",
            message="A user with this code, email or Discord id already exists.",
        ) from exc
    db.refresh(user)
    logger.info("user_created", extra={"user_id": user.id, "code": user.code, "role": role.value})
    return user


def issue_access_token(db: Session, *, user: User, config: ConfigReader) -> tuple[str, datetime]:
    expiry_days = int(config.get("token_expiry_days"))
    token = secrets.token_hex(32)
    expires_at = utcnow() + timedelta(days=expiry_days)
    user.access_token = token
    user.token_expires_at = expires_at
    db.commit()
    logger.info("access_token_issued", extra={"user_id": user.id, "expires_at": expires_at})
    return token, expires_at


def validate_access_token(db: Session, *, code: str, token: str) -> User | None:
    user = find_user_by_code(db, code)
    if user is None or not user.is_active or not user.access_token:
        return None
    if not hmac.compare_digest(user.access_token, token):
        return None
    if user.token_expires_at is not None and utcnow() > normalize_ts(user.token_expires_at):
        return None
    return user


def authenticate_admin(db: Session, *, email: str, password: str) -> User | None:
    user = db.scalar(select(User).where(User.email == email.strip().lower()))
    if user is None or not user.is_active or user.role not in ADMIN_ROLES:
        return None
    if not user.password_hash or not verify_password(password, user.password_hash):
        return None
    return user
