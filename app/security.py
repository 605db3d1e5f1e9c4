from __future__ import annotations

import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from app.errors import ApiError
from app.settings import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLE_NAMES = frozenset({"ADMIN", "SYSTEM_ADMIN"})

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(key: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[key]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(key, None)


def ensure_login_attempt_allowed(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        if len(_FAILED_ATTEMPTS.get(key, deque())) >= _MAX_ATTEMPTS:
            raise ApiError(
                status_code=429,
                code="TOO_MANY_ATTEMPTS",
                message="Too many failed login attempts. Please try again later.",
            )


def register_login_failure(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        _FAILED_ATTEMPTS[key].append(now)


def register_login_success(key: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(key, None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        return False


def create_access_token(*, user_id: int, code: str, role: str) -> tuple[str, int]:
    settings = get_settings()
    now = _utcnow()
    expires_in = settings.access_token_minutes * 60
    claims = {
        "sub": str(user_id),
        "code": code,
        "role": role,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm="HS256"), expires_in


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")
    return payload


def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials)
    payload["user_id"] = int(payload["sub"])

    request.state.actor = "admin" if payload.get("role") in ADMIN_ROLE_NAMES else "intern"
    request.state.actor_id = str(payload.get("code") or payload["sub"])
    request.state.user_id = payload["user_id"]
    return payload


def require_admin(claims: dict[str, Any] = Depends(require_user)) -> dict[str, Any]:
    if claims.get("role") not in ADMIN_ROLE_NAMES:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return claims
