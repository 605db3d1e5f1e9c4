from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.models import AuditActorType, AuditLog
from app.services.local_time import utcnow

logger = logging.getLogger("app.audit")


def _log_fields(
    *,
    action: str,
    actor_type: AuditActorType,
    actor_id: str,
    entity_type: str | None,
    entity_id: str | None,
    success: bool,
    request_id: str | None,
) -> dict[str, Any]:
    return {
        "request_id": request_id,
        "action": action,
        "actor_type": actor_type.value,
        "actor_id": actor_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "success": success,
    }


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
    ip: str | None = None,
    user_agent: str | None = None,
    request_id: str | None = None,
    commit: bool = True,
) -> None:
    """Record an audit row.

    With ``commit=False`` the row joins the caller's transaction and is only
    persisted when the caller commits; otherwise the row is committed here and
    a failed write is logged instead of raised.
    """
    fields = _log_fields(
        action=action,
        actor_type=actor_type,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        success=success,
        request_id=request_id,
    )
    db.add(
        AuditLog(
            ts_utc=utcnow(),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            ip=ip,
            user_agent=user_agent,
            success=success,
            details=details or {},
        )
    )
    if commit:
        try:
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("audit_log_write_failed", extra=fields)
            return

    logger.info("audit_event", extra={**fields, "details": details or {}})
