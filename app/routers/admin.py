from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import get_db
from app.errors import ApiError
from app.models import AuditActorType, RequestStatus, UserRole
from app.schemas import (
    AccessTokenIssued,
    AdminLoginRequest,
    ConfigEntryRead,
    ConfigReloadResponse,
    ConfigUpdateRequest,
    LeaveRequestRead,
    RankingNotifyResponse,
    RequestApprove,
    RequestReject,
    RetroApprovalResponse,
    RetroRequestRead,
    ScoreAdjustRequest,
    ScoreRecalculateRequest,
    ScoreRecordRead,
    TermCreate,
    TermRead,
    TokenResponse,
    UserCreate,
    UserRead,
    YEAR_MONTH_PATTERN,
)
from app.security import (
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_admin,
)
from app.services.leaves import approve_leave_request, get_leave_request, list_leave_requests, reject_leave_request
from app.services.local_time import local_today
from app.services.notifications import notify_monthly_ranking
from app.services.retro_clock import (
    approve_retro_request,
    get_retro_request,
    list_retro_requests,
    reject_retro_request,
)
from app.services.schedules import create_term, current_schedule, list_user_terms
from app.services.scores import adjust_score, calculate_monthly_score, get_all_scores_for_month
from app.services.system_config import ConfigStore, get_config_store
from app.services.users import authenticate_admin, create_user, get_user, issue_access_token, list_users

router = APIRouter(tags=["admin"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _user_agent(request: Request) -> str | None:
    value = request.headers.get("user-agent")
    if not value:
        return None
    return value[:512]


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _admin_actor(claims: dict[str, Any]) -> str:
    return str(claims.get("code") or claims["sub"])


@router.post("/api/admin/auth/login", response_model=TokenResponse)
def admin_login(
    payload: AdminLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> TokenResponse:
    email = payload.email.strip().lower()
    ip = _client_ip(request)
    user_agent = _user_agent(request)
    request_id = _request_id(request)
    request.state.actor = "system"
    request.state.actor_id = "system"

    if ip:
        try:
            ensure_login_attempt_allowed(ip)
        except ApiError:
            log_audit(
                db,
                actor_type=AuditActorType.SYSTEM,
                actor_id=email,
                action="ADMIN_LOGIN_FAIL",
                success=False,
                ip=ip,
                user_agent=user_agent,
                details={"reason": "TOO_MANY_ATTEMPTS"},
                request_id=request_id,
            )
            raise

    user = authenticate_admin(db, email=email, password=payload.password)
    if user is None:
        if ip:
            register_login_failure(ip)
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=email,
            action="ADMIN_LOGIN_FAIL",
            success=False,
            ip=ip,
            user_agent=user_agent,
            details={"reason": "INVALID_CREDENTIALS"},
            request_id=request_id,
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")

    if ip:
        register_login_success(ip)
    token, expires_in = create_access_token(user_id=user.id, code=user.code, role=user.role.value)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=user.code,
        action="ADMIN_LOGIN_SUCCESS",
        entity_type="user",
        entity_id=str(user.id),
        ip=ip,
        user_agent=user_agent,
        request_id=request_id,
    )
    return TokenResponse(access_token=token, expires_in=expires_in)


@router.get("/api/admin/users", response_model=list[UserRead])
def admin_list_users(
    include_inactive: bool = Query(default=False),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[UserRead]:
    return list_users(db, include_inactive=include_inactive)


@router.post("/api/admin/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def admin_create_user(
    payload: UserCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> UserRead:
    if payload.role != UserRole.INTERN and not payload.password:
        raise ApiError(status_code=422, code="FIELD_REQUIRED", message="password is required for admin users.")
    user = create_user(
        db,
        code=payload.code,
        name=payload.name,
        email=payload.email,
        role=payload.role,
        discord_id=payload.discord_id,
        password=payload.password,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_actor(claims),
        action="USER_CREATED",
        entity_type="user",
        entity_id=str(user.id),
        details={"code": user.code, "role": user.role.value},
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        request_id=_request_id(request),
    )
    return user


@router.post("/api/admin/users/{user_id}/access-token", response_model=AccessTokenIssued)
def admin_issue_access_token(
    user_id: int,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> AccessTokenIssued:
    user = get_user(db, user_id)
    token, expires_at = issue_access_token(db, user=user, config=config)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_actor(claims),
        action="ACCESS_TOKEN_ISSUED",
        entity_type="user",
        entity_id=str(user.id),
        details={"expires_at": expires_at.isoformat()},
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        request_id=_request_id(request),
    )
    return AccessTokenIssued(user_id=user.id, token=token, expires_at=expires_at)


@router.get("/api/admin/users/{user_id}/terms", response_model=list[TermRead])
def admin_list_terms(
    user_id: int,
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[TermRead]:
    get_user(db, user_id)
    return list_user_terms(db, user_id=user_id)


@router.post("/api/admin/users/{user_id}/terms", response_model=TermRead, status_code=status.HTTP_201_CREATED)
def admin_create_term(
    user_id: int,
    payload: TermCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> TermRead:
    term = create_term(
        db,
        user_id=user_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=payload.status,
        base_schedule={
            name: (entry.model_dump() if entry is not None else None)
            for name, entry in payload.base_schedule.items()
        },
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_actor(claims),
        action="TERM_CREATED",
        entity_type="internship_term",
        entity_id=str(term.id),
        details={
            "user_id": user_id,
            "start_date": term.start_date.isoformat(),
            "end_date": term.end_date.isoformat(),
            "status": term.status.value,
        },
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        request_id=_request_id(request),
    )
    return term


@router.get("/api/admin/users/{user_id}/schedule", response_model=TermRead | None)
def admin_current_schedule(
    user_id: int,
    day: date | None = Query(default=None, alias="date"),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> TermRead | None:
    get_user(db, user_id)
    return current_schedule(db, user_id=user_id, day=day or local_today())


@router.get("/api/admin/config", response_model=list[ConfigEntryRead])
def admin_list_config(
    category: str | None = Query(default=None),
    _claims: dict[str, Any] = Depends(require_admin),
    config: ConfigStore = Depends(get_config_store),
) -> list[ConfigEntryRead]:
    if category:
        return [ConfigEntryRead(category=category, **item) for item in config.get_by_category(category)]
    return [ConfigEntryRead(**item) for item in config.list_entries()]


@router.get("/api/admin/config/{key}", response_model=ConfigEntryRead)
def admin_get_config(
    key: str,
    _claims: dict[str, Any] = Depends(require_admin),
    config: ConfigStore = Depends(get_config_store),
) -> ConfigEntryRead:
    return ConfigEntryRead(**config.describe(key))


@router.put("/api/admin/config/{key}", response_model=ConfigEntryRead)
def admin_update_config(
    key: str,
    payload: ConfigUpdateRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> ConfigEntryRead:
    actor = _admin_actor(claims)
    previous = config.set(key, payload.value, actor)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor,
        action="CONFIG_UPDATED",
        entity_type="system_config",
        entity_id=key,
        details={"previous": previous, "value": payload.value},
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        request_id=_request_id(request),
    )
    return ConfigEntryRead(**config.describe(key))


@router.post("/api/admin/config/reload", response_model=ConfigReloadResponse)
def admin_reload_config(
    _claims: dict[str, Any] = Depends(require_admin),
    config: ConfigStore = Depends(get_config_store),
) -> ConfigReloadResponse:
    return ConfigReloadResponse(loaded=config.reload())


@router.get("/api/admin/retro-requests", response_model=list[RetroRequestRead])
def admin_list_retro_requests(
    user_id: int | None = Query(default=None, ge=1),
    request_status: RequestStatus | None = Query(default=None, alias="status"),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[RetroRequestRead]:
    return list_retro_requests(
        db,
        user_id=user_id,
        status=request_status,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/api/admin/retro-requests/{request_id}", response_model=RetroRequestRead)
def admin_get_retro_request(
    request_id: int,
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> RetroRequestRead:
    return get_retro_request(db, request_id)


@router.post("/api/admin/retro-requests/{request_id}/approve", response_model=RetroApprovalResponse)
def admin_approve_retro_request(
    request_id: int,
    payload: RequestApprove,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> RetroApprovalResponse:
    approval = approve_retro_request(
        db,
        request_id=request_id,
        approver_id=claims["user_id"],
        config=config,
        notes=payload.notes,
        request_trace_id=_request_id(request),
    )
    request.state.event_id = approval.event.id
    return RetroApprovalResponse(request=approval.request, event=approval.event, summary=approval.summary)


@router.post("/api/admin/retro-requests/{request_id}/reject", response_model=RetroRequestRead)
def admin_reject_retro_request(
    request_id: int,
    payload: RequestReject,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> RetroRequestRead:
    return reject_retro_request(
        db,
        request_id=request_id,
        approver_id=claims["user_id"],
        reason=payload.reason,
        request_trace_id=_request_id(request),
    )


@router.get("/api/admin/leave-requests", response_model=list[LeaveRequestRead])
def admin_list_leave_requests(
    user_id: int | None = Query(default=None, ge=1),
    request_status: RequestStatus | None = Query(default=None, alias="status"),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    return list_leave_requests(
        db,
        user_id=user_id,
        status=request_status,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/api/admin/leave-requests/{leave_id}", response_model=LeaveRequestRead)
def admin_get_leave_request(
    leave_id: int,
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    return get_leave_request(db, leave_id)


@router.post("/api/admin/leave-requests/{leave_id}/approve", response_model=LeaveRequestRead)
def admin_approve_leave_request(
    leave_id: int,
    payload: RequestApprove,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    return approve_leave_request(
        db,
        leave_id=leave_id,
        approver_id=claims["user_id"],
        notes=payload.notes,
        request_trace_id=_request_id(request),
    )


@router.post("/api/admin/leave-requests/{leave_id}/reject", response_model=LeaveRequestRead)
def admin_reject_leave_request(
    leave_id: int,
    payload: RequestReject,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    return reject_leave_request(
        db,
        leave_id=leave_id,
        approver_id=claims["user_id"],
        reason=payload.reason,
        request_trace_id=_request_id(request),
    )


@router.get("/api/admin/scores", response_model=list[ScoreRecordRead])
def admin_list_scores(
    month: str = Query(pattern=YEAR_MONTH_PATTERN),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[ScoreRecordRead]:
    return get_all_scores_for_month(db, year_month=month)


@router.get("/api/admin/scores/user/{user_id}", response_model=ScoreRecordRead)
def admin_user_score(
    user_id: int,
    month: str = Query(pattern=YEAR_MONTH_PATTERN),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> ScoreRecordRead:
    return calculate_monthly_score(db, user_id=user_id, year_month=month, config=config)


@router.post("/api/admin/scores/recalculate", response_model=list[ScoreRecordRead])
def admin_recalculate_scores(
    payload: ScoreRecalculateRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> list[ScoreRecordRead]:
    if payload.user_id is not None:
        user_ids = [payload.user_id]
    else:
        user_ids = [user.id for user in list_users(db) if user.role == UserRole.INTERN]

    records = [
        calculate_monthly_score(db, user_id=user_id, year_month=payload.month, config=config)
        for user_id in user_ids
    ]
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_actor(claims),
        action="SCORES_RECALCULATED",
        entity_type="score_record",
        details={"year_month": payload.month, "user_ids": user_ids},
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        request_id=_request_id(request),
    )
    return records


@router.post("/api/admin/scores/adjust", response_model=ScoreRecordRead)
def admin_adjust_score(
    payload: ScoreAdjustRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> ScoreRecordRead:
    return adjust_score(
        db,
        user_id=payload.user_id,
        year_month=payload.month,
        points=payload.points,
        reason=payload.reason.strip(),
        adjusted_by=_admin_actor(claims),
        config=config,
        request_id=_request_id(request),
    )


@router.post("/api/admin/scores/notify-ranking", response_model=RankingNotifyResponse)
def admin_notify_ranking(
    month: str = Query(pattern=YEAR_MONTH_PATTERN),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> RankingNotifyResponse:
    result = notify_monthly_ranking(month, get_all_scores_for_month(db, year_month=month))
    return RankingNotifyResponse(ok=bool(result.get("ok")), sent=bool(result.get("sent")), error=result.get("error"))
