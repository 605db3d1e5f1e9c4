from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import get_db
from app.errors import ApiError
from app.models import AuditActorType, EventSource, RequestStatus
from app.schemas import (
    AccessTokenLoginRequest,
    AdvanceNoticeCreate,
    AdvanceNoticeRead,
    ClockActionRequest,
    ClockActionResponse,
    ClockInRequest,
    DaySummaryRead,
    LeaveRequestCreate,
    LeaveRequestRead,
    MonthSummaryResponse,
    NoticeStats,
    RequestStats,
    RetroRequestCreate,
    RetroRequestRead,
    ScoreRecordRead,
    TodayStatusResponse,
    TokenResponse,
    YEAR_MONTH_PATTERN,
)
from app.security import (
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_user,
)
from app.services.advance_notices import create_notice, list_user_notices, notice_stats
from app.services.attendance import (
    ClockResult,
    break_end,
    break_start,
    clock_in,
    clock_out,
    get_day_summary,
    get_month_summary,
    get_today_status,
)
from app.services.leaves import create_leave_request, leave_stats, list_leave_requests
from app.services.retro_clock import create_retro_request, list_retro_requests, retro_stats
from app.services.scores import get_monthly_score
from app.services.system_config import ConfigStore, get_config_store
from app.services.users import validate_access_token

router = APIRouter(tags=["attendance"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _clock_response(request: Request, result: ClockResult) -> ClockActionResponse:
    request.state.event_id = result.event.id
    return ClockActionResponse(
        message=result.message,
        event=result.event,
        summary=result.summary,
    )


@router.post("/api/auth/token", response_model=TokenResponse)
def exchange_access_token(
    payload: AccessTokenLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> TokenResponse:
    attempt_key = f"{_client_ip(request) or 'unknown'}:{payload.code}"
    ensure_login_attempt_allowed(attempt_key)
    user = validate_access_token(db, code=payload.code, token=payload.token)
    if user is None:
        register_login_failure(attempt_key)
        log_audit(
            db,
            actor_type=AuditActorType.INTERN,
            actor_id=payload.code,
            action="ACCESS_TOKEN_LOGIN",
            success=False,
            ip=_client_ip(request),
            request_id=_request_id(request),
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid code or access token.")

    register_login_success(attempt_key)
    token, expires_in = create_access_token(user_id=user.id, code=user.code, role=user.role.value)
    log_audit(
        db,
        actor_type=AuditActorType.INTERN,
        actor_id=user.code,
        action="ACCESS_TOKEN_LOGIN",
        entity_type="user",
        entity_id=str(user.id),
        ip=_client_ip(request),
        request_id=_request_id(request),
    )
    return TokenResponse(access_token=token, expires_in=expires_in)


@router.post("/api/clock/in", response_model=ClockActionResponse, status_code=status.HTTP_201_CREATED)
def clock_in_endpoint(
    payload: ClockInRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> ClockActionResponse:
    result = clock_in(
        db,
        user_id=claims["user_id"],
        mode=payload.mode,
        config=config,
        source=EventSource(payload.source),
        metadata=payload.metadata,
    )
    return _clock_response(request, result)


@router.post("/api/clock/out", response_model=ClockActionResponse, status_code=status.HTTP_201_CREATED)
def clock_out_endpoint(
    payload: ClockActionRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> ClockActionResponse:
    result = clock_out(
        db,
        user_id=claims["user_id"],
        config=config,
        source=EventSource(payload.source),
        metadata=payload.metadata,
    )
    return _clock_response(request, result)


@router.post("/api/clock/break-start", response_model=ClockActionResponse, status_code=status.HTTP_201_CREATED)
def break_start_endpoint(
    payload: ClockActionRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> ClockActionResponse:
    result = break_start(
        db,
        user_id=claims["user_id"],
        source=EventSource(payload.source),
        metadata=payload.metadata,
    )
    return _clock_response(request, result)


@router.post("/api/clock/break-end", response_model=ClockActionResponse, status_code=status.HTTP_201_CREATED)
def break_end_endpoint(
    payload: ClockActionRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> ClockActionResponse:
    result = break_end(
        db,
        user_id=claims["user_id"],
        config=config,
        source=EventSource(payload.source),
        metadata=payload.metadata,
    )
    return _clock_response(request, result)


@router.get("/api/me/today", response_model=TodayStatusResponse)
def me_today(
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> TodayStatusResponse:
    today = get_today_status(db, user_id=claims["user_id"])
    return TodayStatusResponse(
        day=today.day,
        current_status=today.current_status,
        events=today.events,
        summary=today.summary,
        schedule=today.schedule,
    )


@router.get("/api/me/day-summary", response_model=DaySummaryRead | None)
def me_day_summary(
    day: date = Query(alias="date"),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> DaySummaryRead | None:
    return get_day_summary(db, user_id=claims["user_id"], day=day)


@router.get("/api/me/month-summary", response_model=MonthSummaryResponse)
def me_month_summary(
    month: str = Query(pattern=YEAR_MONTH_PATTERN),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> MonthSummaryResponse:
    summary = get_month_summary(db, user_id=claims["user_id"], year_month=month)
    return MonthSummaryResponse(year_month=summary.year_month, summaries=summary.summaries, stats=summary.stats)


@router.get("/api/me/score", response_model=ScoreRecordRead)
def me_score(
    month: str = Query(pattern=YEAR_MONTH_PATTERN),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
) -> ScoreRecordRead:
    return get_monthly_score(db, user_id=claims["user_id"], year_month=month, config=config)


@router.post("/api/me/advance-notices", response_model=AdvanceNoticeRead, status_code=status.HTTP_201_CREATED)
def me_create_notice(
    payload: AdvanceNoticeCreate,
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> AdvanceNoticeRead:
    return create_notice(
        db,
        user_id=claims["user_id"],
        notice_type=payload.notice_type,
        expected_date=payload.expected_date,
        expected_minutes=payload.expected_minutes,
        reason=payload.reason,
        source=EventSource(payload.source),
    )


@router.get("/api/me/advance-notices", response_model=list[AdvanceNoticeRead])
def me_list_notices(
    is_used: bool | None = Query(default=None),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[AdvanceNoticeRead]:
    return list_user_notices(db, user_id=claims["user_id"], is_used=is_used)


@router.get("/api/me/advance-notices/stats", response_model=NoticeStats)
def me_notice_stats(
    month: str = Query(pattern=YEAR_MONTH_PATTERN),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> NoticeStats:
    return NoticeStats(**notice_stats(db, user_id=claims["user_id"], year_month=month))


@router.post("/api/me/leave-requests", response_model=LeaveRequestRead, status_code=status.HTTP_201_CREATED)
def me_create_leave(
    payload: LeaveRequestCreate,
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    return create_leave_request(
        db,
        user_id=claims["user_id"],
        start_ts=payload.start_ts,
        end_ts=payload.end_ts,
        leave_type=payload.type,
        reason=payload.reason,
        has_advance_notice=payload.has_advance_notice,
        attachment_ids=payload.attachment_ids,
    )


@router.get("/api/me/leave-requests", response_model=list[LeaveRequestRead])
def me_list_leaves(
    request_status: RequestStatus | None = Query(default=None, alias="status"),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    return list_leave_requests(db, user_id=claims["user_id"], status=request_status)


@router.get("/api/me/leave-requests/stats", response_model=RequestStats)
def me_leave_stats(
    month: str = Query(pattern=YEAR_MONTH_PATTERN),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> RequestStats:
    return RequestStats(**leave_stats(db, user_id=claims["user_id"], year_month=month))


@router.post("/api/me/retro-requests", response_model=RetroRequestRead, status_code=status.HTTP_201_CREATED)
def me_create_retro(
    payload: RetroRequestCreate,
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> RetroRequestRead:
    return create_retro_request(
        db,
        user_id=claims["user_id"],
        target_date=payload.target_date,
        target_time=payload.target_time,
        retro_type=payload.type,
        reason=payload.reason,
        improvement_plan=payload.improvement_plan,
        attachment_ids=payload.attachment_ids,
    )


@router.get("/api/me/retro-requests", response_model=list[RetroRequestRead])
def me_list_retro(
    request_status: RequestStatus | None = Query(default=None, alias="status"),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[RetroRequestRead]:
    return list_retro_requests(db, user_id=claims["user_id"], status=request_status)


@router.get("/api/me/retro-requests/stats", response_model=RequestStats)
def me_retro_stats(
    month: str = Query(pattern=YEAR_MONTH_PATTERN),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> RequestStats:
    return RequestStats(**retro_stats(db, user_id=claims["user_id"], year_month=month))
