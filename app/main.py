import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException

from app.db import engine
from app.errors import ApiError, error_response
from app.logging_utils import setup_json_logging
from app.routers import admin, attendance
from app.services.local_time import attendance_timezone, utcnow
from app.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from app.services.system_config import get_config_store
from app.settings import get_cors_origins, get_settings, is_chat_webhook_enabled

setup_json_logging()
logger = logging.getLogger("app.request")
startup_logger = logging.getLogger("app.startup")
settings = get_settings()

HTTP_ERROR_CODES = {
    401: "INVALID_TOKEN",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "TOO_MANY_ATTEMPTS",
}


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _format_validation_errors(errors: Sequence[Any]) -> str:
    parts: list[str] = []
    for item in errors:
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts) or "Request validation failed."


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = "system"
    request.state.actor_id = "system"

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        # Clock endpoints set event_id so a request line can be traced to the stored event.
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                "actor": request.state.actor,
                "actor_id": request.state.actor_id,
                "user_id": getattr(request.state, "user_id", None),
                "event_id": getattr(request.state, "event_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "api_error",
            extra={"request_id": getattr(request.state, "request_id", "unknown"), "code": exc.code},
        )
    return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=_format_validation_errors(exc.errors()),
    )


@app.exception_handler(IntegrityError)
async def handle_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning(
        "integrity_conflict",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "error": str(exc.orig),
        },
    )
    return error_response(
        request,
        status_code=409,
        code="CONFLICT",
        message="The change conflicts with an existing record.",
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(attendance.router)
app.include_router(admin.router)


def _schema_guard_not_run() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=utcnow(),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


@app.on_event("startup")
async def run_schema_guard() -> None:
    if not settings.schema_guard_enabled:
        return
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    startup_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@app.on_event("startup")
async def load_system_config() -> None:
    if not settings.seed_config_on_startup:
        return
    store = get_config_store()
    created = await asyncio.to_thread(store.seed_defaults)
    loaded = await asyncio.to_thread(store.load_all)
    startup_logger.info("config_store_ready", extra={"seeded": len(created), "loaded": loaded})


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _schema_guard_not_run())
    # A disabled guard never marks the service degraded.
    degraded = settings.schema_guard_enabled and not schema_guard_result.ok
    return {
        "status": "degraded" if degraded else "ok",
        "timezone": attendance_timezone().key,
        "schema_guard": schema_guard_result.to_dict(),
        "config_keys_cached": len(get_config_store().get_all()),
        "chat_webhook_enabled": is_chat_webhook_enabled(),
    }
