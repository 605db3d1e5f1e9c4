from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from urllib import error as urllib_error
from urllib import request as urllib_request

from app.models import AttendanceEvent, DaySummary, EventType, ScoreRecord
from app.services.local_time import attendance_timezone
from app.settings import get_settings, is_chat_webhook_enabled

logger = logging.getLogger("app.notifications")

_ACTION_LABELS: dict[EventType, str] = {
    EventType.WORK_ONSITE_START: "Clocked in (onsite)",
    EventType.WORK_REMOTE_START: "Clocked in (remote)",
    EventType.WORK_ONSITE_END: "Clocked out",
    EventType.WORK_REMOTE_END: "Clocked out",
    EventType.BREAK_OFFSITE_START: "Break started",
    EventType.BREAK_OFFSITE_END: "Break ended",
}

# Discord rejects message content longer than this.
_MAX_CONTENT_LENGTH = 2000


def _post_json(*, url: str, payload: dict[str, Any], timeout_seconds: int = 10) -> dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    request = urllib_request.Request(
        url=url,
        data=body,
        method="POST",
        headers={"Content-Type": "application/json"},
    )
    try:
        with urllib_request.urlopen(request, timeout=max(1, timeout_seconds)) as response:
            status_code = int(getattr(response, "status", 200) or 200)
            response_body = response.read(512).decode("utf-8", errors="ignore")
            return {
                "ok": 200 <= status_code < 300,
                "status_code": status_code,
                "error": None if 200 <= status_code < 300 else response_body,
            }
    except urllib_error.HTTPError as exc:
        error_body = exc.read(512).decode("utf-8", errors="ignore")
        return {"ok": False, "status_code": int(exc.code), "error": error_body or str(exc)}
    except (urllib_error.URLError, OSError, ValueError) as exc:
        return {"ok": False, "status_code": None, "error": str(exc)}


def _local_clock(ts_utc: datetime) -> str:
    return ts_utc.astimezone(attendance_timezone()).strftime("%H:%M:%S")


def format_clock_message(
    *,
    user_name: str,
    event: AttendanceEvent,
    summary: DaySummary | None = None,
) -> str:
    label = _ACTION_LABELS.get(event.type, event.type.value)
    message = f"✅ {user_name}: {label} at {_local_clock(event.ts_utc)}"
    if event.type in (EventType.WORK_ONSITE_END, EventType.WORK_REMOTE_END) and summary is not None:
        message += f"\nWork hours: {summary.total_work_seconds / 3600:.2f}h"
    return message


def format_monthly_ranking(year_month: str, records: Sequence[ScoreRecord]) -> str:
    if not records:
        return f"📊 Scores for {year_month}: no records."
    lines = [f"🏆 Score ranking for {year_month}"]
    for position, record in enumerate(records, start=1):
        name = record.user.name if record.user is not None else f"user {record.user_id}"
        lines.append(
            f"{position}. {name}: {record.final_score} "
            f"(-{record.total_deduction} / +{record.bonus_points})"
        )
    return "\n".join(lines)[:_MAX_CONTENT_LENGTH]


def send_chat_message(content: str) -> dict[str, Any]:
    """Post ``content`` to the chat webhook, or log it when no webhook is configured.

    Never raises: the outcome is returned and failures are logged.
    """
    if not is_chat_webhook_enabled():
        logger.info("chat_message_skipped", extra={"reason": "WEBHOOK_NOT_CONFIGURED", "content": content})
        return {"ok": False, "sent": False, "error": "WEBHOOK_NOT_CONFIGURED"}

    settings = get_settings()
    result = _post_json(
        url=(settings.chat_webhook_url or "").strip(),
        payload={"content": content[:_MAX_CONTENT_LENGTH]},
        timeout_seconds=settings.chat_webhook_timeout_seconds,
    )
    if result["ok"]:
        logger.info("chat_message_sent", extra={"status_code": result["status_code"]})
    else:
        logger.warning(
            "chat_message_failed",
            extra={"status_code": result["status_code"], "error": result["error"]},
        )
    return {**result, "sent": bool(result["ok"])}


def notify_clock_action(*, user_name: str, event: AttendanceEvent, summary: DaySummary | None = None) -> None:
    send_chat_message(format_clock_message(user_name=user_name, event=event, summary=summary))


def notify_monthly_ranking(year_month: str, records: Sequence[ScoreRecord]) -> dict[str, Any]:
    return send_chat_message(format_monthly_ranking(year_month, records))
