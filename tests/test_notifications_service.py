from __future__ import annotations

import unittest
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from app.models import AttendanceEvent, DaySummary, EventType
from app.services.notifications import (
    format_clock_message,
    format_monthly_ranking,
    notify_clock_action,
    send_chat_message,
)


def _event(event_type: EventType) -> AttendanceEvent:
    # 09:00 Asia/Taipei.
    return AttendanceEvent(id=1, user_id=7, type=event_type, ts_utc=datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc))


class FormatMessageTests(unittest.TestCase):
    def test_clock_in_message_uses_local_time(self) -> None:
        message = format_clock_message(user_name="Amy", event=_event(EventType.WORK_ONSITE_START))

        self.assertIn("Amy: Clocked in (onsite) at 09:00:00", message)
        self.assertNotIn("Work hours", message)

    def test_clock_out_message_includes_work_hours(self) -> None:
        summary = DaySummary(user_id=7, total_work_seconds=28800)

        message = format_clock_message(user_name="Amy", event=_event(EventType.WORK_REMOTE_END), summary=summary)

        self.assertIn("Clocked out", message)
        self.assertIn("Work hours: 8.00h", message)

    def test_monthly_ranking_lists_records_in_order(self) -> None:
        records = [
            SimpleNamespace(
                user=SimpleNamespace(name="Amy"),
                user_id=7,
                final_score=Decimal("103"),
                total_deduction=Decimal("0"),
                bonus_points=Decimal("3"),
            ),
            SimpleNamespace(
                user=None,
                user_id=8,
                final_score=Decimal("94"),
                total_deduction=Decimal("6"),
                bonus_points=Decimal("0"),
            ),
        ]

        message = format_monthly_ranking("2026-03", records)  # type: ignore[arg-type]

        lines = message.splitlines()
        self.assertIn("2026-03", lines[0])
        self.assertEqual(lines[1], "1. Amy: 103 (-0 / +3)")
        self.assertEqual(lines[2], "2. user 8: 94 (-6 / +0)")
        self.assertIn("no records", format_monthly_ranking("2026-03", []))


class SendChatMessageTests(unittest.TestCase):
    def test_unconfigured_webhook_logs_and_skips(self) -> None:
        with (
            patch("app.services.notifications.is_chat_webhook_enabled", return_value=False),
            patch("app.services.notifications._post_json") as post_mock,
            self.assertLogs("app.notifications", level="INFO") as logs,
        ):
            result = send_chat_message("hello")

        post_mock.assert_not_called()
        self.assertFalse(result["sent"])
        self.assertEqual(result["error"], "WEBHOOK_NOT_CONFIGURED")
        self.assertTrue(any("chat_message_skipped" in line for line in logs.output))

    def test_webhook_failure_is_logged_not_raised(self) -> None:
        settings = SimpleNamespace(chat_webhook_url=" https://chat.example.test/hook ", chat_webhook_timeout_seconds=3)

        with (
            patch("app.services.notifications.is_chat_webhook_enabled", return_value=True),
            patch("app.services.notifications.get_settings", return_value=settings),
            patch(
                "app.services.notifications._post_json",
                return_value={"ok": False, "status_code": 500, "error": "boom"},
            ) as post_mock,
            self.assertLogs("app.notifications", level="WARNING"),
        ):
            result = send_chat_message("x" * 2500)

        self.assertFalse(result["sent"])
        kwargs = post_mock.call_args.kwargs
        self.assertEqual(kwargs["url"], "https://chat.example.test/hook")
        self.assertEqual(len(kwargs["payload"]["content"]), 2000)
        self.assertEqual(kwargs["timeout_seconds"], 3)

    def test_successful_post_is_reported_as_sent(self) -> None:
        settings = SimpleNamespace(chat_webhook_url="https://chat.example.test/hook", chat_webhook_timeout_seconds=10)

        with (
            patch("app.services.notifications.is_chat_webhook_enabled", return_value=True),
            patch("app.services.notifications.get_settings", return_value=settings),
            patch(
                "app.services.notifications._post_json",
                return_value={"ok": True, "status_code": 204, "error": None},
            ),
        ):
            result = send_chat_message("hello")

        self.assertTrue(result["sent"])
        self.assertEqual(result["status_code"], 204)

    def test_notify_clock_action_posts_formatted_message(self) -> None:
        with patch("app.services.notifications.send_chat_message") as send_mock:
            notify_clock_action(user_name="Amy", event=_event(EventType.BREAK_OFFSITE_START))

        self.assertIn("Break started", send_mock.call_args.args[0])


if __name__ == "__main__":
    unittest.main()
