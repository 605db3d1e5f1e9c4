from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

from app.errors import ApiError
from app.models import AttendanceEvent, DayKind, EventType
from app.services.attendance import (
    break_end,
    break_start,
    clock_in,
    clock_out,
    derive_current_status,
    month_stats,
)

# 2026-03-02 10:00 in Asia/Taipei.
NOW = datetime(2026, 3, 2, 2, 0, tzinfo=timezone.utc)
CONFIG = {"lunch_start_time": "12:00", "lunch_end_time": "13:30", "late_grace_minutes": 5}


class _FakeDB:
    def __init__(self) -> None:
        self.added: list[object] = []
        self.commits = 0
        self._next_id = 500

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def commit(self) -> None:
        self.commits += 1

    def refresh(self, obj: object) -> None:
        self._next_id += 1
        setattr(obj, "id", self._next_id)


def _event(event_type: EventType, hour: int) -> SimpleNamespace:
    return SimpleNamespace(type=event_type, ts_utc=datetime(2026, 3, 2, hour, 0, tzinfo=timezone.utc))


class _AttendanceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _FakeDB()
        self.day_events: list[SimpleNamespace] = []
        self.addCleanup(patch.stopall)
        patch(
            "app.services.attendance.get_active_user",
            return_value=SimpleNamespace(id=7, name="Intern Seven"),
        ).start()
        patch("app.services.attendance.list_day_events", side_effect=lambda *_a, **_k: self.day_events).start()
        self.recompute_mock = patch("app.services.attendance.recompute_day", return_value=None).start()
        self.notify_mock = patch("app.services.attendance.notify_clock_action").start()


class ClockInTests(_AttendanceTestCase):
    def test_clock_in_appends_event_and_recomputes_day(self) -> None:
        result = clock_in(self.db, user_id=7, mode="onsite", config=CONFIG, now=NOW)  # type: ignore[arg-type]

        self.assertIsInstance(result.event, AttendanceEvent)
        self.assertEqual(result.event.type, EventType.WORK_ONSITE_START)
        self.assertEqual(result.event.ts_utc, NOW)
        self.assertEqual(result.message, "Successfully clocked in (onsite)")
        self.assertEqual(self.db.commits, 1)
        self.recompute_mock.assert_called_once()
        self.assertEqual(self.recompute_mock.call_args.kwargs["day"], date(2026, 3, 2))
        self.notify_mock.assert_called_once()

    def test_second_clock_in_of_same_mode_is_rejected(self) -> None:
        self.day_events = [_event(EventType.WORK_ONSITE_START, 0)]

        with self.assertRaises(ApiError) as exc:
            clock_in(self.db, user_id=7, mode="onsite", config=CONFIG, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(exc.exception.code, "ALREADY_CLOCKED_IN")
        self.assertEqual(exc.exception.status_code, 409)
        self.assertEqual(self.db.added, [])
        self.recompute_mock.assert_not_called()

    def test_unknown_mode_is_invalid_input(self) -> None:
        with self.assertRaises(ApiError) as exc:
            clock_in(self.db, user_id=7, mode="hybrid", config=CONFIG, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(exc.exception.code, "INVALID_CLOCK_MODE")

    def test_malformed_lunch_window_fails_before_event_is_written(self) -> None:
        bad_config = {**CONFIG, "lunch_start_time": "14:00"}

        for action in (
            lambda: clock_in(self.db, user_id=7, mode="onsite", config=bad_config, now=NOW),  # type: ignore[arg-type]
            lambda: clock_out(self.db, user_id=7, config=bad_config, now=NOW),  # type: ignore[arg-type]
            lambda: break_end(self.db, user_id=7, config=bad_config, now=NOW),  # type: ignore[arg-type]
        ):
            with self.subTest(action=action):
                with self.assertRaises(ApiError) as exc:
                    action()
                self.assertEqual(exc.exception.code, "CONFIG_INVALID")

        self.assertEqual(self.db.added, [])
        self.assertEqual(self.db.commits, 0)
        self.recompute_mock.assert_not_called()


class ClockOutTests(_AttendanceTestCase):
    def test_clock_out_without_clock_in_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as exc:
            clock_out(self.db, user_id=7, config=CONFIG, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(exc.exception.code, "NOT_CLOCKED_IN")

    def test_clock_out_closes_the_mode_of_the_latest_start(self) -> None:
        self.day_events = [_event(EventType.WORK_REMOTE_START, 0)]

        result = clock_out(self.db, user_id=7, config=CONFIG, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(result.event.type, EventType.WORK_REMOTE_END)
        self.recompute_mock.assert_called_once()

    def test_second_clock_out_is_rejected(self) -> None:
        self.day_events = [
            _event(EventType.WORK_ONSITE_START, 0),
            _event(EventType.WORK_ONSITE_END, 1),
        ]

        with self.assertRaises(ApiError) as exc:
            clock_out(self.db, user_id=7, config=CONFIG, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(exc.exception.code, "ALREADY_CLOCKED_OUT")


class BreakTests(_AttendanceTestCase):
    def test_break_start_does_not_recompute(self) -> None:
        self.day_events = [_event(EventType.WORK_ONSITE_START, 0)]

        result = break_start(self.db, user_id=7, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(result.event.type, EventType.BREAK_OFFSITE_START)
        self.assertIsNone(result.summary)
        self.recompute_mock.assert_not_called()

    def test_break_start_while_on_break_is_rejected(self) -> None:
        self.day_events = [
            _event(EventType.WORK_ONSITE_START, 0),
            _event(EventType.BREAK_OFFSITE_START, 1),
        ]

        with self.assertRaises(ApiError) as exc:
            break_start(self.db, user_id=7, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(exc.exception.code, "ALREADY_ON_BREAK")

    def test_break_end_without_break_is_rejected(self) -> None:
        self.day_events = [_event(EventType.WORK_ONSITE_START, 0)]

        with self.assertRaises(ApiError) as exc:
            break_end(self.db, user_id=7, config=CONFIG, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(exc.exception.code, "NO_ACTIVE_BREAK")

    def test_break_end_closes_break_and_recomputes(self) -> None:
        self.day_events = [
            _event(EventType.WORK_ONSITE_START, 0),
            _event(EventType.BREAK_OFFSITE_START, 1),
        ]

        result = break_end(self.db, user_id=7, config=CONFIG, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(result.event.type, EventType.BREAK_OFFSITE_END)
        self.recompute_mock.assert_called_once()


class CurrentStatusTests(unittest.TestCase):
    def test_status_follows_last_event(self) -> None:
        cases = [
            ([], "not_started"),
            ([_event(EventType.WORK_ONSITE_START, 0)], "working_onsite"),
            ([_event(EventType.WORK_REMOTE_START, 0)], "working_remote"),
            ([_event(EventType.WORK_ONSITE_START, 0), _event(EventType.BREAK_OFFSITE_START, 1)], "on_break"),
            (
                [
                    _event(EventType.WORK_REMOTE_START, 0),
                    _event(EventType.BREAK_OFFSITE_START, 1),
                    _event(EventType.BREAK_OFFSITE_END, 2),
                ],
                "working_remote",
            ),
            ([_event(EventType.WORK_ONSITE_START, 0), _event(EventType.WORK_ONSITE_END, 9)], "finished"),
        ]
        for events, expected in cases:
            with self.subTest(expected=expected):
                self.assertEqual(derive_current_status(events), expected)  # type: ignore[arg-type]


class MonthStatsTests(unittest.TestCase):
    def test_absent_and_non_workdays_are_counted_separately(self) -> None:
        def _summary(kind: DayKind, seconds: int, *, late: bool = False) -> SimpleNamespace:
            return SimpleNamespace(
                day_kind=kind,
                total_work_seconds=seconds,
                work_onsite_seconds=seconds,
                work_remote_seconds=0,
                is_late=late,
                is_early_leave=False,
            )

        stats = month_stats(
            [
                _summary(DayKind.WORKDAY_PRESENT, 28800, late=True),
                _summary(DayKind.WORKDAY_ABSENT, 0),
                _summary(DayKind.NON_WORKDAY, 0),
                _summary(DayKind.WORKDAY_PRESENT, 14400),
            ]
        )  # type: ignore[arg-type]

        self.assertEqual(stats["total_days"], 4)
        self.assertEqual(stats["total_work_seconds"], 43200)
        self.assertEqual(stats["late_days"], 1)
        self.assertEqual(stats["absent_days"], 1)
        self.assertEqual(stats["non_workdays"], 1)
        self.assertEqual(stats["average_work_hours"], 3.0)

    def test_empty_month_has_zero_average(self) -> None:
        self.assertEqual(month_stats([])["average_work_hours"], 0.0)


if __name__ == "__main__":
    unittest.main()
