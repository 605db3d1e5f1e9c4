from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from app.errors import ApiError
from app.models import ScoreReasonType, ScoreRecord, ScoreStatus
from app.services.scores import adjust_score, calculate_monthly_score
from app.services.system_config import DEFAULT_CONFIGS

CONFIG = {item.key: item.value for item in DEFAULT_CONFIGS}


class _FakeDB:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    def flush(self) -> None:
        return

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def refresh(self, _obj: object) -> None:
        return


def _day(day: int, *, late: int = 0, notice: bool = False) -> SimpleNamespace:
    return SimpleNamespace(
        day_date=date(2026, 3, day),
        is_late=late > 0,
        late_minutes=late,
        is_early_leave=False,
        early_leave_minutes=0,
        is_absent=False,
        has_advance_notice=notice,
    )


def _record() -> ScoreRecord:
    return ScoreRecord(
        id=40,
        user_id=7,
        year_month="2026-03",
        base_score=Decimal("100"),
        total_deduction=Decimal("0"),
        bonus_points=Decimal("0"),
        final_score=Decimal("100"),
        status=ScoreStatus.CALCULATING,
    )


class CalculateMonthlyScoreTests(unittest.TestCase):
    def test_details_are_rebuilt_on_every_calculation(self) -> None:
        db = _FakeDB()
        record = _record()
        summaries = [_day(2, late=10), _day(3, late=45), _day(4, late=70)]

        with (
            patch("app.services.scores._ensure_user"),
            patch("app.services.scores._get_or_create_record", return_value=record),
            patch("app.services.scores.list_summaries_in_range", return_value=summaries) as summaries_mock,
            patch("app.services.scores.count_approved_retro_requests", return_value=0),
        ):
            first = calculate_monthly_score(db, user_id=7, year_month="2026-03", config=CONFIG)  # type: ignore[arg-type]
            second = calculate_monthly_score(db, user_id=7, year_month="2026-03", config=CONFIG)  # type: ignore[arg-type]

        self.assertIs(first, second)
        self.assertEqual(len(record.details), 3)
        self.assertEqual(record.total_deduction, Decimal("6"))
        self.assertEqual(record.final_score, Decimal("94"))
        self.assertEqual(record.status, ScoreStatus.FINAL)
        self.assertEqual(summaries_mock.call_args.kwargs["start_date"], date(2026, 3, 1))
        self.assertEqual(summaries_mock.call_args.kwargs["end_date"], date(2026, 3, 31))

    def test_bad_month_is_invalid_input(self) -> None:
        with patch("app.services.scores._ensure_user"):
            with self.assertRaises(ApiError) as exc:
                calculate_monthly_score(_FakeDB(), user_id=7, year_month="2026-00", config=CONFIG)  # type: ignore[arg-type]

        self.assertEqual(exc.exception.code, "INVALID_MONTH")


class AdjustScoreTests(unittest.TestCase):
    def test_adjustment_is_added_on_top_of_current_details(self) -> None:
        db = _FakeDB()
        record = _record()
        record.status = ScoreStatus.FINAL

        with (
            patch("app.services.scores._ensure_user"),
            patch("app.services.scores._get_or_create_record", return_value=record),
            patch("app.services.scores.list_summaries_in_range", return_value=[_day(2, late=45)]),
            patch("app.services.scores.count_approved_retro_requests", return_value=0),
        ):
            calculate_monthly_score(db, user_id=7, year_month="2026-03", config=CONFIG)  # type: ignore[arg-type]

        settings = SimpleNamespace(score_adjustment_tag_by_sign=False)
        with (
            patch("app.services.scores._ensure_user"),
            patch("app.services.scores._get_record", return_value=record),
            patch("app.services.scores.get_settings", return_value=settings),
            patch("app.services.scores.log_audit") as audit_mock,
        ):
            adjusted = adjust_score(
                db,  # type: ignore[arg-type]
                user_id=7,
                year_month="2026-03",
                points=Decimal("-1.5"),
                reason="Misconduct",
                adjusted_by="A01",
                config=CONFIG,
            )

        self.assertEqual(len(adjusted.details), 2)
        manual = adjusted.details[-1]
        self.assertEqual(manual.reason_type, ScoreReasonType.BONUS)
        self.assertEqual(manual.points_delta, Decimal("-1.5"))
        self.assertEqual(adjusted.total_deduction, Decimal("3.5"))
        self.assertEqual(adjusted.final_score, Decimal("96.5"))
        details = audit_mock.call_args.kwargs["details"]
        self.assertEqual(details["previous_score"], "98")
        self.assertEqual(details["new_score"], "96.5")
        self.assertFalse(audit_mock.call_args.kwargs["commit"])

    def test_adjustment_without_final_record_calculates_first(self) -> None:
        db = _FakeDB()
        record = _record()
        settings = SimpleNamespace(score_adjustment_tag_by_sign=True)

        with (
            patch("app.services.scores._ensure_user"),
            patch("app.services.scores._get_record", return_value=None),
            patch("app.services.scores._get_or_create_record", return_value=record),
            patch("app.services.scores.list_summaries_in_range", return_value=[]),
            patch("app.services.scores.count_approved_retro_requests", return_value=0),
            patch("app.services.scores.get_settings", return_value=settings),
            patch("app.services.scores.log_audit"),
        ):
            adjusted = adjust_score(
                db,  # type: ignore[arg-type]
                user_id=7,
                year_month="2026-03",
                points=-2,
                reason="Misconduct",
                adjusted_by="A01",
                config=CONFIG,
            )

        self.assertEqual(adjusted.status, ScoreStatus.FINAL)
        self.assertEqual(adjusted.details[-1].reason_type, ScoreReasonType.MISCONDUCT)
        self.assertEqual(adjusted.final_score, Decimal("98"))


if __name__ == "__main__":
    unittest.main()
