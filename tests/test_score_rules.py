from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from app.models import ScoreReasonType
from app.services.scores import (
    OVER_NOTICE_LIMIT_POINTS,
    ScoreRules,
    adjustment_reason_type,
    build_score_lines,
    early_leave_lines,
    late_deduction_lines,
    perfect_attendance_lines,
    retro_clock_lines,
    summarize_points,
)
from app.services.system_config import DEFAULT_CONFIGS


def _config(**overrides):  # type: ignore[no-untyped-def]
    values = {item.key: item.value for item in DEFAULT_CONFIGS}
    values.update(overrides)
    return values


def _day(
    day: int,
    *,
    late: int = 0,
    early: int = 0,
    absent: bool = False,
    notice: bool = False,
) -> SimpleNamespace:
    return SimpleNamespace(
        day_date=date(2026, 3, day),
        is_late=late > 0,
        late_minutes=late,
        is_early_leave=early > 0,
        early_leave_minutes=early,
        is_absent=absent,
        has_advance_notice=notice,
    )


DEFAULT_RULES = ScoreRules.from_config(_config())


class LateDeductionTests(unittest.TestCase):
    def test_unnotified_late_days_use_three_tier_table(self) -> None:
        days = [_day(2, late=10), _day(3, late=45), _day(4, late=70)]

        lines = late_deduction_lines(days, DEFAULT_RULES)

        self.assertEqual([line.points_delta for line in lines], [Decimal("-1"), Decimal("-2"), Decimal("-3")])
        self.assertTrue(all(line.reason_type == ScoreReasonType.LATE for line in lines))
        self.assertEqual(summarize_points(line.points_delta for line in lines).total_deduction, Decimal("6"))

    def test_boundaries_of_no_notice_table(self) -> None:
        days = [_day(2, late=30), _day(3, late=60), _day(4, late=61)]

        lines = late_deduction_lines(days, DEFAULT_RULES)

        self.assertEqual([line.points_delta for line in lines], [Decimal("-1"), Decimal("-2"), Decimal("-3")])

    def test_notified_late_days_within_limit_use_notice_table(self) -> None:
        days = [_day(2, late=10, notice=True), _day(3, late=40, notice=True)]

        lines = late_deduction_lines(days, DEFAULT_RULES)

        # Zero-point lines are not written.
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].points_delta, Decimal("-1"))
        self.assertEqual(lines[0].related_date, date(2026, 3, 3))
        self.assertTrue(lines[0].has_advance_notice)

    def test_notified_late_days_over_limit_get_flat_deduction(self) -> None:
        days = [
            _day(2, late=10, notice=True),
            _day(3, late=40, notice=True),
            _day(4, late=10, notice=True),
            _day(5, late=10, notice=True),
        ]

        lines = late_deduction_lines(days, DEFAULT_RULES)

        self.assertEqual([line.points_delta for line in lines], [Decimal("-1"), OVER_NOTICE_LIMIT_POINTS])
        self.assertEqual(lines[-1].related_date, date(2026, 3, 5))

    def test_configured_zero_is_kept(self) -> None:
        rules = ScoreRules.from_config(_config(late_points_no_notice={"<=30": 0, "30-60": -2, ">60": -3}))

        lines = late_deduction_lines([_day(2, late=10)], rules)

        self.assertEqual(lines[0].points_delta, Decimal("0"))


class OtherScoreLineTests(unittest.TestCase):
    def test_early_leave_first_and_repeat_rates(self) -> None:
        days = [_day(4, early=10), _day(2, early=30), _day(3, early=5)]

        lines = early_leave_lines(days, DEFAULT_RULES)

        self.assertEqual([line.points_delta for line in lines], [Decimal("-3"), Decimal("-5"), Decimal("-5")])
        self.assertEqual(lines[0].related_date, date(2026, 3, 2))

    def test_retro_count_in_three_to_four_bracket(self) -> None:
        rules = ScoreRules.from_config(_config(retro_clock_limit={"1-2": 0, "3-4": -1, ">=5": -2}))

        lines = retro_clock_lines(4, rules)

        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].reason_type, ScoreReasonType.RETRO)
        self.assertEqual(lines[0].points_delta, Decimal("-2"))

    def test_retro_count_five_or_more_uses_its_own_rate(self) -> None:
        lines = retro_clock_lines(5, DEFAULT_RULES)

        self.assertEqual(lines[0].points_delta, Decimal("-6"))

    def test_retro_low_count_without_penalty_writes_nothing(self) -> None:
        self.assertEqual(retro_clock_lines(0, DEFAULT_RULES), [])
        self.assertEqual(retro_clock_lines(2, DEFAULT_RULES), [])

    def test_retro_low_count_with_negative_rate_applies_once(self) -> None:
        rules = ScoreRules.from_config(_config(retro_clock_limit={"1-2": -0.5, "3-4": -1, ">=5": -2}))

        lines = retro_clock_lines(2, rules)

        self.assertEqual([line.points_delta for line in lines], [Decimal("-0.5")])

    def test_perfect_attendance_requires_clean_non_empty_month(self) -> None:
        self.assertEqual(perfect_attendance_lines([], DEFAULT_RULES), [])
        self.assertEqual(perfect_attendance_lines([_day(2), _day(3, absent=True)], DEFAULT_RULES), [])

        lines = perfect_attendance_lines([_day(2), _day(3)], DEFAULT_RULES)

        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].reason_type, ScoreReasonType.BONUS)
        self.assertEqual(lines[0].points_delta, Decimal("3"))

    def test_build_score_lines_is_repeatable(self) -> None:
        days = [_day(2, late=45), _day(3, early=20)]

        first = build_score_lines(days, retro_count=3, rules=DEFAULT_RULES)
        second = build_score_lines(days, retro_count=3, rules=DEFAULT_RULES)

        self.assertEqual(first, second)
        self.assertEqual(
            [line.reason_type for line in first],
            [ScoreReasonType.LATE, ScoreReasonType.EARLY_LEAVE, ScoreReasonType.RETRO],
        )

    def test_float_config_values_become_exact_decimals(self) -> None:
        rules = ScoreRules.from_config(_config(early_leave_first_time=-2.1))

        self.assertEqual(rules.early_leave_first_time, Decimal("-2.1"))


class SummarizePointsTests(unittest.TestCase):
    def test_deductions_and_bonus_are_accumulated_separately(self) -> None:
        totals = summarize_points([Decimal("-1"), Decimal("-2"), Decimal("3"), Decimal("0")])

        self.assertEqual(totals.total_deduction, Decimal("3"))
        self.assertEqual(totals.bonus_points, Decimal("3"))
        self.assertEqual(totals.final_score, Decimal("100"))

    def test_final_score_is_not_clamped(self) -> None:
        totals = summarize_points([Decimal("-5")] * 30)

        self.assertEqual(totals.final_score, Decimal("-50"))

        bonus_only = summarize_points([Decimal("3"), Decimal("5")])
        self.assertEqual(bonus_only.final_score, Decimal("108"))


class AdjustmentReasonTypeTests(unittest.TestCase):
    def test_adjustments_are_bonus_unless_tagging_by_sign(self) -> None:
        self.assertEqual(adjustment_reason_type(Decimal("-2"), tag_by_sign=False), ScoreReasonType.BONUS)
        self.assertEqual(adjustment_reason_type(Decimal("-2"), tag_by_sign=True), ScoreReasonType.MISCONDUCT)
        self.assertEqual(adjustment_reason_type(Decimal("2"), tag_by_sign=True), ScoreReasonType.BONUS)


if __name__ == "__main__":
    unittest.main()
