from __future__ import annotations

import unittest
from collections.abc import Generator
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from fastapi.testclient import TestClient

from app.db import get_db
from app.main import app
from app.models import ScoreStatus, User, UserRole
from app.security import hash_password, require_user
from app.services.system_config import get_config_store


def _override_get_db(fake_db):
    def _override() -> Generator[object, None, None]:
        yield fake_db

    return _override


def _claims(role: str) -> dict[str, object]:
    return {"sub": "2", "user_id": 2, "code": "A01", "role": role}


def _score_record(user_id: int = 7, final: str = "97") -> SimpleNamespace:
    return SimpleNamespace(
        id=40 + user_id,
        user_id=user_id,
        user=None,
        year_month="2026-03",
        base_score=Decimal("100"),
        total_deduction=Decimal("100") - Decimal(final),
        bonus_points=Decimal("0"),
        final_score=Decimal(final),
        status=ScoreStatus.FINAL,
        updated_at=datetime(2026, 4, 1, tzinfo=timezone.utc),
        details=[],
    )


class _FakeDB:
    def __init__(self, scalar_value: object = None) -> None:
        self.scalar_value = scalar_value
        self.rows: list[object] = []

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        return self.scalar_value

    def add(self, obj: object) -> None:
        self.rows.append(obj)

    def commit(self) -> None:
        return

    def rollback(self) -> None:
        return


class _FakeConfigStore:
    def __init__(self) -> None:
        self.values: dict[str, object] = {"late_grace_minutes": 5}
        self.updated_by: str | None = None

    def get(self, key: str) -> object:
        return self.values[key]

    def set(self, key: str, value: object, updated_by: str) -> object:
        previous = self.values[key]
        self.values[key] = value
        self.updated_by = updated_by
        return previous

    def describe(self, key: str) -> dict[str, object]:
        return {
            "key": key,
            "value": self.values[key],
            "category": "rules",
            "description": None,
            "updated_by": self.updated_by,
            "updated_at": None,
        }


class AdminEndpointTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _FakeDB()
        self.config = _FakeConfigStore()
        app.dependency_overrides[get_db] = _override_get_db(self.db)
        app.dependency_overrides[get_config_store] = lambda: self.config
        app.dependency_overrides[require_user] = lambda: _claims("ADMIN")
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()


class AdminAccessTests(AdminEndpointTestCase):
    def test_intern_token_is_forbidden_on_admin_routes(self) -> None:
        app.dependency_overrides[require_user] = lambda: _claims("INTERN")

        response = self.client.get("/api/admin/scores", params={"month": "2026-03"})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_missing_token_is_rejected(self) -> None:
        app.dependency_overrides.pop(require_user)

        response = self.client.get("/api/admin/scores", params={"month": "2026-03"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_login_accepts_admin_email_and_password(self) -> None:
        app.dependency_overrides.pop(require_user)
        admin = User(
            id=2,
            code="A01",
            name="Admin",
            email="admin@example.test",
            role=UserRole.ADMIN,
            is_active=True,
            password_hash=hash_password("StrongPass123!"),
        )
        self.db.scalar_value = admin
        settings = SimpleNamespace(
            jwt_secret="unit-test-secret",
            jwt_issuer="intern-timeclock",
            jwt_audience="intern-timeclock-api",
            access_token_minutes=60,
        )

        with (
            patch("app.security.get_settings", return_value=settings),
            patch("app.routers.admin.log_audit") as audit_mock,
        ):
            response = self.client.post(
                "/api/admin/auth/login",
                json={"email": "Admin@Example.test", "password": "StrongPass123!"},
            )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertIn("access_token", payload)
        self.assertEqual(payload.get("token_type"), "bearer")
        self.assertEqual(audit_mock.call_args.kwargs["action"], "ADMIN_LOGIN_SUCCESS")

    def test_login_with_wrong_password_is_rejected(self) -> None:
        app.dependency_overrides.pop(require_user)
        self.db.scalar_value = None

        with patch("app.routers.admin.log_audit") as audit_mock:
            response = self.client.post(
                "/api/admin/auth/login",
                json={"email": "nobody@example.test", "password": "wrong-password"},
            )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_CREDENTIALS")
        self.assertEqual(audit_mock.call_args.kwargs["action"], "ADMIN_LOGIN_FAIL")


class AdminScoreEndpointTests(AdminEndpointTestCase):
    def test_adjust_rejects_zero_points(self) -> None:
        with patch("app.routers.admin.adjust_score") as adjust_mock:
            response = self.client.post(
                "/api/admin/scores/adjust",
                json={"user_id": 7, "month": "2026-03", "points": 0, "reason": "noop"},
            )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")
        adjust_mock.assert_not_called()

    def test_adjust_passes_admin_actor_and_trimmed_reason(self) -> None:
        with patch("app.routers.admin.adjust_score", return_value=_score_record(final="99")) as adjust_mock:
            response = self.client.post(
                "/api/admin/scores/adjust",
                json={"user_id": 7, "month": "2026-03", "points": "-1.5", "reason": "  Misconduct  "},
            )

        self.assertEqual(response.status_code, 200)
        kwargs = adjust_mock.call_args.kwargs
        self.assertEqual(kwargs["points"], Decimal("-1.5"))
        self.assertEqual(kwargs["reason"], "Misconduct")
        self.assertEqual(kwargs["adjusted_by"], "A01")
        self.assertIs(kwargs["config"], self.config)

    def test_recalculate_without_user_covers_active_interns(self) -> None:
        users = [
            SimpleNamespace(id=2, role=UserRole.ADMIN),
            SimpleNamespace(id=7, role=UserRole.INTERN),
            SimpleNamespace(id=8, role=UserRole.INTERN),
        ]

        with (
            patch("app.routers.admin.list_users", return_value=users),
            patch(
                "app.routers.admin.calculate_monthly_score",
                side_effect=lambda _db, *, user_id, year_month, config: _score_record(user_id),
            ) as calc_mock,
            patch("app.routers.admin.log_audit") as audit_mock,
        ):
            response = self.client.post("/api/admin/scores/recalculate", json={"month": "2026-03"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["user_id"] for item in response.json()], [7, 8])
        self.assertEqual(calc_mock.call_count, 2)
        self.assertEqual(audit_mock.call_args.kwargs["details"]["user_ids"], [7, 8])

    def test_list_scores_requires_valid_month(self) -> None:
        response = self.client.get("/api/admin/scores", params={"month": "2026-3"})

        self.assertEqual(response.status_code, 422)

    def test_notify_ranking_reports_webhook_outcome(self) -> None:
        records = [_score_record(7, "103"), _score_record(8, "94")]

        with (
            patch("app.routers.admin.get_all_scores_for_month", return_value=records),
            patch(
                "app.routers.admin.notify_monthly_ranking",
                return_value={"ok": False, "sent": False, "error": "WEBHOOK_NOT_CONFIGURED"},
            ) as notify_mock,
        ):
            response = self.client.post("/api/admin/scores/notify-ranking", params={"month": "2026-03"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": False, "sent": False, "error": "WEBHOOK_NOT_CONFIGURED"})
        notify_mock.assert_called_once_with("2026-03", records)


class AdminConfigEndpointTests(AdminEndpointTestCase):
    def test_update_config_audits_previous_value(self) -> None:
        with patch("app.routers.admin.log_audit") as audit_mock:
            response = self.client.put("/api/admin/config/late_grace_minutes", json={"value": 10})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["value"], 10)
        self.assertEqual(body["updated_by"], "A01")
        details = audit_mock.call_args.kwargs["details"]
        self.assertEqual(details["previous"], 5)
        self.assertEqual(details["value"], 10)


if __name__ == "__main__":
    unittest.main()
