from __future__ import annotations

import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

from app.errors import ApiError
from app.models import LeaveRequest, LeaveType, RequestStatus
from app.services.leaves import approve_leave_request, create_leave_request, reject_leave_request

START = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)
END = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


class _FakeDB:
    def __init__(self, *, notice: object = None, rowcount: int = 0) -> None:
        self.notice = notice
        self.rowcount = rowcount
        self.added: list[object] = []
        self.executed: list[object] = []
        self.commits = 0

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        return self.notice

    def execute(self, statement):  # type: ignore[no-untyped-def]
        self.executed.append(statement)
        return SimpleNamespace(rowcount=self.rowcount)

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        return

    def refresh(self, obj: object) -> None:
        if getattr(obj, "id", None) is None:
            setattr(obj, "id", 21)


def _pending_leave(*, has_advance_notice: bool) -> LeaveRequest:
    return LeaveRequest(
        id=21,
        user_id=7,
        start_ts_utc=START,
        end_ts_utc=END,
        type=LeaveType.PERSONAL,
        reason="Family event",
        has_advance_notice=has_advance_notice,
        status=RequestStatus.PENDING,
    )


class CreateLeaveRequestTests(unittest.TestCase):
    def test_end_must_follow_start(self) -> None:
        with patch("app.services.leaves.get_active_user", return_value=SimpleNamespace(id=7)):
            with self.assertRaises(ApiError) as exc:
                create_leave_request(
                    _FakeDB(),  # type: ignore[arg-type]
                    user_id=7,
                    start_ts=END,
                    end_ts=START,
                    leave_type=LeaveType.PERSONAL,
                    reason="Family event",
                )

        self.assertEqual(exc.exception.code, "INVALID_DATE_RANGE")

    def test_advance_notice_flag_requires_matching_notice(self) -> None:
        with patch("app.services.leaves.get_active_user", return_value=SimpleNamespace(id=7)):
            without_notice = create_leave_request(
                _FakeDB(),  # type: ignore[arg-type]
                user_id=7,
                start_ts=START,
                end_ts=END,
                leave_type=LeaveType.PERSONAL,
                reason="Family event",
                has_advance_notice=True,
            )
            notice_created = datetime(2026, 2, 27, 3, 0, tzinfo=timezone.utc)
            with_notice = create_leave_request(
                _FakeDB(notice=SimpleNamespace(created_at=notice_created)),  # type: ignore[arg-type]
                user_id=7,
                start_ts=START,
                end_ts=END,
                leave_type=LeaveType.PERSONAL,
                reason="Family event",
                has_advance_notice=True,
            )

        self.assertFalse(without_notice.has_advance_notice)
        self.assertIsNone(without_notice.advance_notice_at)
        self.assertTrue(with_notice.has_advance_notice)
        self.assertEqual(with_notice.advance_notice_at, notice_created)
        self.assertEqual(with_notice.status, RequestStatus.PENDING)


class ReviewLeaveRequestTests(unittest.TestCase):
    def test_approval_consumes_leave_notices_in_same_commit(self) -> None:
        db = _FakeDB(rowcount=1)
        leave = _pending_leave(has_advance_notice=True)

        with (
            patch("app.services.leaves.get_leave_request", return_value=leave),
            patch("app.services.leaves.log_audit") as audit_mock,
        ):
            result = approve_leave_request(db, leave_id=21, approver_id=2)  # type: ignore[arg-type]

        self.assertEqual(result.status, RequestStatus.APPROVED)
        self.assertEqual(len(db.executed), 1)
        self.assertEqual(db.commits, 1)
        self.assertEqual(audit_mock.call_args.kwargs["details"]["notices_used"], 1)

    def test_approval_without_notice_touches_no_notices(self) -> None:
        db = _FakeDB()

        with (
            patch("app.services.leaves.get_leave_request", return_value=_pending_leave(has_advance_notice=False)),
            patch("app.services.leaves.log_audit"),
        ):
            approve_leave_request(db, leave_id=21, approver_id=2)  # type: ignore[arg-type]

        self.assertEqual(db.executed, [])

    def test_reviewed_request_cannot_be_reviewed_again(self) -> None:
        leave = _pending_leave(has_advance_notice=False)
        leave.status = RequestStatus.APPROVED

        with patch("app.services.leaves.get_leave_request", return_value=leave):
            with self.assertRaises(ApiError) as exc:
                reject_leave_request(_FakeDB(), leave_id=21, approver_id=2, reason="Too late")  # type: ignore[arg-type]

        self.assertEqual(exc.exception.code, "REQUEST_NOT_PENDING")


if __name__ == "__main__":
    unittest.main()
