from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from unittest.mock import patch
from zoneinfo import ZoneInfo

from db_support import add_employee, make_session_factory

from app.errors import AuthorizationError, ConflictError, NotFoundError, ValidationFailed
from app.models import Attendance, AttendanceStatus
from app.schemas import AttendanceManualUpsertRequest
from app.services import attendance as attendance_service
from app.services.attendance import (
    check_in,
    check_out,
    compute_work_hours,
    day_key,
    delete_attendance,
    get_today_attendance,
    list_attendance,
    upsert_manual_attendance,
)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class WorkHoursTests(unittest.TestCase):
    def test_truncate_drops_fractional_hours(self) -> None:
        self.assertEqual(compute_work_hours(_utc(2024, 6, 3, 8, 15), _utc(2024, 6, 3, 17, 15), rounding="TRUNCATE"), 9.0)
        self.assertEqual(compute_work_hours(_utc(2024, 6, 3, 8, 15), _utc(2024, 6, 3, 17, 10), rounding="TRUNCATE"), 8.0)

    def test_exact_keeps_two_decimals(self) -> None:
        self.assertEqual(compute_work_hours(_utc(2024, 6, 3, 8, 15), _utc(2024, 6, 3, 17, 10), rounding="EXACT"), 8.92)

    def test_negative_interval_is_clamped_to_zero(self) -> None:
        self.assertEqual(compute_work_hours(_utc(2024, 6, 3, 17, 0), _utc(2024, 6, 3, 8, 0), rounding="EXACT"), 0.0)

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        self.assertEqual(
            compute_work_hours(datetime(2024, 6, 3, 8, 0), _utc(2024, 6, 3, 12, 30), rounding="TRUNCATE"),
            4.0,
        )


class DayKeyTests(unittest.TestCase):
    def test_day_key_uses_attendance_timezone(self) -> None:
        late_evening_utc = _utc(2024, 6, 3, 22, 30)
        with patch.object(attendance_service, "_attendance_timezone", return_value=ZoneInfo("Europe/Istanbul")):
            self.assertEqual(day_key(late_evening_utc), date(2024, 6, 4))
        with patch.object(attendance_service, "_attendance_timezone", return_value=ZoneInfo("UTC")):
            self.assertEqual(day_key(late_evening_utc), date(2024, 6, 3))


class AttendanceLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.factory = make_session_factory()
        self.db = self.factory()
        self.employee = add_employee(self.db, email="ayse@example.com")
        self.tz_patch = patch.object(attendance_service, "_attendance_timezone", return_value=ZoneInfo("UTC"))
        self.tz_patch.start()
        self.rounding_patch = patch.object(
            attendance_service,
            "get_settings",
            return_value=type("S", (), {"work_hours_rounding": "TRUNCATE"})(),
        )
        self.rounding_patch.start()

    def tearDown(self) -> None:
        self.rounding_patch.stop()
        self.tz_patch.stop()
        self.db.close()

    def test_check_in_then_check_out_computes_truncated_hours(self) -> None:
        created = check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 8, 15))
        self.assertEqual(created.status, AttendanceStatus.PRESENT)
        self.assertIsNone(created.check_out)
        self.assertEqual(created.day_date, date(2024, 6, 3))

        closed = check_out(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 17, 15))
        self.assertEqual(closed.work_hours, 9.0)
        self.assertEqual(closed.status, AttendanceStatus.PRESENT)

    def test_second_check_in_same_day_is_rejected_with_existing_row(self) -> None:
        first = check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 8, 0))

        with self.assertRaises(ConflictError) as ctx:
            check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 9, 0))

        self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_IN")
        self.assertEqual(ctx.exception.details["attendance"]["id"], first.id)
        self.assertEqual(self.db.query(Attendance).count(), 1)

    def test_concurrent_check_in_loses_on_unique_day_key(self) -> None:
        check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 8, 0))
        real_lookup = attendance_service._find_attendance_for_day
        calls: list[int] = []

        def stale_then_real(*args, **kwargs):  # type: ignore[no-untyped-def]
            calls.append(1)
            if len(calls) == 1:
                return None
            return real_lookup(*args, **kwargs)

        other_db = self.factory()
        try:
            with patch.object(attendance_service, "_find_attendance_for_day", side_effect=stale_then_real):
                with self.assertRaises(ConflictError) as ctx:
                    check_in(other_db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 8, 0, 1))
        finally:
            other_db.close()

        self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_IN")
        self.assertIsNotNone(ctx.exception.details)
        self.assertEqual(self.db.query(Attendance).count(), 1)

    def test_check_out_without_check_in_fails(self) -> None:
        with self.assertRaises(ConflictError) as ctx:
            check_out(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 17, 0))
        self.assertEqual(ctx.exception.code, "NO_CHECK_IN_YET")

    def test_check_out_twice_fails(self) -> None:
        check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 8, 0))
        check_out(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 16, 0))

        with self.assertRaises(ConflictError) as ctx:
            check_out(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 17, 0))
        self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_OUT")
        self.assertEqual(ctx.exception.details["attendance"]["work_hours"], 8.0)

    def test_check_out_on_next_day_does_not_close_yesterday(self) -> None:
        check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 8, 0))
        with self.assertRaises(ConflictError) as ctx:
            check_out(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 4, 1, 0))
        self.assertEqual(ctx.exception.code, "NO_CHECK_IN_YET")

    def test_inactive_employee_cannot_check_in(self) -> None:
        inactive = add_employee(self.db, email="former@example.com", is_active=False)
        with self.assertRaises(AuthorizationError) as ctx:
            check_in(self.db, employee_id=inactive.id, now=_utc(2024, 6, 3, 8, 0))
        self.assertEqual(ctx.exception.code, "EMPLOYEE_INACTIVE")

    def test_unknown_employee_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            check_in(self.db, employee_id=9999, now=_utc(2024, 6, 3, 8, 0))

    def test_today_returns_row_for_day_key(self) -> None:
        self.assertIsNone(get_today_attendance(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 12, 0)))
        check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 8, 0))
        today = get_today_attendance(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 12, 0))
        self.assertIsNotNone(today)

    def test_manual_upsert_creates_then_merges(self) -> None:
        created, was_created = upsert_manual_attendance(
            self.db,
            AttendanceManualUpsertRequest(
                employee_id=self.employee.id,
                day_date=date(2024, 6, 5),
                check_in=_utc(2024, 6, 5, 9, 0),
                notes="forgot badge",
            ),
        )
        self.assertTrue(was_created)
        self.assertIsNone(created.work_hours)

        merged, was_created = upsert_manual_attendance(
            self.db,
            AttendanceManualUpsertRequest(
                employee_id=self.employee.id,
                day_date=date(2024, 6, 5),
                check_out=_utc(2024, 6, 5, 13, 45),
                status=AttendanceStatus.HALF_DAY,
            ),
        )
        self.assertFalse(was_created)
        self.assertEqual(merged.id, created.id)
        self.assertEqual(merged.work_hours, 4.0)
        self.assertEqual(merged.status, AttendanceStatus.HALF_DAY)
        self.assertEqual(merged.notes, "forgot badge")

    def test_manual_upsert_truncates_datetime_to_day(self) -> None:
        payload = AttendanceManualUpsertRequest(
            employee_id=self.employee.id,
            day_date="2024-06-07T15:30:00Z",  # type: ignore[arg-type]
            status=AttendanceStatus.ABSENT,
        )
        self.assertEqual(payload.day_date, date(2024, 6, 7))

    def test_manual_upsert_logs_event_at_info_level(self) -> None:
        with self.assertLogs("app.attendance", level="INFO") as captured:
            attendance, _ = upsert_manual_attendance(
                self.db,
                AttendanceManualUpsertRequest(
                    employee_id=self.employee.id,
                    day_date=date(2024, 6, 3),
                    status=AttendanceStatus.ABSENT,
                ),
            )

        record = next(item for item in captured.records if item.getMessage() == "attendance_manual_upsert")
        self.assertEqual(record.attendance_id, attendance.id)
        self.assertTrue(record.created_row)
        self.assertEqual(self.db.query(Attendance).count(), 1)

    def test_manual_upsert_explicit_null_clears_timestamp(self) -> None:
        created, _ = upsert_manual_attendance(
            self.db,
            AttendanceManualUpsertRequest(
                employee_id=self.employee.id,
                day_date=date(2024, 6, 5),
                check_in=_utc(2024, 6, 5, 9, 0),
                check_out=_utc(2024, 6, 5, 17, 0),
            ),
        )
        self.assertEqual(created.work_hours, 8.0)

        cleared, _ = upsert_manual_attendance(
            self.db,
            AttendanceManualUpsertRequest(
                employee_id=self.employee.id,
                day_date=date(2024, 6, 5),
                check_out=None,
            ),
        )

        self.assertIsNotNone(cleared.check_in)
        self.assertIsNone(cleared.check_out)
        self.assertIsNone(cleared.work_hours)

    def test_manual_upsert_clearing_check_in_with_stored_check_out_fails(self) -> None:
        upsert_manual_attendance(
            self.db,
            AttendanceManualUpsertRequest(
                employee_id=self.employee.id,
                day_date=date(2024, 6, 5),
                check_in=_utc(2024, 6, 5, 9, 0),
                check_out=_utc(2024, 6, 5, 17, 0),
            ),
        )

        with self.assertRaises(ValidationFailed) as ctx:
            upsert_manual_attendance(
                self.db,
                AttendanceManualUpsertRequest(
                    employee_id=self.employee.id,
                    day_date=date(2024, 6, 5),
                    check_in=None,
                ),
            )
        self.assertEqual(ctx.exception.code, "INVALID_CHECK_OUT")

    def test_manual_upsert_rejects_check_out_before_check_in(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            upsert_manual_attendance(
                self.db,
                AttendanceManualUpsertRequest(
                    employee_id=self.employee.id,
                    day_date=date(2024, 6, 5),
                    check_in=_utc(2024, 6, 5, 17, 0),
                    check_out=_utc(2024, 6, 5, 9, 0),
                ),
            )
        self.assertEqual(ctx.exception.code, "INVALID_CHECK_OUT")

    def test_manual_upsert_rejects_check_out_without_check_in(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            upsert_manual_attendance(
                self.db,
                AttendanceManualUpsertRequest(
                    employee_id=self.employee.id,
                    day_date=date(2024, 6, 5),
                    check_out=_utc(2024, 6, 5, 17, 0),
                ),
            )
        self.assertEqual(ctx.exception.code, "INVALID_CHECK_OUT")

    def test_list_filters_are_conjunctive_and_ordered_newest_first(self) -> None:
        other = add_employee(self.db, email="mehmet@example.com", department="Sales")
        for day in (3, 4, 5):
            check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, day, 8, 0))
        check_in(self.db, employee_id=other.id, now=_utc(2024, 6, 4, 8, 0))

        rows, meta = list_attendance(
            self.db,
            employee_id=self.employee.id,
            start_date=date(2024, 6, 4),
            end_date=date(2024, 6, 5),
            page=1,
            limit=10,
        )
        self.assertEqual([row.day_date for row in rows], [date(2024, 6, 5), date(2024, 6, 4)])
        self.assertEqual(meta.total, 2)
        self.assertEqual(meta.pages, 1)

        sales_rows, sales_meta = list_attendance(self.db, department="Sales", page=1, limit=10)
        self.assertEqual([row.employee_id for row in sales_rows], [other.id])
        self.assertEqual(sales_meta.total, 1)

    def test_list_paginates(self) -> None:
        for day in range(1, 6):
            check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, day, 8, 0))

        rows, meta = list_attendance(self.db, employee_id=self.employee.id, page=2, limit=2)
        self.assertEqual([row.day_date for row in rows], [date(2024, 6, 3), date(2024, 6, 2)])
        self.assertEqual((meta.total, meta.page, meta.limit, meta.pages), (5, 2, 2, 3))

    def test_list_rejects_inverted_range(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            list_attendance(self.db, start_date=date(2024, 6, 5), end_date=date(2024, 6, 1))
        self.assertEqual(ctx.exception.code, "INVALID_DATE_RANGE")

    def test_delete_returns_snapshot_and_unknown_id_is_not_found(self) -> None:
        row = check_in(self.db, employee_id=self.employee.id, now=_utc(2024, 6, 3, 8, 0))
        snapshot = delete_attendance(self.db, row.id)
        self.assertEqual(snapshot["day_date"], "2024-06-03")
        self.assertEqual(self.db.query(Attendance).count(), 0)

        with self.assertRaises(NotFoundError) as ctx:
            delete_attendance(self.db, row.id)
        self.assertEqual(ctx.exception.code, "ATTENDANCE_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
