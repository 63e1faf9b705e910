from __future__ import annotations

import unittest
from datetime import date
from io import BytesIO
from unittest.mock import patch

from db_support import add_employee, make_session_factory, override_get_db
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from app.db import get_db
from app.main import app
from app.models import Attendance, AuditLog, Employee, LeaveRequest, LeaveStatus, LeaveType, Role
from app.security import create_access_token
from app.settings import Settings

TEST_SETTINGS = Settings(jwt_secret="test-secret")


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.factory = make_session_factory()
        app.dependency_overrides[get_db] = override_get_db(self.factory)
        self.settings_patch = patch("app.security.get_settings", return_value=TEST_SETTINGS)
        self.settings_patch.start()
        self.client = TestClient(app)

        with self.factory() as db:
            self.employee_id = add_employee(db, email="deniz@example.com").id
            self.colleague_id = add_employee(db, email="ece@example.com").id
            self.admin_id = add_employee(db, email="boss@example.com", role=Role.ADMIN, department="Management").id
            self.hr_id = add_employee(db, email="hr@example.com", role=Role.HR, department="People").id

    def tearDown(self) -> None:
        self.settings_patch.stop()
        app.dependency_overrides.clear()

    def _headers(self, employee_id: int) -> dict[str, str]:
        with self.factory() as db:
            employee = db.get(Employee, employee_id)
            token, _ = create_access_token(user_id=employee.user_id, role=employee.user.role)
        return {"Authorization": f"Bearer {token}"}

    def _count(self, model) -> int:  # type: ignore[no-untyped-def]
        with self.factory() as db:
            return db.query(model).count()


class ErrorEnvelopeTests(ApiTestCase):
    def test_missing_token_is_401_with_envelope(self) -> None:
        response = self.client.get("/api/attendance/today", headers={"X-Request-Id": "req-123"})

        self.assertEqual(response.status_code, 401)
        body = response.json()
        self.assertEqual(body["error"]["kind"], "AUTHORIZATION_ERROR")
        self.assertEqual(body["error"]["code"], "INVALID_TOKEN")
        self.assertEqual(body["error"]["request_id"], "req-123")
        self.assertEqual(response.headers["X-Request-Id"], "req-123")

    def test_garbage_token_is_401(self) -> None:
        response = self.client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_employee_on_privileged_route_is_403_without_details(self) -> None:
        response = self.client.get("/api/attendance", headers=self._headers(self.employee_id))

        self.assertEqual(response.status_code, 403)
        error = response.json()["error"]
        self.assertEqual(error["code"], "FORBIDDEN")
        self.assertNotIn("details", error)

    def test_request_validation_error_lists_fields(self) -> None:
        response = self.client.post(
            "/api/leaves",
            headers=self._headers(self.employee_id),
            json={"leave_type": "HOLIDAY", "start_date": "2024-06-10"},
        )

        self.assertEqual(response.status_code, 422)
        error = response.json()["error"]
        self.assertEqual(error["kind"], "VALIDATION_ERROR")
        locations = {tuple(item["loc"]) for item in error["details"]["fields"]}
        self.assertIn(("body", "leave_type"), locations)
        self.assertIn(("body", "end_date"), locations)

    def test_unknown_record_is_404(self) -> None:
        response = self.client.get("/api/leaves/9999", headers=self._headers(self.admin_id))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["kind"], "NOT_FOUND")


class AttendanceApiTests(ApiTestCase):
    def test_check_in_check_out_and_today(self) -> None:
        headers = self._headers(self.employee_id)

        self.assertIsNone(self.client.get("/api/attendance/today", headers=headers).json())

        created = self.client.post("/api/attendance/check-in", headers=headers)
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["attendance"]["status"], "PRESENT")

        duplicate = self.client.post("/api/attendance/check-in", headers=headers)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["error"]["code"], "ALREADY_CHECKED_IN")
        self.assertEqual(duplicate.json()["error"]["details"]["attendance"]["id"], created.json()["attendance"]["id"])

        closed = self.client.post("/api/attendance/check-out", headers=headers)
        self.assertEqual(closed.status_code, 200)
        self.assertIsNotNone(closed.json()["attendance"]["work_hours"])

        today = self.client.get("/api/attendance/today", headers=headers).json()
        self.assertEqual(today["id"], created.json()["attendance"]["id"])

    def test_employee_history_is_owner_only(self) -> None:
        own = self.client.get(f"/api/attendance/employee/{self.employee_id}", headers=self._headers(self.employee_id))
        other = self.client.get(f"/api/attendance/employee/{self.employee_id}", headers=self._headers(self.colleague_id))
        hr = self.client.get(f"/api/attendance/employee/{self.employee_id}", headers=self._headers(self.hr_id))

        self.assertEqual(own.status_code, 200)
        self.assertEqual(own.json()["pagination"]["limit"], 30)
        self.assertEqual(other.status_code, 403)
        self.assertEqual(hr.status_code, 200)

    def test_manual_upsert_creates_then_updates_and_audits(self) -> None:
        headers = self._headers(self.hr_id)
        body = {
            "employee_id": self.employee_id,
            "day_date": "2024-06-03",
            "check_in": "2024-06-03T08:15:00Z",
            "check_out": "2024-06-03T17:15:00Z",
        }

        first = self.client.put("/api/attendance/manual", headers=headers, json=body)
        second = self.client.put(
            "/api/attendance/manual",
            headers=headers,
            json={"employee_id": self.employee_id, "day_date": "2024-06-03", "status": "LATE"},
        )

        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["work_hours"], 9.0)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json()["status"], "LATE")
        self.assertEqual(second.json()["work_hours"], 9.0)
        self.assertEqual(self._count(Attendance), 1)
        with self.factory() as db:
            actions = [row.action for row in db.query(AuditLog).order_by(AuditLog.id).all()]
        self.assertEqual(actions, ["ATTENDANCE_MANUAL_CREATED", "ATTENDANCE_MANUAL_UPDATED"])

    def test_list_rejects_inverted_date_range(self) -> None:
        response = self.client.get(
            "/api/attendance",
            headers=self._headers(self.admin_id),
            params={"start_date": "2024-06-05", "end_date": "2024-06-01"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "INVALID_DATE_RANGE")

    def test_export_returns_workbook(self) -> None:
        self.client.post("/api/attendance/check-in", headers=self._headers(self.employee_id))

        response = self.client.get("/api/attendance/export", headers=self._headers(self.admin_id))

        self.assertEqual(response.status_code, 200)
        self.assertIn("attachment;", response.headers["content-disposition"])
        workbook = load_workbook(BytesIO(response.content))
        self.assertEqual(workbook.sheetnames, ["Attendance", "Summary"])
        self.assertEqual(workbook["Attendance"].max_row, 2)


class LeaveApiTests(ApiTestCase):
    def _submit(self, employee_id: int, start: str, end: str):  # type: ignore[no-untyped-def]
        return self.client.post(
            "/api/leaves",
            headers=self._headers(employee_id),
            json={"leave_type": "VACATION", "start_date": start, "end_date": end, "reason": "Summer"},
        )

    def test_submit_review_and_overlap_flow(self) -> None:
        created = self._submit(self.employee_id, "2024-06-10", "2024-06-12")
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["day_count"], 3)
        leave_id = created.json()["id"]

        overlap = self._submit(self.employee_id, "2024-06-12", "2024-06-14")
        self.assertEqual(overlap.status_code, 409)
        self.assertEqual(overlap.json()["error"]["code"], "OVERLAPPING_REQUEST")

        forbidden = self.client.patch(
            f"/api/leaves/{leave_id}/review",
            headers=self._headers(self.employee_id),
            json={"status": "APPROVED"},
        )
        self.assertEqual(forbidden.status_code, 403)

        approved = self.client.patch(
            f"/api/leaves/{leave_id}/review",
            headers=self._headers(self.hr_id),
            json={"status": "APPROVED", "review_notes": "Enjoy"},
        )
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["status"], "APPROVED")

        again = self.client.patch(
            f"/api/leaves/{leave_id}/review",
            headers=self._headers(self.hr_id),
            json={"status": "REJECTED"},
        )
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"]["code"], "ALREADY_REVIEWED")

        mine = self.client.get("/api/leaves/me", headers=self._headers(self.employee_id)).json()
        self.assertEqual([item["id"] for item in mine["items"]], [leave_id])

    def test_review_rejects_pending_status(self) -> None:
        leave_id = self._submit(self.employee_id, "2024-06-10", "2024-06-12").json()["id"]
        response = self.client.patch(
            f"/api/leaves/{leave_id}/review",
            headers=self._headers(self.admin_id),
            json={"status": "PENDING"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "INVALID_DECISION")

    def test_blank_reason_is_rejected(self) -> None:
        response = self.client.post(
            "/api/leaves",
            headers=self._headers(self.employee_id),
            json={"leave_type": "VACATION", "start_date": "2024-06-10", "end_date": "2024-06-12", "reason": "   "},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["kind"], "VALIDATION_ERROR")
        self.assertEqual(self._count(LeaveRequest), 0)

    def test_owner_cannot_cancel_approved_request(self) -> None:
        leave_id = self._submit(self.employee_id, "2024-06-10", "2024-06-12").json()["id"]
        self.client.patch(f"/api/leaves/{leave_id}/review", headers=self._headers(self.admin_id), json={"status": "APPROVED"})

        response = self.client.delete(f"/api/leaves/{leave_id}", headers=self._headers(self.employee_id))

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "CANNOT_CANCEL_APPROVED")
        self.assertEqual(self._count(LeaveRequest), 1)

    def test_privileged_cancel_of_approved_request_is_audited(self) -> None:
        with self.factory() as db:
            leave = LeaveRequest(
                employee_id=self.employee_id,
                leave_type=LeaveType.SICK,
                start_date=date(2024, 6, 10),
                end_date=date(2024, 6, 11),
                reason="Flu",
                status=LeaveStatus.APPROVED,
            )
            db.add(leave)
            db.commit()
            leave_id = leave.id

        response = self.client.delete(f"/api/leaves/{leave_id}", headers=self._headers(self.admin_id))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "Leave request cancelled.")
        self.assertEqual(self._count(LeaveRequest), 0)
        with self.factory() as db:
            audit = db.query(AuditLog).filter(AuditLog.action == "LEAVE_REQUEST_CANCELLED").one()
            admin_user_id = db.get(Employee, self.admin_id).user_id
        self.assertEqual(audit.entity_id, str(leave_id))
        self.assertEqual(audit.actor_id, str(admin_user_id))
        self.assertEqual(audit.details["previous_status"], "APPROVED")
        self.assertTrue(audit.details["privileged_override"])

    def test_other_employee_cannot_read_request(self) -> None:
        leave_id = self._submit(self.employee_id, "2024-06-10", "2024-06-12").json()["id"]
        response = self.client.get(f"/api/leaves/{leave_id}", headers=self._headers(self.colleague_id))
        self.assertEqual(response.status_code, 403)

    def test_leave_export_and_stats(self) -> None:
        leave_id = self._submit(self.employee_id, "2024-03-01", "2024-03-03").json()["id"]
        self.client.patch(f"/api/leaves/{leave_id}/review", headers=self._headers(self.admin_id), json={"status": "APPROVED"})

        stats = self.client.get(
            f"/api/leaves/stats/{self.employee_id}",
            headers=self._headers(self.employee_id),
            params={"year": 2024},
        )
        self.assertEqual(stats.status_code, 200)
        self.assertEqual(stats.json()["by_type"], {"VACATION": 3})

        export = self.client.get("/api/leaves/export", headers=self._headers(self.hr_id))
        self.assertEqual(export.status_code, 200)
        workbook = load_workbook(BytesIO(export.content))
        self.assertEqual(workbook.sheetnames, ["Leave Requests", "Summary"])


class EmployeeApiTests(ApiTestCase):
    def test_admin_creates_lists_and_updates_employee(self) -> None:
        headers = self._headers(self.admin_id)
        created = self.client.post(
            "/api/employees",
            headers=headers,
            json={
                "email": "New.Hire@Example.com",
                "password": "secret123",
                "first_name": "New",
                "last_name": "Hire",
                "position": "Analyst",
                "department": "Finance",
            },
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["user"]["email"], "new.hire@example.com")
        new_id = created.json()["id"]

        duplicate = self.client.post(
            "/api/employees",
            headers=headers,
            json={
                "email": "new.hire@example.com",
                "password": "secret123",
                "first_name": "Again",
                "last_name": "Hire",
                "position": "Analyst",
                "department": "Finance",
            },
        )
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["error"]["code"], "EMAIL_TAKEN")

        listed = self.client.get("/api/employees", headers=headers, params={"department": "Finance"}).json()
        self.assertEqual([item["id"] for item in listed["items"]], [new_id])

        updated = self.client.patch(f"/api/employees/{new_id}", headers=headers, json={"is_active": False})
        self.assertEqual(updated.status_code, 200)
        self.assertFalse(updated.json()["is_active"])

    def test_employee_can_read_own_detail_only(self) -> None:
        own = self.client.get(f"/api/employees/{self.employee_id}", headers=self._headers(self.employee_id))
        other = self.client.get(f"/api/employees/{self.colleague_id}", headers=self._headers(self.employee_id))

        self.assertEqual(own.status_code, 200)
        self.assertEqual(own.json()["employee"]["id"], self.employee_id)
        self.assertEqual(other.status_code, 403)

    def test_admin_cannot_delete_self(self) -> None:
        response = self.client.delete(f"/api/employees/{self.admin_id}", headers=self._headers(self.admin_id))
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "CANNOT_DELETE_SELF")


class DashboardApiTests(ApiTestCase):
    def test_dashboards_by_role(self) -> None:
        admin_view = self.client.get("/api/dashboard/admin", headers=self._headers(self.admin_id))
        employee_blocked = self.client.get("/api/dashboard/admin", headers=self._headers(self.employee_id))
        employee_view = self.client.get("/api/dashboard/employee", headers=self._headers(self.employee_id))

        self.assertEqual(admin_view.status_code, 200)
        self.assertEqual(admin_view.json()["employees"]["total"], 4)
        self.assertEqual(employee_blocked.status_code, 403)
        self.assertEqual(employee_view.status_code, 200)
        self.assertEqual(len(employee_view.json()["last_7_days"]), 7)

    def test_summary_window(self) -> None:
        response = self.client.get(
            "/api/dashboard/summary",
            headers=self._headers(self.hr_id),
            params={"window": "month", "reference": "2024-02-10"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["start_date"], "2024-02-01")
        self.assertEqual(response.json()["end_date"], "2024-02-29")


if __name__ == "__main__":
    unittest.main()
