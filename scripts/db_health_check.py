#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.services.schema_guard import EXPECTED_ALEMBIC_HEAD, REQUIRED_TABLE_COLUMNS
from app.settings import get_settings


def _orphan_ids(conn: Connection, *, table: str, fk_column: str, parent: str) -> list[int]:
    rows = conn.execute(
        text(
            f"""
            select c.id
            from {table} c
            left join {parent} p on p.id = c.{fk_column}
            where p.id is null
            limit 20
            """
        )
    ).fetchall()
    return [row[0] for row in rows]


def run() -> dict[str, Any]:
    database_url = get_settings().database_url
    engine = create_engine(database_url)
    report: dict[str, Any] = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database": engine.url.render_as_string(hide_password=True),
        "checks": [],
    }

    def add(name: str, status: str, details: dict[str, Any]) -> None:
        report["checks"].append({"name": name, "status": status, "details": details})

    with engine.connect() as conn:
        tables = set(inspect(conn).get_table_names())

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0] for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_ALEMBIC_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_ALEMBIC_HEAD, "current": current_versions},
        )

        missing_tables = sorted(table for table in REQUIRED_TABLE_COLUMNS if table not in tables)
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})

        if "attendances" in tables:
            unique_names = {item.get("name") for item in inspect(conn).get_unique_constraints("attendances")}
            add(
                "attendance_day_key_constraint",
                "ok" if "uq_attendances_employee_day" in unique_names else "fail",
                {"constraints": sorted(str(name) for name in unique_names)},
            )

            duplicate_days = conn.execute(
                text(
                    """
                    select employee_id, day_date, count(*)
                    from attendances
                    group by employee_id, day_date
                    having count(*) > 1
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "duplicate_attendance_days",
                "fail" if duplicate_days else "ok",
                {"rows": [[row[0], str(row[1]), row[2]] for row in duplicate_days]},
            )

            checkout_without_checkin = conn.execute(
                text(
                    """
                    select id
                    from attendances
                    where check_out is not null and (check_in is null or check_out < check_in)
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "attendance_invalid_check_out",
                "fail" if checkout_without_checkin else "ok",
                {"sample_ids": [row[0] for row in checkout_without_checkin]},
            )

            orphans = _orphan_ids(conn, table="attendances", fk_column="employee_id", parent="employees")
            add("attendance_orphan_employee", "fail" if orphans else "ok", {"sample_ids": orphans})

        if "leave_requests" in tables:
            overlapping = conn.execute(
                text(
                    """
                    select a.id, b.id, a.employee_id
                    from leave_requests a
                    join leave_requests b
                      on a.employee_id = b.employee_id
                     and a.id < b.id
                     and a.start_date <= b.end_date
                     and b.start_date <= a.end_date
                    where a.status in ('PENDING', 'APPROVED')
                      and b.status in ('PENDING', 'APPROVED')
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "overlapping_active_leave_requests",
                "fail" if overlapping else "ok",
                {"pairs": [list(row) for row in overlapping]},
            )

            orphans = _orphan_ids(conn, table="leave_requests", fk_column="employee_id", parent="employees")
            add("leave_orphan_employee", "fail" if orphans else "ok", {"sample_ids": orphans})

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
