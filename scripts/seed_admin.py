#!/usr/bin/env python
"""Create the first ADMIN account.

Usage: python scripts/seed_admin.py admin@example.com 'password' [--first-name Ada] [--last-name Admin]
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.db import SessionLocal
from app.errors import ApiError
from app.logging_utils import setup_json_logging
from app.models import Role
from app.services.employees import create_user_with_employee
from app.settings import get_settings

logger = logging.getLogger("app.seed")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an administrator account.")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--first-name", default="System")
    parser.add_argument("--last-name", default="Administrator")
    parser.add_argument("--department", default="Management")
    parser.add_argument("--role", choices=[Role.ADMIN.value, Role.HR.value], default=Role.ADMIN.value)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    setup_json_logging(get_settings().log_level)
    args = parse_args(argv)
    db = SessionLocal()
    try:
        employee = create_user_with_employee(
            db,
            email=args.email,
            password=args.password,
            role=Role(args.role),
            first_name=args.first_name,
            last_name=args.last_name,
            position="Administrator",
            department=args.department,
        )
    except ApiError as exc:
        logger.error("seed_admin_failed", extra={"code": exc.code, "reason": exc.message})
        return 1
    finally:
        db.close()

    print(json.dumps({"user_id": employee.user_id, "employee_id": employee.id, "role": args.role}))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
