"""Daily attendance ledger

Revision ID: 0002_attendances
Revises: 0001_identity
Create Date: 2026-10-19 00:10:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_attendances"
down_revision: Union[str, None] = "0001_identity"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

attendance_status = postgresql.ENUM(
    "PRESENT",
    "ABSENT",
    "LATE",
    "HALF_DAY",
    name="attendance_status",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    attendance_status.create(bind, checkfirst=True)

    op.create_table(
        "attendances",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("check_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("work_hours", sa.Float(), nullable=True),
        sa.Column("status", attendance_status, nullable=False, server_default=sa.text("'PRESENT'")),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "day_date", name="uq_attendances_employee_day"),
        sa.CheckConstraint(
            "check_out IS NULL OR (check_in IS NOT NULL AND check_out >= check_in)",
            name="ck_attendances_check_out_after_check_in",
        ),
    )
    op.create_index("ix_attendances_employee_id", "attendances", ["employee_id"], unique=False)
    op.create_index("ix_attendances_day_date", "attendances", ["day_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_attendances_day_date", table_name="attendances")
    op.drop_index("ix_attendances_employee_id", table_name="attendances")
    op.drop_table("attendances")

    bind = op.get_bind()
    attendance_status.drop(bind, checkfirst=True)
