"""Fleet schema: unit groups, policies, units, bookings, blocks (SQL-only).

Revision ID: 001_fleet_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_fleet_schema"
down_revision = None
branch_labels = None
depends_on = None


def _read_sql() -> str:
    sql_path = Path(__file__).resolve().parents[1] / "sql" / "001_fleet_schema.sql"
    return sql_path.read_text(encoding="utf-8")


def upgrade() -> None:
    # Raw execution to support the DO $$ ... $$ block
    conn = op.get_bind()
    conn.exec_driver_sql(_read_sql())


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql(
        """
        DROP TABLE IF EXISTS unit_blocks;
        DROP TABLE IF EXISTS bookings;
        DROP TABLE IF EXISTS units;
        DROP TABLE IF EXISTS group_policies;
        DROP TABLE IF EXISTS unit_groups;
        DROP TYPE IF EXISTS booking_status;
        """
    )
