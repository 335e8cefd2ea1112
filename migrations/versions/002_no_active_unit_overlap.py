"""DB-level exclusion constraint against double booking.

Prevents two bookings in active statuses (pending, confirmed) on the same
unit from covering overlapping date ranges. The booking coordinator's
in-transaction re-check is the first layer; this constraint holds even if
application code is bypassed, and its violation is what a losing
concurrent writer sees.

Revision ID: 002_no_active_unit_overlap
Revises: 001_fleet_schema
Create Date: 2026-10-19
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "002_no_active_unit_overlap"
down_revision = "001_fleet_schema"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "002_no_active_unit_overlap.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text())


def downgrade() -> None:
    op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS no_active_unit_overlap")
    # btree_gist is intentionally kept
