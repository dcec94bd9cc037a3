"""Create visit table

Revision ID: 002
Revises: 001
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "visit",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("circle_id", sa.Integer(), nullable=False),
        sa.Column("visitor_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("scheduled_start", sa.DateTime(), nullable=True),
        sa.Column("scheduled_end", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="scheduled"),
        sa.Column("has_voice_note", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_visit_circle_id"), "visit", ["circle_id"])
    op.create_index(op.f("ix_visit_visitor_id"), "visit", ["visitor_id"])


def downgrade() -> None:
    op.drop_index(op.f("ix_visit_visitor_id"), table_name="visit")
    op.drop_index(op.f("ix_visit_circle_id"), table_name="visit")
    op.drop_table("visit")
