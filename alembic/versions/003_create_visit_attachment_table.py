"""Create visit_attachment table

Revision ID: 003
Revises: 002
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "003"
down_revision: str | None = "002"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "visit_attachment",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("visit_id", sa.Integer(), sa.ForeignKey("visit.id"), nullable=False),
        sa.Column("uploader_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("storage_path", sa.String(length=512), nullable=False),
        sa.Column("thumbnail_path", sa.String(length=512), nullable=True),
        sa.Column("file_name", sa.String(length=512), nullable=False),
        sa.Column("mime_type", sa.String(length=128), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("caption", sa.String(length=200), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("compression_quality", sa.Integer(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("transcription", sa.Text(), nullable=True),
        sa.Column("original_file_size", sa.Integer(), nullable=True),
        sa.Column("compressed_file_size", sa.Integer(), nullable=True),
        sa.Column("upload_status", sa.String(length=32), nullable=False, server_default="completed"),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("storage_path", name="uq_visit_attachment_storage_path"),
        sa.UniqueConstraint("thumbnail_path", name="uq_visit_attachment_thumbnail_path"),
    )
    op.create_index(op.f("ix_visit_attachment_visit_id"), "visit_attachment", ["visit_id"])
    op.create_index(op.f("ix_visit_attachment_uploader_id"), "visit_attachment", ["uploader_id"])
    op.create_index(op.f("ix_visit_attachment_kind"), "visit_attachment", ["kind"])


def downgrade() -> None:
    op.drop_index(op.f("ix_visit_attachment_kind"), table_name="visit_attachment")
    op.drop_index(op.f("ix_visit_attachment_uploader_id"), table_name="visit_attachment")
    op.drop_index(op.f("ix_visit_attachment_visit_id"), table_name="visit_attachment")
    op.drop_table("visit_attachment")
