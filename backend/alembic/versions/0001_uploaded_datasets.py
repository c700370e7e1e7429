"""uploaded_datasets and file_history

Revision ID: 0001_uploaded_datasets
Revises:
Create Date: 2026-10-19

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_uploaded_datasets"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """目的: 初期スキーマ（uploaded_datasets / file_history）を作成する。"""
    op.create_table(
        "uploaded_datasets",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "data",
            sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql"),
            nullable=False,
        ),
        sa.Column("record_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("file_type", sa.String(length=32), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_uploaded_datasets_user_id", "uploaded_datasets", ["user_id"])

    op.create_table(
        "file_history",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("action IN ('upload', 'download')", name="ck_file_history_action"),
    )
    op.create_index("ix_file_history_user_id", "file_history", ["user_id"])


def downgrade() -> None:
    """目的: 初期スキーマ（uploaded_datasets / file_history）を削除する。"""
    op.drop_index("ix_file_history_user_id", table_name="file_history")
    op.drop_table("file_history")
    op.drop_index("ix_uploaded_datasets_user_id", table_name="uploaded_datasets")
    op.drop_table("uploaded_datasets")
