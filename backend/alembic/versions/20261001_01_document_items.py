"""Create document items and settings tables.

Revision ID: 20261001_01
Revises: 
Create Date: 2026-10-01 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "document_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("container", sa.String(length=64), nullable=False),
        sa.Column("item_id", sa.String(length=64), nullable=False),
        sa.Column("partition_key", sa.String(length=128), nullable=False),
        sa.Column("etag", sa.String(length=64), nullable=False),
        sa.Column("body", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("container", "item_id", name="uq_document_items_container_item"),
    )
    op.create_index(
        "ix_document_items_partition",
        "document_items",
        ["container", "partition_key"],
    )

    op.create_table(
        "settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("key", name="uq_settings_key"),
    )


def downgrade() -> None:
    op.drop_table("settings")
    op.drop_index("ix_document_items_partition", table_name="document_items")
    op.drop_table("document_items")
