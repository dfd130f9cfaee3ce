"""Exhibit content records, republish jobs and audit log."""

from __future__ import annotations

from typing import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: str | Sequence[str] | None = None
branch_labels = None
depends_on = None


def _record_columns() -> list[sa.Column]:
    return [
        sa.Column("uuid", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("is_member_of_exhibit", postgresql.UUID(as_uuid=True), sa.ForeignKey("exhibits.uuid"), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("styles", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("locked_by_user", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.PrimaryKeyConstraint("uuid"),
    ]


def _media_columns(date_nullable: bool = True) -> list[sa.Column]:
    return [
        sa.Column("type", sa.String(), nullable=False, server_default="item"),
        sa.Column("item_type", sa.String(), nullable=False, server_default="text"),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("mime_type", sa.String(), nullable=True),
        sa.Column("media", sa.String(), nullable=True),
        sa.Column("thumbnail", sa.String(), nullable=True),
        sa.Column("date", sa.String(), nullable=date_nullable),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "exhibits",
        sa.Column("uuid", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(), nullable=False, server_default="exhibit"),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("subtitle", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("styles", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("locked_by_user", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.PrimaryKeyConstraint("uuid"),
    )

    op.create_table(
        "heading_records",
        *_record_columns(),
        sa.Column("type", sa.String(), nullable=False, server_default="heading"),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("subtext", sa.Text(), nullable=True),
    )
    op.create_table(
        "item_records",
        *_record_columns(),
        *_media_columns(),
        sa.Column("layout", sa.String(), nullable=True),
        sa.Column("media_width", sa.String(), nullable=True),
        sa.Column("alt_text", sa.Text(), nullable=True),
    )
    op.create_table(
        "grid_records",
        *_record_columns(),
        sa.Column("type", sa.String(), nullable=False, server_default="grid"),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("columns", sa.Integer(), nullable=False, server_default="4"),
    )
    op.create_table(
        "timeline_records",
        *_record_columns(),
        sa.Column("type", sa.String(), nullable=False, server_default="vertical_timeline"),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
    )
    op.create_table(
        "grid_item_records",
        *_record_columns(),
        sa.Column("is_member_of_grid", postgresql.UUID(as_uuid=True), sa.ForeignKey("grid_records.uuid"), nullable=False),
        *_media_columns(),
    )
    op.create_table(
        "timeline_item_records",
        *_record_columns(),
        sa.Column("is_member_of_timeline", postgresql.UUID(as_uuid=True), sa.ForeignKey("timeline_records.uuid"), nullable=False),
        *_media_columns(date_nullable=False),
    )
    for table in ("heading_records", "item_records", "grid_records", "timeline_records", "grid_item_records", "timeline_item_records"):
        op.create_index(f"ix_{table}_is_member_of_exhibit", table, ["is_member_of_exhibit"])
    op.create_index("ix_grid_item_records_is_member_of_grid", "grid_item_records", ["is_member_of_grid"])
    op.create_index("ix_timeline_item_records_is_member_of_timeline", "timeline_item_records", ["is_member_of_timeline"])

    op.create_table(
        "republish_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("token", sa.String(length=32), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("record_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("exhibit_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("parent_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("run_after", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'running', 'completed', 'superseded', 'cancelled', 'failed')",
            name="ck_republish_jobs_status",
        ),
    )
    op.create_index("ix_republish_jobs_record_id", "republish_jobs", ["record_id"])
    op.create_index("ix_republish_jobs_status", "republish_jobs", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("target_type", sa.String(), nullable=True),
        sa.Column("target_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_index("ix_republish_jobs_status", table_name="republish_jobs")
    op.drop_index("ix_republish_jobs_record_id", table_name="republish_jobs")
    op.drop_table("republish_jobs")
    for table in ("timeline_item_records", "grid_item_records", "timeline_records", "grid_records", "item_records", "heading_records"):
        op.drop_table(table)
    op.drop_table("exhibits")
    op.drop_table("users")
