import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declared_attr

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String)
    is_admin = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Exhibit(Base):
    __tablename__ = "exhibits"
    uuid = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(String, default="exhibit", nullable=False)
    title = Column(String, nullable=False)
    subtitle = Column(String)
    description = Column(Text)
    styles = Column(Text, default="{}", nullable=False)
    order = Column(Integer, default=0, nullable=False)
    is_published = Column(Boolean, default=False, nullable=False)
    is_locked = Column(Boolean, default=False, nullable=False)
    locked_by_user = Column(UUID(as_uuid=True), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created = Column(DateTime(timezone=True), default=utcnow)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    updated = Column(DateTime(timezone=True), default=utcnow)
    updated_by = Column(UUID(as_uuid=True), nullable=True)


class ContentRecordMixin:
    """Columns shared by every content record kind."""

    uuid = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order = Column(Integer, default=0, nullable=False)
    styles = Column(Text, default="{}", nullable=False)
    is_published = Column(Boolean, default=False, nullable=False)
    # purpose: advisory single-editor lock; is_locked iff locked_by_user is set
    is_locked = Column(Boolean, default=False, nullable=False)
    locked_by_user = Column(UUID(as_uuid=True), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created = Column(DateTime(timezone=True), default=utcnow)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    updated = Column(DateTime(timezone=True), default=utcnow)
    updated_by = Column(UUID(as_uuid=True), nullable=True)

    @declared_attr
    def is_member_of_exhibit(cls):
        return Column(
            UUID(as_uuid=True),
            ForeignKey("exhibits.uuid"),
            nullable=False,
            index=True,
        )


class HeadingRecord(ContentRecordMixin, Base):
    __tablename__ = "heading_records"
    type = Column(String, default="heading", nullable=False)
    text = Column(Text, nullable=False)
    subtext = Column(Text)


class ItemRecord(ContentRecordMixin, Base):
    __tablename__ = "item_records"
    type = Column(String, default="item", nullable=False)
    item_type = Column(String, default="text", nullable=False)
    title = Column(String)
    caption = Column(Text)
    description = Column(Text)
    text = Column(Text)
    mime_type = Column(String)
    media = Column(String)
    thumbnail = Column(String)
    layout = Column(String)
    media_width = Column(String)
    alt_text = Column(Text)
    date = Column(String)


class GridRecord(ContentRecordMixin, Base):
    __tablename__ = "grid_records"
    type = Column(String, default="grid", nullable=False)
    title = Column(String)
    text = Column(Text)
    columns = Column(Integer, default=4, nullable=False)


class GridItemRecord(ContentRecordMixin, Base):
    __tablename__ = "grid_item_records"
    is_member_of_grid = Column(
        UUID(as_uuid=True), ForeignKey("grid_records.uuid"), nullable=False, index=True
    )
    type = Column(String, default="item", nullable=False)
    item_type = Column(String, default="text", nullable=False)
    title = Column(String)
    caption = Column(Text)
    description = Column(Text)
    text = Column(Text)
    mime_type = Column(String)
    media = Column(String)
    thumbnail = Column(String)
    date = Column(String)


class TimelineRecord(ContentRecordMixin, Base):
    __tablename__ = "timeline_records"
    type = Column(String, default="vertical_timeline", nullable=False)
    title = Column(String)
    text = Column(Text)


class TimelineItemRecord(ContentRecordMixin, Base):
    __tablename__ = "timeline_item_records"
    is_member_of_timeline = Column(
        UUID(as_uuid=True), ForeignKey("timeline_records.uuid"), nullable=False, index=True
    )
    type = Column(String, default="item", nullable=False)
    item_type = Column(String, default="text", nullable=False)
    title = Column(String)
    caption = Column(Text)
    description = Column(Text)
    text = Column(Text)
    mime_type = Column(String)
    media = Column(String)
    thumbnail = Column(String)
    date = Column(String, nullable=False)


class RepublishJob(Base):
    __tablename__ = "republish_jobs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # purpose: opaque per-dispatch token; a job only runs while it is the record's latest
    token = Column(String(32), nullable=False, default=lambda: uuid.uuid4().hex)
    kind = Column(String, nullable=False)
    record_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    exhibit_id = Column(UUID(as_uuid=True), nullable=False)
    parent_id = Column(UUID(as_uuid=True), nullable=True)
    status = Column(String, default="scheduled", nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    run_after = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('scheduled', 'running', 'completed', 'superseded', 'cancelled', 'failed')",
            name="ck_republish_jobs_status",
        ),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(UUID(as_uuid=True))
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
