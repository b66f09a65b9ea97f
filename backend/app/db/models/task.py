"""Task ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.db.types import utcnow


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_milestone_id", "milestone_id"),
        Index("ix_tasks_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    milestone_id = Column(
        UUID(as_uuid=True),
        ForeignKey("milestones.id", ondelete="CASCADE"),
        nullable=False,
    )
    title = Column(Text, nullable=False)
    # Plain text, or a JSON envelope {"text", "subtasks"}; see app.services.description_codec.
    description = Column(Text, nullable=True)
    due_date = Column(Date, nullable=True)
    priority = Column(String(length=20), nullable=False, server_default=sa_text("'MEDIUM'"))
    status = Column(String(length=20), nullable=False, server_default=sa_text("'PENDING'"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )
