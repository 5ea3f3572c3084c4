"""
TemplateReviewQueue model: one pending human-approval task per
(template, triggering update) pair.

Lifecycle:
1. PENDING     - queued by the publish engine
2. IN_REVIEW   - an attorney picked it up
3. APPROVED    - changes approved, waiting for the publication step
4. REJECTED    - no change needed (terminal)
5. PUBLISHED   - approved changes are live (terminal)
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    JSON,
    Index,
    UniqueConstraint,
    Uuid,
)
from datetime import datetime
import uuid
import enum

from ..core.db import Base, enum_column_type


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHED = "published"


class TemplateReviewQueue(Base):
    __tablename__ = "template_review_queue"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id = Column(Uuid, ForeignKey("templates.id"), nullable=False)
    normalized_update_id = Column(Uuid, ForeignKey("normalized_updates.id"), nullable=False)
    release_batch_id = Column(Uuid, ForeignKey("release_batches.id"), nullable=True)
    jurisdiction = Column(String(2), nullable=True)  # state code if state-specific

    status = Column(
        enum_column_type(ReviewStatus, "review_status"),
        nullable=False,
        default=ReviewStatus.PENDING,
    )
    priority = Column(Integer, nullable=False, default=5)  # 1-10, higher = more urgent
    reason = Column(Text, nullable=False)

    # Attorney workflow
    assigned_to = Column(String, nullable=True)
    review_started_at = Column(DateTime, nullable=True)
    review_completed_at = Column(DateTime, nullable=True)
    approval_notes = Column(Text, nullable=True)
    approved_changes = Column(JSON, nullable=True)

    queued_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    published_at = Column(DateTime, nullable=True)
    published_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        # Re-running the pipeline must never queue the same cause twice
        UniqueConstraint("template_id", "normalized_update_id", name="uq_review_template_update"),
        Index("ix_review_queue_status", "status"),
        Index("ix_review_queue_release_batch_id", "release_batch_id"),
    )
