from sqlalchemy import Column, Integer, String, Text, DateTime, Index, Uuid, text
from datetime import datetime
import uuid
import enum

from ..core.db import Base, enum_column_type


class BatchType(str, enum.Enum):
    MONTHLY = "monthly"
    MANUAL = "manual"


class BatchStatus(str, enum.Enum):
    RUNNING = "running"
    NO_CHANGES = "no_changes"
    PENDING_REVIEW = "pending_review"
    PUBLISHED = "published"
    FAILED = "failed"


class ReleaseBatch(Base):
    __tablename__ = "release_batches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_type = Column(
        enum_column_type(BatchType, "release_batch_type"),
        nullable=False,
        default=BatchType.MONTHLY,
    )
    period = Column(String(7), nullable=False)  # 'YYYY-MM'
    status = Column(
        enum_column_type(BatchStatus, "release_batch_status"),
        nullable=False,
        default=BatchStatus.RUNNING,
    )
    updates_processed = Column(Integer, nullable=False, default=0)
    templates_queued = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    published_at = Column(DateTime, nullable=True)
    summary_report = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_release_batches_period", "period"),
        Index("ix_release_batches_status", "status"),
        # A second trigger for the same period loses the race on insert
        Index(
            "uq_release_batches_running_period",
            "period",
            "batch_type",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )
