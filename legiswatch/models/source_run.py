from sqlalchemy import Column, Integer, String, Text, DateTime, Index, Uuid
from datetime import datetime
import uuid
import enum

from ..core.db import Base, enum_column_type


class SourceRunStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SourceRunStatus.RUNNING


class SourceRun(Base):
    """
    One ingestion attempt for one source.

    Created as RUNNING before the adapter is called and finalized exactly once.
    Only SUCCESS runs contribute their ``cursor_after`` to the next run.
    """
    __tablename__ = "source_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    source_key = Column(String(64), nullable=False)
    status = Column(
        enum_column_type(SourceRunStatus, "source_run_status"),
        nullable=False,
        default=SourceRunStatus.RUNNING,
    )
    cursor_before = Column(Text, nullable=True)
    cursor_after = Column(Text, nullable=True)
    items_fetched = Column(Integer, nullable=False, default=0)
    new_items_count = Column(Integer, nullable=False, default=0)
    duplicates_skipped = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_source_runs_source_key", "source_key"),
        Index("ix_source_runs_started_at", "started_at"),
    )
