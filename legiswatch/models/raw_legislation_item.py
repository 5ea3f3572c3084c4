from sqlalchemy import Column, String, Text, DateTime, ForeignKey, JSON, Index, Uuid
from datetime import datetime
import uuid

from ..core.db import Base


class RawLegislationItem(Base):
    """Verbatim capture of one fetched item. Write-once audit layer."""
    __tablename__ = "raw_legislation_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    source_id = Column(String(64), ForeignKey("legislation_sources.id"), nullable=False)
    external_id = Column(Text, nullable=False)  # provider-native id (bill_id, document_number, ...)
    url = Column(Text, nullable=True)
    published_at = Column(DateTime, nullable=True)
    title = Column(Text, nullable=False)
    body = Column(Text, nullable=True)
    raw_data = Column(JSON, nullable=False)  # RawPayload.model_dump()
    content_hash = Column(String(32), nullable=True)  # coarse fingerprint, not the dedup key
    fetched_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_raw_items_source_id", "source_id"),
        Index("ix_raw_items_external_id", "external_id"),
        Index("ix_raw_items_published_at", "published_at"),
    )
