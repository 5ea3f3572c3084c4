from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index, Uuid
from datetime import datetime
import uuid

from ..core.db import Base, enum_column_type
from .normalized_update import JurisdictionLevel


class TemplateTopicRouting(Base):
    """Many-to-many edge: (template, topic, jurisdiction scope). Deactivated, never deleted."""
    __tablename__ = "template_topic_routing"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id = Column(Uuid, ForeignKey("templates.id"), nullable=False)
    topic = Column(String(64), nullable=False)
    jurisdiction_level = Column(
        enum_column_type(JurisdictionLevel, "jurisdiction_level"), nullable=True
    )
    jurisdiction_state = Column(String(2), nullable=True)
    jurisdiction_tribe = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_routing_template_id", "template_id"),
        Index("ix_routing_topic", "topic"),
    )
