from sqlalchemy import (
    Column,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Index,
    Uuid,
    text,
)
from datetime import datetime
import uuid
import enum

from ..core.db import Base, enum_column_type


class JurisdictionLevel(str, enum.Enum):
    FEDERAL = "federal"
    STATE = "state"
    TRIBAL = "tribal"
    LOCAL = "local"


class ItemType(str, enum.Enum):
    BILL = "bill"
    REGULATION = "regulation"
    CASE = "case"
    NOTICE = "notice"
    CFR_CHANGE = "cfr_change"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TopicTag(str, enum.Enum):
    LANDLORD_TENANT = "landlord_tenant"
    NAHASDA_CORE = "nahasda_core"
    TRIBAL_ADJACENT = "tribal_adjacent"
    IHBG = "ihbg"
    HUD_GENERAL = "hud_general"
    FAIR_HOUSING = "fair_housing"
    SECURITY_DEPOSIT = "security_deposit"
    EVICTION = "eviction"
    ENVIRONMENTAL = "environmental"
    PROCUREMENT = "procurement"
    INCOME_LIMITS = "income_limits"
    NOT_RELEVANT = "not_relevant"


# A source whose topic filter touches any of these asks adapters for tribal content.
TRIBAL_TOPICS = frozenset(
    {TopicTag.NAHASDA_CORE, TopicTag.IHBG, TopicTag.TRIBAL_ADJACENT}
)


class NormalizedUpdate(Base):
    """
    Canonical internal representation of one legislative change.

    Immutable after creation except for the processing flags flipped by the
    publish engine (``is_processed`` / ``is_queued``).
    """
    __tablename__ = "normalized_updates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    source_id = Column(String(64), ForeignKey("legislation_sources.id"), nullable=False)
    raw_item_id = Column(Uuid, ForeignKey("raw_legislation_items.id"), nullable=True)
    source_key = Column(Text, nullable=False)
    cross_ref_key = Column(Text, nullable=True)  # e.g. 'UT-HB123-2026', 'FR-2025-01234'

    item_type = Column(enum_column_type(ItemType, "legislation_item_type"), nullable=False)
    jurisdiction_level = Column(
        enum_column_type(JurisdictionLevel, "jurisdiction_level"), nullable=False
    )
    jurisdiction_state = Column(String(2), nullable=True)
    jurisdiction_tribe = Column(Text, nullable=True)

    title = Column(Text, nullable=False)
    summary = Column(Text, nullable=True)
    status = Column(Text, nullable=True)
    introduced_date = Column(DateTime, nullable=True)
    effective_date = Column(DateTime, nullable=True)
    published_at = Column(DateTime, nullable=True)
    url = Column(Text, nullable=True)
    pdf_url = Column(Text, nullable=True)

    topics = Column(JSON, nullable=False, default=list)  # List[TopicTag value]
    severity = Column(enum_column_type(Severity, "severity_level"), nullable=True)
    cfr_references = Column(JSON, nullable=True)  # [{title, part, section}]

    is_duplicate = Column(Boolean, nullable=False, default=False)
    duplicate_of_id = Column(Uuid, ForeignKey("normalized_updates.id"), nullable=True)
    is_processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    is_queued = Column(Boolean, nullable=False, default=False)
    queued_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_normalized_updates_source_id", "source_id"),
        Index("ix_normalized_updates_cross_ref_key", "cross_ref_key"),
        Index("ix_normalized_updates_jurisdiction", "jurisdiction_level", "jurisdiction_state"),
        Index("ix_normalized_updates_is_processed", "is_processed"),
        # At most one original per cross-reference key
        Index(
            "uq_normalized_updates_cross_ref_original",
            "cross_ref_key",
            unique=True,
            postgresql_where=text("is_duplicate = false"),
            sqlite_where=text("is_duplicate = 0"),
        ),
    )
