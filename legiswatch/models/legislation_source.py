from sqlalchemy import Column, String, Text, Boolean, DateTime, JSON
from datetime import datetime

from ..core.db import Base


class LegislationSource(Base):
    """
    Durable record for one provider. The primary key equals the adapter id
    in the AdapterRegistry. Rows are never deleted; disabling flips ``enabled``.
    """
    __tablename__ = "legislation_sources"

    id = Column(String(64), primary_key=True)  # 'federal_register', 'legiscan', ...
    name = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)

    state_filter = Column(JSON, nullable=True)  # ["UT", "TX", ...]
    topic_filter = Column(JSON, nullable=True)  # ["landlord_tenant", ...]

    last_cursor = Column(Text, nullable=True)
    last_seen_date = Column(DateTime, nullable=True)
    last_run_at = Column(DateTime, nullable=True)
    last_run_status = Column(String(16), nullable=True)
    last_run_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
