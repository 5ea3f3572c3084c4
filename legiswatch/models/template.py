from sqlalchemy import Column, String, Text, Boolean, DateTime, Uuid
from datetime import datetime
import uuid

from ..core.db import Base


class Template(Base):
    """
    Read surface of the document templates owned by the rendering engine.
    Only the fields topic routing needs live here.
    """
    __tablename__ = "templates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    category = Column(String(64), nullable=True)  # 'lease', 'eviction', 'tribal', ...
    state_code = Column(String(2), nullable=True)  # None for multi-state / federal templates
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
