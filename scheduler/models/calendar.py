"""Calendar model definitions."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from scheduler.database import Base
from scheduler.models.instance import _utcnow


class Calendar(Base):
    """External calendar bookable for an instance; priority 1 is highest."""
    __tablename__ = "calendars"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    instance_id = Column(String, ForeignKey("instances.id"), nullable=False, index=True)
    external_calendar_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    description = Column(String)
    priority = Column(Integer, nullable=False, default=1)
    color = Column(String)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
