"""Instance model definitions."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String
from scheduler.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Instance(Base):
    """Organization that owns calendars and defines business hours."""
    __tablename__ = "instances"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    email = Column(String)
    phone = Column(String)
    timezone = Column(String, nullable=False, default="America/Sao_Paulo")
    business_hours = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
