"""Appointment model definitions."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from scheduler.database import Base
from scheduler.models.instance import _utcnow

APPOINTMENT_STATUSES = ("scheduled", "confirmed", "cancelled", "completed")


class Appointment(Base):
    """Represents a booked appointment mirrored as a provider event."""
    __tablename__ = "appointments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    instance_id = Column(String, ForeignKey("instances.id"), index=True)
    calendar_id = Column(String, ForeignKey("calendars.id"), nullable=False)
    service_id = Column(String, ForeignKey("services.id"), nullable=False)
    external_event_id = Column(String)
    title = Column(String)
    description = Column(String)
    start_datetime = Column(DateTime(timezone=True), nullable=False)
    end_datetime = Column(DateTime(timezone=True), nullable=False)
    client_name = Column(String)
    client_email = Column(String)
    client_phone = Column(String)
    status = Column(String, nullable=False, default="scheduled")
    flow_id = Column(Integer)
    agent_id = Column(Integer)
    user_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
