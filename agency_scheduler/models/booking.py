"""Booking model definitions."""

import enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from agency_scheduler.database import Base
from agency_scheduler.models.client import Client
from agency_scheduler.models.service import Service
from agency_scheduler.models.user import User


class BookingStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class Booking(Base):
    """Represents a scheduled meeting between a host and a client."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    meeting_url = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=BookingStatus.CONFIRMED.value)
    attendees = Column(JSON, nullable=False, default=list)

    google_event_id = Column(String, nullable=True)
    cancel_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship(Client)
    service = relationship(Service)
    host = relationship(User, foreign_keys=[host_id])
    creator = relationship(User, foreign_keys=[created_by])
