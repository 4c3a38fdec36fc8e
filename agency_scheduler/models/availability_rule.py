"""Availability rule model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from agency_scheduler.database import Base


class AvailabilityRule(Base):
    """Weekly recurring window in which a host accepts bookings.

    ``day_of_week`` counts from Sunday (0) to Saturday (6). ``start_time`` and
    ``end_time`` are local ``HH:MM`` strings.
    """
    __tablename__ = "availability_rules"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
