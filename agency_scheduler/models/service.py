"""Service model definitions."""

from sqlalchemy import Column, Integer, Numeric, String, Text
from agency_scheduler.database import Base


class Service(Base):
    """Represents a sellable service a booking can be attached to."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
