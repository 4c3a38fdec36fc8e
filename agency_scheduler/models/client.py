"""Client model definitions."""

from sqlalchemy import Column, Integer, String
from agency_scheduler.database import Base


class Client(Base):
    """Represents an agency client that bookings are made for."""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    company = Column(String, nullable=True)
