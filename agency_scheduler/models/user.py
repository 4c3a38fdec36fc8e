"""User model definitions."""

from sqlalchemy import Column, Integer, String
from agency_scheduler.database import Base


ADMIN_ROLE = "admin"
SERVICE_MANAGER_ROLE = "service_manager"
TEAM_MEMBER_ROLE = "team_member"
CLIENT_ROLE = "client"

BOOKING_MANAGER_ROLES = (ADMIN_ROLE, SERVICE_MANAGER_ROLE)


class User(Base):
    """Represents an agency user. Hosts and booking creators are users."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    role = Column(String, default=TEAM_MEMBER_ROLE)  # admin/service_manager/team_member/client
