"""Provider (application user) model definitions."""

from uuid import uuid4

from sqlalchemy import Column, String

from agenda.database import Base


class User(Base):
    """A provider who owns a calendar of appointments and working hours."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String, default="provider")
