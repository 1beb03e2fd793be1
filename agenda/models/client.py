"""Client model definitions."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, String

from agenda.database import Base

CLIENT_ACTIVE = 'active'
CLIENT_INACTIVE = 'inactive'
CLIENT_ARCHIVED = 'archived'
CLIENT_STATUSES = (CLIENT_ACTIVE, CLIENT_INACTIVE, CLIENT_ARCHIVED)


class Client(Base):
    """A client served by a provider."""
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    provider_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(20), nullable=False)
    birth_date = Column(Date)
    cpf = Column(String(14))
    address = Column(String(500))
    city = Column(String(100))
    state = Column(String(2))
    zip_code = Column(String(9))
    emergency_contact = Column(String(255))
    emergency_phone = Column(String(20))
    status = Column(String, default=CLIENT_ACTIVE, nullable=False)
    notes = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
