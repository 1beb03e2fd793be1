"""Working hours model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Time

from agenda.database import Base


class WorkingHours(Base):
    """A provider's working window for one weekday (0 = Sunday ... 6 = Saturday)."""
    __tablename__ = "working_hours"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
