"""Blocked slot model definitions."""

from sqlalchemy import Column, Date, ForeignKey, Integer, String, Time

from agenda.database import Base


class BlockedSlot(Base):
    """A window on a given date that is never offered for booking."""
    __tablename__ = "blocked_slots"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    reason = Column(String)
