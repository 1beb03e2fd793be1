"""Appointment model definitions."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Time

from agenda.database import Base

SCHEDULED = 'scheduled'
CONFIRMED = 'confirmed'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'
CANCELLED = 'cancelled'
NO_SHOW = 'no_show'

APPOINTMENT_STATUSES = (SCHEDULED, CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW)
# Appointments in these states never block time.
INACTIVE_STATUSES = (CANCELLED, NO_SHOW)
# Appointments in these states are finalized once their date has passed.
OPEN_STATUSES = (SCHEDULED, CONFIRMED, IN_PROGRESS)

PAYMENT_PENDING = 'pending'
PAYMENT_PAID = 'paid'
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, 'partial', 'cancelled', 'refunded')
PAYMENT_METHODS = ('cash', 'pix', 'credit_card', 'debit_card', 'bank_transfer', 'boleto')

SESSION_TYPES = (
    'individual_session',
    'couple_session',
    'family_session',
    'group_session',
    'first_consultation',
    'follow_up',
)


class Appointment(Base):
    """A booked appointment between a provider and a client."""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    provider_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), index=True)
    client_name = Column(String)
    session_type = Column(String, default='individual_session')
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration = Column(Integer, nullable=False)
    status = Column(String, default=SCHEDULED, nullable=False)
    payment_status = Column(String, default=PAYMENT_PENDING, nullable=False)
    payment_method = Column(String)
    price = Column(Numeric(10, 2))
    notes = Column(String)
    private_notes = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES
