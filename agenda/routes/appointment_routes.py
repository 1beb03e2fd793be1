from datetime import date, datetime, time, timedelta
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from agenda.auth.dependencies import get_current_provider
from agenda.core import config
from agenda.models.appointment import (
    APPOINTMENT_STATUSES,
    COMPLETED,
    INACTIVE_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_STATUSES,
    SESSION_TYPES,
    Appointment,
)
from agenda.models.user import User
from agenda.routes.common import get_engine, scheduling_errors
from agenda.scheduling.engine import AvailabilityEngine
from agenda.scheduling.intervals import weekday_index

router = APIRouter(tags=['appointments'])

MAX_APPOINTMENT_NOTES_LENGTH = 2000


def _normalize_choice(value: str | None, choices: tuple[str, ...], label: str) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in choices:
        raise ValueError(f'Invalid {label}.')
    return normalized


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    client_id: str | None = None
    client_name: str | None = None
    session_type: str = 'individual_session'
    date: date
    start_time: time
    end_time: time | None = None
    duration: int | None = Field(default=None, gt=0)
    price: Decimal | None = Field(default=None, ge=0)
    payment_status: str = PAYMENT_PENDING
    payment_method: str | None = None
    status: str = 'scheduled'
    notes: str | None = None
    private_notes: str | None = None

    @field_validator('session_type')
    @classmethod
    def validate_session_type(cls, value: str) -> str:
        return _normalize_choice(value, SESSION_TYPES, 'session type')

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _normalize_choice(value, APPOINTMENT_STATUSES, 'appointment status')

    @field_validator('payment_status')
    @classmethod
    def validate_payment_status(cls, value: str) -> str:
        return _normalize_choice(value, PAYMENT_STATUSES, 'payment status')

    @field_validator('payment_method')
    @classmethod
    def validate_payment_method(cls, value: str | None) -> str | None:
        return _normalize_choice(value, PAYMENT_METHODS, 'payment method')

    @field_validator('notes', 'private_notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


# Columns that may be changed but never set to null.
REQUIRED_ON_UPDATE = (
    'appointment_date',
    'start_time',
    'end_time',
    'duration',
    'session_type',
    'status',
    'payment_status',
)


class UpdateAppointmentRequest(BaseModel):
    client_id: str | None = None
    client_name: str | None = None
    session_type: str | None = None
    start_time: time | None = None
    end_time: time | None = None
    duration: int | None = Field(default=None, gt=0)
    price: Decimal | None = Field(default=None, ge=0)
    payment_status: str | None = None
    payment_method: str | None = None
    status: str | None = None
    notes: str | None = None
    private_notes: str | None = None
    appointment_date: date | None = Field(default=None, alias='date')

    @field_validator('session_type')
    @classmethod
    def validate_session_type(cls, value: str | None) -> str | None:
        return _normalize_choice(value, SESSION_TYPES, 'session type')

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _normalize_choice(value, APPOINTMENT_STATUSES, 'appointment status')

    @field_validator('payment_status')
    @classmethod
    def validate_payment_status(cls, value: str | None) -> str | None:
        return _normalize_choice(value, PAYMENT_STATUSES, 'payment status')

    @field_validator('payment_method')
    @classmethod
    def validate_payment_method(cls, value: str | None) -> str | None:
        return _normalize_choice(value, PAYMENT_METHODS, 'payment method')

    @field_validator('notes', 'private_notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)

    @model_validator(mode='after')
    def reject_cleared_required_fields(self) -> 'UpdateAppointmentRequest':
        cleared = [
            type(self).model_fields[name].alias or name
            for name in REQUIRED_ON_UPDATE
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if cleared:
            raise ValueError(f'These fields cannot be cleared: {", ".join(sorted(cleared))}.')
        return self


class UpdateStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _normalize_choice(value, APPOINTMENT_STATUSES, 'appointment status')


class UpdatePaymentRequest(BaseModel):
    payment_status: str
    payment_method: str | None = None

    @field_validator('payment_status')
    @classmethod
    def validate_payment_status(cls, value: str) -> str:
        return _normalize_choice(value, PAYMENT_STATUSES, 'payment status')

    @field_validator('payment_method')
    @classmethod
    def validate_payment_method(cls, value: str | None) -> str | None:
        return _normalize_choice(value, PAYMENT_METHODS, 'payment method')


class AppointmentResponse(BaseModel):
    id: str
    provider_id: str
    client_id: str | None = None
    client_name: str | None = None
    session_type: str | None = None
    date: date
    start_time: time
    end_time: time
    duration: int
    status: str
    payment_status: str
    payment_method: str | None = None
    price: float | None = None
    notes: str | None = None
    private_notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class AppointmentStatsResponse(BaseModel):
    total: int
    today: int
    week: int
    month: int
    by_status: dict[str, int]
    by_session_type: dict[str, int]
    revenue_month: float
    revenue_pending: float


def summarize_appointments(appointments: list[Appointment], today: date) -> AppointmentStatsResponse:
    week_start = today - timedelta(days=weekday_index(today))
    month_start = today.replace(day=1)

    by_status = {appointment_status: 0 for appointment_status in APPOINTMENT_STATUSES}
    by_session_type = {session_type: 0 for session_type in SESSION_TYPES}
    revenue_month = Decimal('0')
    revenue_pending = Decimal('0')

    for appointment in appointments:
        if appointment.status in by_status:
            by_status[appointment.status] += 1
        if appointment.session_type in by_session_type:
            by_session_type[appointment.session_type] += 1

        price = Decimal(str(appointment.price or 0))
        if appointment.date >= month_start and appointment.payment_status == PAYMENT_PAID:
            revenue_month += price
        if appointment.payment_status == PAYMENT_PENDING:
            revenue_pending += price

    return AppointmentStatsResponse(
        total=len(appointments),
        today=sum(1 for appointment in appointments if appointment.date == today),
        week=sum(1 for appointment in appointments if week_start <= appointment.date <= today),
        month=sum(1 for appointment in appointments if appointment.date >= month_start),
        by_status=by_status,
        by_session_type=by_session_type,
        revenue_month=float(revenue_month),
        revenue_pending=float(revenue_pending),
    )


@router.get('/today', response_model=list[AppointmentResponse])
def list_today_appointments(
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        return engine.appointments.search(provider.id, day=date.today())


@router.get('/upcoming', response_model=list[AppointmentResponse])
def list_upcoming_appointments(
    limit: int = Query(default=config.UPCOMING_DEFAULT_LIMIT, ge=1, le=100),
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        return engine.appointments.search(
            provider.id,
            date_start=date.today(),
            statuses_excluded=(*INACTIVE_STATUSES, COMPLETED),
            limit=limit,
        )


@router.get('/stats', response_model=AppointmentStatsResponse)
def get_appointment_stats(
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        appointments = engine.appointments.search(provider.id)
    return summarize_appointments(appointments, date.today())


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    on_date: date | None = Query(default=None, alias='date'),
    date_start: date | None = Query(default=None),
    date_end: date | None = Query(default=None),
    appointment_status: str | None = Query(default=None, alias='status'),
    payment_status: str | None = Query(default=None),
    session_type: str | None = Query(default=None),
    client_id: str | None = Query(default=None),
    client_name: str | None = Query(default=None),
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        return engine.appointments.search(
            provider.id,
            day=on_date,
            date_start=date_start,
            date_end=date_end,
            status=appointment_status,
            payment_status=payment_status,
            session_type=session_type,
            client_id=client_id,
            client_name=client_name.strip() if client_name else None,
        )


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        appointment = engine.appointments.get(appointment_id, provider_id=provider.id)
    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')
    return appointment


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    appointment = Appointment(provider_id=provider.id, **data.model_dump())
    with scheduling_errors():
        return engine.book_appointment(appointment)


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    data: UpdateAppointmentRequest,
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        return engine.update_appointment(
            appointment_id,
            provider.id,
            data.model_dump(exclude_unset=True, by_alias=True),
        )


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: str,
    data: UpdateStatusRequest,
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        return engine.update_appointment(appointment_id, provider.id, {'status': data.status})


@router.patch('/{appointment_id}/payment', response_model=AppointmentResponse)
def update_payment_status(
    appointment_id: str,
    data: UpdatePaymentRequest,
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    changes = {'payment_status': data.payment_status}
    if data.payment_method:
        changes['payment_method'] = data.payment_method
    with scheduling_errors():
        return engine.update_appointment(appointment_id, provider.id, changes)


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: str,
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        engine.delete_appointment(appointment_id, provider.id)
