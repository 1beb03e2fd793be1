from datetime import date, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator, model_validator

from agenda.auth.dependencies import get_current_provider, require_cron_secret
from agenda.core import config
from agenda.models.blocked_slot import BlockedSlot
from agenda.models.user import User
from agenda.routes.common import get_engine, scheduling_errors
from agenda.scheduling.engine import AvailabilityEngine
from agenda.scheduling.intervals import format_minutes

router = APIRouter(tags=['availability'])

MAX_DURATION_MINUTES = 24 * 60
MAX_REASON_LENGTH = 255


class CheckAvailabilityRequest(BaseModel):
    date: date
    start_time: time
    end_time: time
    exclude_id: str | None = None

    @model_validator(mode='after')
    def validate_time_range(self) -> 'CheckAvailabilityRequest':
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time.')
        return self


class ConflictResponse(BaseModel):
    id: str
    client_name: str | None = None
    date: date
    start_time: time
    end_time: time
    session_type: str | None = None
    status: str

    class Config:
        from_attributes = True


class CheckAvailabilityResponse(BaseModel):
    available: bool
    conflicts: list[ConflictResponse]


class WorkingHoursResponse(BaseModel):
    start: str
    end: str


class SlotResponse(BaseModel):
    start: str
    end: str


class AvailableSlotsResponse(BaseModel):
    date: date
    duration: int
    working_hours: WorkingHoursResponse | None
    slots: list[SlotResponse]


class FinalizePastResponse(BaseModel):
    finalized_count: int
    ids: list[str]


class CreateBlockedSlotRequest(BaseModel):
    date: date
    start_time: time
    end_time: time
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

        return normalized

    @model_validator(mode='after')
    def validate_time_range(self) -> 'CreateBlockedSlotRequest':
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time.')
        return self


class BlockedSlotResponse(BaseModel):
    id: int
    date: date
    start_time: time
    end_time: time
    reason: str | None = None

    class Config:
        from_attributes = True


@router.post('/check', response_model=CheckAvailabilityResponse)
def check_availability(
    data: CheckAvailabilityRequest,
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        conflicts = engine.find_conflicts(
            data.date,
            data.start_time,
            data.end_time,
            exclude_id=data.exclude_id,
            provider_id=provider.id,
        )

    return CheckAvailabilityResponse(
        available=not conflicts,
        conflicts=[ConflictResponse.model_validate(conflict) for conflict in conflicts],
    )


@router.get('/slots', response_model=AvailableSlotsResponse)
def list_available_slots(
    slot_date: date = Query(..., alias='date'),
    duration: int = Query(default=config.DEFAULT_APPOINTMENT_DURATION_MINUTES, ge=1, le=MAX_DURATION_MINUTES),
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        available = engine.get_available_slots(slot_date, provider.id, duration)

    working_hours = None
    if available.working_hours is not None:
        working_hours = WorkingHoursResponse(
            start=format_minutes(available.working_hours.start),
            end=format_minutes(available.working_hours.end),
        )

    return AvailableSlotsResponse(
        date=slot_date,
        duration=duration,
        working_hours=working_hours,
        slots=[
            SlotResponse(start=slot.start.strftime('%H:%M'), end=slot.end.strftime('%H:%M'))
            for slot in available.slots
        ],
    )


@router.post('/finalize-past', response_model=FinalizePastResponse)
def finalize_past_appointments(
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        result = engine.finalize_past_appointments(provider_id=provider.id)

    return FinalizePastResponse(finalized_count=result.finalized_count, ids=result.ids)


@router.post('/finalize-past/all', response_model=FinalizePastResponse, dependencies=[Depends(require_cron_secret)])
def finalize_all_past_appointments(engine: AvailabilityEngine = Depends(get_engine)):
    with scheduling_errors():
        result = engine.finalize_past_appointments()

    return FinalizePastResponse(finalized_count=result.finalized_count, ids=result.ids)


@router.post('/blocked-slots', response_model=BlockedSlotResponse, status_code=status.HTTP_201_CREATED)
def create_blocked_slot(
    data: CreateBlockedSlotRequest,
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    blocked_slot = BlockedSlot(
        provider_id=provider.id,
        date=data.date,
        start_time=data.start_time,
        end_time=data.end_time,
        reason=data.reason,
    )
    with scheduling_errors():
        return engine.block_time(blocked_slot)


@router.get('/blocked-slots', response_model=list[BlockedSlotResponse])
def list_blocked_slots(
    from_date: date | None = Query(default=None),
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        return engine.blocked_slots.list_from(provider.id, from_date or date.today())


@router.delete('/blocked-slots/{blocked_slot_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_blocked_slot(
    blocked_slot_id: int,
    provider: User = Depends(get_current_provider),
    engine: AvailabilityEngine = Depends(get_engine),
):
    with scheduling_errors():
        engine.unblock_time(blocked_slot_id, provider.id)
