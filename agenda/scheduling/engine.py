"""Appointment availability engine.

Conflict search, slot enumeration and the past-appointment finalization sweep all
work on a point-in-time read of the datastore. Booking goes through
``ProviderDayLocks`` so that detect-then-insert is serialized per provider and day
inside this process; across processes the datastore's overlap constraint has the
final word.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from threading import Lock

from sqlalchemy.orm import Session

from agenda.core import config
from agenda.core.errors import ConflictError, NotFoundError, ScheduleValidationError
from agenda.models.appointment import COMPLETED, INACTIVE_STATUSES, OPEN_STATUSES, Appointment
from agenda.models.blocked_slot import BlockedSlot
from agenda.models.client import Client
from agenda.scheduling.intervals import (
    MINUTES_PER_DAY,
    TimeRange,
    iterate_candidate_ranges,
    overlaps_any,
    to_minutes,
    weekday_index,
)
from agenda.scheduling.store import AppointmentStore, BlockedSlotStore, ClientStore, WorkingHoursStore

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = ('date', 'start_time', 'end_time', 'duration')


@dataclass(frozen=True)
class Slot:
    start: time
    end: time


@dataclass
class AvailableSlots:
    working_hours: TimeRange | None
    slots: list[Slot] = field(default_factory=list)


@dataclass
class FinalizeResult:
    finalized_count: int
    ids: list[str] = field(default_factory=list)


@dataclass
class _HeldLock:
    lock: Lock = field(default_factory=Lock)
    holders: int = 0


class ProviderDayLocks:
    """One lock per (provider, date) pair, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = Lock()
        self._locks: dict[tuple[str, date], _HeldLock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, provider_id: str, day: date):
        key = (provider_id, day)
        with self._guard:
            entry = self._locks.setdefault(key, _HeldLock())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]


booking_locks = ProviderDayLocks()


def resolve_schedule(
    start_time: time | str,
    end_time: time | str | None = None,
    duration: int | None = None,
) -> TimeRange:
    """Build the appointment range, deriving ``end_time`` from ``duration`` when absent."""
    if end_time is None:
        if duration is None:
            raise ScheduleValidationError('Either end_time or duration is required.')
        start = to_minutes(start_time)
        schedule = TimeRange(start, start + duration)
    else:
        schedule = TimeRange.from_times(start_time, end_time)

    if schedule.start >= schedule.end:
        raise ScheduleValidationError('Start time must be before end time.')
    if duration is not None and duration != schedule.duration:
        raise ScheduleValidationError(
            f'Duration of {duration} minutes does not match {schedule} ({schedule.duration} minutes).'
        )
    if schedule.end >= MINUTES_PER_DAY:
        raise ScheduleValidationError('Appointments cannot run past midnight.')

    return schedule


def appointment_range(appointment: Appointment) -> TimeRange:
    return TimeRange.from_times(appointment.start_time, appointment.end_time)


class AvailabilityEngine:
    def __init__(
        self,
        session: Session,
        granularity_minutes: int | None = None,
        locks: ProviderDayLocks | None = None,
    ):
        self.appointments = AppointmentStore(session)
        self.working_hours = WorkingHoursStore(session)
        self.blocked_slots = BlockedSlotStore(session)
        self.clients = ClientStore(session)
        self.granularity_minutes = granularity_minutes or config.SLOT_GRANULARITY_MINUTES
        self.locks = locks if locks is not None else booking_locks

    def find_conflicts(
        self,
        day: date,
        start_time: time | str,
        end_time: time | str,
        exclude_id: str | None = None,
        provider_id: str | None = None,
    ) -> list[Appointment]:
        requested = TimeRange.from_times(start_time, end_time)
        existing = self.appointments.list_active_on(day, provider_id=provider_id, exclude_id=exclude_id)
        return [
            appointment
            for appointment in existing
            if requested.overlaps(appointment_range(appointment))
        ]

    def get_available_slots(self, day: date, provider_id: str, duration_minutes: int) -> AvailableSlots:
        if duration_minutes <= 0:
            raise ScheduleValidationError('Duration must be a positive number of minutes.')

        hours = self.working_hours.get_active(provider_id, weekday_index(day))
        if hours is None:
            return AvailableSlots(working_hours=None, slots=[])

        window = TimeRange.from_times(hours.start_time, hours.end_time)
        occupied = [
            appointment_range(appointment)
            for appointment in self.appointments.list_active_on(day, provider_id=provider_id)
        ]
        occupied.extend(
            TimeRange.from_times(blocked.start_time, blocked.end_time)
            for blocked in self.blocked_slots.list_on(provider_id, day)
        )

        slots = [
            Slot(start=candidate.start_time(), end=candidate.end_time())
            for candidate in iterate_candidate_ranges(window, duration_minutes, self.granularity_minutes)
            if not overlaps_any(candidate, occupied)
        ]
        return AvailableSlots(working_hours=window, slots=slots)

    def finalize_past_appointments(
        self,
        provider_id: str | None = None,
        today: date | None = None,
    ) -> FinalizeResult:
        # Anything dated before yesterday; same-day and yesterday's appointments are left alone.
        cutoff = (today or date.today()) - timedelta(days=1)
        ids = self.appointments.list_open_ids_before(cutoff, provider_id=provider_id)
        if not ids:
            return FinalizeResult(finalized_count=0, ids=[])

        finalized = self.appointments.set_status(
            ids,
            COMPLETED,
            provider_id=provider_id,
            from_statuses=OPEN_STATUSES,
        )
        if finalized != len(ids):
            # Some rows left the open states between the select and the update.
            ids = self.appointments.filter_ids_by_status(ids, COMPLETED)
        logger.info('Finalized %d past appointment(s) dated before %s.', finalized, cutoff.isoformat())
        return FinalizeResult(finalized_count=finalized, ids=ids)

    def book_appointment(self, appointment: Appointment) -> Appointment:
        schedule = resolve_schedule(appointment.start_time, appointment.end_time, appointment.duration)
        appointment.start_time = schedule.start_time()
        appointment.end_time = schedule.end_time()
        appointment.duration = schedule.duration

        client = self._get_client(appointment.provider_id, appointment.client_id)
        if client is not None and not appointment.client_name:
            appointment.client_name = client.full_name

        with self.locks.hold(appointment.provider_id, appointment.date):
            if appointment.status not in INACTIVE_STATUSES:
                self._raise_on_conflicts(appointment.provider_id, appointment.date, schedule)
            return self.appointments.add(appointment)

    def update_appointment(self, appointment_id: str, provider_id: str, changes: dict) -> Appointment:
        """Apply ``changes`` to an appointment.

        Conflicts are re-checked, excluding the appointment itself, whenever the
        schedule moves or an inactive appointment becomes active again.
        """
        appointment = self.appointments.get(appointment_id, provider_id=provider_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')

        if changes.get('client_id'):
            client = self._get_client(provider_id, changes['client_id'])
            if not changes.get('client_name'):
                changes = {**changes, 'client_name': client.full_name}

        schedule_changed = any(name in changes for name in SCHEDULE_FIELDS)
        new_status = changes.get('status', appointment.status)
        reactivated = appointment.status in INACTIVE_STATUSES and new_status not in INACTIVE_STATUSES

        if not schedule_changed and not reactivated:
            return self._apply(appointment, changes)

        new_day = changes.get('date', appointment.date)
        schedule = self._resolve_changed_schedule(appointment, changes)

        with self.locks.hold(provider_id, new_day):
            if new_status not in INACTIVE_STATUSES:
                self._raise_on_conflicts(provider_id, new_day, schedule, exclude_id=appointment.id)

            changes = {
                **changes,
                'date': new_day,
                'start_time': schedule.start_time(),
                'end_time': schedule.end_time(),
                'duration': schedule.duration,
            }
            return self._apply(appointment, changes)

    def delete_appointment(self, appointment_id: str, provider_id: str) -> None:
        appointment = self.appointments.get(appointment_id, provider_id=provider_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')
        self.appointments.delete(appointment)

    def block_time(self, blocked_slot: BlockedSlot) -> BlockedSlot:
        schedule = resolve_schedule(blocked_slot.start_time, blocked_slot.end_time)

        with self.locks.hold(blocked_slot.provider_id, blocked_slot.date):
            self._raise_on_conflicts(blocked_slot.provider_id, blocked_slot.date, schedule)
            return self.blocked_slots.add(blocked_slot)

    def unblock_time(self, blocked_slot_id: int, provider_id: str) -> None:
        blocked_slot = self.blocked_slots.get(blocked_slot_id, provider_id)
        if blocked_slot is None:
            raise NotFoundError('Blocked time not found.')
        self.blocked_slots.delete(blocked_slot)

    def _get_client(self, provider_id: str, client_id: str | None) -> Client | None:
        if not client_id:
            return None
        client = self.clients.get(client_id, provider_id)
        if client is None:
            raise NotFoundError('Client not found.')
        return client

    def _apply(self, appointment: Appointment, changes: dict) -> Appointment:
        for name, value in changes.items():
            setattr(appointment, name, value)
        return self.appointments.save(appointment)

    @staticmethod
    def _resolve_changed_schedule(appointment: Appointment, changes: dict) -> TimeRange:
        start_time = changes.get('start_time', appointment.start_time)
        end_time = changes.get('end_time')
        duration = changes.get('duration')

        if end_time is None and duration is None:
            # Moving the start keeps the length; otherwise keep the stored end.
            if 'start_time' in changes:
                duration = appointment.duration
            else:
                end_time = appointment.end_time

        return resolve_schedule(start_time, end_time, duration)

    def _raise_on_conflicts(
        self,
        provider_id: str,
        day: date,
        schedule: TimeRange,
        exclude_id: str | None = None,
    ) -> None:
        """Raise ``ConflictError`` if ``schedule`` touches blocked time or an active appointment."""
        blocked = [
            blocked_slot
            for blocked_slot in self.blocked_slots.list_on(provider_id, day)
            if schedule.overlaps(TimeRange.from_times(blocked_slot.start_time, blocked_slot.end_time))
        ]
        if blocked:
            raise ConflictError('This time is already blocked.')

        conflicts = self.find_conflicts(
            day,
            schedule.start_time(),
            schedule.end_time(),
            exclude_id=exclude_id,
            provider_id=provider_id,
        )
        if conflicts:
            raise ConflictError(
                f'This time overlaps {len(conflicts)} active appointment(s).',
                conflicts=conflicts,
            )
