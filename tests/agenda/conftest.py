import os
from datetime import date, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

from agenda.database import Base  # noqa: E402
from agenda.models.appointment import Appointment  # noqa: E402
from agenda.models.blocked_slot import BlockedSlot  # noqa: E402
from agenda.models.client import Client  # noqa: E402
from agenda.models.user import User  # noqa: E402
from agenda.models.working_hours import WorkingHours  # noqa: E402
from agenda.scheduling.engine import AvailabilityEngine, ProviderDayLocks  # noqa: E402

TABLES = [User.__table__, Client.__table__, WorkingHours.__table__, BlockedSlot.__table__, Appointment.__table__]


def _parse_time(value: str) -> time:
    hours, minutes = value.split(':')
    return time(int(hours), int(minutes))


@pytest.fixture
def appointment_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))


@pytest.fixture
def provider(appointment_db) -> User:
    user = User(email='therapist@example.com', full_name='Ana Souza', role='provider')
    appointment_db.add(user)
    appointment_db.commit()
    appointment_db.refresh(user)
    return user


@pytest.fixture
def availability_engine(appointment_db) -> AvailabilityEngine:
    return AvailabilityEngine(appointment_db, granularity_minutes=30, locks=ProviderDayLocks())


@pytest.fixture
def add_appointment(appointment_db, provider):
    def _add(
        day: date,
        start: str,
        end: str,
        status: str = 'scheduled',
        provider_id: str | None = None,
        **fields,
    ) -> Appointment:
        start_time, end_time = _parse_time(start), _parse_time(end)
        appointment = Appointment(
            provider_id=provider_id or provider.id,
            date=day,
            start_time=start_time,
            end_time=end_time,
            duration=(end_time.hour * 60 + end_time.minute) - (start_time.hour * 60 + start_time.minute),
            status=status,
            **fields,
        )
        appointment_db.add(appointment)
        appointment_db.commit()
        appointment_db.refresh(appointment)
        return appointment

    return _add


@pytest.fixture
def add_working_hours(appointment_db, provider):
    def _add(day_of_week: int, start: str, end: str, is_active: bool = True) -> WorkingHours:
        hours = WorkingHours(
            provider_id=provider.id,
            day_of_week=day_of_week,
            start_time=_parse_time(start),
            end_time=_parse_time(end),
            is_active=is_active,
        )
        appointment_db.add(hours)
        appointment_db.commit()
        return hours

    return _add


@pytest.fixture
def add_blocked_slot(appointment_db, provider):
    def _add(day: date, start: str, end: str, reason: str | None = None) -> BlockedSlot:
        blocked = BlockedSlot(
            provider_id=provider.id,
            date=day,
            start_time=_parse_time(start),
            end_time=_parse_time(end),
            reason=reason,
        )
        appointment_db.add(blocked)
        appointment_db.commit()
        return blocked

    return _add


@pytest.fixture
def add_client(appointment_db, provider):
    def _add(full_name: str = 'Maria Lima', provider_id: str | None = None, **fields) -> Client:
        fields.setdefault('phone', '11987654321')
        client = Client(provider_id=provider_id or provider.id, full_name=full_name, **fields)
        appointment_db.add(client)
        appointment_db.commit()
        appointment_db.refresh(client)
        return client

    return _add
