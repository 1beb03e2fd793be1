"""Datastore access for the scheduling engine.

Each store wraps a SQLAlchemy ``Session`` supplied by the caller. Driver errors are
re-raised as ``DataAccessError`` with the original exception chained; nothing here
retries.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.core.errors import ConflictError, DataAccessError
from agenda.database import OVERLAP_CONSTRAINT_NAME
from agenda.models.appointment import INACTIVE_STATUSES, OPEN_STATUSES, Appointment
from agenda.models.blocked_slot import BlockedSlot
from agenda.models.client import Client
from agenda.models.working_hours import WorkingHours

logger = logging.getLogger(__name__)


@contextmanager
def datastore_errors(session: Session, action: str):
    try:
        yield
    except IntegrityError as exc:
        session.rollback()
        if OVERLAP_CONSTRAINT_NAME in str(exc.orig):
            raise ConflictError('This time overlaps another active appointment.') from exc
        logger.exception('Integrity error while trying to %s.', action)
        raise DataAccessError(f'Failed to {action}.') from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception('Datastore error while trying to %s.', action)
        raise DataAccessError(f'Failed to {action}.') from exc


class AppointmentStore:
    def __init__(self, session: Session):
        self.session = session

    def list_active_on(
        self,
        day: date,
        provider_id: str | None = None,
        exclude_id: str | None = None,
    ) -> list[Appointment]:
        with datastore_errors(self.session, 'load appointments'):
            query = self.session.query(Appointment).filter(
                Appointment.date == day,
                Appointment.status.not_in(INACTIVE_STATUSES),
            )
            if provider_id:
                query = query.filter(Appointment.provider_id == provider_id)
            if exclude_id:
                query = query.filter(Appointment.id != exclude_id)
            return query.order_by(Appointment.start_time.asc()).all()

    def get(self, appointment_id: str, provider_id: str | None = None) -> Appointment | None:
        with datastore_errors(self.session, 'load appointment'):
            query = self.session.query(Appointment).filter(Appointment.id == appointment_id)
            if provider_id:
                query = query.filter(Appointment.provider_id == provider_id)
            return query.first()

    def list_open_ids_before(self, cutoff: date, provider_id: str | None = None) -> list[str]:
        with datastore_errors(self.session, 'load past appointments'):
            query = self.session.query(Appointment.id).filter(
                Appointment.status.in_(OPEN_STATUSES),
                Appointment.date < cutoff,
            )
            if provider_id:
                query = query.filter(Appointment.provider_id == provider_id)
            return [row.id for row in query.order_by(Appointment.date.asc()).all()]

    def set_status(
        self,
        ids: list[str],
        status: str,
        provider_id: str | None = None,
        from_statuses: tuple[str, ...] = (),
    ) -> int:
        """Move appointments in ``ids`` to ``status`` in one statement and commit.

        With ``from_statuses`` only rows still in one of those states are touched, so
        a row changed by someone else since it was selected is left alone. Returns the
        number of rows updated.
        """
        if not ids:
            return 0

        with datastore_errors(self.session, 'update appointment status'):
            query = self.session.query(Appointment).filter(Appointment.id.in_(ids))
            if provider_id:
                query = query.filter(Appointment.provider_id == provider_id)
            if from_statuses:
                query = query.filter(Appointment.status.in_(from_statuses))
            updated = query.update(
                {Appointment.status: status, Appointment.updated_at: datetime.now()},
                synchronize_session=False,
            )
            self.session.commit()
            return updated

    def filter_ids_by_status(self, ids: list[str], status: str) -> list[str]:
        with datastore_errors(self.session, 'load appointments'):
            rows = (
                self.session.query(Appointment.id)
                .filter(Appointment.id.in_(ids), Appointment.status == status)
                .order_by(Appointment.date.asc())
                .all()
            )
            return [row.id for row in rows]

    def count_for_client(self, client_id: str) -> int:
        with datastore_errors(self.session, 'count client appointments'):
            return self.session.query(Appointment).filter(Appointment.client_id == client_id).count()

    def search(
        self,
        provider_id: str,
        *,
        day: date | None = None,
        date_start: date | None = None,
        date_end: date | None = None,
        status: str | None = None,
        statuses_excluded: tuple[str, ...] = (),
        payment_status: str | None = None,
        session_type: str | None = None,
        client_id: str | None = None,
        client_name: str | None = None,
        limit: int | None = None,
    ) -> list[Appointment]:
        with datastore_errors(self.session, 'list appointments'):
            query = self.session.query(Appointment).filter(Appointment.provider_id == provider_id)
            if day:
                query = query.filter(Appointment.date == day)
            if date_start:
                query = query.filter(Appointment.date >= date_start)
            if date_end:
                query = query.filter(Appointment.date <= date_end)
            if status:
                query = query.filter(Appointment.status == status)
            if statuses_excluded:
                query = query.filter(Appointment.status.not_in(statuses_excluded))
            if payment_status:
                query = query.filter(Appointment.payment_status == payment_status)
            if session_type:
                query = query.filter(Appointment.session_type == session_type)
            if client_id:
                query = query.filter(Appointment.client_id == client_id)
            if client_name:
                query = query.filter(Appointment.client_name.ilike(f'%{client_name}%'))

            query = query.order_by(Appointment.date.asc(), Appointment.start_time.asc())
            if limit:
                query = query.limit(limit)
            return query.all()

    def add(self, appointment: Appointment) -> Appointment:
        with datastore_errors(self.session, 'create appointment'):
            self.session.add(appointment)
            self.session.commit()
            self.session.refresh(appointment)
            return appointment

    def save(self, appointment: Appointment) -> Appointment:
        with datastore_errors(self.session, 'update appointment'):
            appointment.updated_at = datetime.now()
            self.session.commit()
            self.session.refresh(appointment)
            return appointment

    def delete(self, appointment: Appointment) -> None:
        with datastore_errors(self.session, 'delete appointment'):
            self.session.delete(appointment)
            self.session.commit()


class WorkingHoursStore:
    def __init__(self, session: Session):
        self.session = session

    def get_active(self, provider_id: str, weekday: int) -> WorkingHours | None:
        # Several active rows for one weekday is a data error; earliest start wins.
        with datastore_errors(self.session, 'load working hours'):
            return (
                self.session.query(WorkingHours)
                .filter(
                    WorkingHours.provider_id == provider_id,
                    WorkingHours.day_of_week == weekday,
                    WorkingHours.is_active.is_(True),
                )
                .order_by(WorkingHours.start_time.asc(), WorkingHours.id.asc())
                .first()
            )


class BlockedSlotStore:
    def __init__(self, session: Session):
        self.session = session

    def list_on(self, provider_id: str, day: date) -> list[BlockedSlot]:
        with datastore_errors(self.session, 'load blocked slots'):
            return (
                self.session.query(BlockedSlot)
                .filter(BlockedSlot.provider_id == provider_id, BlockedSlot.date == day)
                .order_by(BlockedSlot.start_time.asc())
                .all()
            )

    def list_from(self, provider_id: str, start: date) -> list[BlockedSlot]:
        with datastore_errors(self.session, 'list blocked slots'):
            return (
                self.session.query(BlockedSlot)
                .filter(BlockedSlot.provider_id == provider_id, BlockedSlot.date >= start)
                .order_by(BlockedSlot.date.asc(), BlockedSlot.start_time.asc())
                .all()
            )

    def get(self, blocked_slot_id: int, provider_id: str) -> BlockedSlot | None:
        with datastore_errors(self.session, 'load blocked slot'):
            return (
                self.session.query(BlockedSlot)
                .filter(BlockedSlot.id == blocked_slot_id, BlockedSlot.provider_id == provider_id)
                .first()
            )

    def add(self, blocked_slot: BlockedSlot) -> BlockedSlot:
        with datastore_errors(self.session, 'create blocked slot'):
            self.session.add(blocked_slot)
            self.session.commit()
            self.session.refresh(blocked_slot)
            return blocked_slot

    def delete(self, blocked_slot: BlockedSlot) -> None:
        with datastore_errors(self.session, 'delete blocked slot'):
            self.session.delete(blocked_slot)
            self.session.commit()


class ClientStore:
    def __init__(self, session: Session):
        self.session = session

    def get(self, client_id: str, provider_id: str) -> Client | None:
        with datastore_errors(self.session, 'load client'):
            return (
                self.session.query(Client)
                .filter(Client.id == client_id, Client.provider_id == provider_id)
                .first()
            )

    def search(
        self,
        provider_id: str,
        *,
        status: str | None = None,
        term: str | None = None,
        city: str | None = None,
        state: str | None = None,
    ) -> list[Client]:
        """Provider's clients ordered by name; ``term`` matches name, email or phone."""
        with datastore_errors(self.session, 'list clients'):
            query = self.session.query(Client).filter(Client.provider_id == provider_id)
            if status:
                query = query.filter(Client.status == status)
            if term:
                pattern = f'%{term}%'
                query = query.filter(
                    or_(
                        Client.full_name.ilike(pattern),
                        Client.email.ilike(pattern),
                        Client.phone.ilike(pattern),
                    )
                )
            if city:
                query = query.filter(Client.city.ilike(f'%{city}%'))
            if state:
                query = query.filter(Client.state == state.upper())
            return query.order_by(Client.full_name.asc()).all()

    def email_taken(self, provider_id: str, email: str, exclude_id: str | None = None) -> bool:
        with datastore_errors(self.session, 'check client email'):
            query = self.session.query(Client.id).filter(
                Client.provider_id == provider_id,
                func.lower(Client.email) == email.lower(),
            )
            if exclude_id:
                query = query.filter(Client.id != exclude_id)
            return query.first() is not None

    def cpf_taken(self, provider_id: str, cpf: str, exclude_id: str | None = None) -> bool:
        # CPFs are stored as bare digits.
        with datastore_errors(self.session, 'check client CPF'):
            query = self.session.query(Client.id).filter(Client.provider_id == provider_id, Client.cpf == cpf)
            if exclude_id:
                query = query.filter(Client.id != exclude_id)
            return query.first() is not None

    def add(self, client: Client) -> Client:
        with datastore_errors(self.session, 'create client'):
            self.session.add(client)
            self.session.commit()
            self.session.refresh(client)
            return client

    def save(self, client: Client) -> Client:
        with datastore_errors(self.session, 'update client'):
            client.updated_at = datetime.now()
            self.session.commit()
            self.session.refresh(client)
            return client

    def delete(self, client: Client) -> None:
        with datastore_errors(self.session, 'delete client'):
            self.session.delete(client)
            self.session.commit()
