"""Provider-scoped client records.

Every lookup is filtered by the owning provider, so one provider can never read,
change or reference another provider's clients. Email and CPF must be unique within
a provider's client list.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy.orm import Session

from agenda.core.errors import ConflictError, NotFoundError
from agenda.models.client import CLIENT_ACTIVE, CLIENT_ARCHIVED, CLIENT_INACTIVE, Client
from agenda.scheduling.store import AppointmentStore, ClientStore

logger = logging.getLogger(__name__)

_CPF_SEPARATORS = re.compile(r'[.\-]')


def normalize_cpf(value: str) -> str:
    return _CPF_SEPARATORS.sub('', value)


@dataclass
class ClientStats:
    total: int
    active: int
    inactive: int
    archived: int
    new_this_month: int
    by_city: dict[str, int] = field(default_factory=dict)


def summarize_clients(clients: list[Client], today: date) -> ClientStats:
    month_start = datetime(today.year, today.month, 1)

    by_city: dict[str, int] = {}
    for client in clients:
        if client.city:
            city = client.city.strip().lower()
            by_city[city] = by_city.get(city, 0) + 1

    return ClientStats(
        total=len(clients),
        active=sum(1 for client in clients if client.status == CLIENT_ACTIVE),
        inactive=sum(1 for client in clients if client.status == CLIENT_INACTIVE),
        archived=sum(1 for client in clients if client.status == CLIENT_ARCHIVED),
        new_this_month=sum(1 for client in clients if client.created_at and client.created_at >= month_start),
        by_city=by_city,
    )


class ClientDirectory:
    def __init__(self, session: Session):
        self.clients = ClientStore(session)
        self.appointments = AppointmentStore(session)

    def get(self, client_id: str, provider_id: str) -> Client:
        client = self.clients.get(client_id, provider_id)
        if client is None:
            raise NotFoundError('Client not found.')
        return client

    def create(self, client: Client) -> Client:
        if client.cpf:
            client.cpf = normalize_cpf(client.cpf)
        self._ensure_unique(client.provider_id, client.email, client.cpf)
        return self.clients.add(client)

    def update(self, client_id: str, provider_id: str, changes: dict) -> Client:
        client = self.get(client_id, provider_id)

        if changes.get('cpf'):
            changes = {**changes, 'cpf': normalize_cpf(changes['cpf'])}
        email = changes.get('email')
        cpf = changes.get('cpf')
        self._ensure_unique(
            provider_id,
            email if email and email.lower() != (client.email or '').lower() else None,
            cpf if cpf and cpf != client.cpf else None,
            exclude_id=client.id,
        )

        for name, value in changes.items():
            setattr(client, name, value)
        return self.clients.save(client)

    def delete(self, client_id: str, provider_id: str) -> None:
        client = self.get(client_id, provider_id)

        appointment_count = self.appointments.count_for_client(client.id)
        if appointment_count:
            raise ConflictError(
                f'Cannot delete a client with {appointment_count} appointment(s). Archive the client instead.'
            )

        self.clients.delete(client)
        logger.info('Deleted client %s.', client_id)

    def _ensure_unique(
        self,
        provider_id: str,
        email: str | None,
        cpf: str | None,
        exclude_id: str | None = None,
    ) -> None:
        if email and self.clients.email_taken(provider_id, email, exclude_id=exclude_id):
            raise ConflictError('A client with this email already exists.')
        if cpf and self.clients.cpf_taken(provider_id, cpf, exclude_id=exclude_id):
            raise ConflictError('A client with this CPF already exists.')
