import re
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from agenda.auth.dependencies import get_current_provider
from agenda.clients.directory import ClientDirectory, summarize_clients
from agenda.database import get_db
from agenda.models.client import CLIENT_ACTIVE, CLIENT_STATUSES, Client
from agenda.models.user import User
from agenda.routes.common import ensure_database_ready, scheduling_errors

router = APIRouter(tags=['clients'])

MAX_CLIENT_NOTES_LENGTH = 2000

_EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
_CPF_PATTERN = re.compile(r'^\d{3}\.\d{3}\.\d{3}-\d{2}$|^\d{11}$')
_ZIP_CODE_PATTERN = re.compile(r'^\d{5}-?\d{3}$')


def get_directory(db: Session = Depends(get_db)) -> ClientDirectory:
    ensure_database_ready()
    return ClientDirectory(db)


def _normalize_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def _normalize_client_status(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in CLIENT_STATUSES:
        raise ValueError('Invalid client status.')
    return normalized


class ClientFields(BaseModel):
    email: str | None = Field(default=None, max_length=255)
    birth_date: date | None = None
    cpf: str | None = None
    address: str | None = Field(default=None, max_length=500)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=2)
    zip_code: str | None = None
    emergency_contact: str | None = Field(default=None, max_length=255)
    emergency_phone: str | None = Field(default=None, max_length=20)
    notes: str | None = Field(default=None, max_length=MAX_CLIENT_NOTES_LENGTH)

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        normalized = _normalize_optional(value)
        if normalized is None:
            return None
        normalized = normalized.lower()
        if not _EMAIL_PATTERN.match(normalized):
            raise ValueError('Invalid email.')
        return normalized

    @field_validator('cpf')
    @classmethod
    def validate_cpf(cls, value: str | None) -> str | None:
        normalized = _normalize_optional(value)
        if normalized is not None and not _CPF_PATTERN.match(normalized):
            raise ValueError('Invalid CPF (use XXX.XXX.XXX-XX or 11 digits).')
        return normalized

    @field_validator('zip_code')
    @classmethod
    def validate_zip_code(cls, value: str | None) -> str | None:
        normalized = _normalize_optional(value)
        if normalized is not None and not _ZIP_CODE_PATTERN.match(normalized):
            raise ValueError('Invalid zip code (use XXXXX-XXX or 8 digits).')
        return normalized

    @field_validator('state')
    @classmethod
    def validate_state(cls, value: str | None) -> str | None:
        normalized = _normalize_optional(value)
        return normalized.upper() if normalized else None

    @field_validator('address', 'city', 'emergency_contact', 'emergency_phone', 'notes')
    @classmethod
    def strip_text(cls, value: str | None) -> str | None:
        return _normalize_optional(value)


class CreateClientRequest(ClientFields):
    full_name: str = Field(min_length=2, max_length=255)
    phone: str = Field(min_length=8, max_length=20)
    status: str = CLIENT_ACTIVE

    @field_validator('full_name', 'phone')
    @classmethod
    def strip_required(cls, value: str) -> str:
        return value.strip()

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _normalize_client_status(value)


class UpdateClientRequest(ClientFields):
    full_name: str | None = Field(default=None, min_length=2, max_length=255)
    phone: str | None = Field(default=None, min_length=8, max_length=20)
    status: str | None = None

    @field_validator('full_name', 'phone')
    @classmethod
    def strip_required(cls, value: str | None) -> str | None:
        if value is None:
            raise ValueError('This field cannot be cleared.')
        return value.strip()

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            raise ValueError('This field cannot be cleared.')
        return _normalize_client_status(value)


class UpdateClientStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _normalize_client_status(value)


class ClientResponse(BaseModel):
    id: str
    full_name: str
    email: str | None = None
    phone: str
    birth_date: date | None = None
    cpf: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    emergency_contact: str | None = None
    emergency_phone: str | None = None
    status: str
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class ClientStatsResponse(BaseModel):
    total: int
    active: int
    inactive: int
    archived: int
    new_this_month: int
    by_city: dict[str, int]


@router.get('/stats', response_model=ClientStatsResponse)
def get_client_stats(
    provider: User = Depends(get_current_provider),
    directory: ClientDirectory = Depends(get_directory),
):
    with scheduling_errors():
        clients = directory.clients.search(provider.id)
    stats = summarize_clients(clients, date.today())
    return ClientStatsResponse(**stats.__dict__)


@router.get('/active', response_model=list[ClientResponse])
def list_active_clients(
    provider: User = Depends(get_current_provider),
    directory: ClientDirectory = Depends(get_directory),
):
    with scheduling_errors():
        return directory.clients.search(provider.id, status=CLIENT_ACTIVE)


@router.get('/search', response_model=list[ClientResponse])
def search_clients(
    q: str = Query(..., min_length=1),
    provider: User = Depends(get_current_provider),
    directory: ClientDirectory = Depends(get_directory),
):
    with scheduling_errors():
        return directory.clients.search(provider.id, term=q.strip())


@router.get('', response_model=list[ClientResponse])
def list_clients(
    client_status: str | None = Query(default=None, alias='status'),
    search: str | None = Query(default=None),
    city: str | None = Query(default=None),
    state: str | None = Query(default=None, max_length=2),
    provider: User = Depends(get_current_provider),
    directory: ClientDirectory = Depends(get_directory),
):
    with scheduling_errors():
        return directory.clients.search(
            provider.id,
            status=client_status,
            term=search.strip() if search else None,
            city=city,
            state=state,
        )


@router.get('/{client_id}', response_model=ClientResponse)
def get_client(
    client_id: str,
    provider: User = Depends(get_current_provider),
    directory: ClientDirectory = Depends(get_directory),
):
    with scheduling_errors():
        return directory.get(client_id, provider.id)


@router.post('', response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
def create_client(
    data: CreateClientRequest,
    provider: User = Depends(get_current_provider),
    directory: ClientDirectory = Depends(get_directory),
):
    client = Client(provider_id=provider.id, **data.model_dump())
    with scheduling_errors():
        return directory.create(client)


@router.patch('/{client_id}', response_model=ClientResponse)
def update_client(
    client_id: str,
    data: UpdateClientRequest,
    provider: User = Depends(get_current_provider),
    directory: ClientDirectory = Depends(get_directory),
):
    with scheduling_errors():
        return directory.update(client_id, provider.id, data.model_dump(exclude_unset=True))


@router.patch('/{client_id}/status', response_model=ClientResponse)
def update_client_status(
    client_id: str,
    data: UpdateClientStatusRequest,
    provider: User = Depends(get_current_provider),
    directory: ClientDirectory = Depends(get_directory),
):
    with scheduling_errors():
        return directory.update(client_id, provider.id, {'status': data.status})


@router.delete('/{client_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_client(
    client_id: str,
    provider: User = Depends(get_current_provider),
    directory: ClientDirectory = Depends(get_directory),
):
    with scheduling_errors():
        directory.delete(client_id, provider.id)
