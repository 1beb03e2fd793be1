from datetime import date, datetime

import pytest

from agenda.clients.directory import ClientDirectory, normalize_cpf, summarize_clients
from agenda.core.errors import ConflictError, NotFoundError
from agenda.models.client import Client


@pytest.fixture
def directory(appointment_db) -> ClientDirectory:
    return ClientDirectory(appointment_db)


def test_normalize_cpf_strips_separators() -> None:
    assert normalize_cpf('123.456.789-09') == '12345678909'
    assert normalize_cpf('12345678909') == '12345678909'


def test_create_stores_bare_cpf(directory, provider) -> None:
    client = directory.create(
        Client(provider_id=provider.id, full_name='Maria Lima', phone='11987654321', cpf='123.456.789-09')
    )

    assert client.id
    assert client.cpf == '12345678909'
    assert client.status == 'active'


def test_create_rejects_duplicate_email_case_insensitively(directory, add_client, provider) -> None:
    add_client(email='maria@example.com')

    with pytest.raises(ConflictError) as exception_info:
        directory.create(
            Client(provider_id=provider.id, full_name='Maria Lima', phone='11987654321', email='MARIA@example.com')
        )

    assert str(exception_info.value) == 'A client with this email already exists.'


def test_create_rejects_duplicate_cpf_in_any_format(directory, add_client, provider) -> None:
    add_client(cpf='12345678909')

    with pytest.raises(ConflictError) as exception_info:
        directory.create(
            Client(provider_id=provider.id, full_name='Outra Pessoa', phone='11911112222', cpf='123.456.789-09')
        )

    assert str(exception_info.value) == 'A client with this CPF already exists.'


def test_create_allows_same_email_for_another_provider(directory, add_client, provider) -> None:
    add_client(email='maria@example.com', provider_id='other-provider')

    client = directory.create(
        Client(provider_id=provider.id, full_name='Maria Lima', phone='11987654321', email='maria@example.com')
    )

    assert client.provider_id == provider.id


def test_get_hides_other_providers_clients(directory, add_client, provider) -> None:
    foreign = add_client(provider_id='other-provider')

    with pytest.raises(NotFoundError):
        directory.get(foreign.id, provider.id)


def test_update_keeps_own_email_and_changes_fields(directory, add_client, provider) -> None:
    client = add_client(email='maria@example.com', city='Recife')

    updated = directory.update(client.id, provider.id, {'email': 'maria@example.com', 'city': None, 'phone': '11900001111'})

    assert updated.email == 'maria@example.com'
    assert updated.city is None
    assert updated.phone == '11900001111'


def test_update_rejects_email_taken_by_another_client(directory, add_client, provider) -> None:
    add_client('Joana Prado', email='joana@example.com')
    client = add_client(email='maria@example.com')

    with pytest.raises(ConflictError):
        directory.update(client.id, provider.id, {'email': 'joana@example.com'})


def test_update_normalizes_cpf(directory, add_client, provider) -> None:
    client = add_client()

    updated = directory.update(client.id, provider.id, {'cpf': '987.654.321-00'})

    assert updated.cpf == '98765432100'


def test_delete_removes_client_without_appointments(directory, add_client, appointment_db, provider) -> None:
    client = add_client()

    directory.delete(client.id, provider.id)

    assert appointment_db.get(Client, client.id) is None


def test_delete_refuses_client_with_appointments(directory, add_client, add_appointment, provider) -> None:
    client = add_client()
    add_appointment(date(2025, 12, 25), '09:00', '10:00', client_id=client.id)
    add_appointment(date(2025, 12, 26), '09:00', '10:00', client_id=client.id, status='cancelled')

    with pytest.raises(ConflictError) as exception_info:
        directory.delete(client.id, provider.id)

    assert str(exception_info.value) == 'Cannot delete a client with 2 appointment(s). Archive the client instead.'


def test_summarize_clients_counts_statuses_months_and_cities() -> None:
    clients = [
        Client(full_name='A', phone='1', status='active', city='Recife', created_at=datetime(2026, 3, 2)),
        Client(full_name='B', phone='2', status='active', city=' recife ', created_at=datetime(2026, 2, 27)),
        Client(full_name='C', phone='3', status='inactive', city='Olinda', created_at=datetime(2026, 3, 9)),
        Client(full_name='D', phone='4', status='archived', city=None, created_at=None),
    ]

    stats = summarize_clients(clients, today=date(2026, 3, 10))

    assert stats.total == 4
    assert (stats.active, stats.inactive, stats.archived) == (2, 1, 1)
    assert stats.new_this_month == 2
    assert stats.by_city == {'recife': 2, 'olinda': 1}
