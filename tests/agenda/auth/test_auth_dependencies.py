import os
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

from agenda.auth import jwt_handler  # noqa: E402
from agenda.auth.dependencies import get_current_provider, require_cron_secret  # noqa: E402
from agenda.core import config  # noqa: E402


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_roundtrip_carries_subject() -> None:
    token = jwt_handler.create_access_token('provider-1', expires_minutes=5)

    payload = jwt_handler.decode_access_token(token)

    assert payload['sub'] == 'provider-1'
    assert payload['exp'] > payload['iat']


def test_access_token_checks_audience_when_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'JWT_AUDIENCE', 'agenda-api')
    token = jwt_handler.create_access_token('provider-1')

    assert jwt_handler.decode_access_token(token)['aud'] == 'agenda-api'

    monkeypatch.setattr(config, 'JWT_AUDIENCE', 'another-api')
    with pytest.raises(jwt.InvalidAudienceError):
        jwt_handler.decode_access_token(token)


def test_get_current_provider_resolves_token_subject(appointment_db, provider) -> None:
    token = jwt_handler.create_access_token(provider.id)

    resolved = get_current_provider(credentials=_bearer(token), db=appointment_db)

    assert resolved.id == provider.id
    assert resolved.email == 'therapist@example.com'


def test_get_current_provider_rejects_tampered_token(appointment_db, provider) -> None:
    token = jwt.encode({'sub': provider.id}, 'not-the-shared-secret', algorithm=config.JWT_ALGORITHM)

    with pytest.raises(HTTPException) as exception_info:
        get_current_provider(credentials=_bearer(token), db=appointment_db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_current_provider_rejects_expired_token(appointment_db, provider) -> None:
    expired_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    token = jwt.encode(
        {'sub': provider.id, 'exp': expired_at},
        config.JWT_SECRET_KEY,
        algorithm=config.JWT_ALGORITHM,
    )

    with pytest.raises(HTTPException) as exception_info:
        get_current_provider(credentials=_bearer(token), db=appointment_db)

    assert exception_info.value.status_code == 401


def test_get_current_provider_rejects_token_without_subject(appointment_db) -> None:
    token = jwt.encode({'role': 'provider'}, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)

    with pytest.raises(HTTPException) as exception_info:
        get_current_provider(credentials=_bearer(token), db=appointment_db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token subject'


def test_get_current_provider_rejects_unknown_provider(appointment_db) -> None:
    token = jwt_handler.create_access_token('deleted-provider')

    with pytest.raises(HTTPException) as exception_info:
        get_current_provider(credentials=_bearer(token), db=appointment_db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Provider not found'


def test_get_current_provider_returns_503_when_database_fails(appointment_db, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_query(*args, **kwargs):
        raise SQLAlchemyError('connection refused')

    monkeypatch.setattr(appointment_db, 'query', broken_query)
    token = jwt_handler.create_access_token('provider-1')

    with pytest.raises(HTTPException) as exception_info:
        get_current_provider(credentials=_bearer(token), db=appointment_db)

    assert exception_info.value.status_code == 503


def test_require_cron_secret_accepts_matching_header(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'FINALIZE_CRON_SECRET', 'nightly-sweep')

    assert require_cron_secret(x_cron_secret='nightly-sweep') is None


@pytest.mark.parametrize(
    ('configured', 'sent'),
    [
        ('nightly-sweep', None),
        ('nightly-sweep', 'wrong'),
        ('nightly-sweep', 'nightly-sweep '),
        ('', ''),
        ('', 'anything'),
    ],
)
def test_require_cron_secret_rejects_missing_or_wrong_header(
    monkeypatch: pytest.MonkeyPatch,
    configured: str,
    sent: str | None,
) -> None:
    monkeypatch.setattr(config, 'FINALIZE_CRON_SECRET', configured)

    with pytest.raises(HTTPException) as exception_info:
        require_cron_secret(x_cron_secret=sent)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid cron secret'
