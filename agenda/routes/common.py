import logging
from contextlib import contextmanager

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.core.errors import ConflictError, DataAccessError, NotFoundError, ScheduleValidationError
from agenda.database import ensure_appointment_schema, get_db
from agenda.scheduling.engine import AvailabilityEngine

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        logger.exception('Schema check failed.')
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_engine(db: Session = Depends(get_db)) -> AvailabilityEngine:
    ensure_database_ready()
    return AvailabilityEngine(db)


def conflict_payload(exc: ConflictError) -> dict:
    return {
        'message': str(exc),
        'conflicts': [
            {
                'id': appointment.id,
                'client_name': appointment.client_name,
                'date': appointment.date.isoformat(),
                'start_time': appointment.start_time.isoformat(),
                'end_time': appointment.end_time.isoformat(),
                'status': appointment.status,
            }
            for appointment in exc.conflicts
        ],
    }


@contextmanager
def scheduling_errors():
    """Translate scheduling errors raised inside the block into HTTP errors."""
    try:
        yield
    except ScheduleValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=conflict_payload(exc)) from exc
    except DataAccessError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
