from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from agenda.core import config


_connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    config.DATABASE_URL,
    echo=config.DATABASE_ECHO,
    pool_pre_ping=True,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

ACTIVE_STATUS_SQL = "('scheduled', 'confirmed', 'in_progress', 'completed')"
OVERLAP_CONSTRAINT_NAME = 'appointments_no_active_overlap'

_schema_lock = Lock()
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema(bind=None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        with bind.begin() as connection:
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_provider_date ON appointments(provider_id, date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_date ON appointments(status, date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_blocked_slots_provider_date ON blocked_slots(provider_id, date)')
            )

            if bind.dialect.name == 'postgresql':
                _ensure_overlap_constraint(connection)

        _appointment_schema_checked = True


def _ensure_overlap_constraint(connection) -> None:
    # Rejects overlapping active appointments across processes; the in-process
    # booking lock only serializes requests handled by this worker.
    exists = connection.execute(
        text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
        {'name': OVERLAP_CONSTRAINT_NAME},
    ).first()
    if exists:
        return

    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
    connection.execute(
        text(
            f'ALTER TABLE appointments ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME} '
            'EXCLUDE USING gist ('
            'provider_id WITH =, '
            "tsrange(date + start_time, date + end_time, '[)') WITH &&"
            f') WHERE (status IN {ACTIVE_STATUS_SQL})'
        )
    )
