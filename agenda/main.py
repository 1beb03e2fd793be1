import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from agenda.core import config
from agenda.core.errors import DataAccessError
from agenda.database import Base, SessionLocal, engine, ensure_appointment_schema
from agenda.models import appointment, blocked_slot, client, user, working_hours  # noqa: F401
from agenda.routes import appointment_routes, availability_routes, client_routes
from agenda.scheduling.engine import AvailabilityEngine

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


def run_finalizer() -> int:
    db = SessionLocal()
    try:
        result = AvailabilityEngine(db).finalize_past_appointments()
        return result.finalized_count
    except DataAccessError:
        logger.exception('Scheduled finalization of past appointments failed.')
        return 0
    finally:
        db.close()


async def _finalizer_loop(interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_in_threadpool(run_finalizer)
        except Exception:
            logger.exception('Unexpected error in the past-appointment finalizer; retrying next interval.')


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.validate_runtime_config()
    initialize_database()

    task = None
    if config.FINALIZE_INTERVAL_HOURS > 0:
        logger.info('Finalizing past appointments every %d hour(s).', config.FINALIZE_INTERVAL_HOURS)
        task = asyncio.create_task(_finalizer_loop(config.FINALIZE_INTERVAL_HOURS * 60 * 60))

    yield

    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title='Agenda API', lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.get('/')
def root():
    return {'status': 'Agenda API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(client_routes.router, prefix='/clients')
