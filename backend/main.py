import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import SessionLocal, create_schema
from backend.routes import appointment_routes
from backend.scheduling.retention import RetentionPurger
from backend.scheduling.service import SchedulingPolicy, SchedulingService
from backend.scheduling.sql_store import SqlAlchemyAppointmentStore
from backend.scheduling.store import AppointmentStore, InMemoryAppointmentStore

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI(title='Appointment Booking API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


def build_store() -> AppointmentStore:
    if config.APPOINTMENT_STORE == 'memory':
        return InMemoryAppointmentStore()

    try:
        create_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
    return SqlAlchemyAppointmentStore(SessionLocal)


@app.on_event('startup')
def initialize_scheduling() -> None:
    config.validate_runtime_config()

    service = SchedulingService(build_store(), SchedulingPolicy.from_config())
    app.state.scheduling_service = service

    if config.RETENTION_ENABLED:
        purger = RetentionPurger(
            service,
            retention_days=config.RETENTION_DAYS,
            interval_seconds=config.RETENTION_PURGE_INTERVAL_MINUTES * 60,
        )
        purger.start()
        app.state.retention_purger = purger


@app.on_event('shutdown')
def stop_retention_purger() -> None:
    purger = getattr(app.state, 'retention_purger', None)
    if purger is not None:
        purger.stop()


@app.get('/')
def root():
    return {'status': 'Appointment Booking API Running'}


app.include_router(appointment_routes.router, prefix='/api')
