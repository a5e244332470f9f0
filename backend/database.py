from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Endpoints run in FastAPI's worker threads.
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False


def create_schema(target_engine: Engine | None = None) -> None:
    # Registers the appointments table on Base.metadata.
    from backend.models import appointment  # noqa: F401

    bind = target_engine or engine
    Base.metadata.create_all(bind=bind)
    ensure_appointment_schema(target_engine)


def ensure_appointment_schema(target_engine: Engine | None = None) -> None:
    global _appointment_schema_checked

    # Only the shared engine is remembered; explicit engines are always checked.
    remember = target_engine is None
    bind = target_engine or engine

    if remember and _appointment_schema_checked:
        return

    with _schema_lock:
        if remember and _appointment_schema_checked:
            return

        from backend.models.appointment import Appointment

        inspector = inspect(bind)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = remember or _appointment_schema_checked
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        missing_columns = sorted(set(Appointment.__table__.columns.keys()) - existing_columns)
        if missing_columns:
            raise RuntimeError(
                'The appointments table is missing columns '
                f'{", ".join(missing_columns)}. Drop or rename it so it can be recreated.'
            )

        with bind.begin() as connection:
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_date_status ON appointments(date, status)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
                    "ON appointments(date, start_time) WHERE status = 'active'"
                )
            )

        _appointment_schema_checked = remember or _appointment_schema_checked
