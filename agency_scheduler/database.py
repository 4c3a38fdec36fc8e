from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from agency_scheduler.core import config


engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_booking_schema_checked = False
_calendar_schema_checked = False


def ensure_booking_schema() -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        inspector = inspect(engine)

        if 'bookings' not in inspector.get_table_names():
            _booking_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('bookings')}
        migration_steps = [
            ('notes', 'ALTER TABLE bookings ADD COLUMN notes TEXT'),
            ('meeting_url', 'ALTER TABLE bookings ADD COLUMN meeting_url VARCHAR'),
            ('cancel_reason', 'ALTER TABLE bookings ADD COLUMN cancel_reason TEXT'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_host_time_range ON bookings(host_id, start_time, end_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_status_start ON bookings(status, start_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_availability_rules_user_day ON availability_rules(user_id, day_of_week)')
            )

        _booking_schema_checked = True


def ensure_calendar_schema() -> None:
    global _calendar_schema_checked

    if _calendar_schema_checked:
        return

    with _schema_lock:
        if _calendar_schema_checked:
            return

        inspector = inspect(engine)

        if 'calendar_connections' not in inspector.get_table_names():
            _calendar_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('calendar_connections')}
        migration_steps = [
            ('time_zone', 'ALTER TABLE calendar_connections ADD COLUMN time_zone VARCHAR'),
            ('email', 'ALTER TABLE calendar_connections ADD COLUMN email VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))

        _calendar_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
