import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from agency_scheduler.core import config
from agency_scheduler.database import Base, engine, ensure_booking_schema, ensure_calendar_schema
from agency_scheduler.models import activity_log, availability_rule, booking, calendar_connection, client, service, user  # noqa: F401
from agency_scheduler.routes import availability_routes, booking_routes, calendar_routes

logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
config.validate_runtime_config()

app = FastAPI(title='Agency Scheduler')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_booking_schema()
        ensure_calendar_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Agency Scheduler API Running'}


app.include_router(booking_routes.router, prefix='/bookings')
app.include_router(availability_routes.router, prefix='/availability')
app.include_router(calendar_routes.router, prefix='/calendar')
