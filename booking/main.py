import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking.core import config
from booking.database import Base, engine, ensure_appointment_schema
from booking.models import user, service, appointment  # noqa: F401
from booking.routes import appointment_routes, auth_routes, service_routes

logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

app = FastAPI(title='Booking API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
    expose_headers=['X-Total-Count'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Booking API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(service_routes.router, prefix='/services')
app.include_router(appointment_routes.router, prefix='/appointments')
