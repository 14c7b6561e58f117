from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from booking.database import SessionLocal, ensure_appointment_schema
from booking.services.errors import ErrorKind, LifecycleError

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

ERROR_STATUS_CODES = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.CANCELLATION_WINDOW_CLOSED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONCURRENT_MODIFICATION: status.HTTP_409_CONFLICT,
    ErrorKind.SLOT_UNAVAILABLE: status.HTTP_409_CONFLICT,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def to_http_exception(exc: LifecycleError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS_CODES[exc.kind],
        detail={'error': exc.kind.value, 'message': exc.message},
    )
