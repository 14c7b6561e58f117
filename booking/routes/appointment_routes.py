from datetime import datetime
from typing import Callable, TypeVar

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.auth.dependencies import get_current_principal
from booking.auth.principal import Principal
from booking.core import config
from booking.models.appointment import AppointmentStatus
from booking.routes.dependencies import database_unavailable, ensure_database_ready, get_db, to_http_exception
from booking.services.appointment_lifecycle import (
    AppointmentDraft,
    AppointmentLifecycleManager,
    normalize_special_needs,
)
from booking.services.errors import LifecycleError
from booking.services.errors import ValidationError as LifecycleValidationError
from booking.services.storage import AppointmentRecord, PageRequest, SqlAppointmentStore

router = APIRouter(tags=['appointments'])

T = TypeVar('T')


def _validate_special_needs(value: str | None) -> str | None:
    try:
        return normalize_special_needs(value)
    except LifecycleValidationError as exc:
        raise ValueError(exc.message) from exc


class CreateAppointmentRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    service_id: int | None = None
    user_id: int | None = None
    special_needs: str | None = None
    status: AppointmentStatus | None = None

    @field_validator('special_needs')
    @classmethod
    def validate_special_needs(cls, value: str | None) -> str | None:
        return _validate_special_needs(value)


class UpdateAppointmentRequest(BaseModel):
    start_time: datetime | None = None
    end_time: datetime | None = None
    service_id: int | None = None
    user_id: int | None = None
    special_needs: str | None = None
    status: AppointmentStatus | None = None

    @field_validator('special_needs')
    @classmethod
    def validate_special_needs(cls, value: str | None) -> str | None:
        return _validate_special_needs(value)


class AppointmentResponse(BaseModel):
    id: int
    user_id: int
    service_id: int | None = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    special_needs: str | None = None
    version: int
    cancellation_deadline: datetime


def get_lifecycle_manager(db: Session) -> AppointmentLifecycleManager:
    return AppointmentLifecycleManager(store=SqlAppointmentStore(db))


def to_response(appointment: AppointmentRecord, manager: AppointmentLifecycleManager) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        user_id=appointment.user_id,
        service_id=appointment.service_id,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        status=appointment.status,
        special_needs=appointment.special_needs,
        version=appointment.version,
        cancellation_deadline=manager.cancellation_deadline(appointment),
    )


def run_lifecycle(db: Session, operation: Callable[[AppointmentLifecycleManager], T]) -> T:
    ensure_database_ready()
    manager = get_lifecycle_manager(db)

    try:
        return operation(manager)
    except LifecycleError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


def run_and_respond(
    db: Session,
    operation: Callable[[AppointmentLifecycleManager], AppointmentRecord],
) -> AppointmentResponse:
    return run_lifecycle(db, lambda manager: to_response(operation(manager), manager))


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    response: Response,
    page: int = Query(default=0),
    size: int = Query(default=config.DEFAULT_PAGE_SIZE),
    sort: str | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    def operation(manager: AppointmentLifecycleManager):
        page_request = PageRequest.parse(page, size, sort, max_size=config.MAX_PAGE_SIZE)
        appointments, total = manager.list(page_request, principal)
        response.headers['X-Total-Count'] = str(total)
        return [to_response(appointment, manager) for appointment in appointments]

    return run_lifecycle(db, operation)


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return run_and_respond(db, lambda manager: manager.get(appointment_id, principal))


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    draft = AppointmentDraft(
        start_time=data.start_time,
        end_time=data.end_time,
        user_id=data.user_id,
        service_id=data.service_id,
        special_needs=data.special_needs,
        status=data.status,
    )
    return run_and_respond(db, lambda manager: manager.create(draft, principal))


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True)
    return run_and_respond(db, lambda manager: manager.edit(appointment_id, changes, principal))


@router.put('/{appointment_id}/approve', response_model=AppointmentResponse)
def approve_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return run_and_respond(db, lambda manager: manager.approve(appointment_id, principal))


@router.put('/{appointment_id}/reject', response_model=AppointmentResponse)
def reject_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return run_and_respond(db, lambda manager: manager.reject(appointment_id, principal))


@router.put('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return run_and_respond(db, lambda manager: manager.complete(appointment_id, principal))


@router.put('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return run_and_respond(db, lambda manager: manager.cancel(appointment_id, principal))


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    run_lifecycle(db, lambda manager: manager.delete(appointment_id, principal))
