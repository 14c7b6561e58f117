import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.auth.dependencies import get_current_principal
from booking.auth.principal import Principal
from booking.models.appointment import Appointment
from booking.models.service import Service
from booking.routes.dependencies import database_unavailable, ensure_database_ready, get_db

router = APIRouter(tags=['services'])

logger = logging.getLogger(__name__)


class ServiceRequest(BaseModel):
    name: str
    description: str | None = None
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Service name is required.')
        return normalized

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class ServiceResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    price: Decimal

    class Config:
        from_attributes = True


def require_admin(principal: Principal, action: str) -> None:
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f'Only admins can {action} services.',
        )


def get_service_or_404(service_id: int, db: Session) -> Service:
    service = db.query(Service).filter(Service.id == service_id).first()
    if not service:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Service not found.',
        )
    return service


@router.get('', response_model=list[ServiceResponse])
def list_services(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return db.query(Service).order_by(Service.name.asc(), Service.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{service_id}', response_model=ServiceResponse)
def get_service(service_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return get_service_or_404(service_id, db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
def create_service(
    data: ServiceRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    require_admin(principal, 'create')
    ensure_database_ready()

    try:
        service = Service(name=data.name, description=data.description, price=data.price)
        db.add(service)
        db.commit()
        db.refresh(service)
        logger.info('Created service %s (%s)', service.id, service.name)
        return service
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{service_id}', response_model=ServiceResponse)
def update_service(
    service_id: int,
    data: ServiceRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    require_admin(principal, 'update')
    ensure_database_ready()

    try:
        service = get_service_or_404(service_id, db)
        service.name = data.name
        service.description = data.description
        service.price = data.price
        db.commit()
        db.refresh(service)
        return service
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{service_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_service(
    service_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    require_admin(principal, 'delete')
    ensure_database_ready()

    try:
        service = get_service_or_404(service_id, db)

        referenced = db.query(Appointment.id).filter(Appointment.service_id == service_id).first()
        if referenced:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Service is referenced by existing appointments.',
            )

        db.delete(service)
        db.commit()
        logger.info('Deleted service %s', service_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
