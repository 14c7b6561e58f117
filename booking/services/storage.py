from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from booking.core.timeutils import ensure_utc, to_storage
from booking.models.appointment import Appointment, AppointmentStatus
from booking.models.service import Service
from booking.models.user import User
from booking.services.errors import ConcurrentModificationError, NotFoundError, ValidationError

SORTABLE_FIELDS = {
    'id': Appointment.id,
    'start_time': Appointment.start_time,
    'end_time': Appointment.end_time,
    'status': Appointment.status,
}


@dataclass(frozen=True)
class AppointmentRecord:
    id: Optional[int]
    user_id: int
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    service_id: Optional[int] = None
    special_needs: Optional[str] = None
    version: int = 1


@dataclass(frozen=True)
class PageRequest:
    page: int = 0
    size: int = 20
    sort: str = 'id'
    descending: bool = False

    @classmethod
    def parse(cls, page: int, size: int, sort: str | None, max_size: int) -> "PageRequest":
        """Build a page request from ``?page=&size=&sort=field,dir`` parameters."""
        if page < 0:
            raise ValidationError('Page index cannot be negative.')
        if size < 1:
            raise ValidationError('Page size must be at least 1.')

        field_name, descending = 'id', False
        if sort:
            parts = [part.strip().lower() for part in sort.split(',')]
            field_name = parts[0] or 'id'
            if len(parts) > 1 and parts[1] not in {'asc', 'desc'}:
                raise ValidationError('Sort direction must be asc or desc.')
            descending = len(parts) > 1 and parts[1] == 'desc'
        if field_name not in SORTABLE_FIELDS:
            raise ValidationError(f'Cannot sort appointments by {field_name}.')

        return cls(page=page, size=min(size, max_size), sort=field_name, descending=descending)


class AppointmentStore(Protocol):
    def get(self, appointment_id: int) -> Optional[AppointmentRecord]:
        ...

    def create(self, record: AppointmentRecord) -> AppointmentRecord:
        ...

    def update(self, record: AppointmentRecord, expected_version: int) -> AppointmentRecord:
        ...

    def list(self, page_request: PageRequest, user_id: Optional[int] = None) -> Tuple[List[AppointmentRecord], int]:
        ...

    def delete(self, appointment_id: int) -> None:
        ...

    def user_exists(self, user_id: int) -> bool:
        ...

    def service_exists(self, service_id: int) -> bool:
        ...

    def has_overlap(self, start_time: datetime, end_time: datetime, exclude_id: Optional[int] = None) -> bool:
        ...


class SqlAppointmentStore(AppointmentStore):
    """Appointment storage on top of a SQLAlchemy session.

    Every write commits. ``update`` is a compare-and-swap on ``version`` so a
    stale read can never overwrite a newer row.
    """

    def __init__(self, session: Session):
        self.session = session

    def _to_record(self, a: Appointment) -> AppointmentRecord:
        return AppointmentRecord(
            id=a.id,
            user_id=a.user_id,
            start_time=ensure_utc(a.start_time),
            end_time=ensure_utc(a.end_time),
            status=AppointmentStatus(a.status),
            service_id=a.service_id,
            special_needs=a.special_needs,
            version=a.version,
        )

    def get(self, appointment_id: int) -> Optional[AppointmentRecord]:
        a = self.session.execute(
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return self._to_record(a) if a else None

    def create(self, record: AppointmentRecord) -> AppointmentRecord:
        appointment = Appointment(
            user_id=record.user_id,
            service_id=record.service_id,
            start_time=to_storage(record.start_time),
            end_time=to_storage(record.end_time),
            status=record.status.value,
            special_needs=record.special_needs,
            version=1,
        )
        self.session.add(appointment)
        self.session.commit()
        self.session.refresh(appointment)
        return self._to_record(appointment)

    def update(self, record: AppointmentRecord, expected_version: int) -> AppointmentRecord:
        result = self.session.execute(
            update(Appointment)
            .where(Appointment.id == record.id, Appointment.version == expected_version)
            .values(
                user_id=record.user_id,
                service_id=record.service_id,
                start_time=to_storage(record.start_time),
                end_time=to_storage(record.end_time),
                status=record.status.value,
                special_needs=record.special_needs,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            if not self._exists(record.id):
                raise NotFoundError(f'Appointment {record.id} not found.')
            raise ConcurrentModificationError(record.id, expected_version)

        self.session.commit()
        return replace(record, version=expected_version + 1)

    def list(self, page_request: PageRequest, user_id: Optional[int] = None) -> Tuple[List[AppointmentRecord], int]:
        query = select(Appointment)
        count_query = select(func.count(Appointment.id))
        if user_id is not None:
            query = query.where(Appointment.user_id == user_id)
            count_query = count_query.where(Appointment.user_id == user_id)

        column = SORTABLE_FIELDS[page_request.sort]
        order_by = [column.desc() if page_request.descending else column.asc()]
        if page_request.sort != 'id':
            order_by.append(Appointment.id.asc())

        rows = self.session.execute(
            query.order_by(*order_by)
            .offset(page_request.page * page_request.size)
            .limit(page_request.size)
        ).scalars().all()
        total = self.session.execute(count_query).scalar_one()
        return [self._to_record(r) for r in rows], total

    def delete(self, appointment_id: int) -> None:
        a = self.session.get(Appointment, appointment_id)
        if a is None:
            raise NotFoundError(f'Appointment {appointment_id} not found.')
        self.session.delete(a)
        self.session.commit()

    def user_exists(self, user_id: int) -> bool:
        return self.session.get(User, user_id) is not None

    def service_exists(self, service_id: int) -> bool:
        return self.session.get(Service, service_id) is not None

    def has_overlap(self, start_time: datetime, end_time: datetime, exclude_id: Optional[int] = None) -> bool:
        query = select(Appointment.id).where(
            Appointment.status != AppointmentStatus.CANCELLED.value,
            Appointment.start_time < to_storage(end_time),
            Appointment.end_time > to_storage(start_time),
        )
        if exclude_id is not None:
            query = query.where(Appointment.id != exclude_id)
        return self.session.execute(query.limit(1)).first() is not None

    def _exists(self, appointment_id: int) -> bool:
        return self.session.execute(
            select(Appointment.id).where(Appointment.id == appointment_id)
        ).first() is not None
