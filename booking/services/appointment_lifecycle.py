"""Appointment status transitions and the self-service cancellation window.

All writes go through ``AppointmentStore.update`` with the version that was
read, so two transitions racing on the same appointment cannot both commit.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, List, Mapping, Optional, Tuple

from booking.auth.principal import Principal
from booking.core import config
from booking.core.timeutils import ensure_utc, utc_now
from booking.models.appointment import AppointmentStatus
from booking.services.errors import (
    CancellationWindowClosedError,
    InvalidTransitionError,
    NotFoundError,
    SlotUnavailableError,
    UnauthorizedError,
    ValidationError,
)
from booking.services.notifications import AppointmentEvent, LoggingNotifier, Notifier
from booking.services.storage import AppointmentRecord, AppointmentStore, PageRequest

logger = logging.getLogger(__name__)

MAX_SPECIAL_NEEDS_LENGTH = 600
EDITABLE_FIELDS = frozenset({'start_time', 'end_time', 'special_needs', 'service_id', 'user_id', 'status'})


@dataclass(frozen=True)
class Transition:
    name: str
    sources: frozenset
    target: AppointmentStatus
    event: AppointmentEvent


APPROVE = Transition('approve', frozenset({AppointmentStatus.REQUESTED}), AppointmentStatus.SCHEDULED, AppointmentEvent.CONFIRMED)
REJECT = Transition('reject', frozenset({AppointmentStatus.REQUESTED}), AppointmentStatus.CANCELLED, AppointmentEvent.CANCELLED)
COMPLETE = Transition('complete', frozenset({AppointmentStatus.SCHEDULED}), AppointmentStatus.COMPLETED, AppointmentEvent.COMPLETED)
CANCEL = Transition(
    'cancel',
    frozenset({AppointmentStatus.REQUESTED, AppointmentStatus.SCHEDULED}),
    AppointmentStatus.CANCELLED,
    AppointmentEvent.CANCELLED,
)


@dataclass(frozen=True)
class AppointmentDraft:
    start_time: datetime
    end_time: datetime
    user_id: Optional[int] = None
    service_id: Optional[int] = None
    special_needs: Optional[str] = None
    status: Optional[AppointmentStatus] = None


def is_outside_cancellation_window(start_time: datetime, now: datetime, window: timedelta) -> bool:
    """True while ``start_time`` is strictly more than ``window`` after ``now``."""
    return ensure_utc(start_time) - ensure_utc(now) > window


def normalize_special_needs(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if len(normalized) > MAX_SPECIAL_NEEDS_LENGTH:
        raise ValidationError(f'Special needs must be {MAX_SPECIAL_NEEDS_LENGTH} characters or fewer.')
    return normalized


def _default_window() -> timedelta:
    return timedelta(hours=config.CANCELLATION_WINDOW_HOURS)


@dataclass
class AppointmentLifecycleManager:
    store: AppointmentStore
    notifier: Notifier = field(default_factory=LoggingNotifier)
    clock: Callable[[], datetime] = utc_now
    cancellation_window: timedelta = field(default_factory=_default_window)

    def approve(self, appointment_id: int, principal: Principal) -> AppointmentRecord:
        self._require_admin(principal, APPROVE.name)
        return self._apply(self._load(appointment_id), APPROVE)

    def reject(self, appointment_id: int, principal: Principal) -> AppointmentRecord:
        self._require_admin(principal, REJECT.name)
        return self._apply(self._load(appointment_id), REJECT)

    def complete(self, appointment_id: int, principal: Principal) -> AppointmentRecord:
        self._require_admin(principal, COMPLETE.name)
        return self._apply(self._load(appointment_id), COMPLETE)

    def cancel(self, appointment_id: int, principal: Principal) -> AppointmentRecord:
        appointment = self._load(appointment_id)
        if not principal.is_admin and appointment.user_id != principal.id:
            raise UnauthorizedError('Only the owner or an admin can cancel this appointment.')

        self._check_transition(appointment, CANCEL)

        if not principal.is_admin and not is_outside_cancellation_window(
            appointment.start_time, self.clock(), self.cancellation_window
        ):
            logger.info('Refused late cancellation of appointment %s by user %s', appointment.id, principal.id)
            raise CancellationWindowClosedError(
                'Appointments cannot be cancelled less than '
                f'{self._window_hours()} hours before the scheduled time.'
            )

        return self._apply(appointment, CANCEL)

    def create(self, draft: AppointmentDraft, principal: Principal) -> AppointmentRecord:
        if principal.is_admin:
            user_id = draft.user_id if draft.user_id is not None else principal.id
            status = draft.status or AppointmentStatus.SCHEDULED
            if status.is_terminal:
                raise ValidationError(f'Appointments cannot be created as {status.value}.')
        else:
            if draft.user_id is not None and draft.user_id != principal.id:
                raise UnauthorizedError('Appointments can only be requested for yourself.')
            if draft.status not in (None, AppointmentStatus.REQUESTED):
                raise UnauthorizedError('Only admins can create scheduled appointments.')
            user_id = principal.id
            status = AppointmentStatus.REQUESTED

        start_time, end_time = self._validate_times(draft.start_time, draft.end_time)
        if not principal.is_admin and start_time <= self.clock():
            raise ValidationError('Appointments must be requested for a future time.')
        if not self.store.user_exists(user_id):
            raise ValidationError(f'User {user_id} does not exist.')
        if draft.service_id is not None and not self.store.service_exists(draft.service_id):
            raise ValidationError(f'Service {draft.service_id} does not exist.')
        if self.store.has_overlap(start_time, end_time):
            raise SlotUnavailableError('Time slot already booked. Please select another time.')

        created = self.store.create(
            AppointmentRecord(
                id=None,
                user_id=user_id,
                start_time=start_time,
                end_time=end_time,
                status=status,
                service_id=draft.service_id,
                special_needs=normalize_special_needs(draft.special_needs),
            )
        )
        logger.info('Created appointment %s for user %s as %s', created.id, user_id, status.value)
        return created

    def edit(self, appointment_id: int, changes: Mapping[str, Any], principal: Principal) -> AppointmentRecord:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f'Unknown appointment fields: {", ".join(sorted(unknown))}.')

        appointment = self._load(appointment_id)
        if not principal.is_admin:
            if appointment.user_id != principal.id:
                raise UnauthorizedError('Only the owner or an admin can edit this appointment.')
            if 'status' in changes and changes['status'] != appointment.status:
                raise UnauthorizedError('Only admins can change appointment status.')
            if 'user_id' in changes and changes['user_id'] != principal.id:
                raise UnauthorizedError('Appointments cannot be reassigned to another user.')

        if appointment.status.is_terminal:
            raise InvalidTransitionError(f'{appointment.status.value} appointments cannot be edited.')
        if 'status' in changes and changes['status'] != appointment.status:
            raise InvalidTransitionError(
                'Status changes must go through approve, reject, complete or cancel.'
            )

        start_time, end_time = self._validate_times(
            changes.get('start_time', appointment.start_time),
            changes.get('end_time', appointment.end_time),
        )
        user_id = changes.get('user_id', appointment.user_id)
        if user_id is None:
            raise ValidationError('Appointments must belong to a user.')
        if user_id != appointment.user_id and not self.store.user_exists(user_id):
            raise ValidationError(f'User {user_id} does not exist.')
        service_id = changes.get('service_id', appointment.service_id)
        if service_id is not None and service_id != appointment.service_id and not self.store.service_exists(service_id):
            raise ValidationError(f'Service {service_id} does not exist.')

        times_changed = start_time != appointment.start_time or end_time != appointment.end_time
        if times_changed and not principal.is_admin:
            now = self.clock()
            if not is_outside_cancellation_window(appointment.start_time, now, self.cancellation_window):
                logger.info('Refused late reschedule of appointment %s by user %s', appointment.id, principal.id)
                raise CancellationWindowClosedError(
                    'Appointments cannot be rescheduled less than '
                    f'{self._window_hours()} hours before the scheduled time.'
                )
            if start_time <= now:
                raise ValidationError('Appointments must be rescheduled to a future time.')
        if times_changed and self.store.has_overlap(start_time, end_time, exclude_id=appointment.id):
            raise SlotUnavailableError('Time slot already booked. Please select another time.')

        edited = replace(
            appointment,
            start_time=start_time,
            end_time=end_time,
            user_id=user_id,
            service_id=service_id,
            special_needs=normalize_special_needs(changes.get('special_needs', appointment.special_needs)),
        )
        updated = self.store.update(edited, expected_version=appointment.version)
        logger.info('Edited appointment %s by user %s', appointment.id, principal.id)
        return updated

    def get(self, appointment_id: int, principal: Principal) -> AppointmentRecord:
        appointment = self._load(appointment_id)
        if not principal.is_admin and appointment.user_id != principal.id:
            raise UnauthorizedError('Only the owner or an admin can view this appointment.')
        return appointment

    def list(self, page_request: PageRequest, principal: Principal) -> Tuple[List[AppointmentRecord], int]:
        user_id = None if principal.is_admin else principal.id
        return self.store.list(page_request, user_id=user_id)

    def delete(self, appointment_id: int, principal: Principal) -> None:
        self._require_admin(principal, 'delete')
        self.store.delete(appointment_id)
        logger.info('Deleted appointment %s', appointment_id)

    def cancellation_deadline(self, appointment: AppointmentRecord) -> datetime:
        return appointment.start_time - self.cancellation_window

    def _load(self, appointment_id: int) -> AppointmentRecord:
        appointment = self.store.get(appointment_id)
        if appointment is None:
            raise NotFoundError(f'Appointment {appointment_id} not found.')
        return appointment

    def _require_admin(self, principal: Principal, operation: str) -> None:
        if not principal.is_admin:
            raise UnauthorizedError(f'Only admins can {operation} appointments.')

    def _check_transition(self, appointment: AppointmentRecord, transition: Transition) -> None:
        if appointment.status not in transition.sources:
            logger.warning(
                'Cannot %s appointment %s with status %s',
                transition.name,
                appointment.id,
                appointment.status.value,
            )
            raise InvalidTransitionError(
                f'Cannot {transition.name} an appointment with status {appointment.status.value}.'
            )

    def _apply(self, appointment: AppointmentRecord, transition: Transition) -> AppointmentRecord:
        self._check_transition(appointment, transition)
        updated = self.store.update(
            replace(appointment, status=transition.target),
            expected_version=appointment.version,
        )
        logger.info(
            'Appointment %s moved from %s to %s',
            appointment.id,
            appointment.status.value,
            updated.status.value,
        )
        self._notify(updated, transition.event)
        return updated

    def _notify(self, appointment: AppointmentRecord, event: AppointmentEvent) -> None:
        try:
            self.notifier.appointment_changed(appointment, event)
        except Exception:
            logger.exception('Notification for appointment %s could not be sent', appointment.id)

    def _validate_times(self, start_time: Optional[datetime], end_time: Optional[datetime]) -> Tuple[datetime, datetime]:
        if start_time is None or end_time is None:
            raise ValidationError('Start and end time are required.')
        start_time, end_time = ensure_utc(start_time), ensure_utc(end_time)
        if end_time <= start_time:
            raise ValidationError('End time must be after start time.')
        return start_time, end_time

    def _window_hours(self) -> int:
        return int(self.cancellation_window.total_seconds() // 3600)
