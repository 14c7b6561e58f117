import logging
from enum import Enum
from typing import Protocol

from booking.services.storage import AppointmentRecord

logger = logging.getLogger(__name__)


class AppointmentEvent(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Notifier(Protocol):
    def appointment_changed(self, appointment: AppointmentRecord, event: AppointmentEvent) -> None:
        ...


class LoggingNotifier:
    """Records outgoing notices in the application log.

    Delivery to the user (email, SMS) happens outside this service.
    """

    def appointment_changed(self, appointment: AppointmentRecord, event: AppointmentEvent) -> None:
        logger.info(
            'Notify user %s: appointment %s %s (starts %s)',
            appointment.user_id,
            appointment.id,
            event.value,
            appointment.start_time.isoformat(),
        )
