"""Appointment model definitions."""

from enum import Enum

from sqlalchemy import Column, Integer, DateTime, ForeignKey, String
from booking.database import Base


class AppointmentStatus(str, Enum):
    REQUESTED = "REQUESTED"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})


class Appointment(Base):
    """Represents a requested or scheduled appointment.

    Times are stored as naive UTC values.
    """
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"))
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.REQUESTED.value)
    special_needs = Column(String)
    version = Column(Integer, nullable=False, default=1)
