"""Service model definitions."""

from sqlalchemy import Column, Integer, Numeric, String
from booking.database import Base


class Service(Base):
    """Represents a bookable service."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(String)
    price = Column(Numeric(10, 2), nullable=False, default=0)
