"""User model definitions."""

from sqlalchemy import Column, Integer, String
from booking.database import Base


class User(Base):
    """Represents an application account."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String)
    role = Column(String, nullable=False, default="user")  # user/admin
