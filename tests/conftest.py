"""Shared fixtures: an in-memory database with a few users and a service."""

import os
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from booking.auth.principal import Principal  # noqa: E402
from booking.database import Base  # noqa: E402
from booking.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from booking.models.service import Service  # noqa: E402
from booking.models.user import User  # noqa: E402
from booking.services.storage import AppointmentRecord, SqlAppointmentStore  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[User.__table__, Service.__table__, Appointment.__table__])

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine, tables=[Appointment.__table__, Service.__table__, User.__table__])


@pytest.fixture
def users(db):
    admin = User(email='admin@example.com', display_name='Admin', role='admin')
    owner = User(email='owner@example.com', display_name='Owner', role='user')
    other = User(email='other@example.com', display_name='Other', role='user')
    db.add_all([admin, owner, other])
    db.commit()
    return {'admin': admin.id, 'owner': owner.id, 'other': other.id}


@pytest.fixture
def admin(users) -> Principal:
    return Principal.from_role_name(users['admin'], 'admin')


@pytest.fixture
def owner(users) -> Principal:
    return Principal.from_role_name(users['owner'], 'user')


@pytest.fixture
def stranger(users) -> Principal:
    return Principal.from_role_name(users['other'], 'user')


@pytest.fixture
def service_id(db) -> int:
    service = Service(name='Haircut', description='Wash and cut', price=25)
    db.add(service)
    db.commit()
    return service.id


@pytest.fixture
def store(db) -> SqlAppointmentStore:
    return SqlAppointmentStore(db)


@pytest.fixture
def make_appointment(store, users):
    """Insert an appointment directly, bypassing lifecycle rules."""

    def _make(start_time, end_time=None, status=AppointmentStatus.REQUESTED, user_id=None, **kwargs):
        return store.create(
            AppointmentRecord(
                id=None,
                user_id=user_id if user_id is not None else users['owner'],
                start_time=start_time,
                end_time=end_time or start_time + timedelta(hours=1),
                status=status,
                **kwargs,
            )
        )

    return _make
