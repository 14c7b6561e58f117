from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from booking.models.appointment import AppointmentStatus
from booking.services import errors
from booking.services.storage import AppointmentRecord, PageRequest

START = datetime(2026, 2, 2, 9, 0, tzinfo=timezone.utc)


def test_create_assigns_id_and_returns_aware_times(store, users) -> None:
    created = store.create(
        AppointmentRecord(
            id=None,
            user_id=users['owner'],
            start_time=START,
            end_time=START + timedelta(minutes=30),
            status=AppointmentStatus.REQUESTED,
        )
    )

    assert created.id is not None
    assert created.version == 1
    assert created.start_time == START
    assert created.start_time.tzinfo is not None


def test_create_converts_offset_times_to_utc(store, users) -> None:
    eastern = timezone(timedelta(hours=-5))
    local_start = datetime(2026, 2, 2, 4, 0, tzinfo=eastern)

    created = store.create(
        AppointmentRecord(
            id=None,
            user_id=users['owner'],
            start_time=local_start,
            end_time=local_start + timedelta(hours=1),
            status=AppointmentStatus.REQUESTED,
        )
    )

    assert store.get(created.id).start_time == START


def test_update_with_current_version_bumps_version(store, make_appointment) -> None:
    appointment = make_appointment(START)

    updated = store.update(replace(appointment, status=AppointmentStatus.SCHEDULED), expected_version=1)

    assert updated.version == 2
    assert store.get(appointment.id).version == 2
    assert store.get(appointment.id).status == AppointmentStatus.SCHEDULED


def test_update_with_stale_version_is_rejected(store, make_appointment) -> None:
    appointment = make_appointment(START)
    store.update(replace(appointment, status=AppointmentStatus.SCHEDULED), expected_version=1)

    with pytest.raises(errors.ConcurrentModificationError):
        store.update(replace(appointment, status=AppointmentStatus.CANCELLED), expected_version=1)

    assert store.get(appointment.id).status == AppointmentStatus.SCHEDULED


def test_update_missing_appointment_is_not_found(store, make_appointment) -> None:
    appointment = make_appointment(START)

    with pytest.raises(errors.NotFoundError):
        store.update(replace(appointment, id=999), expected_version=1)


def test_list_paginates_and_sorts(store, make_appointment) -> None:
    for offset in (3, 1, 2, 0):
        make_appointment(START + timedelta(days=offset))

    first_page, total = store.list(PageRequest(page=0, size=3, sort='start_time'))
    second_page, _ = store.list(PageRequest(page=1, size=3, sort='start_time'))
    newest, _ = store.list(PageRequest(page=0, size=1, sort='start_time', descending=True))

    assert total == 4
    assert [a.start_time for a in first_page] == [START + timedelta(days=d) for d in (0, 1, 2)]
    assert [a.start_time for a in second_page] == [START + timedelta(days=3)]
    assert newest[0].start_time == START + timedelta(days=3)


def test_list_filters_by_user(store, make_appointment, users) -> None:
    make_appointment(START)
    make_appointment(START + timedelta(days=1), user_id=users['other'])

    records, total = store.list(PageRequest(), user_id=users['other'])

    assert total == 1
    assert records[0].user_id == users['other']


def test_has_overlap_uses_half_open_intervals(store, make_appointment) -> None:
    make_appointment(START, START + timedelta(hours=1), status=AppointmentStatus.SCHEDULED)

    assert store.has_overlap(START + timedelta(minutes=30), START + timedelta(minutes=90))
    assert not store.has_overlap(START + timedelta(hours=1), START + timedelta(hours=2))
    assert not store.has_overlap(START - timedelta(hours=1), START)


def test_has_overlap_ignores_cancelled_and_excluded(store, make_appointment) -> None:
    cancelled = make_appointment(START, status=AppointmentStatus.CANCELLED)
    active = make_appointment(START + timedelta(days=1))

    assert not store.has_overlap(cancelled.start_time, cancelled.end_time)
    assert not store.has_overlap(active.start_time, active.end_time, exclude_id=active.id)


def test_lookups(store, users, service_id) -> None:
    assert store.user_exists(users['admin'])
    assert not store.user_exists(999)
    assert store.service_exists(service_id)
    assert not store.service_exists(999)


def test_page_request_parse_reads_sort_and_clamps_size() -> None:
    page_request = PageRequest.parse(2, 500, 'start_time,desc', max_size=100)

    assert page_request == PageRequest(page=2, size=100, sort='start_time', descending=True)
    assert PageRequest.parse(0, 20, None, max_size=100) == PageRequest()


@pytest.mark.parametrize(
    ('page', 'size', 'sort'),
    [
        (-1, 20, None),
        (0, 0, None),
        (0, 20, 'user_id'),
        (0, 20, 'id,sideways'),
    ],
)
def test_page_request_parse_rejects_bad_input(page: int, size: int, sort) -> None:
    with pytest.raises(errors.ValidationError):
        PageRequest.parse(page, size, sort, max_size=100)
