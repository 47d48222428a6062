"""State machine rules, independent of storage."""

from __future__ import annotations

import pytest

from errors import AlreadyAssigned, Forbidden, InvalidTransition
from lifecycle import (
    ACTIVE_STATUSES,
    BookingEvent,
    TERMINAL_STATUSES,
    apply_event,
    authorize,
    event_for_status,
    next_status,
)
from schemas import Booking, BookingStatus
from tests.conftest import make_draft


def _booking(status: BookingStatus = BookingStatus.pending, **extra) -> Booking:
    return Booking(id="b1", status=status, **make_draft().model_dump(), **extra)


@pytest.mark.parametrize(
    "status, event, expected",
    [
        (BookingStatus.pending, BookingEvent.accept, BookingStatus.accepted),
        (BookingStatus.pending, BookingEvent.reject, BookingStatus.cancelled),
        (BookingStatus.accepted, BookingEvent.start_journey, BookingStatus.on_the_way),
        (BookingStatus.on_the_way, BookingEvent.mark_arrived, BookingStatus.arrived),
        (BookingStatus.arrived, BookingEvent.start_transport, BookingStatus.in_transit),
        (BookingStatus.in_transit, BookingEvent.complete, BookingStatus.completed),
    ],
)
def test_forward_transitions(status, event, expected) -> None:
    assert next_status(status, event) is expected


@pytest.mark.parametrize("status", sorted(ACTIVE_STATUSES, key=lambda s: s.value))
def test_cancel_from_every_active_status(status) -> None:
    assert next_status(status, BookingEvent.cancel) is BookingStatus.cancelled


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
@pytest.mark.parametrize("event", list(BookingEvent))
def test_terminal_statuses_reject_everything(status, event) -> None:
    booking = _booking(status)
    with pytest.raises(InvalidTransition):
        apply_event(booking, event)
    assert booking.status is status


def test_no_skipping_states() -> None:
    with pytest.raises(InvalidTransition):
        next_status(BookingStatus.pending, BookingEvent.complete)
    with pytest.raises(InvalidTransition):
        next_status(BookingStatus.accepted, BookingEvent.mark_arrived)
    with pytest.raises(InvalidTransition):
        next_status(BookingStatus.accepted, BookingEvent.reject)


def test_accept_binds_driver_snapshot(driver) -> None:
    booking = _booking()

    accepted = apply_event(booking, BookingEvent.accept, driver)

    assert accepted.status is BookingStatus.accepted
    assert accepted.driver_id == driver.id
    assert accepted.driver_name == driver.name
    assert accepted.driver_phone == driver.phone
    assert accepted.vehicle_number == driver.vehicle_number
    assert booking.status is BookingStatus.pending
    assert booking.driver_id is None


def test_second_accept_is_already_assigned(driver, second_driver) -> None:
    accepted = apply_event(_booking(), BookingEvent.accept, driver)

    with pytest.raises(AlreadyAssigned):
        apply_event(accepted, BookingEvent.accept, second_driver)


def test_only_drivers_can_be_bound(patient) -> None:
    with pytest.raises(Forbidden):
        apply_event(_booking(), BookingEvent.accept, patient)


def test_accept_after_cancel_is_invalid(driver) -> None:
    cancelled = apply_event(_booking(), BookingEvent.cancel)

    with pytest.raises(InvalidTransition):
        apply_event(cancelled, BookingEvent.accept, driver)
    assert cancelled.status is BookingStatus.cancelled


def test_event_for_status() -> None:
    assert event_for_status(BookingStatus.pending, BookingStatus.accepted) is BookingEvent.accept
    assert event_for_status(BookingStatus.pending, BookingStatus.cancelled, by_driver=True) is BookingEvent.reject
    assert event_for_status(BookingStatus.pending, BookingStatus.cancelled) is BookingEvent.cancel
    assert event_for_status(BookingStatus.arrived, BookingStatus.in_transit) is BookingEvent.start_transport
    with pytest.raises(InvalidTransition):
        event_for_status(BookingStatus.accepted, BookingStatus.pending)


def test_patient_may_only_cancel_own_booking(patient, other_patient) -> None:
    booking = _booking()
    authorize(patient, BookingEvent.cancel, booking)
    with pytest.raises(Forbidden):
        authorize(other_patient, BookingEvent.cancel, booking)
    with pytest.raises(Forbidden):
        authorize(patient, BookingEvent.accept, booking)


def test_driver_permissions(driver, second_driver) -> None:
    pending = _booking()
    authorize(driver, BookingEvent.accept, pending)
    authorize(driver, BookingEvent.reject, pending)
    with pytest.raises(Forbidden):
        authorize(driver, BookingEvent.cancel, pending)

    accepted = apply_event(pending, BookingEvent.accept, driver)
    authorize(driver, BookingEvent.start_journey, accepted)
    with pytest.raises(Forbidden):
        authorize(second_driver, BookingEvent.start_journey, accepted)
