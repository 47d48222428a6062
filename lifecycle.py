"""Booking state machine.

The table is actor agnostic: it only knows which event moves a booking from
one status to the next. Who may fire an event is checked separately by
:func:`authorize`, which callers run before :func:`apply_event`.
"""
from enum import Enum
from typing import Optional

from errors import AlreadyAssigned, Forbidden, InvalidTransition
from schemas import Booking, BookingStatus, User


class BookingEvent(str, Enum):
    accept = "accept"
    reject = "reject"
    start_journey = "start_journey"
    mark_arrived = "mark_arrived"
    start_transport = "start_transport"
    complete = "complete"
    cancel = "cancel"


ACTIVE_STATUSES = frozenset({
    BookingStatus.pending,
    BookingStatus.accepted,
    BookingStatus.on_the_way,
    BookingStatus.arrived,
    BookingStatus.in_transit,
})
TERMINAL_STATUSES = frozenset({BookingStatus.completed, BookingStatus.cancelled})

TRANSITIONS = {
    BookingStatus.pending: {
        BookingEvent.accept: BookingStatus.accepted,
        BookingEvent.reject: BookingStatus.cancelled,
    },
    BookingStatus.accepted: {BookingEvent.start_journey: BookingStatus.on_the_way},
    BookingStatus.on_the_way: {BookingEvent.mark_arrived: BookingStatus.arrived},
    BookingStatus.arrived: {BookingEvent.start_transport: BookingStatus.in_transit},
    BookingStatus.in_transit: {BookingEvent.complete: BookingStatus.completed},
    BookingStatus.completed: {},
    BookingStatus.cancelled: {},
}
for _status in ACTIVE_STATUSES:
    TRANSITIONS[_status][BookingEvent.cancel] = BookingStatus.cancelled

DRIVER_EVENTS = frozenset({
    BookingEvent.accept,
    BookingEvent.reject,
    BookingEvent.start_journey,
    BookingEvent.mark_arrived,
    BookingEvent.start_transport,
    BookingEvent.complete,
})
PATIENT_EVENTS = frozenset({BookingEvent.cancel})


def is_active(booking: Booking) -> bool:
    return booking.status in ACTIVE_STATUSES


def next_status(status: BookingStatus, event: BookingEvent) -> BookingStatus:
    try:
        return TRANSITIONS[BookingStatus(status)][BookingEvent(event)]
    except KeyError:
        raise InvalidTransition(BookingStatus(status).value, BookingEvent(event).value) from None


def apply_event(booking: Booking, event: BookingEvent, driver: Optional[User] = None) -> Booking:
    """Return the booking after ``event``; the input record is left untouched.

    Accepting binds the driver and freezes a snapshot of their name, phone
    and vehicle number on the booking.
    """
    event = BookingEvent(event)
    if event is BookingEvent.accept and booking.driver_id:
        if booking.status in TERMINAL_STATUSES:
            raise InvalidTransition(booking.status.value, event.value)
        raise AlreadyAssigned(booking.id, booking.driver_id)

    status = next_status(booking.status, event)
    changes = {"status": status}
    if event is BookingEvent.accept:
        if driver is None:
            raise Forbidden("Accepting a booking requires a driver")
        if driver.role != "driver":
            raise Forbidden(f"User {driver.id} is not a driver")
        changes.update(
            driver_id=driver.id,
            driver_name=driver.name,
            driver_phone=driver.phone,
            vehicle_number=driver.vehicle_number,
        )
    return booking.model_copy(update=changes)


def event_for_status(current: BookingStatus, target: BookingStatus, by_driver: bool = False) -> BookingEvent:
    """Find the event that moves ``current`` to ``target``.

    A driver cancelling a pending booking is a rejection.
    """
    current, target = BookingStatus(current), BookingStatus(target)
    if target is BookingStatus.cancelled:
        if current is BookingStatus.pending and by_driver:
            return BookingEvent.reject
        return BookingEvent.cancel
    # forward events reach exactly one status each; legality is apply_event's call
    for edges in TRANSITIONS.values():
        for event, reached in edges.items():
            if reached is target:
                return event
    raise InvalidTransition(current.value, f"move to {target.value}")


def authorize(actor: User, event: BookingEvent, booking: Booking) -> None:
    event = BookingEvent(event)
    if actor.role == "patient":
        if event not in PATIENT_EVENTS:
            raise Forbidden(f"Patients cannot {event.value} a booking")
        if booking.user_id != actor.id:
            raise Forbidden("Patients can only cancel their own bookings")
        return

    if event not in DRIVER_EVENTS:
        raise Forbidden(f"Drivers cannot {event.value} a booking")
    if event in (BookingEvent.accept, BookingEvent.reject):
        return
    if booking.driver_id != actor.id:
        raise Forbidden(f"Booking {booking.id} is not assigned to driver {actor.id}")
