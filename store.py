"""
Booking persistence.

Every stored collection has exactly one owner per process: a
:class:`CollectionOwner` runs a worker task that takes requests off a queue
and performs each read or read-modify-write to completion before starting
the next. Requests therefore complete in the order they were issued, and
two mutations from the same process can never interleave.

Writes go through the storage compare-and-swap. If another process wrote
the key since we read it, the owner reads again and re-applies the same
mutation, so neither writer's change is lost.
"""
import asyncio
import logging
import uuid
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as SchemaError

from database import Storage
from errors import (
    ConflictingActiveBooking,
    Forbidden,
    NotFound,
    PersistenceFailure,
    StaleWrite,
    ValidationError,
)
from lifecycle import ACTIVE_STATUSES, BookingEvent, apply_event, authorize, event_for_status
from schemas import Ambulance, Booking, BookingCreate, BookingStatus, Hospital, User, utcnow

logger = logging.getLogger(__name__)

BOOKINGS_KEY = '@ambulance_bookings'
AMBULANCES_KEY = '@ambulance_fleet'
HOSPITALS_KEY = '@ambulance_hospitals'

IMMUTABLE_FIELDS = ("id", "user_id", "booking_time", "is_emergency")


class CollectionOwner:
    max_attempts = 5

    def __init__(self, storage: Storage, key: str):
        self.storage = storage
        self.key = key
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(), name=f"owner:{self.key}")

    async def stop(self) -> None:
        if not self.running:
            return
        await self._queue.put(None)
        await self._worker
        self._worker = None

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                break
            op, future = item
            try:
                result = await op()
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)

    async def _submit(self, op: Callable[[], Any]) -> Any:
        await self.start()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((op, future))
        return await future

    async def read(self) -> Any:
        async def op():
            value, _ = await self.storage.get_item(self.key)
            return value
        return await self._submit(op)

    async def mutate(self, fn: Callable[[Any], Tuple[Any, Any]]) -> Any:
        """Apply ``fn(current) -> (new_value, result)`` and persist ``new_value``.

        If ``fn`` raises, nothing is written and the error reaches the caller.
        """
        async def op():
            for attempt in range(1, self.max_attempts + 1):
                value, version = await self.storage.get_item(self.key)
                new_value, result = fn(value)
                try:
                    await self.storage.set_item(self.key, new_value, version)
                except StaleWrite:
                    logger.warning("Concurrent write on %s, re-reading (attempt %d)", self.key, attempt)
                    continue
                return result
            raise PersistenceFailure(f"Gave up writing {self.key} after {self.max_attempts} conflicting writes")
        return await self._submit(op)


def _load_bookings(value) -> List[Booking]:
    try:
        return [Booking.model_validate(record) for record in value or []]
    except SchemaError as e:
        raise PersistenceFailure(f"Stored bookings are corrupt: {e.error_count()} errors") from e


def _validate_draft(draft: Union[BookingCreate, dict], user_id: Optional[str] = None) -> BookingCreate:
    if isinstance(draft, BookingCreate):
        return draft.model_copy(update={"user_id": user_id}) if user_id else draft
    if user_id:
        draft = {**draft, "userId": user_id}
        draft.pop("user_id", None)
    try:
        return BookingCreate.model_validate(draft)
    except SchemaError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid booking fields: {fields}") from e


def _acting_driver(actor: Optional[User], driver: Optional[User]) -> Optional[User]:
    """The driver an accept binds: always the actor when there is one."""
    if actor is None:
        return driver
    if driver is not None and driver.id != actor.id:
        raise Forbidden(f"User {actor.id} cannot act as driver {driver.id}")
    return actor if actor.role == "driver" else driver


def _check_immutable(before: Booking, after: Booking) -> None:
    for name in IMMUTABLE_FIELDS:
        if getattr(before, name) != getattr(after, name):
            raise ValidationError(f"Booking field {name} cannot change")
    if before.driver_id and after.driver_id != before.driver_id:
        raise ValidationError("Booking driver cannot be reassigned")


class BookingStore(CollectionOwner):
    """The shared booking collection."""

    def __init__(self, storage: Storage, key: str = BOOKINGS_KEY, single_active_booking: bool = True):
        super().__init__(storage, key)
        self.single_active_booking = single_active_booking

    async def create(self, draft: Union[BookingCreate, dict], user_id: Optional[str] = None) -> Booking:
        draft = _validate_draft(draft, user_id)

        def fn(value):
            bookings = _load_bookings(value)
            if self.single_active_booking:
                active = next((b for b in bookings if b.user_id == draft.user_id and b.status in ACTIVE_STATUSES), None)
                if active is not None:
                    raise ConflictingActiveBooking(draft.user_id, active.id)
            taken = {b.id for b in bookings}
            booking_id = uuid.uuid4().hex
            while booking_id in taken:
                booking_id = uuid.uuid4().hex
            booking = Booking(
                **draft.model_dump(),
                id=booking_id,
                status=BookingStatus.pending,
                booking_time=utcnow(),
            )
            records = list(value or [])
            records.append(booking.to_record())
            return records, booking

        booking = await self.mutate(fn)
        logger.info("Created booking %s for user %s", booking.id, booking.user_id)
        return booking

    async def update(self, booking_id: str, mutation: Callable[[Booking], Booking]) -> Booking:
        def fn(value):
            bookings = _load_bookings(value)
            for index, booking in enumerate(bookings):
                if booking.id == booking_id:
                    break
            else:
                raise NotFound(f"Booking {booking_id} not found")
            updated = mutation(booking)
            _check_immutable(booking, updated)
            records = list(value)
            records[index] = updated.to_record()
            return records, updated

        updated = await self.mutate(fn)
        logger.info("Updated booking %s to status %s", updated.id, updated.status.value)
        return updated

    async def transition(self, booking_id: str, event: BookingEvent, actor: Optional[User] = None,
                         driver: Optional[User] = None) -> Booking:
        """Fire ``event`` on a booking. Authorization and the state check run
        against the record as it is in storage at write time."""
        driver = _acting_driver(actor, driver)

        def mutation(booking):
            if actor is not None:
                authorize(actor, event, booking)
            return apply_event(booking, event, driver)

        return await self.update(booking_id, mutation)

    async def update_status(self, booking_id: str, status: BookingStatus, actor: User,
                            driver: Optional[User] = None) -> Booking:
        driver = _acting_driver(actor, driver)

        def mutation(booking):
            event = event_for_status(booking.status, status, by_driver=actor.role == "driver")
            authorize(actor, event, booking)
            return apply_event(booking, event, driver)

        return await self.update(booking_id, mutation)

    async def list_all(self) -> List[Booking]:
        return _load_bookings(await self.read())

    async def list_for_user(self, user_id: str) -> List[Booking]:
        return [b for b in await self.list_all() if b.user_id == user_id]

    async def list_for_driver(self, driver_id: str) -> List[Booking]:
        return [b for b in await self.list_all() if b.driver_id == driver_id]

    async def get(self, booking_id: str) -> Booking:
        for booking in await self.list_all():
            if booking.id == booking_id:
                return booking
        raise NotFound(f"Booking {booking_id} not found")


class ReferenceCatalog:
    """Ambulances and hospitals used for matching. Read-mostly."""

    def __init__(self, storage: Storage):
        self._ambulances = CollectionOwner(storage, AMBULANCES_KEY)
        self._hospitals = CollectionOwner(storage, HOSPITALS_KEY)

    async def start(self) -> None:
        await self._ambulances.start()
        await self._hospitals.start()

    async def stop(self) -> None:
        await self._ambulances.stop()
        await self._hospitals.stop()

    async def ambulances(self) -> List[Ambulance]:
        return [Ambulance.model_validate(r) for r in await self._ambulances.read() or []]

    async def hospitals(self) -> List[Hospital]:
        return [Hospital.model_validate(r) for r in await self._hospitals.read() or []]

    async def get_ambulance(self, ambulance_id: str) -> Ambulance:
        for ambulance in await self.ambulances():
            if ambulance.id == ambulance_id:
                return ambulance
        raise NotFound(f"Ambulance {ambulance_id} not found")

    async def get_hospital(self, hospital_id: str) -> Hospital:
        for hospital in await self.hospitals():
            if hospital.id == hospital_id:
                return hospital
        raise NotFound(f"Hospital {hospital_id} not found")

    @staticmethod
    def _seed_fn(items: Iterable):
        records = [item.to_record() for item in items]

        def fn(value):
            if value:
                return value, 0
            return records, len(records)
        return fn

    async def seed(self, ambulances: Iterable[Ambulance], hospitals: Iterable[Hospital]) -> dict:
        """Store the given records for each collection that is still empty."""
        created = {
            "ambulances": await self._ambulances.mutate(self._seed_fn(ambulances)),
            "hospitals": await self._hospitals.mutate(self._seed_fn(hospitals)),
        }
        logger.info("Seeded reference data: %s", created)
        return created

    async def replace_hospitals(self, hospitals: Iterable[Hospital]) -> int:
        records = [h.model_copy(update={"distance": None}).to_record() for h in hospitals]
        return await self._hospitals.mutate(lambda value: (records, len(records)))
