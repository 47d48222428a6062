"""Polling refresh of role-scoped booking views.

There is no push channel. Each tick re-reads the full collection and builds
a fresh view, so a view is never older than one interval and nothing
survives from one tick to the next.
"""
import asyncio
import contextlib
import inspect
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Union

from pydantic import Field

from errors import BookingError
from lifecycle import ACTIVE_STATUSES
from schemas import ApiModel, Booking, BookingStatus, User, utcnow

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0

Listener = Callable[["BookingView"], Union[None, Awaitable[None]]]


class BookingView(ApiModel):
    user_id: Optional[str] = None
    role: Optional[str] = None
    bookings: List[Booking] = Field(default_factory=list)
    active: Optional[Booking] = None
    pending: List[Booking] = Field(default_factory=list)
    assigned: List[Booking] = Field(default_factory=list)
    refreshed_at: datetime = Field(default_factory=utcnow)


def active_booking(bookings: List[Booking]) -> Optional[Booking]:
    """First booking, in store order, that is not completed or cancelled."""
    return next((b for b in bookings if b.status in ACTIVE_STATUSES), None)


def scope_view(identity: Optional[User], bookings: List[Booking]) -> BookingView:
    if identity is None:
        return BookingView()
    if identity.role == "driver":
        assigned = [b for b in bookings if b.driver_id == identity.id and b.status in ACTIVE_STATUSES]
        return BookingView(
            user_id=identity.id,
            role=identity.role,
            bookings=list(bookings),
            active=assigned[0] if assigned else None,
            pending=[b for b in bookings if b.status is BookingStatus.pending],
            assigned=assigned,
        )
    own = [b for b in bookings if b.user_id == identity.id]
    return BookingView(user_id=identity.id, role=identity.role, bookings=own, active=active_booking(own))


class SyncPoller:
    def __init__(self, load: Callable[[], Awaitable[List[Booking]]], identity: Optional[User],
                 interval: float = POLL_INTERVAL):
        self.load = load
        self.identity = identity
        self.interval = interval
        self.latest: Optional[BookingView] = None
        self._listeners: List[Listener] = []
        self._task: Optional[asyncio.Task] = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    async def tick(self) -> BookingView:
        view = scope_view(self.identity, await self.load())
        self.latest = view
        logger.debug("%s view refreshed: %d bookings", view.role or "anonymous", len(view.bookings))
        for listener in list(self._listeners):
            try:
                result = listener(view)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Booking view listener failed")
        return view

    async def run(self) -> None:
        while True:
            try:
                await self.tick()
            except BookingError as e:
                logger.warning("Error loading bookings: %s", e)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="booking-poller")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
