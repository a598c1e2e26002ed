"""Result and control buses.

two asyncio-queue based channels:

  ResultBus  - many workers publish payloads, the single consumer drains them
  ControlBus - broadcast; every subscriber sees every command and decides for
               itself whether it cares

both are unbounded. payloads are small and the consumer drains every frame,
so back-pressure would only ever stall a worker for no good reason.
"""

import asyncio
import logging

from pulseboard.errors import BusClosedError
from pulseboard.models.payload import Command, Payload

logger = logging.getLogger(__name__)


class ResultBus:
    """Multi-producer, single-consumer stream of tagged payloads."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Payload] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, payload: Payload) -> None:
        """Queue a payload for the consumer.

        Raises:
            BusClosedError: the consumer has gone away.
        """
        if self._closed:
            raise BusClosedError("Result bus is closed")
        self._queue.put_nowait(payload)

    async def get(self) -> Payload:
        """Wait for the next payload."""
        return await self._queue.get()

    def drain(self) -> list[Payload]:
        """Everything queued right now, without waiting."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return items

    def close(self) -> None:
        self._closed = True

    def __len__(self) -> int:
        return self._queue.qsize()


class Subscription:
    """One subscriber's view of the control bus."""

    def __init__(self, bus: "ControlBus") -> None:
        self._bus = bus
        self._queue: asyncio.Queue[Command] = asyncio.Queue()

    def _deliver(self, command: Command) -> None:
        self._queue.put_nowait(command)

    async def get(self) -> Command:
        """Wait for the next command."""
        return await self._queue.get()

    def drain(self) -> list[Command]:
        """Non-blocking - returns whatever commands are waiting, possibly none."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return items

    def unsubscribe(self) -> None:
        self._bus._remove(self)


class ControlBus:
    """Broadcast stream of AddQuery / DeleteQuery / RefreshQuery commands."""

    def __init__(self) -> None:
        self._subscribers: list[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> Subscription:
        """Register a new subscriber. Only commands published after this are seen."""
        subscription = Subscription(self)
        self._subscribers.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, command: Command) -> None:
        """Deliver a command to every current subscriber.

        Raises:
            BusClosedError: the bus has been shut down.
        """
        if self._closed:
            raise BusClosedError("Control bus is closed")
        logger.debug(f"Broadcasting {command.type} to {len(self._subscribers)} subscribers")
        for subscription in list(self._subscribers):
            subscription._deliver(command)

    def close(self) -> None:
        self._closed = True
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
