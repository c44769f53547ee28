"""
Relay transport interfaces.

This module provides the abstract base class the session uses to reach a
pub/sub relay, plus an in-process relay. Implementations can wrap any
MQTT or WebSocket client library.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .types import TOPIC_PREFIX, TransportError

logger = logging.getLogger(__name__)


@dataclass
class RelayConfig:
    """Configuration for the pub/sub relay."""

    endpoint: str
    """Relay URL."""

    topic_prefix: str = TOPIC_PREFIX
    """Application namespace prepended to the room id."""

    client_options: dict[str, Any] = field(default_factory=dict)
    """Options passed through to Transport.connect."""

    @classmethod
    def public_broker(cls) -> "RelayConfig":
        """Creates configuration for the public EMQX broker over WebSocket."""
        return cls(
            endpoint="wss://broker.emqx.io:8084/mqtt",
            client_options={
                "clean": True,
                "connect_timeout": 10.0,
                "reconnect_period": 1.0,
            },
        )

    @classmethod
    def local(cls) -> "RelayConfig":
        """Creates configuration for a broker on localhost."""
        return cls(endpoint="ws://localhost:8083/mqtt")

    def topic_for(self, room_id: str) -> str:
        """The single topic every participant of a room uses."""
        return f"{self.topic_prefix}{room_id}"


class TransportEventKind(Enum):
    """Kinds of event a transport reports."""
    CONNECTED = "connected"
    MESSAGE = "message"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class TransportEvent:
    """An event delivered from the transport to the session."""

    kind: TransportEventKind
    topic: Optional[str] = None
    data: bytes = b""
    error: Optional[BaseException] = None

    @classmethod
    def message(cls, topic: str, data: bytes) -> "TransportEvent":
        return cls(TransportEventKind.MESSAGE, topic=topic, data=data)

    @classmethod
    def failure(cls, error: BaseException) -> "TransportEvent":
        return cls(TransportEventKind.ERROR, error=error)


class Transport(ABC):
    """Interface for a pub/sub relay client.

    Events are pushed onto the queue handed to ``connect``; the session
    drains it from a single task. Delivery is at-most-once with no ordering
    guarantee across publishers.
    """

    @abstractmethod
    async def connect(
        self,
        endpoint: str,
        options: dict[str, Any],
        events: "asyncio.Queue[TransportEvent]",
    ) -> None:
        """Open the connection. Returns once the relay handshake completed.

        Raises:
            TransportError: If the connection cannot be established.
        """
        ...

    @abstractmethod
    async def subscribe(self, topic: str) -> None:
        """Subscribe to a topic. Returns once acknowledged.

        Raises:
            TransportError: If the subscription is refused.
        """
        ...

    @abstractmethod
    def publish(self, topic: str, data: bytes) -> None:
        """Publish without acknowledgement.

        Raises:
            TransportError: If the transport is not connected.
        """
        ...

    @abstractmethod
    def end(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


class InMemoryBroker:
    """In-process relay with full fan-out, including back to the publisher.

    Every publication is recorded in ``published`` so tests can play the
    part of an observer that replays or mutates frames.
    """

    def __init__(self, reachable: bool = True, refuse_subscriptions: bool = False) -> None:
        self.reachable = reachable
        self.refuse_subscriptions = refuse_subscriptions
        self.published: list[tuple[str, bytes]] = []
        self._subscribers: dict[str, list["InMemoryTransport"]] = {}

    def transport(self) -> "InMemoryTransport":
        """Create a client transport attached to this broker."""
        return InMemoryTransport(self)

    def attach(self, topic: str, client: "InMemoryTransport") -> None:
        subscribers = self._subscribers.setdefault(topic, [])
        if client not in subscribers:
            subscribers.append(client)

    def detach(self, client: "InMemoryTransport") -> None:
        for subscribers in self._subscribers.values():
            if client in subscribers:
                subscribers.remove(client)

    def subscribers(self, topic: str) -> int:
        """Returns the number of clients subscribed to a topic."""
        return len(self._subscribers.get(topic, []))

    def publish(self, topic: str, data: bytes) -> None:
        """Fan a frame out to every subscriber of the topic."""
        self.published.append((topic, bytes(data)))
        for client in list(self._subscribers.get(topic, [])):
            client.deliver(topic, data)

    def inject(self, topic: str, data: bytes) -> None:
        """Deliver a frame that did not come from any connected client."""
        self.publish(topic, data)

    def frames(self, topic: str) -> list[bytes]:
        """Returns every frame published on a topic, in order."""
        return [data for t, data in self.published if t == topic]


class InMemoryTransport(Transport):
    """Transport attached to an InMemoryBroker."""

    def __init__(self, broker: InMemoryBroker) -> None:
        self._broker = broker
        self._events: Optional["asyncio.Queue[TransportEvent]"] = None
        self.connected = False

    async def connect(
        self,
        endpoint: str,
        options: dict[str, Any],
        events: "asyncio.Queue[TransportEvent]",
    ) -> None:
        self._events = events
        if not self._broker.reachable:
            # An unreachable relay never answers the handshake
            await asyncio.Event().wait()
        self.connected = True
        events.put_nowait(TransportEvent(TransportEventKind.CONNECTED))

    async def subscribe(self, topic: str) -> None:
        if not self.connected:
            raise TransportError("Not connected")
        if self._broker.refuse_subscriptions:
            raise TransportError(f"Subscription refused: {topic}")
        self._broker.attach(topic, self)

    def publish(self, topic: str, data: bytes) -> None:
        if not self.connected:
            raise TransportError("Not connected")
        self._broker.publish(topic, data)

    def end(self) -> None:
        was_connected = self.connected
        self.connected = False
        self._broker.detach(self)
        if was_connected and self._events is not None:
            self._events.put_nowait(TransportEvent(TransportEventKind.CLOSED))

    def deliver(self, topic: str, data: bytes) -> None:
        if self._events is not None and self.connected:
            self._events.put_nowait(TransportEvent.message(topic, bytes(data)))

    def fail(self, error: BaseException) -> None:
        """Report an asynchronous transport error to the session."""
        if self._events is not None:
            self._events.put_nowait(TransportEvent.failure(error))
