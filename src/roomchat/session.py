"""
RoomChat session manager.

The SessionManager sits between an application and an untrusted pub/sub
relay. It owns the room key, the local identity and outbound counter, and
the per-sender replay state; everything published is sealed with the room
key and everything received is authenticated and replay-checked before the
application sees it.

Example usage:
    ```python
    broker = InMemoryBroker()
    session = SessionManager(broker.transport(), handler=MyHandler())

    room_id = session.create_room()
    if await session.connect("alice"):
        session.send_chat("hi")
        print(session.invite_url("https://example.com/room"))

    await session.disconnect()
    ```
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Union

from .crypto import decrypt_payload, encrypt_payload
from .envelope import EnvelopeError, decode_envelope, encode_envelope
from .invite import create_invite_url
from .keys import derive_room_key, ensure_crypto_available, generate_participant_id, generate_room_id
from .models import JoinEvent, MagicConfig, RoomEvent, RoomHandler, parse_event
from .replay import ReplayGuard
from .transport import RelayConfig, Transport, TransportEvent, TransportEventKind
from .types import (
    ANNOUNCE_INTERVAL,
    CONNECT_TIMEOUT,
    INVITE_TTL,
    MIN_SEND_INTERVAL,
    REPLAY_WINDOW,
    SessionStateError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionConfig:
    """Configuration for a room session."""

    relay: RelayConfig = field(default_factory=RelayConfig.public_broker)
    """Relay endpoint and topic namespace."""

    connect_timeout: float = CONNECT_TIMEOUT
    """Upper bound in seconds for handshake plus subscription."""

    min_send_interval: float = MIN_SEND_INTERVAL
    """Minimum seconds between outbound move updates."""

    announce_interval: float = ANNOUNCE_INTERVAL
    """Minimum seconds between unforced presence announcements."""

    replay_window: int = REPLAY_WINDOW
    """Replay window size per remote sender."""

    def with_timeout(self, seconds: float) -> "SessionConfig":
        """Returns a copy with a different connect timeout."""
        return replace(self, connect_timeout=seconds)


class SessionManager:
    """
    End-to-end encrypted room session over a pub/sub relay.

    All state changes happen on the event loop: inbound transport events are
    drained by one dispatcher task and ``send`` never awaits, so the counter
    and replay state need no locks.
    """

    def __init__(
        self,
        transport: Transport,
        handler: Optional[RoomHandler] = None,
        config: Optional[SessionConfig] = None,
        presence: Optional[dict[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the session.

        Args:
            transport: Relay client used for connect/subscribe/publish.
            handler: Receives decoded events (default: ignore everything).
            config: Session configuration (default: public broker, 15s timeout).
            presence: Extra fields sent with join and move payloads (e.g. colorIdx).
            clock: Monotonic clock in seconds, used for rate limiting.

        Raises:
            CryptoUnavailableError: If the AEAD primitive cannot be used.
        """
        ensure_crypto_available()

        self.transport = transport
        self.handler = handler or RoomHandler()
        self.config = config or SessionConfig()
        self.presence = dict(presence or {})
        self._clock = clock

        self._room_id: Optional[str] = None
        self._is_host = False
        self._key: Optional[bytes] = None
        self._counter = 0
        self._participant_id: Optional[str] = None
        self._nickname = ""
        self._replay = ReplayGuard(self.config.replay_window)

        self._connected = False
        self._connecting = False
        self._events: Optional["asyncio.Queue[TransportEvent]"] = None
        self._outcome: Optional["asyncio.Future[bool]"] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._handshake_task: Optional[asyncio.Task] = None

        self._last_move: Optional[float] = None
        self._last_announce: Optional[float] = None

    # MARK: - State

    @property
    def participant_id(self) -> Optional[str]:
        """The local participant id."""
        return self._participant_id

    @property
    def room_id(self) -> Optional[str]:
        """The current room id, if a room is set."""
        return self._room_id

    @property
    def is_host(self) -> bool:
        """Whether this participant created the room."""
        return self._is_host

    @property
    def is_connected(self) -> bool:
        """Whether the relay connection and subscription are up."""
        return self._connected

    @property
    def has_key(self) -> bool:
        """Whether a room key is installed."""
        return self._key is not None

    @property
    def nickname(self) -> str:
        """The nickname sent with every payload."""
        return self._nickname

    @property
    def counter(self) -> int:
        """The counter used by the most recent outbound message."""
        return self._counter

    @property
    def replay_guard(self) -> ReplayGuard:
        """Replay state for remote senders."""
        return self._replay

    @property
    def topic(self) -> str:
        """The relay topic for the current room."""
        if self._room_id is None:
            raise SessionStateError("No room set")
        return self.config.relay.topic_for(self._room_id)

    # MARK: - Room Lifecycle

    def set_room(self, room_id: str, is_host: bool = False) -> None:
        """
        Enter a room: install its key and start a fresh identity and counter.

        Args:
            room_id: The shared room identifier.
            is_host: Whether this participant created the room.

        Raises:
            SessionStateError: If currently connected.
            KeyDerivationError: If the room id is empty.
        """
        if self._connected or self._connecting:
            raise SessionStateError("Disconnect before changing rooms")

        key = derive_room_key(room_id)

        self._room_id = room_id
        self._is_host = is_host
        self._key = key
        # A reset counter must never be paired with an id already used under this key
        self._participant_id = generate_participant_id()
        self._counter = 0
        self._replay.clear()
        self._last_move = None
        self._last_announce = None

        logger.info("Room set (%s)", "host" if is_host else "guest")

    def create_room(self) -> str:
        """
        Create a new room as host.

        Returns:
            The generated room id, to be shared out of band.
        """
        room_id = generate_room_id()
        self.set_room(room_id, is_host=True)
        return room_id

    def invite_url(self, base_url: str, ttl: float = INVITE_TTL) -> str:
        """
        Build an invite link for the current room.

        Args:
            base_url: Page URL the invite points at.
            ttl: Invite lifetime in seconds (default: 24 hours).

        Returns:
            The invite URL.
        """
        if self._room_id is None:
            raise SessionStateError("No room set")
        return create_invite_url(
            base_url, self._room_id, host_id=self._participant_id or "", ttl=ttl
        )

    # MARK: - Connection

    async def connect(self, nickname: str) -> bool:
        """
        Connect to the relay and join the room topic.

        Resolves once, on whichever comes first: subscription success, a
        transport error, or the connect timeout.

        Args:
            nickname: Display name sent with every payload.

        Returns:
            True if connected and subscribed.

        Raises:
            SessionStateError: If already connected/connecting or no room is set.
        """
        if self._connected or self._connecting:
            raise SessionStateError("Already connected; disconnect first")
        if self._key is None or self._room_id is None:
            raise SessionStateError("set_room must be called before connect")

        if self._dispatcher is not None or self._events is not None:
            # Left over from a connection the relay dropped
            await self._teardown()

        self._nickname = nickname
        if self._participant_id is None:
            self._participant_id = generate_participant_id()

        loop = asyncio.get_running_loop()
        self._connecting = True
        self._outcome = loop.create_future()
        self._events = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_events(self._events))
        self._handshake_task = asyncio.create_task(self._handshake())

        ok = False
        try:
            ok = await asyncio.wait_for(
                asyncio.shield(self._outcome), self.config.connect_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Relay connection timed out after %.1fs", self.config.connect_timeout
            )
            self._settle(False)
        finally:
            self._connecting = False
            if not ok:
                await self._teardown()

        return ok

    async def disconnect(self) -> None:
        """
        Leave the room and drop all key material and replay state.

        Safe to call when never connected.
        """
        if self._connected:
            self.send_leave()

        await self._teardown()

        self._key = None
        self._room_id = None
        self._is_host = False
        self._counter = 0
        self._replay.clear()
        self._nickname = ""
        self._last_move = None
        self._last_announce = None

    async def _handshake(self) -> None:
        """Open the transport, subscribe, announce presence."""
        relay = self.config.relay
        try:
            await self.transport.connect(
                relay.endpoint, dict(relay.client_options), self._events
            )
            await self.transport.subscribe(self.topic)
        except Exception as e:
            logger.warning("Relay connection failed: %s", e)
            self._settle(False)
            return

        if self._outcome is None or self._outcome.done():
            return

        self._connected = True
        self.announce_presence(force=True)
        self._settle(True)
        logger.info("Connected to relay as %s", self._participant_id)

    def _settle(self, ok: bool) -> bool:
        """Resolve the pending connect outcome; later calls are ignored."""
        if self._outcome is None or self._outcome.done():
            return False
        self._outcome.set_result(ok)
        return True

    async def _teardown(self) -> None:
        """Stop background tasks and close the transport."""
        self._settle(False)
        self._connected = False

        current = asyncio.current_task()
        tasks = [
            t
            for t in (self._handshake_task, self._dispatcher)
            if t is not None and t is not current and not t.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._events is not None:
            self.transport.end()

        self._handshake_task = None
        self._dispatcher = None
        self._events = None
        self._outcome = None

    async def _dispatch_events(self, events: "asyncio.Queue[TransportEvent]") -> None:
        """Drain transport events one at a time."""
        while True:
            event = await events.get()
            try:
                self._on_transport_event(event)
            except Exception:
                logger.exception("Failed to process %s event", event.kind.value)

    def _on_transport_event(self, event: TransportEvent) -> None:
        if event.kind is TransportEventKind.MESSAGE:
            self.handle_message(event.data)
        elif event.kind is TransportEventKind.ERROR:
            logger.warning("Relay error: %s", event.error)
            self._connected = False
            self._settle(False)
        elif event.kind is TransportEventKind.CLOSED:
            if self._connected:
                logger.info("Relay connection closed")
            self._connected = False
        elif event.kind is TransportEventKind.CONNECTED:
            logger.debug("Relay handshake complete")

    # MARK: - Receiving

    def handle_message(self, raw: Union[bytes, str]) -> Optional[RoomEvent]:
        """
        Process one inbound frame.

        Frames are dropped when they are malformed, fail authentication,
        originate from this participant, or are replays. Drops never raise.

        Args:
            raw: The frame as delivered by the relay.

        Returns:
            The dispatched event, or None if the frame was dropped.
        """
        if self._key is None:
            return self._drop("no room key")

        try:
            envelope = decode_envelope(raw)
        except EnvelopeError as e:
            return self._drop(f"malformed frame: {e}")

        payload = decrypt_payload(self._key, envelope)
        if payload is None:
            return self._drop("decryption failed")

        if envelope.sender_id == self._participant_id:
            return self._drop("self-originated")

        verdict = self._replay.check(envelope.sender_id, envelope.counter)
        if not verdict.accepted:
            return self._drop(f"replay ({verdict.value}) from {envelope.sender_id}")

        event = parse_event(payload)
        if event is None:
            return self._drop(f"unhandled payload type {payload.get('type')!r}")

        try:
            self.handler.dispatch(event)
        except Exception:
            logger.exception("Room handler failed on %s", type(event).__name__)

        if isinstance(event, JoinEvent):
            self.announce_presence()

        return event

    def _drop(self, reason: str) -> None:
        logger.debug("Dropped inbound frame: %s", reason)
        return None

    # MARK: - Sending

    def send(self, payload: dict[str, Any]) -> bool:
        """
        Seal and publish a payload to the room.

        Delivery is at-most-once: there is no acknowledgement and no retry.
        The counter is consumed even if the publish fails.

        Args:
            payload: Application payload with a ``type`` tag.

        Returns:
            True if handed to the transport, False if not connected or the
            publish failed.

        Raises:
            ValidationError: If the payload has no type tag.
            EncryptionError: If the payload cannot be serialized.
        """
        if not isinstance(payload.get("type"), str):
            raise ValidationError("Payload requires a string 'type'")

        if not self._connected or self._key is None or self._room_id is None:
            logger.debug("Not connected; %s payload not sent", payload["type"])
            return False

        message = dict(payload)
        message["id"] = self._participant_id
        message["name"] = self._nickname

        self._counter += 1
        envelope = encrypt_payload(self._key, self._participant_id, self._counter, message)

        try:
            self.transport.publish(self.topic, encode_envelope(envelope))
        except TransportError as e:
            logger.warning("Publish failed: %s", e)
            return False

        return True

    def send_join(self) -> bool:
        """Announce presence."""
        return self.send({"type": "join", **self.presence})

    def send_leave(self) -> bool:
        """Announce departure."""
        return self.send({"type": "leave"})

    def send_move(self, x: float, y: float, z: float, heading: float) -> bool:
        """Publish position and heading, throttled to ``min_send_interval``."""
        now = self._clock()
        if self._last_move is not None and now - self._last_move < self.config.min_send_interval:
            return False
        sent = self.send(
            {"type": "move", "x": x, "y": y, "z": z, "ry": heading, **self.presence}
        )
        if sent:
            self._last_move = now
        return sent

    def send_chat(self, text: str) -> bool:
        """Publish a chat line."""
        return self.send({"type": "chat", "text": text})

    def send_reaction(self, symbol: str) -> bool:
        """Publish a reaction symbol."""
        return self.send({"type": "reaction", "symbol": symbol})

    def send_emote(self, emote: str) -> bool:
        """Publish an emote identifier."""
        return self.send({"type": "emote", "emote": emote})

    def send_magic(self, config: MagicConfig) -> bool:
        """Publish a visual effect configuration."""
        return self.send({"type": "magic", **config.to_payload()})

    def announce_presence(self, force: bool = False) -> bool:
        """Send a join, at most once per ``announce_interval`` unless forced."""
        now = self._clock()
        if (
            not force
            and self._last_announce is not None
            and now - self._last_announce < self.config.announce_interval
        ):
            return False
        self._last_announce = now
        return self.send_join()
