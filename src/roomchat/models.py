"""Models for RoomChat application payloads and events."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class PayloadType(Enum):
    """Type discriminator carried in every payload."""
    JOIN = "join"
    LEAVE = "leave"
    MOVE = "move"
    CHAT = "chat"
    REACTION = "reaction"
    EMOTE = "emote"
    MAGIC = "magic"

    @classmethod
    def from_tag(cls, tag: Any) -> Optional["PayloadType"]:
        """Resolve a wire tag, accepting the legacy ``react`` alias."""
        if tag == "react":
            return cls.REACTION
        try:
            return cls(tag)
        except ValueError:
            return None


@dataclass(frozen=True)
class JoinEvent:
    """A participant announced its presence."""
    sender_id: str
    name: str
    color_idx: Optional[int] = None


@dataclass(frozen=True)
class LeaveEvent:
    """A participant left the room."""
    sender_id: str
    name: str


@dataclass(frozen=True)
class MoveEvent:
    """A participant moved."""
    sender_id: str
    name: str
    x: float
    y: float
    z: float
    heading: float
    color_idx: Optional[int] = None


@dataclass(frozen=True)
class ChatEvent:
    """A chat line."""
    sender_id: str
    name: str
    text: str


@dataclass(frozen=True)
class ReactionEvent:
    """A reaction symbol shown above the sender."""
    sender_id: str
    name: str
    symbol: str


@dataclass(frozen=True)
class EmoteEvent:
    """An emote animation identifier."""
    sender_id: str
    name: str
    emote: str


@dataclass(frozen=True)
class MagicConfig:
    """Shared visual effect configuration. Unset fields are left unchanged."""
    type: str = "snow"
    count: Optional[int] = None
    color: Optional[str] = None
    speed: Optional[float] = None
    size: Optional[float] = None

    def to_payload(self) -> dict[str, Any]:
        """Fields for a ``magic`` payload."""
        config = {"type": self.type}
        for key in ("count", "color", "speed", "size"):
            value = getattr(self, key)
            if value is not None:
                config[key] = value
        return {"magicType": self.type, "config": config}


@dataclass(frozen=True)
class MagicEvent:
    """A participant changed the room's visual effect."""
    sender_id: str
    name: str
    config: MagicConfig = field(default_factory=MagicConfig)


RoomEvent = Union[
    JoinEvent, LeaveEvent, MoveEvent, ChatEvent, ReactionEvent, EmoteEvent, MagicEvent
]


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Expected number, got {value!r}")
    return float(value)


def _text(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"Expected string, got {value!r}")
    return value


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _magic_config(payload: dict[str, Any]) -> MagicConfig:
    config = payload.get("config")
    if not isinstance(config, dict):
        config = {}

    def pick(key: str) -> Any:
        value = payload.get(key)
        return value if value is not None else config.get(key)

    return MagicConfig(
        type=payload.get("magicType") or config.get("type") or "snow",
        count=pick("count"),
        color=pick("color"),
        speed=pick("speed"),
        size=pick("size"),
    )


def parse_event(payload: dict[str, Any]) -> Optional[RoomEvent]:
    """
    Turn a decrypted payload into a typed event.

    Args:
        payload: Decrypted payload (already checked for sender identity).

    Returns:
        The event, or None for unknown tags or payloads missing required fields.
    """
    kind = PayloadType.from_tag(payload.get("type"))
    if kind is None:
        return None

    sender_id = payload.get("id", "")
    name = payload.get("name") if isinstance(payload.get("name"), str) else ""

    try:
        if kind is PayloadType.JOIN:
            return JoinEvent(sender_id, name, _optional_int(payload.get("colorIdx")))
        if kind is PayloadType.LEAVE:
            return LeaveEvent(sender_id, name)
        if kind is PayloadType.MOVE:
            return MoveEvent(
                sender_id,
                name,
                x=_number(payload.get("x")),
                y=_number(payload.get("y")),
                z=_number(payload.get("z")),
                heading=_number(payload.get("ry", 0)),
                color_idx=_optional_int(payload.get("colorIdx")),
            )
        if kind is PayloadType.CHAT:
            return ChatEvent(sender_id, name, _text(payload.get("text")))
        if kind is PayloadType.REACTION:
            return ReactionEvent(sender_id, name, _text(payload.get("symbol")))
        if kind is PayloadType.EMOTE:
            return EmoteEvent(sender_id, name, _text(payload.get("emote")))
        if kind is PayloadType.MAGIC:
            return MagicEvent(sender_id, name, _magic_config(payload))
    except ValueError as e:
        logger.debug("Dropping %s payload from %s: %s", kind.value, sender_id, e)
        return None

    return None


class RoomHandler:
    """
    Receiver for events that survived decryption and replay checks.

    Override the callbacks you care about; the rest are no-ops.
    """

    def on_join(self, event: JoinEvent) -> None:
        pass

    def on_leave(self, event: LeaveEvent) -> None:
        pass

    def on_move(self, event: MoveEvent) -> None:
        pass

    def on_chat(self, event: ChatEvent) -> None:
        pass

    def on_reaction(self, event: ReactionEvent) -> None:
        pass

    def on_emote(self, event: EmoteEvent) -> None:
        pass

    def on_magic(self, event: MagicEvent) -> None:
        pass

    def dispatch(self, event: RoomEvent) -> None:
        """Route an event to its callback."""
        if isinstance(event, JoinEvent):
            self.on_join(event)
        elif isinstance(event, LeaveEvent):
            self.on_leave(event)
        elif isinstance(event, MoveEvent):
            self.on_move(event)
        elif isinstance(event, ChatEvent):
            self.on_chat(event)
        elif isinstance(event, ReactionEvent):
            self.on_reaction(event)
        elif isinstance(event, EmoteEvent):
            self.on_emote(event)
        elif isinstance(event, MagicEvent):
            self.on_magic(event)


class RecordingHandler(RoomHandler):
    """RoomHandler that keeps every dispatched event in order."""

    def __init__(self) -> None:
        self.events: list[RoomEvent] = []

    def dispatch(self, event: RoomEvent) -> None:
        self.events.append(event)
        super().dispatch(event)

    def of_type(self, kind: type) -> list[RoomEvent]:
        """Returns the recorded events of one class."""
        return [e for e in self.events if isinstance(e, kind)]
