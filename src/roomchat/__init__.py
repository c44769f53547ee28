"""
RoomChat - End-to-end encrypted room state over a public pub/sub relay

Python implementation of the RoomChat envelope protocol using SHA-512 room
keys and ChaCha20-Poly1305 with counter-derived nonces.
"""

from .keys import (
    derive_room_key,
    make_nonce,
    generate_room_id,
    generate_participant_id,
    generate_secure_id,
    ensure_crypto_available,
)
from .crypto import encrypt_payload, decrypt_payload, open_envelope, serialize_payload
from .envelope import encode_envelope, decode_envelope, is_room_message, Envelope, EnvelopeError
from .replay import ReplayGuard, ReplayState, ReplayVerdict
from .types import (
    PROTOCOL_VERSION,
    KEY_SIZE,
    NONCE_SIZE,
    REPLAY_WINDOW,
    TOPIC_PREFIX,
    CONNECT_TIMEOUT,
    RoomChatError,
    KeyDerivationError,
    CryptoUnavailableError,
    EncryptionError,
    DecodeError,
    CryptoError,
    ValidationError,
    ReplayRejectedError,
    TransportError,
    SessionStateError,
)
from .models import (
    PayloadType,
    JoinEvent,
    LeaveEvent,
    MoveEvent,
    ChatEvent,
    ReactionEvent,
    EmoteEvent,
    MagicEvent,
    MagicConfig,
    RoomEvent,
    RoomHandler,
    RecordingHandler,
    parse_event,
)
from .invite import RoomInvite, create_invite_url, parse_invite_url
from .transport import (
    RelayConfig,
    TransportEventKind,
    TransportEvent,
    Transport,
    InMemoryBroker,
    InMemoryTransport,
)
from .session import SessionConfig, SessionManager

__version__ = "0.1.0"

__all__ = [
    # Keys
    "derive_room_key",
    "make_nonce",
    "generate_room_id",
    "generate_participant_id",
    "generate_secure_id",
    "ensure_crypto_available",
    # Crypto
    "encrypt_payload",
    "decrypt_payload",
    "open_envelope",
    "serialize_payload",
    # Envelope
    "encode_envelope",
    "decode_envelope",
    "is_room_message",
    "Envelope",
    "EnvelopeError",
    # Replay
    "ReplayGuard",
    "ReplayState",
    "ReplayVerdict",
    # Constants
    "PROTOCOL_VERSION",
    "KEY_SIZE",
    "NONCE_SIZE",
    "REPLAY_WINDOW",
    "TOPIC_PREFIX",
    "CONNECT_TIMEOUT",
    # Errors
    "RoomChatError",
    "KeyDerivationError",
    "CryptoUnavailableError",
    "EncryptionError",
    "DecodeError",
    "CryptoError",
    "ValidationError",
    "ReplayRejectedError",
    "TransportError",
    "SessionStateError",
    # Models
    "PayloadType",
    "JoinEvent",
    "LeaveEvent",
    "MoveEvent",
    "ChatEvent",
    "ReactionEvent",
    "EmoteEvent",
    "MagicEvent",
    "MagicConfig",
    "RoomEvent",
    "RoomHandler",
    "RecordingHandler",
    "parse_event",
    # Invite
    "RoomInvite",
    "create_invite_url",
    "parse_invite_url",
    # Transport
    "RelayConfig",
    "TransportEventKind",
    "TransportEvent",
    "Transport",
    "InMemoryBroker",
    "InMemoryTransport",
    # Session
    "SessionConfig",
    "SessionManager",
]
