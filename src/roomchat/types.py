"""Type definitions and protocol constants for RoomChat."""

# Protocol constants
PROTOCOL_VERSION = 1
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
REPLAY_WINDOW = 64

# Relay constants
TOPIC_PREFIX = "mirakuruverse/private/"
PARTICIPANT_ID_PREFIX = "mv_"
PARTICIPANT_ID_LENGTH = 16
ROOM_ID_BYTES = 32

# Timing constants (seconds)
CONNECT_TIMEOUT = 15.0
MIN_SEND_INTERVAL = 0.02
ANNOUNCE_INTERVAL = 1.0
INVITE_TTL = 24 * 60 * 60


# Exception types
class RoomChatError(Exception):
    """Base exception for RoomChat errors."""
    pass


class KeyDerivationError(RoomChatError):
    """Key derivation failed."""
    pass


class CryptoUnavailableError(RoomChatError):
    """The AEAD primitive is not usable in this environment."""
    pass


class EncryptionError(RoomChatError):
    """Encryption failed."""
    pass


class DecodeError(RoomChatError):
    """Malformed outer frame."""
    pass


class CryptoError(RoomChatError):
    """Authenticated decryption failed."""
    pass


class ValidationError(RoomChatError):
    """Decrypted payload failed validation."""
    pass


class ReplayRejectedError(RoomChatError):
    """Counter was already seen or is outside the replay window."""
    pass


class TransportError(RoomChatError):
    """Relay connection, subscription or publish failed."""
    pass


class SessionStateError(RoomChatError):
    """Session operation called in the wrong lifecycle state."""
    pass
