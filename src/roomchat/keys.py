"""Room key derivation, nonce derivation and identifier generation."""

import os
import secrets

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from .types import (
    KEY_SIZE,
    NONCE_SIZE,
    PARTICIPANT_ID_PREFIX,
    PARTICIPANT_ID_LENGTH,
    ROOM_ID_BYTES,
    CryptoUnavailableError,
    KeyDerivationError,
)

_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


def _sha512(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.SHA512())
    digest.update(data)
    return digest.finalize()


def derive_room_key(room_id: str) -> bytes:
    """
    Derive the symmetric session key for a room.

    Every participant computes the same key from the shared room identifier,
    so no key exchange round-trip is needed. The key is only as strong as the
    room identifier is unguessable.

    Args:
        room_id: The shared room identifier

    Returns:
        32-byte session key (first half of SHA-512 over the identifier)

    Raises:
        KeyDerivationError: If the room identifier is empty
    """
    if not room_id:
        raise KeyDerivationError("Room identifier must not be empty")

    return _sha512(room_id.encode("utf-8"))[:KEY_SIZE]


def make_nonce(sender_id: str, counter: int) -> bytes:
    """
    Derive the per-message nonce from the sender identifier and counter.

    Sender and receivers compute this independently. Uniqueness relies on the
    sender never reusing a counter and on sender ids being unique per key.

    Args:
        sender_id: The sending participant's identifier
        counter: The sender's message counter

    Returns:
        12-byte ChaCha20-Poly1305 nonce
    """
    seed = f"{sender_id}:{counter}".encode("utf-8")
    return _sha512(seed)[:NONCE_SIZE]


def generate_room_id() -> str:
    """Generate a new room identifier with 256 bits of entropy (hex)."""
    return os.urandom(ROOM_ID_BYTES).hex()


def generate_secure_id(length: int = 32) -> str:
    """Generate a random alphanumeric identifier using a CSPRNG."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def generate_participant_id() -> str:
    """Generate a fresh participant identifier."""
    return PARTICIPANT_ID_PREFIX + generate_secure_id(PARTICIPANT_ID_LENGTH)


def ensure_crypto_available() -> None:
    """
    Check that the AEAD primitive works before a session starts.

    Raises:
        CryptoUnavailableError: If ChaCha20-Poly1305 cannot be used
    """
    try:
        cipher = ChaCha20Poly1305(bytes(KEY_SIZE))
        nonce = bytes(NONCE_SIZE)
        sealed = cipher.encrypt(nonce, b"self-test", None)
        if cipher.decrypt(nonce, sealed, None) != b"self-test":
            raise CryptoUnavailableError("ChaCha20-Poly1305 self-test mismatch")
    except UnsupportedAlgorithm as e:
        raise CryptoUnavailableError(f"ChaCha20-Poly1305 unavailable: {e}") from e
