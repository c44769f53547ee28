"""Encryption and decryption of room payloads."""

import json
import logging
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from .envelope import Envelope
from .keys import make_nonce
from .types import KEY_SIZE, PROTOCOL_VERSION, CryptoError, EncryptionError, ValidationError

logger = logging.getLogger(__name__)


def serialize_payload(payload: dict[str, Any]) -> bytes:
    """Canonical JSON encoding of a payload (sorted keys, compact)."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def encrypt_payload(
    key: bytes,
    sender_id: str,
    counter: int,
    payload: dict[str, Any],
) -> Envelope:
    """
    Encrypt a payload for everyone holding the room key.

    The caller owns the counter and must never pass the same
    (sender_id, counter) pair twice under one key.

    Args:
        key: 32-byte room session key
        sender_id: Local participant id
        counter: Local message counter for this message
        payload: JSON-serializable application payload

    Returns:
        Envelope containing the sealed payload

    Raises:
        EncryptionError: If the key is malformed or the payload cannot be serialized
    """
    if len(key) != KEY_SIZE:
        raise EncryptionError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")

    if counter < 0:
        raise EncryptionError(f"Counter must be non-negative, got {counter}")

    try:
        plaintext = serialize_payload(payload)
    except (TypeError, ValueError) as e:
        raise EncryptionError(f"Payload is not serializable: {e}") from e

    nonce = make_nonce(sender_id, counter)
    ciphertext = ChaCha20Poly1305(key).encrypt(nonce, plaintext, None)

    return Envelope(
        version=PROTOCOL_VERSION,
        sender_id=sender_id,
        counter=counter,
        ciphertext=ciphertext,
    )


def open_envelope(key: bytes, envelope: Envelope) -> dict[str, Any]:
    """
    Decrypt an envelope, raising on any failure.

    Args:
        key: 32-byte room session key
        envelope: The received envelope

    Returns:
        The payload dict

    Raises:
        CryptoError: If the version is unsupported or authentication fails
        ValidationError: If the plaintext is not a JSON object or its
            claimed sender differs from the envelope sender
    """
    if envelope.version != PROTOCOL_VERSION:
        raise CryptoError(f"Unsupported version: {envelope.version}")

    nonce = make_nonce(envelope.sender_id, envelope.counter)

    try:
        plaintext = ChaCha20Poly1305(key).decrypt(nonce, envelope.ciphertext, None)
    except (InvalidTag, ValueError) as e:
        raise CryptoError("Authentication failed") from e

    try:
        payload = json.loads(plaintext.decode("utf-8"))
    except (ValueError, RecursionError) as e:
        raise ValidationError("Plaintext is not JSON") from e

    if not isinstance(payload, dict):
        raise ValidationError("Plaintext is not an object")

    # Nonce binding already covers this; checked again on the plaintext
    if payload.get("id") != envelope.sender_id:
        raise ValidationError("Sender claim does not match envelope")

    return payload


def decrypt_payload(key: bytes, envelope: Envelope) -> Optional[dict[str, Any]]:
    """
    Decrypt an envelope.

    All failures collapse to None so callers cannot tell a wrong key from
    tampering or a relabelled sender.

    Args:
        key: 32-byte room session key
        envelope: The received envelope

    Returns:
        The payload dict, or None if the envelope does not authenticate, does
        not parse, or its claimed sender differs from the envelope sender
    """
    try:
        return open_envelope(key, envelope)
    except CryptoError:
        return None
    except ValidationError as e:
        logger.debug("Rejected payload from %s: %s", envelope.sender_id, e)
        return None
