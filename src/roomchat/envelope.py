"""Envelope encoding and decoding for the RoomChat wire format."""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Union

from .types import PROTOCOL_VERSION, DecodeError


@dataclass(frozen=True)
class Envelope:
    """RoomChat message envelope as published on the relay."""
    version: int
    sender_id: str
    counter: int
    ciphertext: bytes  # sealed payload + 16-byte tag


class EnvelopeError(DecodeError):
    """Raised when envelope encoding/decoding fails."""
    pass


def encode_envelope(envelope: Envelope) -> bytes:
    """
    Encode an envelope to bytes.

    Format (UTF-8 JSON object):
        v        protocol version (1)
        sender   sender participant id
        counter  sender message counter
        payload  base64 ciphertext

    Args:
        envelope: Envelope to encode

    Returns:
        Encoded bytes
    """
    frame = {
        "v": envelope.version,
        "sender": envelope.sender_id,
        "counter": envelope.counter,
        "payload": base64.b64encode(envelope.ciphertext).decode("ascii"),
    }
    return json.dumps(frame, separators=(",", ":")).encode("utf-8")


def decode_envelope(data: Union[bytes, str]) -> Envelope:
    """
    Decode bytes into an envelope.

    Every field is checked before any decryption is attempted.

    Args:
        data: Encoded envelope (bytes or already-decoded text)

    Returns:
        Decoded Envelope

    Raises:
        EnvelopeError: If data is malformed, incomplete or of another version
    """
    try:
        text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
        frame = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise EnvelopeError(f"Invalid frame: {e}") from e

    if not isinstance(frame, dict):
        raise EnvelopeError("Frame is not an object")

    version = frame.get("v")
    if version != PROTOCOL_VERSION or isinstance(version, bool):
        raise EnvelopeError(f"Unknown version: {version!r}")

    sender_id = frame.get("sender")
    if not isinstance(sender_id, str) or not sender_id:
        raise EnvelopeError("Missing sender")

    counter = frame.get("counter")
    if not isinstance(counter, int) or isinstance(counter, bool) or counter < 0:
        raise EnvelopeError(f"Invalid counter: {counter!r}")

    payload = frame.get("payload")
    if not isinstance(payload, str) or not payload:
        raise EnvelopeError("Missing payload")

    try:
        ciphertext = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EnvelopeError(f"Invalid payload encoding: {e}") from e

    return Envelope(
        version=version,
        sender_id=sender_id,
        counter=counter,
        ciphertext=ciphertext,
    )


def is_room_message(data: bytes) -> bool:
    """
    Check if data looks like a valid RoomChat envelope.

    Args:
        data: Bytes to check

    Returns:
        True if data decodes as an envelope of the supported version
    """
    try:
        decode_envelope(data)
    except EnvelopeError:
        return False
    return True
