"""Tests for payload encryption and decryption."""

from dataclasses import replace

import pytest
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from roomchat.crypto import encrypt_payload, decrypt_payload, open_envelope, serialize_payload
from roomchat.envelope import Envelope, encode_envelope, decode_envelope
from roomchat.keys import derive_room_key, make_nonce
from roomchat.types import PROTOCOL_VERSION, TAG_SIZE, CryptoError, EncryptionError, ValidationError
from .test_vectors import ROOM_ID, OTHER_ROOM_ID, ALICE_ID, BOB_ID, TEST_PAYLOADS


@pytest.fixture
def room_key() -> bytes:
    """Session key for the test room."""
    return derive_room_key(ROOM_ID)


@pytest.fixture
def chat_envelope(room_key) -> Envelope:
    """Alice's first chat message."""
    return encrypt_payload(room_key, ALICE_ID, 1, TEST_PAYLOADS["chat"])


class TestEncryption:
    """Test payload encryption."""

    def test_envelope_metadata(self, chat_envelope) -> None:
        """Envelope carries version, sender and counter in the clear."""
        assert chat_envelope.version == PROTOCOL_VERSION
        assert chat_envelope.sender_id == ALICE_ID
        assert chat_envelope.counter == 1

    def test_ciphertext_length(self, chat_envelope) -> None:
        """Ciphertext is the canonical plaintext plus the tag."""
        plaintext = serialize_payload(TEST_PAYLOADS["chat"])
        assert len(chat_envelope.ciphertext) == len(plaintext) + TAG_SIZE

    def test_plaintext_not_visible(self, chat_envelope) -> None:
        """Nothing of the payload appears on the wire."""
        wire = encode_envelope(chat_envelope)
        assert b"chat" not in wire
        assert b'"text"' not in wire

    def test_deterministic_for_same_counter(self, room_key) -> None:
        """Same inputs seal to the same bytes (hence counters must never repeat)."""
        a = encrypt_payload(room_key, ALICE_ID, 5, TEST_PAYLOADS["chat"])
        b = encrypt_payload(room_key, ALICE_ID, 5, TEST_PAYLOADS["chat"])
        assert a.ciphertext == b.ciphertext

    def test_counter_changes_ciphertext(self, room_key) -> None:
        """A new counter yields unrelated ciphertext for the same payload."""
        a = encrypt_payload(room_key, ALICE_ID, 1, TEST_PAYLOADS["chat"])
        b = encrypt_payload(room_key, ALICE_ID, 2, TEST_PAYLOADS["chat"])
        assert a.ciphertext != b.ciphertext

    def test_canonical_serialization(self) -> None:
        """Key order does not change the serialized plaintext."""
        assert serialize_payload({"b": 1, "a": 2}) == serialize_payload({"a": 2, "b": 1})
        assert serialize_payload({"a": 1}) == b'{"a":1}'

    def test_rejects_bad_key(self) -> None:
        """Keys of the wrong size are a local error."""
        with pytest.raises(EncryptionError, match="32 bytes"):
            encrypt_payload(b"short", ALICE_ID, 1, TEST_PAYLOADS["chat"])

    def test_rejects_unserializable_payload(self, room_key) -> None:
        """Payloads must be JSON-serializable."""
        with pytest.raises(EncryptionError, match="serializable"):
            encrypt_payload(room_key, ALICE_ID, 1, {"type": "chat", "id": ALICE_ID, "blob": object()})

    def test_rejects_negative_counter(self, room_key) -> None:
        """Counters are non-negative."""
        with pytest.raises(EncryptionError):
            encrypt_payload(room_key, ALICE_ID, -1, TEST_PAYLOADS["chat"])


class TestDecryption:
    """Test payload decryption."""

    @pytest.mark.parametrize("name,payload", TEST_PAYLOADS.items())
    def test_round_trip(self, room_key, name: str, payload: dict) -> None:
        """Each payload type survives encrypt, encode, decode, decrypt."""
        envelope = encrypt_payload(room_key, ALICE_ID, 42, payload)
        decoded = decode_envelope(encode_envelope(envelope))

        result = decrypt_payload(room_key, decoded)

        assert result == payload, f"Round trip mismatch for {name}"

    def test_wrong_room_key(self, chat_envelope) -> None:
        """A key from another room never opens the envelope."""
        assert decrypt_payload(derive_room_key(OTHER_ROOM_ID), chat_envelope) is None

    def test_version_mismatch(self, room_key, chat_envelope) -> None:
        """Other protocol versions are rejected before decryption."""
        assert decrypt_payload(room_key, replace(chat_envelope, version=2)) is None

    def test_ciphertext_bit_flips(self, room_key, chat_envelope) -> None:
        """Flipping any ciphertext bit breaks authentication."""
        ciphertext = chat_envelope.ciphertext
        for index in range(len(ciphertext)):
            for bit in range(8):
                tampered = bytearray(ciphertext)
                tampered[index] ^= 1 << bit
                result = decrypt_payload(
                    room_key, replace(chat_envelope, ciphertext=bytes(tampered))
                )
                assert result is None, f"Accepted flip at byte {index} bit {bit}"

    def test_truncated_ciphertext(self, room_key, chat_envelope) -> None:
        """Truncation breaks authentication."""
        assert decrypt_payload(room_key, replace(chat_envelope, ciphertext=chat_envelope.ciphertext[:-1])) is None
        assert decrypt_payload(room_key, replace(chat_envelope, ciphertext=b"")) is None

    def test_relabelled_sender(self, room_key, chat_envelope) -> None:
        """Claiming another sender changes the nonce and fails."""
        assert decrypt_payload(room_key, replace(chat_envelope, sender_id=BOB_ID)) is None

    def test_sender_bit_flips(self, room_key, chat_envelope) -> None:
        """Flipping any bit of the sender id fails."""
        raw = chat_envelope.sender_id.encode("utf-8")
        for index in range(len(raw)):
            for bit in range(7):
                tampered = bytearray(raw)
                tampered[index] ^= 1 << bit
                sender = bytes(tampered).decode("utf-8", errors="replace")
                assert decrypt_payload(room_key, replace(chat_envelope, sender_id=sender)) is None

    def test_altered_counter(self, room_key, chat_envelope) -> None:
        """Any other counter derives another nonce and fails."""
        for counter in (0, 2, 3, 1 << 31, 1 ^ (1 << 40)):
            assert decrypt_payload(room_key, replace(chat_envelope, counter=counter)) is None

    def test_sender_claim_mismatch(self, room_key) -> None:
        """A payload claiming a different identity than its envelope is rejected."""
        forged = dict(TEST_PAYLOADS["chat"], id=BOB_ID)
        envelope = encrypt_payload(room_key, ALICE_ID, 1, forged)
        assert decrypt_payload(room_key, envelope) is None

    def test_missing_sender_claim(self, room_key) -> None:
        """A payload without an identity claim is rejected."""
        envelope = encrypt_payload(room_key, ALICE_ID, 1, {"type": "chat", "text": "hi"})
        assert decrypt_payload(room_key, envelope) is None

    def test_authenticated_garbage(self, room_key) -> None:
        """Authentic but non-JSON plaintext is rejected."""
        sealed = ChaCha20Poly1305(room_key).encrypt(make_nonce(ALICE_ID, 1), b"\xff\xfe not json", None)
        envelope = Envelope(PROTOCOL_VERSION, ALICE_ID, 1, sealed)
        assert decrypt_payload(room_key, envelope) is None

    def test_authenticated_non_object(self, room_key) -> None:
        """Authentic JSON that is not an object is rejected."""
        sealed = ChaCha20Poly1305(room_key).encrypt(make_nonce(ALICE_ID, 1), b"[1, 2, 3]", None)
        envelope = Envelope(PROTOCOL_VERSION, ALICE_ID, 1, sealed)
        assert decrypt_payload(room_key, envelope) is None


    def test_authenticated_deep_nesting(self, room_key) -> None:
        """Authentic but pathologically nested plaintext is rejected."""
        sealed = ChaCha20Poly1305(room_key).encrypt(make_nonce(ALICE_ID, 1), b"[" * 100000, None)
        envelope = Envelope(PROTOCOL_VERSION, ALICE_ID, 1, sealed)
        assert decrypt_payload(room_key, envelope) is None

class TestOpenEnvelope:
    """Test the raising variant used for diagnostics."""

    def test_opens_valid(self, room_key, chat_envelope) -> None:
        """A valid envelope opens to its payload."""
        assert open_envelope(room_key, chat_envelope) == TEST_PAYLOADS["chat"]

    def test_wrong_key_is_crypto_error(self, chat_envelope) -> None:
        """Authentication failures raise CryptoError."""
        with pytest.raises(CryptoError):
            open_envelope(derive_room_key(OTHER_ROOM_ID), chat_envelope)

    def test_sender_mismatch_is_validation_error(self, room_key) -> None:
        """A mismatched identity claim raises ValidationError."""
        envelope = encrypt_payload(room_key, ALICE_ID, 1, dict(TEST_PAYLOADS["chat"], id=BOB_ID))
        with pytest.raises(ValidationError, match="Sender claim"):
            open_envelope(room_key, envelope)
