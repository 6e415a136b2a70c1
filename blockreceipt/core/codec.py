"""
Payload Codec

Serializes receipts, computes the integrity hash over the sensitive subset,
and performs authenticated encryption of the full payload.

Cipher: XSalsa20-Poly1305 (libsodium secretbox via PyNaCl).

The nonce is synthetic: BLAKE2b(plaintext, key=payload_key). Identical
plaintext under the same key yields identical ciphertext, so the content
address of a receipt is stable and a retried store write is a no-op.
"""

import base64
import json

from nacl.encoding import RawEncoder
from nacl.exceptions import CryptoError
from nacl.hash import blake2b
from nacl.secret import SecretBox
from pydantic import ValidationError as PydanticValidationError

from ..schemas import EncryptedPayload, ReceiptPayload
from .errors import IntegrityError
from .hasher import Hasher
from .keys import KeyRing


ALGORITHM = "xsalsa20-poly1305"
NONCE_PERSON = b"br-nonce"


class PayloadCodec:
    """Serialize, hash, encrypt and decrypt receipt payloads."""

    def __init__(self, key_ring: KeyRing):
        self._key_ring = key_ring

    @property
    def key_ring(self) -> KeyRing:
        return self._key_ring

    # ================================================================
    # SERIALIZATION
    # ================================================================

    @staticmethod
    def serialize(payload: ReceiptPayload) -> bytes:
        return Hasher.canonical_bytes(payload)

    @staticmethod
    def deserialize(data: bytes) -> ReceiptPayload:
        obj = json.loads(data.decode("utf-8"))
        obj.pop("__canon_v", None)
        return ReceiptPayload.model_validate(obj)

    @staticmethod
    def integrity_hash(payload: ReceiptPayload) -> str:
        """SHA-256 over the canonical sensitive subset."""
        return Hasher.hash_data(payload.sensitive_subset())

    # ================================================================
    # ENVELOPE
    # ================================================================

    @staticmethod
    def encode_envelope(envelope: EncryptedPayload) -> bytes:
        """Bytes as written to the content store."""
        return Hasher.canonical_bytes(envelope)

    @staticmethod
    def decode_envelope(data: bytes) -> EncryptedPayload:
        try:
            obj = json.loads(data.decode("utf-8"))
            obj.pop("__canon_v", None)
            return EncryptedPayload.model_validate(obj)
        except (UnicodeDecodeError, ValueError, PydanticValidationError) as e:
            raise IntegrityError("Stored envelope is malformed") from e

    # ================================================================
    # ENCRYPTION
    # ================================================================

    def encrypt(self, payload: ReceiptPayload, key_id: str) -> EncryptedPayload:
        key = self._key_ring.payload_key(key_id)
        plaintext = self.serialize(payload)

        nonce = blake2b(
            plaintext,
            digest_size=SecretBox.NONCE_SIZE,
            key=key,
            person=NONCE_PERSON,
            encoder=RawEncoder,
        )
        sealed = SecretBox(key).encrypt(plaintext, nonce)

        return EncryptedPayload(
            algorithm=ALGORITHM,
            key_id=key_id,
            nonce=base64.b64encode(sealed.nonce).decode("ascii"),
            ciphertext=base64.b64encode(sealed.ciphertext).decode("ascii"),
        )

    def decrypt(self, envelope: EncryptedPayload) -> ReceiptPayload:
        """
        Decrypt and parse an envelope.

        Raises:
            IntegrityError: On unknown algorithm, bad encoding, failed
                authentication, or undecodable plaintext. Nothing partial
                is ever returned.
            KeyUnavailableError: If the key id cannot be resolved
        """
        if envelope.algorithm != ALGORITHM:
            raise IntegrityError(f"Unsupported algorithm: {envelope.algorithm}")

        key = self._key_ring.payload_key(envelope.key_id)

        try:
            nonce = base64.b64decode(envelope.nonce, validate=True)
            ciphertext = base64.b64decode(envelope.ciphertext, validate=True)
            plaintext = SecretBox(key).decrypt(ciphertext, nonce)
        except (CryptoError, ValueError) as e:
            raise IntegrityError("Ciphertext failed authentication") from e

        try:
            return self.deserialize(plaintext)
        except (UnicodeDecodeError, ValueError, PydanticValidationError) as e:
            raise IntegrityError("Decrypted payload is not a valid receipt") from e
