"""
Key Ring - the key-management boundary

Payload keys never travel with the ciphertext. The content store and the
ledger never see them. A payload key is derived on demand from a versioned
master key and an opaque key id; the key id is the only thing stored in the
encrypted envelope.

KEY HIERARCHY:
1. Master keys: 32 random bytes each, versioned ("v1", "v2", ...)
   - Stored in env var: BLOCKRECEIPT_MASTER_KEYS="v1:<b64>,v2:<b64>"
   - Active version for new receipts: BLOCKRECEIPT_ACTIVE_KEY_VERSION
   - Old versions stay in the ring so old receipts still decrypt

2. Key ids: "<version>:<hex>" where hex = BLAKE2b(event_id, key=master)
   - Deterministic per event, useless without the master key

3. Payload keys: BLAKE2b(key_id, key=master), 32 bytes

DEVELOPMENT MODE:
- If no master key is set, an ephemeral one is generated (warning issued)
- Receipts issued under an ephemeral key are unreadable after restart
"""

import base64
import os
import warnings
from typing import Optional

import nacl.utils
from nacl.encoding import RawEncoder
from nacl.hash import blake2b
from nacl.secret import SecretBox

from .errors import KeyUnavailableError


KEY_ID_PERSON = b"br-key-id"
PAYLOAD_KEY_PERSON = b"br-payload-key"


def generate_master_key() -> str:
    """Generate a new base64-encoded master key."""
    return base64.b64encode(nacl.utils.random(SecretBox.KEY_SIZE)).decode("utf-8")


def _parse_master_keys(raw: str) -> dict[str, bytes]:
    keys: dict[str, bytes] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        version, sep, encoded = entry.partition(":")
        if not sep or not version:
            raise ValueError(f"Master key entry must be '<version>:<base64>', got {entry[:8]}...")
        key = base64.b64decode(encoded)
        if len(key) != SecretBox.KEY_SIZE:
            raise ValueError(
                f"Master key {version} must be {SecretBox.KEY_SIZE} bytes, got {len(key)}"
            )
        keys[version] = key
    return keys


class KeyRing:
    """
    Versioned master keys and per-payload key derivation.

    SECURITY NOTES:
    - Keys are never logged or exposed
    - Key ids reveal the master key version only
    """

    def __init__(
        self,
        master_keys: dict[str, bytes],
        active_version: Optional[str] = None,
        is_ephemeral: bool = False,
    ):
        if not master_keys:
            raise ValueError("KeyRing requires at least one master key")
        if active_version is None:
            active_version = sorted(master_keys)[-1]
        if active_version not in master_keys:
            raise ValueError(f"Active key version {active_version} not in key ring")

        self._master_keys = dict(master_keys)
        self._active_version = active_version
        self._is_ephemeral = is_ephemeral

    @classmethod
    def from_env(cls, production: bool = False) -> "KeyRing":
        """Load master keys from the environment, or generate one in development."""
        raw = os.environ.get("BLOCKRECEIPT_MASTER_KEYS", "")
        active = os.environ.get("BLOCKRECEIPT_ACTIVE_KEY_VERSION") or None

        if raw:
            return cls(_parse_master_keys(raw), active_version=active)

        if production:
            raise RuntimeError(
                "BLOCKRECEIPT_MASTER_KEYS must be set in production. Generate with:\n"
                "python -m tools.manage generate-master-key"
            )

        warnings.warn(
            "Receipt master key not configured. Generating ephemeral key for development. "
            "Receipts issued now cannot be decrypted after a restart!",
            stacklevel=2,
        )
        return cls.ephemeral()

    @classmethod
    def ephemeral(cls) -> "KeyRing":
        return cls(
            {"v1": nacl.utils.random(SecretBox.KEY_SIZE)},
            active_version="v1",
            is_ephemeral=True,
        )

    @property
    def active_version(self) -> str:
        return self._active_version

    @property
    def versions(self) -> list[str]:
        return sorted(self._master_keys)

    @property
    def is_ephemeral(self) -> bool:
        return self._is_ephemeral

    def key_id_for(self, event_id: str) -> str:
        """Opaque, deterministic key id for an event under the active master key."""
        master = self._master_keys[self._active_version]
        digest = blake2b(
            event_id.encode("utf-8"),
            digest_size=16,
            key=master,
            person=KEY_ID_PERSON,
            encoder=RawEncoder,
        )
        return f"{self._active_version}:{digest.hex()}"

    def payload_key(self, key_id: str) -> bytes:
        """
        Derive the symmetric key for a key id.

        Raises:
            KeyUnavailableError: If the key id's master version is unknown
        """
        version, sep, _ = key_id.partition(":")
        if not sep:
            raise KeyUnavailableError(f"Malformed key id: {key_id!r}")
        master = self._master_keys.get(version)
        if master is None:
            raise KeyUnavailableError(f"No master key for version {version!r}")

        return blake2b(
            key_id.encode("utf-8"),
            digest_size=SecretBox.KEY_SIZE,
            key=master,
            person=PAYLOAD_KEY_PERSON,
            encoder=RawEncoder,
        )
