"""
Content-Addressed Store

Opaque blobs in, deterministic addresses out. No business logic.

Implementations:
- InMemoryContentStore: For development and testing (address = sha256 hex)
- IpfsContentStore: IPFS HTTP API (address = CID returned by the node)

Identical bytes always land at the same address, so concurrent or retried
writes of the same ciphertext never conflict.
"""

from abc import ABC, abstractmethod
from threading import Lock
from typing import Optional

import httpx

from ..core.hasher import Hasher
from .errors import StoreError, TransientStoreError


class ContentStore(ABC):
    """Abstract content-addressed blob store."""

    @abstractmethod
    def put(self, data: bytes) -> str:
        """Store bytes and return their content address."""
        pass

    @abstractmethod
    def get(self, address: str) -> Optional[bytes]:
        """Fetch bytes by address, or None if absent."""
        pass

    def ping(self) -> bool:
        """Reachability check for health endpoints."""
        return True


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryContentStore(ContentStore):
    """
    In-memory content store.

    Counts reads so tests can assert a code path never touched the store.
    """

    def __init__(self):
        self._blobs: dict[str, bytes] = {}
        self._lock = Lock()
        self.put_calls = 0
        self.get_calls = 0

    def put(self, data: bytes) -> str:
        address = Hasher.hash_bytes(data)
        with self._lock:
            self.put_calls += 1
            self._blobs[address] = bytes(data)
        return address

    def get(self, address: str) -> Optional[bytes]:
        with self._lock:
            self.get_calls += 1
            return self._blobs.get(address)

    def __len__(self) -> int:
        return len(self._blobs)

    def corrupt(self, address: str, offset: int = 0) -> None:
        """Flip one byte of a stored blob (for testing only)."""
        with self._lock:
            blob = bytearray(self._blobs[address])
            blob[offset] ^= 0x01
            self._blobs[address] = bytes(blob)

    def replace(self, address: str, data: bytes) -> None:
        """Overwrite a blob without changing its address (for testing only)."""
        with self._lock:
            self._blobs[address] = bytes(data)


# ============================================================
# IPFS IMPLEMENTATION
# ============================================================

class IpfsContentStore(ContentStore):
    """
    IPFS HTTP API client.

    Uses /api/v0/add (pinned, CIDv1) and /api/v0/cat. Basic auth is sent
    when project credentials are configured (Infura-style gateways).
    """

    def __init__(
        self,
        api_url: str,
        project_id: Optional[str] = None,
        project_secret: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        auth = (project_id, project_secret or "") if project_id else None
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    def _post(self, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.post(path, **kwargs)
        except httpx.TransportError as e:
            raise TransientStoreError(f"IPFS unreachable: {e}") from e

        if response.status_code >= 500:
            body = response.text.lower()
            if path.endswith("/cat") and "not found" in body:
                return response
            raise TransientStoreError(f"IPFS returned {response.status_code}")
        return response

    def put(self, data: bytes) -> str:
        response = self._post(
            "/api/v0/add",
            params={"pin": "true", "cid-version": "1"},
            files={"file": ("receipt.json", data)},
        )
        if response.status_code != 200:
            raise StoreError(f"IPFS add failed with {response.status_code}")
        try:
            return response.json()["Hash"]
        except (ValueError, KeyError) as e:
            raise StoreError("IPFS add returned an unexpected body") from e

    def get(self, address: str) -> Optional[bytes]:
        response = self._post("/api/v0/cat", params={"arg": address})
        if response.status_code == 200:
            return response.content
        if response.status_code in (404, 500):
            return None
        raise StoreError(f"IPFS cat failed with {response.status_code}")

    def ping(self) -> bool:
        try:
            return self._post("/api/v0/version").status_code == 200
        except StoreError:
            return False

    def close(self) -> None:
        self._client.close()
