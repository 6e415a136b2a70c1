"""
Storage Layer for the receipt pipeline

Provides:
- Content-addressed blob store (InMemory, IPFS)
- Append-only commitment ledger (InMemory, Postgres)
- Idempotency index keyed by event id (InMemory, Postgres)
- Connection configuration
"""

from .errors import StoreError, TransientStoreError
from .content import ContentStore, InMemoryContentStore, IpfsContentStore
from .ledger import LedgerClient, InMemoryLedger, PostgresLedger, LEDGER_SCHEMA
from .idempotency import (
    IdempotencyIndex,
    InMemoryIdempotencyIndex,
    PostgresIdempotencyIndex,
    IDEMPOTENCY_SCHEMA,
)
from .config import DatabaseConfig, StorageDriver, get_database_url, get_storage_driver

__all__ = [
    "StoreError",
    "TransientStoreError",
    "ContentStore",
    "InMemoryContentStore",
    "IpfsContentStore",
    "LedgerClient",
    "InMemoryLedger",
    "PostgresLedger",
    "LEDGER_SCHEMA",
    "IdempotencyIndex",
    "InMemoryIdempotencyIndex",
    "PostgresIdempotencyIndex",
    "IDEMPOTENCY_SCHEMA",
    "DatabaseConfig",
    "StorageDriver",
    "get_database_url",
    "get_storage_driver",
]
