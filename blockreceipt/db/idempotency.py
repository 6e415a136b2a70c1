"""
Idempotency Index

Tracks which payment events have been (or are being) turned into
commitments, keyed by event id. Separate from the ledger's token ids.

claim() is an atomic check-and-set:
- no entry                      -> claimed
- entry completed with token id -> not claimed, existing token id
- entry pending, lease alive    -> not claimed, no token id (someone is on it)
- entry pending, lease expired  -> claimed (the previous claimant died)

Implementations:
- InMemoryIdempotencyIndex: For development and testing
- PostgresIdempotencyIndex: INSERT ... ON CONFLICT, safe across instances
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Optional

from ..schemas import ClaimResult
from .postgres import pg_transaction


DEFAULT_LEASE_SECONDS = 300.0

IDEMPOTENCY_SCHEMA = """
CREATE TABLE IF NOT EXISTS idempotency_claims (
    event_id         TEXT PRIMARY KEY,
    token_id         TEXT,
    claimed_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
    lease_expires_at TIMESTAMPTZ
);
"""


class IdempotencyIndex(ABC):
    """Abstract event-id claim index."""

    @abstractmethod
    def claim(self, event_id: str) -> ClaimResult:
        """Atomically claim an event id for issuance."""
        pass

    @abstractmethod
    def complete(self, event_id: str, token_id: str) -> None:
        """Record the token id minted for a claimed event id."""
        pass

    @abstractmethod
    def release(self, event_id: str) -> None:
        """Drop an uncompleted claim so the event can be retried."""
        pass

    @abstractmethod
    def lookup(self, event_id: str) -> Optional[ClaimResult]:
        """
        Current state without claiming.

        Returns None if unknown, otherwise ClaimResult(claimed=False, ...)
        with existing_token_id set once completed.
        """
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

@dataclass
class _Entry:
    token_id: Optional[str]
    lease_expires_at: float


class InMemoryIdempotencyIndex(IdempotencyIndex):
    """Lock-protected dict. Single process only."""

    def __init__(
        self,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[str, _Entry] = {}
        self._lease_seconds = lease_seconds
        self._clock = clock
        self._lock = Lock()

    def claim(self, event_id: str) -> ClaimResult:
        with self._lock:
            now = self._clock()
            entry = self._entries.get(event_id)

            if entry is not None:
                if entry.token_id is not None:
                    return ClaimResult(claimed=False, existing_token_id=entry.token_id)
                if entry.lease_expires_at > now:
                    return ClaimResult(claimed=False)

            self._entries[event_id] = _Entry(
                token_id=None,
                lease_expires_at=now + self._lease_seconds,
            )
            return ClaimResult(claimed=True)

    def complete(self, event_id: str, token_id: str) -> None:
        with self._lock:
            self._entries[event_id] = _Entry(token_id=token_id, lease_expires_at=float("inf"))

    def release(self, event_id: str) -> None:
        with self._lock:
            entry = self._entries.get(event_id)
            if entry is not None and entry.token_id is None:
                del self._entries[event_id]

    def lookup(self, event_id: str) -> Optional[ClaimResult]:
        with self._lock:
            entry = self._entries.get(event_id)
            if entry is None:
                return None
            return ClaimResult(claimed=False, existing_token_id=entry.token_id)


# ============================================================
# POSTGRESQL IMPLEMENTATION (SYNC)
# ============================================================

class PostgresIdempotencyIndex(IdempotencyIndex):
    """
    PostgreSQL claim table.

    The claim is a single INSERT ... ON CONFLICT DO UPDATE ... WHERE that
    only succeeds for a new row or an expired, uncompleted one. Two workers
    racing on the same event id cannot both get a row back.
    """

    STATEMENT_TIMEOUT_MS = 5000

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        self._connection_factory = connection_factory
        self._lease_seconds = lease_seconds
        self._statement_timeout_ms = statement_timeout_ms

    def _transaction(self):
        return pg_transaction(
            self._connection_factory, self._statement_timeout_ms, "Idempotency index"
        )

    def create_schema(self) -> None:
        with self._transaction() as cursor:
            cursor.execute(IDEMPOTENCY_SCHEMA)

    def claim(self, event_id: str) -> ClaimResult:
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO idempotency_claims (event_id, claimed_at, lease_expires_at)
                VALUES (%s, now(), now() + make_interval(secs => %s))
                ON CONFLICT (event_id) DO UPDATE
                    SET claimed_at = EXCLUDED.claimed_at,
                        lease_expires_at = EXCLUDED.lease_expires_at
                    WHERE idempotency_claims.token_id IS NULL
                      AND idempotency_claims.lease_expires_at < now()
                RETURNING event_id
            """, (event_id, self._lease_seconds))
            if cursor.fetchone() is not None:
                return ClaimResult(claimed=True)

            cursor.execute(
                "SELECT token_id FROM idempotency_claims WHERE event_id = %s",
                (event_id,),
            )
            row = cursor.fetchone()

        return ClaimResult(claimed=False, existing_token_id=row[0] if row else None)

    def complete(self, event_id: str, token_id: str) -> None:
        with self._transaction() as cursor:
            cursor.execute("""
                UPDATE idempotency_claims
                SET token_id = %s, lease_expires_at = NULL
                WHERE event_id = %s
            """, (token_id, event_id))

    def release(self, event_id: str) -> None:
        with self._transaction() as cursor:
            cursor.execute(
                "DELETE FROM idempotency_claims WHERE event_id = %s AND token_id IS NULL",
                (event_id,),
            )

    def lookup(self, event_id: str) -> Optional[ClaimResult]:
        with self._transaction() as cursor:
            cursor.execute(
                "SELECT token_id FROM idempotency_claims WHERE event_id = %s",
                (event_id,),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return ClaimResult(claimed=False, existing_token_id=row[0])
