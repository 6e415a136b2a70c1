"""
Commitment Ledger

Append-only. A commitment, once written under a token id, is never
updated and never deleted. There is no API for either.

Implementations:
- InMemoryLedger: For development and testing
- PostgresLedger: Durable, shared across instances

The ledger mints the token id. Appending is the commit point of issuance:
nothing is ever written here before its ciphertext is in the content store.

Appending is idempotent on the content address. The ciphertext for an event
is deterministic, so re-appending the same record (a retry after a lost
commit acknowledgement, or a redelivery after a crash) returns the token id
already minted for it.
"""

from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Callable, Optional

from ..schemas import CommitmentRecord, ReceiptCommitment
from .errors import StoreError
from .postgres import pg_transaction


LEDGER_SCHEMA = """
CREATE TABLE IF NOT EXISTS receipt_commitments (
    token_id        BIGSERIAL PRIMARY KEY,
    integrity_hash  CHAR(64)    NOT NULL,
    content_address TEXT        NOT NULL,
    recipient       TEXT        NOT NULL,
    issued_at       TIMESTAMPTZ NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS receipt_commitments_content_address
    ON receipt_commitments (content_address);

CREATE OR REPLACE FUNCTION receipt_commitments_immutable() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'receipt_commitments is append-only';
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS receipt_commitments_no_update ON receipt_commitments;
CREATE TRIGGER receipt_commitments_no_update
    BEFORE UPDATE OR DELETE ON receipt_commitments
    FOR EACH ROW EXECUTE FUNCTION receipt_commitments_immutable();
"""


class LedgerClient(ABC):
    """Abstract write-once commitment ledger."""

    @abstractmethod
    def append(self, record: CommitmentRecord) -> ReceiptCommitment:
        """
        Append a record under a freshly minted token id.

        If a commitment already exists for record.content_address, that
        commitment is returned and nothing is written.
        """
        pass

    @abstractmethod
    def read(self, token_id: str) -> Optional[ReceiptCommitment]:
        """Read a commitment, or None if the token id was never minted."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of commitments in the ledger."""
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryLedger(LedgerClient):
    """
    In-memory ledger with sequential token ids starting at 1.

    NOT suitable for production (no durability, no sharing across workers).
    """

    def __init__(self):
        self._records: dict[str, ReceiptCommitment] = {}
        self._by_address: dict[str, str] = {}
        self._next_token = 1
        self._lock = Lock()
        self.append_calls = 0

    def append(self, record: CommitmentRecord) -> ReceiptCommitment:
        with self._lock:
            self.append_calls += 1
            existing = self._by_address.get(record.content_address)
            if existing is not None:
                return self._records[existing]

            token_id = str(self._next_token)
            self._next_token += 1
            commitment = ReceiptCommitment.from_record(token_id, record)
            self._records[token_id] = commitment
            self._by_address[record.content_address] = token_id
            return commitment

    def read(self, token_id: str) -> Optional[ReceiptCommitment]:
        return self._records.get(str(token_id))

    def count(self) -> int:
        return len(self._records)


# ============================================================
# POSTGRESQL IMPLEMENTATION (SYNC)
# ============================================================

class PostgresLedger(LedgerClient):
    """
    PostgreSQL ledger.

    Token ids come from a BIGSERIAL sequence. An UPDATE/DELETE trigger
    enforces append-only at the database level. A unique index on
    content_address makes a repeated append return the existing row.

    THREAD SAFETY: every call opens its own connection from the factory.
    """

    STATEMENT_TIMEOUT_MS = 10000

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        """
        Args:
            connection_factory: Callable that returns a psycopg2 connection.
            statement_timeout_ms: Max statement execution time (ms).
        """
        self._connection_factory = connection_factory
        self._statement_timeout_ms = statement_timeout_ms

    def _transaction(self):
        return pg_transaction(self._connection_factory, self._statement_timeout_ms, "Ledger")

    def create_schema(self) -> None:
        with self._transaction() as cursor:
            cursor.execute(LEDGER_SCHEMA)

    def append(self, record: CommitmentRecord) -> ReceiptCommitment:
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO receipt_commitments
                    (integrity_hash, content_address, recipient, issued_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (content_address) DO NOTHING
                RETURNING token_id
            """, (
                record.integrity_hash,
                record.content_address,
                record.recipient,
                record.issued_at,
            ))
            inserted = cursor.fetchone()
            if inserted is None:
                cursor.execute("""
                    SELECT token_id, integrity_hash, content_address, recipient, issued_at
                    FROM receipt_commitments
                    WHERE content_address = %s
                """, (record.content_address,))
                existing = cursor.fetchone()

        if inserted is not None:
            return ReceiptCommitment.from_record(str(inserted[0]), record)
        if existing is None:
            raise StoreError(
                f"Ledger conflict on {record.content_address} but no row found"
            )
        return self._from_row(existing)

    def read(self, token_id: str) -> Optional[ReceiptCommitment]:
        try:
            numeric_id = int(token_id)
        except (TypeError, ValueError):
            return None

        with self._transaction() as cursor:
            cursor.execute("""
                SELECT token_id, integrity_hash, content_address, recipient, issued_at
                FROM receipt_commitments
                WHERE token_id = %s
            """, (numeric_id,))
            row = cursor.fetchone()

        if row is None:
            return None
        return self._from_row(row)

    @staticmethod
    def _from_row(row) -> ReceiptCommitment:
        return ReceiptCommitment(
            token_id=str(row[0]),
            integrity_hash=row[1],
            content_address=row[2],
            recipient=row[3],
            issued_at=row[4],
        )

    def count(self) -> int:
        with self._transaction() as cursor:
            cursor.execute("SELECT COUNT(*) FROM receipt_commitments")
            return cursor.fetchone()[0]
