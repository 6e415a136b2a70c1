"""
PostgreSQL plumbing shared by the ledger and the idempotency index.

Connections come from a factory (one per transaction), so a single client
instance is safe to share across threads.
"""

from contextlib import contextmanager
from typing import Any, Callable, Generator

from .errors import StoreError, TransientStoreError


def _rollback_quietly(conn: Any) -> None:
    import psycopg2

    try:
        conn.rollback()
    except psycopg2.Error:
        pass  # Connection already broken; closing it is all that is left


@contextmanager
def pg_transaction(
    connection_factory: Callable[[], Any],
    statement_timeout_ms: int,
    label: str,
) -> Generator[Any, None, None]:
    """
    Run one transaction and classify failures.

    OperationalError/InterfaceError (network, timeout, restart) become
    TransientStoreError and are retried upstream. Anything else psycopg2
    raises is a StoreError and is not.
    """
    import psycopg2

    try:
        conn = connection_factory()
    except psycopg2.OperationalError as e:
        raise TransientStoreError(f"{label} database unreachable: {e}") from e

    cursor = conn.cursor()
    try:
        # SET LOCAL keeps the timeout transaction-scoped
        cursor.execute(f"SET LOCAL statement_timeout = '{int(statement_timeout_ms)}ms'")
        yield cursor
        conn.commit()
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
        _rollback_quietly(conn)
        raise TransientStoreError(f"{label} database error: {e}") from e
    except psycopg2.Error as e:
        _rollback_quietly(conn)
        raise StoreError(f"{label} query failed: {e}") from e
    except Exception:
        _rollback_quietly(conn)
        raise
    finally:
        try:
            cursor.close()
        finally:
            conn.close()
