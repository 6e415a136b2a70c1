"""Storage layer exceptions."""


class StoreError(Exception):
    """Base exception for ledger, content store and idempotency index errors."""
    pass


class TransientStoreError(StoreError):
    """
    Network/timeout/5xx failure talking to a backend.

    The only error kind the retry policy retries.
    """
    pass
