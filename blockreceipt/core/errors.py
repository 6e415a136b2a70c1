"""
Error taxonomy for the receipt pipeline.

Each error maps to exactly one caller-visible outcome:

    AuthenticityError        -> 400, never retried
    ValidationError          -> acknowledged, nothing minted
    IssuanceError            -> 503, caller redelivers
    NotFoundError            -> 404
    UnauthorizedError        -> 401 (distinct from 404)
    IntegrityError           -> 502, alert; plaintext never returned
    StorageUnavailableError  -> 503 on the read path
    KeyUnavailableError      -> 503
"""


class ReceiptError(Exception):
    """Base exception for receipt pipeline errors."""
    pass


class AuthenticityError(ReceiptError):
    """Webhook signature missing, invalid, or stale."""
    pass


class ValidationError(ReceiptError):
    """Event cannot become a receipt (e.g. no recipient)."""
    pass


class IssuanceError(ReceiptError):
    """Transient infrastructure failure while minting a commitment."""
    pass


class IssuanceInProgressError(IssuanceError):
    """Another worker holds the claim for this event and has not finished."""
    pass


class NotFoundError(ReceiptError):
    """No commitment exists for the token id."""
    pass


class UnauthorizedError(ReceiptError):
    """A credential was presented and rejected."""
    pass


class IntegrityError(ReceiptError):
    """
    Decrypted content does not match the committed hash.

    Either the stored blob is corrupt or someone tampered with it.
    """
    pass


class KeyUnavailableError(ReceiptError):
    """Key material for a key id cannot be found."""
    pass


class StorageUnavailableError(ReceiptError):
    """Ledger or content store unreachable after retries (read path)."""
    pass
