# Canonical Schemas for the receipt commitment pipeline.

from .receipt import (
    ClaimResult,
    CommitmentRecord,
    EncryptedPayload,
    LineItem,
    PaymentEvent,
    PublicSummary,
    ReceiptCommitment,
    ReceiptPayload,
    VerificationResult,
    RECIPIENT_METADATA_KEYS,
    SENSITIVE_FIELDS,
)

__all__ = [
    "ClaimResult",
    "CommitmentRecord",
    "EncryptedPayload",
    "LineItem",
    "PaymentEvent",
    "PublicSummary",
    "ReceiptCommitment",
    "ReceiptPayload",
    "VerificationResult",
    "RECIPIENT_METADATA_KEYS",
    "SENSITIVE_FIELDS",
]
