# Core receipt pipeline services
from .hasher import Hasher, CanonicalSerializationError
from .errors import (
    ReceiptError,
    AuthenticityError,
    ValidationError,
    IssuanceError,
    IssuanceInProgressError,
    NotFoundError,
    UnauthorizedError,
    IntegrityError,
    KeyUnavailableError,
    StorageUnavailableError,
)
from .keys import KeyRing, generate_master_key
from .codec import PayloadCodec, ALGORITHM
from .signer import Signer
from .credentials import CredentialVerifier
from .retry import RetryPolicy
from .ingestion import (
    EventIngestor,
    PaymentGateway,
    StripeGateway,
    EnrichmentError,
    IngestResult,
    PAYMENT_SUCCEEDED,
)
from .issuance import IssuanceService
from .verification import VerificationService

__all__ = [
    "Hasher",
    "CanonicalSerializationError",
    "ReceiptError",
    "AuthenticityError",
    "ValidationError",
    "IssuanceError",
    "IssuanceInProgressError",
    "NotFoundError",
    "UnauthorizedError",
    "IntegrityError",
    "KeyUnavailableError",
    "StorageUnavailableError",
    "KeyRing",
    "generate_master_key",
    "PayloadCodec",
    "ALGORITHM",
    "Signer",
    "CredentialVerifier",
    "RetryPolicy",
    "EventIngestor",
    "PaymentGateway",
    "StripeGateway",
    "EnrichmentError",
    "IngestResult",
    "PAYMENT_SUCCEEDED",
    "IssuanceService",
    "VerificationService",
]
