"""
Verification & Disclosure Service

Per request (nothing persisted):

    LOOKUP --(no credential)--> PUBLIC_SUMMARY
    LOOKUP --(credential)-----> AUTHORIZE --> FULL_DISCLOSURE
                                          +-> UNAUTHORIZED

- Unknown token id: NotFoundError.
- Public tier never touches the content store.
- A rejected credential is UnauthorizedError, not NotFoundError. That
  confirms the token exists to the caller; this is accepted.
- Full tier decrypts and recomputes the integrity hash. Any mismatch is an
  IntegrityError and no plaintext leaves this service.

Read-only: never writes to the ledger or the store.
"""

from typing import TYPE_CHECKING, Optional

from ..db.errors import StoreError
from ..observability import get_logger, get_metrics
from ..schemas import ReceiptCommitment, VerificationResult
from .codec import PayloadCodec
from .credentials import CredentialVerifier
from .errors import (
    IntegrityError,
    NotFoundError,
    StorageUnavailableError,
    UnauthorizedError,
)
from .hasher import Hasher
from .retry import RetryPolicy

if TYPE_CHECKING:
    from ..db.content import ContentStore
    from ..db.ledger import LedgerClient

logger = get_logger(__name__)


class VerificationService:
    """Tiered disclosure of committed receipts."""

    def __init__(
        self,
        codec: PayloadCodec,
        content_store: "ContentStore",
        ledger: "LedgerClient",
        credentials: CredentialVerifier,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._codec = codec
        self._store = content_store
        self._ledger = ledger
        self._credentials = credentials
        self._retry = retry_policy or RetryPolicy()

    def verify(self, token_id: str, credential: Optional[str] = None) -> VerificationResult:
        """
        Raises:
            NotFoundError: No commitment for token_id
            UnauthorizedError: Credential supplied and rejected
            IntegrityError: Stored content does not match the commitment
            StorageUnavailableError: Backend unreachable after retries
        """
        commitment = self._lookup(token_id)

        if credential is None:
            get_metrics().increment("verifications_public")
            return self._public_result(commitment)

        if not self._credentials.authorize(credential, commitment.token_id):
            get_metrics().increment("verifications_unauthorized")
            logger.warning("Credential rejected", token_id=commitment.token_id)
            raise UnauthorizedError("Credential not authorized for this receipt")

        return self._full_result(commitment)

    # ================================================================
    # STATES
    # ================================================================

    def _lookup(self, token_id: str) -> ReceiptCommitment:
        commitment = self._read(self._ledger.read, token_id)
        if commitment is None:
            raise NotFoundError(f"No receipt for token {token_id}")
        return commitment

    def _public_result(self, commitment: ReceiptCommitment) -> VerificationResult:
        return VerificationResult(
            valid=True,
            token_id=commitment.token_id,
            recipient=commitment.recipient,
            issued_at=commitment.issued_at,
            content_pointer=commitment.content_address,
            decrypted=False,
            message="Credential required for full receipt details",
        )

    def _full_result(self, commitment: ReceiptCommitment) -> VerificationResult:
        blob = self._read(self._store.get, commitment.content_address)
        if blob is None:
            self._integrity_fault(commitment, "ciphertext missing from content store")

        try:
            payload = self._codec.decrypt(self._codec.decode_envelope(blob))
        except IntegrityError as e:
            self._integrity_fault(commitment, str(e))

        recomputed = self._codec.integrity_hash(payload)
        if not Hasher.constant_time_compare(recomputed, commitment.integrity_hash):
            self._integrity_fault(commitment, "integrity hash mismatch")

        if payload.recipient != commitment.recipient:
            self._integrity_fault(commitment, "recipient mismatch")

        get_metrics().increment("verifications_full")
        logger.info("Receipt disclosed", token_id=commitment.token_id)

        return VerificationResult(
            valid=True,
            token_id=commitment.token_id,
            recipient=commitment.recipient,
            issued_at=commitment.issued_at,
            content_pointer=commitment.content_address,
            decrypted=True,
            summary=payload.public_summary(),
            payload=payload,
        )

    # ================================================================
    # HELPERS
    # ================================================================

    def _read(self, func, *args):
        try:
            return self._retry.call(func, *args)
        except StoreError as e:
            raise StorageUnavailableError(f"Backend unavailable: {e}") from e

    def _integrity_fault(self, commitment: ReceiptCommitment, reason: str) -> None:
        get_metrics().increment("integrity_failures")
        logger.error(
            "Receipt integrity check failed",
            token_id=commitment.token_id,
            content_address=commitment.content_address,
            reason=reason,
            alert=True,
        )
        raise IntegrityError(f"Receipt {commitment.token_id} failed integrity check: {reason}")
