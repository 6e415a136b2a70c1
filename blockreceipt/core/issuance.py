"""
Commitment Issuance Service

Mints exactly one ReceiptCommitment per payment event.

    claim(event_id)          idempotency check-and-set
    build payload
    integrity_hash           SHA-256 over the sensitive subset
    encrypt                  key from the KeyRing, never stored with the blob
    store.put(ciphertext)    -> content address (deterministic)
    ledger.append(record)    -> token id        <- COMMIT POINT
    index.complete(event_id, token_id)

Failure semantics:
- Anything failing before the ledger append releases the claim, so the
  provider's redelivery retries the whole flow. A retried put of the same
  ciphertext lands at the same address, so no orphan is created.
- The ledger is written last. A ledger entry never points at a blob that
  was not stored.
- The ledger append is keyed on the content address, so retrying it after
  a lost acknowledgement, or re-minting after a crash before complete(),
  returns the token id already minted.
- A concurrent duplicate waits (bounded) for the first claimant's result.
"""

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional, Tuple

from ..db.errors import StoreError, TransientStoreError
from ..observability import get_logger, get_metrics
from ..schemas import CommitmentRecord, PaymentEvent, ReceiptCommitment, ReceiptPayload
from .codec import PayloadCodec
from .errors import IssuanceError, IssuanceInProgressError, ValidationError
from .retry import RetryPolicy

if TYPE_CHECKING:
    from ..db.content import ContentStore
    from ..db.idempotency import IdempotencyIndex
    from ..db.ledger import LedgerClient

logger = get_logger(__name__)


class IssuanceService:
    """
    Orchestrates Codec -> Store -> Ledger for one payment event.

    All collaborators are injected; nothing here is module-global.
    """

    # How many times a waiting duplicate may re-claim after the holder released
    MAX_CLAIM_ROUNDS = 3

    def __init__(
        self,
        codec: PayloadCodec,
        content_store: "ContentStore",
        ledger: "LedgerClient",
        index: "IdempotencyIndex",
        retry_policy: Optional[RetryPolicy] = None,
        claim_wait_seconds: float = 10.0,
        poll_interval: float = 0.05,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._codec = codec
        self._store = content_store
        self._ledger = ledger
        self._index = index
        self._retry = retry_policy or RetryPolicy()
        self._claim_wait_seconds = claim_wait_seconds
        self._poll_interval = poll_interval
        self._now = now

    def issue(self, event: PaymentEvent) -> ReceiptCommitment:
        """
        Return the commitment for this event, minting it if needed.

        Raises:
            ValidationError: The event cannot become a receipt
            IssuanceError: Transient backend failure; safe to retry
        """
        commitment, _ = self.issue_with_outcome(event)
        return commitment

    def issue_with_outcome(self, event: PaymentEvent) -> Tuple[ReceiptCommitment, bool]:
        """Like issue(), also reporting whether the event was already committed."""
        for _ in range(self.MAX_CLAIM_ROUNDS):
            claim = self._backend(self._index.claim, event.event_id)

            if claim.claimed:
                return self._mint_claimed(event), False

            token_id = claim.existing_token_id or self._await_completion(event.event_id)
            if token_id is not None:
                get_metrics().increment("duplicate_deliveries")
                logger.info("Duplicate delivery", event_id=event.event_id, token_id=token_id)
                return self._committed(event.event_id, token_id), True

        raise IssuanceInProgressError(f"Issuance for {event.event_id} did not settle")

    # ================================================================
    # INTERNALS
    # ================================================================

    def _backend(self, func, *args):
        """Run a backend call under the retry policy; surface failures as IssuanceError."""
        try:
            return self._retry.call(func, *args)
        except TransientStoreError as e:
            raise IssuanceError(f"Backend unavailable: {e}") from e
        except StoreError as e:
            raise IssuanceError(f"Backend rejected request: {e}") from e

    def _mint_claimed(self, event: PaymentEvent) -> ReceiptCommitment:
        """Steps 2-7. The claim is held; release it on any failure before commit."""
        started = time.perf_counter()
        try:
            commitment = self._mint(event)
        except Exception as e:
            get_metrics().increment("issuance_failures")
            logger.warning(
                "Issuance failed; releasing claim",
                event_id=event.event_id,
                error_type=type(e).__name__,
            )
            self._release(event.event_id)
            raise

        try:
            self._retry.call(self._index.complete, event.event_id, commitment.token_id)
        except StoreError as e:
            # The commitment exists; releasing now would allow a second mint
            logger.error(
                "Commitment minted but idempotency index not updated",
                event_id=event.event_id,
                token_id=commitment.token_id,
                error=str(e),
            )

        get_metrics().record_issue((time.perf_counter() - started) * 1000)
        logger.info(
            "Commitment issued",
            event_id=event.event_id,
            token_id=commitment.token_id,
            content_address=commitment.content_address,
        )
        return commitment

    def _mint(self, event: PaymentEvent) -> ReceiptCommitment:
        try:
            payload = ReceiptPayload.from_event(event)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        integrity_hash = self._codec.integrity_hash(payload)
        key_id = self._codec.key_ring.key_id_for(event.event_id)
        envelope = self._codec.encrypt(payload, key_id)

        content_address = self._backend(self._store.put, self._codec.encode_envelope(envelope))

        record = CommitmentRecord(
            integrity_hash=integrity_hash,
            content_address=content_address,
            recipient=payload.recipient,
            issued_at=self._now(),
        )
        return self._backend(self._ledger.append, record)

    def _release(self, event_id: str) -> None:
        try:
            self._retry.call(self._index.release, event_id)
        except StoreError as e:
            # Lease expiry frees the claim eventually
            logger.error("Could not release claim", event_id=event_id, error=str(e))

    def _await_completion(self, event_id: str) -> Optional[str]:
        """
        Poll until the holder of the claim completes it.

        Returns the token id, or None if the claim was released (the caller
        then tries to claim again).
        """
        deadline = time.monotonic() + self._claim_wait_seconds
        while True:
            state = self._backend(self._index.lookup, event_id)
            if state is None:
                return None
            if state.existing_token_id is not None:
                return state.existing_token_id
            if time.monotonic() >= deadline:
                raise IssuanceInProgressError(
                    f"Event {event_id} is being issued by another worker"
                )
            time.sleep(self._poll_interval)

    def _committed(self, event_id: str, token_id: str) -> ReceiptCommitment:
        commitment = self._backend(self._ledger.read, token_id)
        if commitment is None:
            raise IssuanceError(
                f"Index maps {event_id} to token {token_id} but the ledger has no record"
            )
        return commitment
