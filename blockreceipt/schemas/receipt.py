"""
Canonical Receipt Schema

A payment happened. The receipt is the record of it.

The receipt is split in two:
- Sensitive subset: committed by hash, disclosed only to credential holders
- Public subset: safe to show anyone who holds the token id

The ledger never sees the receipt itself. It sees a commitment.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Metadata keys that may carry the recipient's public identifier.
# "walletAddress" is what the checkout flow writes into PaymentIntent metadata.
RECIPIENT_METADATA_KEYS = ("recipient", "walletAddress")

# Fields committed on-ledger via the integrity hash.
SENSITIVE_FIELDS = ("event_id", "payer_contact", "line_items", "payment_instrument")


class LineItem(BaseModel):
    """One purchased line. Amounts are integer minor units (cents)."""
    description: str = ""
    unit_amount: int = Field(..., ge=0)
    quantity: int = Field(default=1, ge=1)

    @property
    def total(self) -> int:
        return self.unit_amount * self.quantity


class PaymentEvent(BaseModel):
    """
    Canonical, provider-agnostic completed payment.

    event_id is the provider's unique id for the payment and is the
    idempotency key: redelivery of the same event_id never mints twice.
    """
    event_id: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0, description="Total in minor currency units")
    currency: str = Field(..., min_length=3, max_length=3)
    payer_contact: Optional[str] = None
    line_items: list[LineItem] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.lower()

    @field_validator("received_at")
    @classmethod
    def require_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("received_at must be timezone-aware")
        return v

    @property
    def recipient(self) -> Optional[str]:
        """Recipient public identifier (account or wallet address), if any."""
        for key in RECIPIENT_METADATA_KEYS:
            value = self.metadata.get(key)
            if value:
                return value
        return None


class PublicSummary(BaseModel):
    """Safe-to-disclose receipt summary."""
    merchant_name: Optional[str] = None
    date: datetime
    amount: int
    currency: str


class ReceiptPayload(BaseModel):
    """
    The full receipt detail that gets encrypted.

    Everything from the PaymentEvent plus merchant context.
    """
    event_id: str
    amount: int
    currency: str
    payer_contact: Optional[str] = None
    line_items: list[LineItem] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    received_at: datetime
    recipient: str

    # Merchant context
    merchant_name: Optional[str] = None
    category: Optional[str] = None

    # Card/instrument fragment, e.g. "visa 4242"
    payment_instrument: Optional[str] = None

    schema_version: int = 1

    @classmethod
    def from_event(cls, event: PaymentEvent) -> "ReceiptPayload":
        """Build the receipt from a normalized event."""
        recipient = event.recipient
        if not recipient:
            raise ValueError(f"Payment {event.event_id} has no recipient in metadata")

        return cls(
            event_id=event.event_id,
            amount=event.amount,
            currency=event.currency,
            payer_contact=event.payer_contact,
            line_items=list(event.line_items),
            metadata=dict(event.metadata),
            received_at=event.received_at,
            recipient=recipient,
            merchant_name=event.metadata.get("merchantName"),
            category=event.metadata.get("category"),
            payment_instrument=event.metadata.get("paymentInstrument"),
        )

    @property
    def subtotal(self) -> int:
        return sum(item.total for item in self.line_items)

    def sensitive_subset(self) -> dict:
        """Fields whose hash is committed on the ledger."""
        return self.model_dump(mode="python", include=set(SENSITIVE_FIELDS))

    def public_summary(self) -> PublicSummary:
        return PublicSummary(
            merchant_name=self.merchant_name,
            date=self.received_at,
            amount=self.amount,
            currency=self.currency,
        )


class EncryptedPayload(BaseModel):
    """
    Ciphertext envelope as stored in the content-addressed store.

    Holds only what is needed to decrypt given the key: algorithm,
    key identifier, nonce. The key itself is NEVER here.
    """
    model_config = ConfigDict(frozen=True)

    algorithm: str
    key_id: str
    nonce: str = Field(..., description="Base64 nonce")
    ciphertext: str = Field(..., description="Base64 ciphertext with Poly1305 tag")


class CommitmentRecord(BaseModel):
    """What gets appended to the ledger. The ledger assigns the token id."""
    model_config = ConfigDict(frozen=True)

    integrity_hash: str = Field(..., min_length=64, max_length=64)
    content_address: str = Field(..., min_length=1)
    recipient: str = Field(..., min_length=1)
    issued_at: datetime


class ReceiptCommitment(BaseModel):
    """
    Immutable ledger record binding a token id to hash + content address.

    Created once by issuance. Never updated. Never deleted.
    """
    model_config = ConfigDict(frozen=True)

    token_id: str
    integrity_hash: str = Field(..., min_length=64, max_length=64)
    content_address: str
    recipient: str
    issued_at: datetime

    @classmethod
    def from_record(cls, token_id: str, record: CommitmentRecord) -> "ReceiptCommitment":
        return cls(token_id=token_id, **record.model_dump())


class VerificationResult(BaseModel):
    """
    Disclosure-tiered verification response.

    Public tier: decrypted=False, summary and payload are None.
    Full tier: decrypted=True, summary and payload populated.
    """
    valid: bool = True
    token_id: str
    recipient: str
    issued_at: datetime
    content_pointer: str
    decrypted: bool = False
    summary: Optional[PublicSummary] = None
    payload: Optional[ReceiptPayload] = None
    message: Optional[str] = None


class ClaimResult(BaseModel):
    """Outcome of an idempotency claim for an event id."""
    claimed: bool
    existing_token_id: Optional[str] = None
