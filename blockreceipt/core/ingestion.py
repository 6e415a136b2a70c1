"""
Event Ingestion & Normalization

Turns a raw provider webhook into a canonical PaymentEvent.

1. Authenticate: Stripe-Signature header (t=<ts>,v1=<hmac>) checked against
   the shared webhook secret, constant-time, with a timestamp tolerance so
   captured deliveries cannot be replayed later.
2. Filter: only payment_intent.succeeded becomes a PaymentEvent. Anything
   else is acknowledged and ignored.
3. Normalize: flatten the PaymentIntent into the canonical shape.
4. Enrich: customer email and invoice line items via the PaymentGateway.
   Enrichment is best-effort. A failed lookup yields partial data, never a
   failed request.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, NamedTuple, Optional

import stripe
from pydantic import ValidationError as PydanticValidationError

from ..observability import get_logger
from ..schemas import LineItem, PaymentEvent
from .errors import AuthenticityError, ValidationError

logger = get_logger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
DEFAULT_TOLERANCE_SECONDS = 300


class EnrichmentError(Exception):
    """A provider sub-object could not be resolved."""
    pass


class IngestResult(NamedTuple):
    event_type: Optional[str]
    event: Optional[PaymentEvent]


# ============================================================
# PAYMENT GATEWAY (enrichment lookups)
# ============================================================

class PaymentGateway(ABC):
    """Resolves nested provider objects referenced by id."""

    @abstractmethod
    def customer_email(self, customer_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def invoice_line_items(self, invoice_id: str) -> list[LineItem]:
        pass


class StripeGateway(PaymentGateway):
    """
    Stripe lookups with an explicit API key per call.

    No module-level stripe.api_key, so several gateways (or tests) can
    coexist in one process.
    """

    def __init__(self, api_key: str):
        self._api_key = api_key

    def customer_email(self, customer_id: str) -> Optional[str]:
        try:
            customer = stripe.Customer.retrieve(customer_id, api_key=self._api_key)
        except stripe.StripeError as e:
            raise EnrichmentError(f"Customer lookup failed: {e}") from e

        if customer.get("deleted"):
            return None
        return customer.get("email") or None

    def invoice_line_items(self, invoice_id: str) -> list[LineItem]:
        try:
            invoice = stripe.Invoice.retrieve(
                invoice_id, api_key=self._api_key, expand=["lines"]
            )
            lines = invoice["lines"]["data"]
        except stripe.StripeError as e:
            raise EnrichmentError(f"Invoice lookup failed: {e}") from e
        except (KeyError, TypeError) as e:
            raise EnrichmentError("Invoice has no line data") from e

        items = []
        for line in lines:
            quantity = line.get("quantity") or 1
            price = line.get("price") or {}
            unit_amount = price.get("unit_amount")
            if unit_amount is None:
                unit_amount = (line.get("amount") or 0) // quantity
            try:
                items.append(LineItem(
                    description=line.get("description") or "",
                    unit_amount=unit_amount,
                    quantity=quantity,
                ))
            except (PydanticValidationError, TypeError, ValueError):
                # Discount and credit lines carry negative amounts
                logger.warning(
                    "Skipping invoice line",
                    invoice_id=invoice_id,
                    line_id=line.get("id"),
                )
        return items


# ============================================================
# INGESTOR
# ============================================================

def _coerce_metadata(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in raw.items() if v is not None}


def _line_items_from_metadata(raw: Optional[str], event_id: str) -> list[LineItem]:
    """
    Parse the JSON item list the checkout flow stores in metadata["items"].

    Accepts unit_amount/unitAmount (minor units) or price (major units).
    Malformed entries are skipped.
    """
    if not raw:
        return []
    try:
        entries = json.loads(raw)
    except ValueError:
        logger.warning("Unparseable metadata items", event_id=event_id)
        return []
    if not isinstance(entries, list):
        return []

    items = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            unit_amount = entry.get("unit_amount", entry.get("unitAmount"))
            if unit_amount is None and entry.get("price") is not None:
                unit_amount = int(Decimal(str(entry["price"])) * 100)
            items.append(LineItem(
                description=str(entry.get("description") or entry.get("name") or ""),
                unit_amount=int(unit_amount),
                quantity=int(entry.get("quantity") or 1),
            ))
        except (TypeError, ValueError, InvalidOperation):
            logger.warning("Skipping malformed line item", event_id=event_id)
    return items


class EventIngestor:
    """
    Authenticates and normalizes payment webhooks.

    Usage:
        ingestor = EventIngestor(webhook_secret, gateway=StripeGateway(key))
        event = ingestor.ingest(raw_body, request.headers.get("Stripe-Signature"))
        if event is None:
            ...  # not a payment we mint for; acknowledge
    """

    def __init__(
        self,
        webhook_secret: str,
        gateway: Optional[PaymentGateway] = None,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    ):
        self._webhook_secret = webhook_secret
        self._gateway = gateway
        self._tolerance = tolerance_seconds

    def authenticate(self, raw_body: bytes, signature_header: Optional[str]) -> dict:
        """
        Verify the signature and parse the body.

        Raises:
            AuthenticityError: Missing/invalid/stale signature, missing
                secret, or a body that is not a JSON object
        """
        if not signature_header:
            raise AuthenticityError("Missing webhook signature")
        if not self._webhook_secret:
            raise AuthenticityError("Webhook secret not configured")

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise AuthenticityError("Webhook body is not UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self._webhook_secret, tolerance=self._tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise AuthenticityError(f"Invalid webhook signature: {e}") from e

        try:
            envelope = json.loads(payload)
        except ValueError as e:
            raise AuthenticityError("Webhook body is not valid JSON") from e
        if not isinstance(envelope, dict):
            raise AuthenticityError("Webhook body must be a JSON object")
        return envelope

    def receive(self, raw_body: bytes, signature_header: Optional[str]) -> IngestResult:
        """
        Authenticate, then normalize if the event type is one we mint for.

        The result always carries the provider's event type; event is None
        for types we ignore.
        """
        envelope = self.authenticate(raw_body, signature_header)

        event_type = envelope.get("type")
        if event_type != PAYMENT_SUCCEEDED:
            logger.info("Ignoring webhook event", event_type=event_type)
            return IngestResult(event_type, None)

        return IngestResult(event_type, self.normalize(envelope))

    def ingest(self, raw_body: bytes, signature_header: Optional[str]) -> Optional[PaymentEvent]:
        """
        Returns the canonical event, or None for event types we ignore.
        """
        return self.receive(raw_body, signature_header).event

    def normalize(self, envelope: dict) -> PaymentEvent:
        intent = (envelope.get("data") or {}).get("object") or {}
        # The PaymentIntent id is stable across redeliveries and across
        # distinct provider events describing the same payment
        event_id = intent.get("id") or envelope.get("id")
        if not event_id:
            raise AuthenticityError("Webhook event carries no identifier")

        metadata = _coerce_metadata(intent.get("metadata"))

        created = envelope.get("created")
        if isinstance(created, int):
            received_at = datetime.fromtimestamp(created, tz=timezone.utc)
        else:
            received_at = datetime.now(timezone.utc)

        amount = intent.get("amount_received")
        if amount is None:
            amount = intent.get("amount") or 0

        payer_contact = intent.get("receipt_email") or metadata.get("customerEmail")
        line_items: list[LineItem] = []

        if self._gateway is not None:
            customer_id = intent.get("customer")
            if customer_id and not payer_contact:
                try:
                    payer_contact = self._gateway.customer_email(customer_id)
                except EnrichmentError as e:
                    logger.warning("Customer enrichment failed", event_id=event_id, error=str(e))

            invoice_id = intent.get("invoice")
            if invoice_id:
                try:
                    line_items = self._gateway.invoice_line_items(invoice_id)
                except EnrichmentError as e:
                    logger.warning("Invoice enrichment failed", event_id=event_id, error=str(e))

        if not line_items:
            line_items = _line_items_from_metadata(metadata.get("items"), event_id)

        try:
            event = PaymentEvent(
                event_id=event_id,
                amount=int(amount),
                currency=intent.get("currency") or "usd",
                payer_contact=payer_contact,
                line_items=line_items,
                metadata=metadata,
                received_at=received_at,
            )
        except (PydanticValidationError, TypeError, ValueError) as e:
            raise ValidationError(f"Payment {event_id} cannot be normalized: {e}") from e

        logger.info(
            "Payment event normalized",
            event_id=event.event_id,
            amount=event.amount,
            currency=event.currency,
            line_items=len(event.line_items),
        )
        return event
