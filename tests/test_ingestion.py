"""
Tests for webhook authentication and normalization.
"""

import json
import time
from typing import Optional

import pytest
import stripe

from blockreceipt.core import (
    AuthenticityError,
    EnrichmentError,
    EventIngestor,
    PAYMENT_SUCCEEDED,
    PaymentGateway,
    StripeGateway,
    ValidationError,
)
from blockreceipt.schemas import LineItem

from conftest import WEBHOOK_SECRET, payment_webhook, stripe_signature


class FakeGateway(PaymentGateway):
    def __init__(self, email=None, items=None, fail=False):
        self.email = email
        self.items = items or []
        self.fail = fail
        self.customer_lookups = []
        self.invoice_lookups = []

    def customer_email(self, customer_id: str) -> Optional[str]:
        self.customer_lookups.append(customer_id)
        if self.fail:
            raise EnrichmentError("provider down")
        return self.email

    def invoice_line_items(self, invoice_id: str) -> list[LineItem]:
        self.invoice_lookups.append(invoice_id)
        if self.fail:
            raise EnrichmentError("provider down")
        return self.items


@pytest.fixture
def ingestor():
    return EventIngestor(WEBHOOK_SECRET)


def _deliver(ingestor, body: str, header: Optional[str] = None):
    return ingestor.ingest(body.encode("utf-8"), header or stripe_signature(body))


class TestAuthentication:

    def test_valid_signature_accepted(self, ingestor):
        event = _deliver(ingestor, payment_webhook())
        assert event.event_id == "pi_evt_1"

    def test_missing_signature_rejected(self, ingestor):
        with pytest.raises(AuthenticityError, match="Missing"):
            ingestor.ingest(payment_webhook().encode(), None)

    def test_wrong_secret_rejected(self, ingestor):
        body = payment_webhook()
        with pytest.raises(AuthenticityError):
            _deliver(ingestor, body, stripe_signature(body, secret="whsec_other"))

    def test_modified_body_rejected(self, ingestor):
        body = payment_webhook()
        header = stripe_signature(body)
        tampered = body.replace("1250", "1")
        with pytest.raises(AuthenticityError):
            _deliver(ingestor, tampered, header)

    def test_stale_timestamp_rejected(self, ingestor):
        body = payment_webhook()
        old = int(time.time()) - 3600
        with pytest.raises(AuthenticityError):
            _deliver(ingestor, body, stripe_signature(body, timestamp=old))

    def test_unconfigured_secret_rejects_everything(self):
        body = payment_webhook()
        with pytest.raises(AuthenticityError, match="not configured"):
            EventIngestor("").ingest(body.encode(), stripe_signature(body))

    def test_non_object_body_rejected(self, ingestor):
        body = json.dumps(["not", "an", "event"])
        with pytest.raises(AuthenticityError, match="JSON object"):
            _deliver(ingestor, body)

    def test_non_utf8_body_rejected(self, ingestor):
        with pytest.raises(AuthenticityError):
            ingestor.ingest(b"\xff\xfe", "t=1,v1=00")


class TestFiltering:

    def test_other_event_types_ignored(self, ingestor):
        body = payment_webhook(event_type="payment_intent.created")
        assert _deliver(ingestor, body) is None

    def test_charge_refunded_ignored(self, ingestor):
        assert _deliver(ingestor, payment_webhook(event_type="charge.refunded")) is None

    def test_receive_reports_ignored_type(self, ingestor):
        body = payment_webhook(event_type="charge.refunded")

        result = ingestor.receive(body.encode("utf-8"), stripe_signature(body))

        assert result.event_type == "charge.refunded"
        assert result.event is None

    def test_receive_returns_payment_event(self, ingestor):
        body = payment_webhook()

        result = ingestor.receive(body.encode("utf-8"), stripe_signature(body))

        assert result.event_type == PAYMENT_SUCCEEDED
        assert result.event.event_id == "pi_evt_1"


class TestNormalization:

    def test_basic_fields(self, ingestor):
        body = payment_webhook(currency="EUR", receipt_email="pat@example.com")
        event = _deliver(ingestor, body)

        assert event.amount == 1250
        assert event.currency == "eur"
        assert event.payer_contact == "pat@example.com"
        assert event.recipient == "acct_abc"
        assert event.received_at.timestamp() == 1700000000

    def test_amount_falls_back_to_amount(self, ingestor):
        body = payment_webhook(amount_received=None, amount=999)
        assert _deliver(ingestor, body).amount == 999

    def test_wallet_address_is_recipient(self, ingestor):
        body = payment_webhook(metadata={"walletAddress": "0xabc"})
        assert _deliver(ingestor, body).recipient == "0xabc"

    def test_metadata_coerced_to_strings(self, ingestor):
        body = payment_webhook(metadata={"recipient": "acct_abc", "table": 7, "note": None})
        event = _deliver(ingestor, body)
        assert event.metadata == {"recipient": "acct_abc", "table": "7"}

    def test_contact_from_metadata(self, ingestor):
        body = payment_webhook(metadata={"recipient": "acct_abc", "customerEmail": "m@example.com"})
        assert _deliver(ingestor, body).payer_contact == "m@example.com"

    def test_items_from_metadata(self, ingestor):
        items = [
            {"description": "Coffee", "unit_amount": 450, "quantity": 1},
            {"name": "Donut", "price": "2.99", "quantity": 2},
            {"description": "broken"},
        ]
        body = payment_webhook(metadata={"recipient": "acct_abc", "items": json.dumps(items)})
        event = _deliver(ingestor, body)

        assert [(i.description, i.unit_amount, i.quantity) for i in event.line_items] == [
            ("Coffee", 450, 1),
            ("Donut", 299, 2),
        ]

    def test_unparseable_metadata_items_ignored(self, ingestor):
        body = payment_webhook(metadata={"recipient": "acct_abc", "items": "{not json"})
        assert _deliver(ingestor, body).line_items == []

    def test_negative_amount_is_validation_error(self, ingestor):
        body = payment_webhook(amount_received=-5)
        with pytest.raises(ValidationError):
            _deliver(ingestor, body)

    def test_missing_identifier_rejected(self, ingestor):
        envelope = json.loads(payment_webhook())
        envelope["data"]["object"].pop("id")
        envelope.pop("id")
        with pytest.raises(AuthenticityError, match="identifier"):
            _deliver(ingestor, json.dumps(envelope))


class TestEnrichment:

    def test_customer_and_invoice_lookups(self):
        gateway = FakeGateway(
            email="c@example.com",
            items=[LineItem(description="Plan", unit_amount=1250, quantity=1)],
        )
        ingestor = EventIngestor(WEBHOOK_SECRET, gateway=gateway)
        body = payment_webhook(customer="cus_1", invoice="in_1")

        event = _deliver(ingestor, body)

        assert gateway.customer_lookups == ["cus_1"]
        assert gateway.invoice_lookups == ["in_1"]
        assert event.payer_contact == "c@example.com"
        assert event.line_items[0].description == "Plan"

    def test_receipt_email_skips_customer_lookup(self):
        gateway = FakeGateway(email="c@example.com")
        ingestor = EventIngestor(WEBHOOK_SECRET, gateway=gateway)
        body = payment_webhook(customer="cus_1", receipt_email="r@example.com")

        event = _deliver(ingestor, body)

        assert gateway.customer_lookups == []
        assert event.payer_contact == "r@example.com"

    def test_enrichment_failure_degrades_to_partial_data(self):
        gateway = FakeGateway(fail=True)
        ingestor = EventIngestor(WEBHOOK_SECRET, gateway=gateway)
        items = json.dumps([{"description": "Coffee", "unit_amount": 450}])
        body = payment_webhook(
            customer="cus_1",
            invoice="in_1",
            metadata={"recipient": "acct_abc", "items": items},
        )

        event = _deliver(ingestor, body)

        assert event.payer_contact is None
        assert [i.description for i in event.line_items] == ["Coffee"]


class TestStripeGateway:

    def test_customer_email(self, monkeypatch):
        calls = []

        def retrieve(customer_id, **kwargs):
            calls.append((customer_id, kwargs))
            return {"id": customer_id, "email": "c@example.com"}

        monkeypatch.setattr(stripe.Customer, "retrieve", retrieve)

        assert StripeGateway("sk_test_1").customer_email("cus_1") == "c@example.com"
        assert calls == [("cus_1", {"api_key": "sk_test_1"})]

    def test_deleted_customer_has_no_email(self, monkeypatch):
        monkeypatch.setattr(
            stripe.Customer, "retrieve",
            lambda customer_id, **kwargs: {"id": customer_id, "deleted": True},
        )
        assert StripeGateway("sk_test_1").customer_email("cus_1") is None

    def test_invoice_lines(self, monkeypatch):
        invoice = {"lines": {"data": [
            {"description": "Coffee", "quantity": 1, "price": {"unit_amount": 450}},
            {"description": "Donut", "quantity": 2, "amount": 598, "price": None},
        ]}}
        monkeypatch.setattr(stripe.Invoice, "retrieve", lambda invoice_id, **kwargs: invoice)

        items = StripeGateway("sk_test_1").invoice_line_items("in_1")

        assert [(i.description, i.unit_amount, i.quantity) for i in items] == [
            ("Coffee", 450, 1),
            ("Donut", 299, 2),
        ]

    def test_discount_line_is_skipped(self, monkeypatch):
        invoice = {"lines": {"data": [
            {"description": "Coffee", "quantity": 1, "price": {"unit_amount": 450}},
            {"id": "il_disc", "description": "Loyalty discount", "amount": -100, "price": None},
        ]}}
        monkeypatch.setattr(stripe.Invoice, "retrieve", lambda invoice_id, **kwargs: invoice)

        items = StripeGateway("sk_test_1").invoice_line_items("in_1")

        assert [i.description for i in items] == ["Coffee"]

    def test_discount_line_does_not_fail_ingestion(self, monkeypatch):
        invoice = {"lines": {"data": [{"amount": -100, "price": None}]}}
        monkeypatch.setattr(stripe.Invoice, "retrieve", lambda invoice_id, **kwargs: invoice)
        ingestor = EventIngestor(WEBHOOK_SECRET, gateway=StripeGateway("sk_test_1"))
        items = json.dumps([{"description": "Coffee", "unit_amount": 450}])
        body = payment_webhook(
            invoice="in_1",
            metadata={"recipient": "acct_abc", "items": items},
        )

        event = _deliver(ingestor, body)

        assert event.event_id == "pi_evt_1"
        assert [i.description for i in event.line_items] == ["Coffee"]

    def test_provider_error_is_enrichment_error(self, monkeypatch):
        def retrieve(customer_id, **kwargs):
            raise stripe.APIConnectionError("network down")

        monkeypatch.setattr(stripe.Customer, "retrieve", retrieve)

        with pytest.raises(EnrichmentError):
            StripeGateway("sk_test_1").customer_email("cus_1")
