"""Shared fixtures for the receipt pipeline tests."""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone

import pytest

from blockreceipt.core import (
    CredentialVerifier,
    IssuanceService,
    KeyRing,
    PayloadCodec,
    RetryPolicy,
    Signer,
    VerificationService,
)
from blockreceipt.db import InMemoryContentStore, InMemoryIdempotencyIndex, InMemoryLedger
from blockreceipt.schemas import LineItem, PaymentEvent


WEBHOOK_SECRET = "whsec_test_secret"
VENDOR_KEY = "vk_live_coffee_shop"

# Retries without sleeping
FAST_RETRY = RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way the provider does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def payment_webhook(
    intent_id: str = "pi_evt_1",
    event_type: str = "payment_intent.succeeded",
    metadata: dict = None,
    **intent_fields,
) -> str:
    """A provider envelope for a PaymentIntent, as a JSON string."""
    intent = {
        "id": intent_id,
        "object": "payment_intent",
        "amount": 1250,
        "amount_received": 1250,
        "currency": "usd",
        "metadata": {"recipient": "acct_abc"} if metadata is None else metadata,
    }
    intent.update(intent_fields)
    return json.dumps({
        "id": f"evt_{intent_id}",
        "object": "event",
        "type": event_type,
        "created": 1700000000,
        "data": {"object": intent},
    })


@pytest.fixture
def key_ring():
    return KeyRing.ephemeral()


@pytest.fixture
def codec(key_ring):
    return PayloadCodec(key_ring)


@pytest.fixture
def content_store():
    return InMemoryContentStore()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def index():
    return InMemoryIdempotencyIndex()


@pytest.fixture
def vendor_keypair():
    return Signer.generate_keypair()


@pytest.fixture
def credentials(vendor_keypair):
    _, public_key = vendor_keypair
    return CredentialVerifier(vendor_keys=[VENDOR_KEY], vendor_public_keys=[public_key])


@pytest.fixture
def issuance(codec, content_store, ledger, index):
    return IssuanceService(
        codec, content_store, ledger, index,
        retry_policy=FAST_RETRY,
        claim_wait_seconds=2.0,
        poll_interval=0.01,
    )


@pytest.fixture
def verification(codec, content_store, ledger, credentials):
    return VerificationService(
        codec, content_store, ledger, credentials, retry_policy=FAST_RETRY
    )


@pytest.fixture
def coffee_event():
    """Two coffees' worth of receipt: 450 + 2 x 299 = 1048 subtotal."""
    return PaymentEvent(
        event_id="evt_1",
        amount=1250,
        currency="usd",
        payer_contact="pat@example.com",
        line_items=[
            LineItem(description="Coffee", unit_amount=450, quantity=1),
            LineItem(description="Donut", unit_amount=299, quantity=2),
        ],
        metadata={"recipient": "acct_abc", "merchantName": "Corner Cafe"},
        received_at=datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc),
    )
