"""
Service Configuration

Environment Variables:
    STRIPE_WEBHOOK_SECRET: Shared secret for webhook signatures (required)
    STRIPE_SECRET_KEY: API key for customer/invoice enrichment (optional)
    BLOCKRECEIPT_WEBHOOK_TOLERANCE: Max signature age in seconds (default 300)

    BLOCKRECEIPT_CREDENTIAL_HEADER: Header carrying the verification credential
        (default X-Vendor-Key)
    BLOCKRECEIPT_VENDOR_KEYS: Comma-separated authorized vendor keys
    BLOCKRECEIPT_VENDOR_PUBLIC_KEYS: Comma-separated authorized Ed25519 public keys

    BLOCKRECEIPT_RETRY_ATTEMPTS: Attempts per backend call (default 3)
    BLOCKRECEIPT_RETRY_BACKOFF: Initial backoff in seconds (default 0.2)
    BLOCKRECEIPT_STORE_TIMEOUT: Content store HTTP timeout in seconds (default 10)
    BLOCKRECEIPT_CLAIM_LEASE: Idempotency claim lease in seconds (default 300)
    BLOCKRECEIPT_CLAIM_WAIT: How long a duplicate waits for the first claimant (default 10)

    IPFS_API_URL: IPFS HTTP API base URL (unset = in-memory content store)
    IPFS_PROJECT_ID / IPFS_PROJECT_SECRET: Basic auth for hosted IPFS

    BLOCKRECEIPT_PRODUCTION: Production mode (requires real keys and secrets)

Master keys are read by KeyRing.from_env (see core/keys.py).
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _is_true(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


@dataclass
class ServiceConfig:
    """Runtime configuration for ingestion, issuance and verification."""
    webhook_secret: str = ""
    stripe_api_key: Optional[str] = None
    webhook_tolerance_seconds: int = 300

    credential_header: str = "X-Vendor-Key"
    vendor_keys: list[str] = field(default_factory=list)
    vendor_public_keys: list[str] = field(default_factory=list)

    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.2
    store_timeout_seconds: float = 10.0
    claim_lease_seconds: float = 300.0
    claim_wait_seconds: float = 10.0

    ipfs_api_url: Optional[str] = None
    ipfs_project_id: Optional[str] = None
    ipfs_project_secret: Optional[str] = None

    production: bool = False

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        return cls(
            webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
            stripe_api_key=os.getenv("STRIPE_SECRET_KEY") or None,
            webhook_tolerance_seconds=int(os.getenv("BLOCKRECEIPT_WEBHOOK_TOLERANCE", "300")),
            credential_header=os.getenv("BLOCKRECEIPT_CREDENTIAL_HEADER", "X-Vendor-Key"),
            vendor_keys=_split(os.getenv("BLOCKRECEIPT_VENDOR_KEYS", "")),
            vendor_public_keys=_split(os.getenv("BLOCKRECEIPT_VENDOR_PUBLIC_KEYS", "")),
            retry_attempts=int(os.getenv("BLOCKRECEIPT_RETRY_ATTEMPTS", "3")),
            retry_backoff_seconds=float(os.getenv("BLOCKRECEIPT_RETRY_BACKOFF", "0.2")),
            store_timeout_seconds=float(os.getenv("BLOCKRECEIPT_STORE_TIMEOUT", "10")),
            claim_lease_seconds=float(os.getenv("BLOCKRECEIPT_CLAIM_LEASE", "300")),
            claim_wait_seconds=float(os.getenv("BLOCKRECEIPT_CLAIM_WAIT", "10")),
            ipfs_api_url=os.getenv("IPFS_API_URL") or None,
            ipfs_project_id=os.getenv("IPFS_PROJECT_ID") or None,
            ipfs_project_secret=os.getenv("IPFS_PROJECT_SECRET") or None,
            production=_is_true(os.getenv("BLOCKRECEIPT_PRODUCTION", "")),
        )

    def validate(self) -> None:
        """Fail fast on settings production cannot run without."""
        if self.retry_attempts < 1:
            raise ValueError("BLOCKRECEIPT_RETRY_ATTEMPTS must be at least 1")
        if self.production and not self.webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET must be set in production")

    def redacted(self) -> dict:
        """Settings safe to print (no secrets)."""
        return {
            "webhook_secret_set": bool(self.webhook_secret),
            "stripe_enrichment": bool(self.stripe_api_key),
            "webhook_tolerance_seconds": self.webhook_tolerance_seconds,
            "credential_header": self.credential_header,
            "vendor_keys": len(self.vendor_keys),
            "vendor_public_keys": len(self.vendor_public_keys),
            "retry_attempts": self.retry_attempts,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "store_timeout_seconds": self.store_timeout_seconds,
            "claim_lease_seconds": self.claim_lease_seconds,
            "claim_wait_seconds": self.claim_wait_seconds,
            "content_store": "ipfs" if self.ipfs_api_url else "memory",
            "production": self.production,
        }
