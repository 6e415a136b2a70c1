"""
Service wiring.

Builds every collaborator once from configuration and hands them to the
services explicitly. Storage selection follows BLOCKRECEIPT_STORAGE_DRIVER
(or DATABASE_URL); the content store is IPFS when IPFS_API_URL is set.
"""

from dataclasses import dataclass
from typing import Optional

from .config import ServiceConfig
from .core import (
    CredentialVerifier,
    EventIngestor,
    IssuanceService,
    KeyRing,
    PayloadCodec,
    RetryPolicy,
    StripeGateway,
    VerificationService,
)
from .db import (
    ContentStore,
    DatabaseConfig,
    IdempotencyIndex,
    InMemoryContentStore,
    InMemoryIdempotencyIndex,
    InMemoryLedger,
    IpfsContentStore,
    LedgerClient,
    PostgresIdempotencyIndex,
    PostgresLedger,
    StorageDriver,
    get_database_url,
    get_storage_driver,
)
from .db.config import make_connection_factory
from .observability import get_logger

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    config: ServiceConfig
    key_ring: KeyRing
    codec: PayloadCodec
    content_store: ContentStore
    ledger: LedgerClient
    index: IdempotencyIndex
    ingestor: EventIngestor
    issuance: IssuanceService
    verification: VerificationService

    @classmethod
    def build(
        cls,
        config: ServiceConfig,
        key_ring: KeyRing,
        content_store: ContentStore,
        ledger: LedgerClient,
        index: IdempotencyIndex,
    ) -> "ServiceContainer":
        """Assemble services around already-constructed storage clients."""
        retry_policy = RetryPolicy(
            max_attempts=config.retry_attempts,
            initial_delay=config.retry_backoff_seconds,
        )
        codec = PayloadCodec(key_ring)
        gateway = StripeGateway(config.stripe_api_key) if config.stripe_api_key else None

        return cls(
            config=config,
            key_ring=key_ring,
            codec=codec,
            content_store=content_store,
            ledger=ledger,
            index=index,
            ingestor=EventIngestor(
                config.webhook_secret,
                gateway=gateway,
                tolerance_seconds=config.webhook_tolerance_seconds,
            ),
            issuance=IssuanceService(
                codec,
                content_store,
                ledger,
                index,
                retry_policy=retry_policy,
                claim_wait_seconds=config.claim_wait_seconds,
            ),
            verification=VerificationService(
                codec,
                content_store,
                ledger,
                CredentialVerifier(config.vendor_keys, config.vendor_public_keys),
                retry_policy=retry_policy,
            ),
        )

    @classmethod
    def in_memory(
        cls,
        config: Optional[ServiceConfig] = None,
        key_ring: Optional[KeyRing] = None,
    ) -> "ServiceContainer":
        config = config or ServiceConfig()
        return cls.build(
            config,
            key_ring or KeyRing.ephemeral(),
            InMemoryContentStore(),
            InMemoryLedger(),
            InMemoryIdempotencyIndex(lease_seconds=config.claim_lease_seconds),
        )

    @classmethod
    def from_config(cls, config: Optional[ServiceConfig] = None) -> "ServiceContainer":
        """
        Build from environment-derived configuration.

        Raises:
            RuntimeError: Production mode without master keys or webhook secret
            ValueError: Invalid storage driver or settings
        """
        config = config or ServiceConfig.from_env()
        config.validate()

        key_ring = KeyRing.from_env(production=config.production)
        driver = get_storage_driver()

        if driver == StorageDriver.POSTGRES:
            db_url = get_database_url()
            db_config = DatabaseConfig.from_url(db_url) if db_url else DatabaseConfig.from_env()
            connection_factory = make_connection_factory(db_config)
            ledger: LedgerClient = PostgresLedger(connection_factory)
            index: IdempotencyIndex = PostgresIdempotencyIndex(
                connection_factory, lease_seconds=config.claim_lease_seconds
            )
            logger.info("Using Postgres storage", database=db_config.to_url(include_password=False))
        else:
            if config.production:
                logger.warning("In-memory ledger in production mode; commitments are not durable")
            ledger = InMemoryLedger()
            index = InMemoryIdempotencyIndex(lease_seconds=config.claim_lease_seconds)

        if config.ipfs_api_url:
            content_store: ContentStore = IpfsContentStore(
                config.ipfs_api_url,
                project_id=config.ipfs_project_id,
                project_secret=config.ipfs_project_secret,
                timeout=config.store_timeout_seconds,
            )
        else:
            content_store = InMemoryContentStore()

        logger.info(
            "Services configured",
            storage_driver=driver.value,
            content_store=type(content_store).__name__,
            key_version=key_ring.active_version,
            ephemeral_key=key_ring.is_ephemeral,
            enrichment=bool(config.stripe_api_key),
        )
        return cls.build(config, key_ring, content_store, ledger, index)

    def close(self) -> None:
        close = getattr(self.content_store, "close", None)
        if close is not None:
            close()
