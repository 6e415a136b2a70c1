"""
BlockReceipt - Receipt Commitment Service

Main application entry point.

A payment produces a public commitment. The receipt behind it stays
encrypted until an authorized verifier asks for it.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import events_router, receipts_router
from .container import ServiceContainer
from .observability import (
    setup_logging,
    get_logger,
    RequestContextMiddleware,
    check_health,
    get_metrics,
)

logger = get_logger(__name__)

DESCRIPTION = """
## Receipt Commitments with Selective Disclosure

### Flow

```
payment webhook -> authenticate -> encrypt -> content store -> ledger
```

- **Idempotent**: one commitment per payment, however often it is delivered
- **Committed**: the ledger holds a SHA-256 integrity hash and a content address
- **Private**: receipt contents are encrypted; keys never sit beside ciphertext
- **Tiered**: anyone sees the commitment, authorized verifiers see the receipt

### Storage Backends

- **In-memory**: development/testing (default)
- **PostgreSQL** ledger and idempotency index: set `DATABASE_URL`
- **IPFS** content store: set `IPFS_API_URL`
"""


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    Args:
        container: Pre-built services (tests). Built from the environment
            at startup when omitted.
    """
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = container or ServiceContainer.from_config()
        app.state.container = services

        logger.info(
            "Application startup complete",
            ledger=type(services.ledger).__name__,
            content_store=type(services.content_store).__name__,
            index=type(services.index).__name__,
        )

        yield

        # Only close what we built
        if container is None:
            services.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="BlockReceipt",
        description=DESCRIPTION,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)

    app.include_router(events_router)
    app.include_router(receipts_router)

    @app.get("/health", tags=["System"])
    async def health():
        """
        Basic health check endpoint.

        Returns 200 if the service is running.
        For backend reachability, use /health/detailed
        """
        return {"status": "healthy", "service": "blockreceipt"}

    @app.get("/health/detailed", tags=["System"])
    async def health_detailed(request: Request):
        """
        Detailed health check.

        Checks:
        - Service liveness
        - Ledger reachability (commitment count)
        - Content store reachability
        - Active key version

        Returns 200 if healthy, 503 if unhealthy.
        """
        services: ServiceContainer = request.app.state.container
        health_status = check_health(
            ledger=services.ledger,
            content_store=services.content_store,
            key_ring=services.key_ring,
        )

        return JSONResponse(
            status_code=200 if health_status.healthy else 503,
            content={
                "status": "healthy" if health_status.healthy else "unhealthy",
                "checks": health_status.checks,
                "duration_ms": health_status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """
        Get application metrics.

        Returns counters and latency percentiles.
        """
        return get_metrics().get_summary()

    return app


app = create_app()
