"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with request IDs
- Request/response logging middleware
- Metrics collection (issuance, duplicates, verifications, integrity faults)
- Health check utilities

Configuration:
- BLOCKRECEIPT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- BLOCKRECEIPT_LOG_FORMAT: json, text (default: json in production)
- BLOCKRECEIPT_PRODUCTION: Enable production mode

Usage:
    from blockreceipt.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Commitment issued", token_id=commitment.token_id)

Never pass sensitive receipt fields (line items, payer contact) as log fields.
"""

import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Attributes every LogRecord has; anything else came in via extra=
_RESERVED_RECORD_FIELDS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


# ============================================================
# CONFIGURATION
# ============================================================

def is_production() -> bool:
    return os.environ.get("BLOCKRECEIPT_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    level_str = os.environ.get("BLOCKRECEIPT_LOG_LEVEL", "INFO").upper()
    return logging.getLevelName(level_str) if level_str in (
        "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"
    ) else logging.INFO


def _use_json_logging() -> bool:
    format_str = os.environ.get("BLOCKRECEIPT_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000000+00:00",
        "level": "INFO",
        "logger": "blockreceipt.core.issuance",
        "message": "Commitment issued",
        "request_id": "abc-123",
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_FIELDS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        request_id = request_id_var.get()
        if request_id:
            prefix = f"[{request_id[:8]}] "

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        fields = {
            k: v for k, v in record.__dict__.items()
            if k not in _RESERVED_RECORD_FIELDS and not k.startswith("_")
        }
        if fields:
            msg += " " + " ".join(f"{k}={v}" for k, v in fields.items())

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that turns keyword arguments into structured fields.

    Usage:
        logger = get_logger(__name__)
        logger.info("Duplicate delivery", event_id=event.event_id)
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})
        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """Structured logger for the given name (typically __name__)."""
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure logging for the application.

    Call this once at application startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_get_log_level())
    handler.setFormatter(StructuredFormatter() if _use_json_logging() else TextFormatter())
    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request ID (or honours X-Request-ID) and logs each request
    with its status and duration.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        token = request_id_var.set(request_id)

        logger = get_logger("blockreceipt.request")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            get_metrics().record_request(duration_ms, success=response.status_code < 500)
            log_level = logging.INFO if response.status_code < 400 else logging.WARNING

            logger.log(
                log_level,
                f"{request.method} {request.url.path} -> {response.status_code}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            get_metrics().record_request(duration_ms, success=False)
            logger.exception(
                f"{request.method} {request.url.path} -> 500",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e),
            )
            raise

        finally:
            request_id_var.reset(token)


# ============================================================
# METRICS
# ============================================================

@dataclass
class MetricsCollector:
    """
    Simple in-memory metrics collector.

    For production, replace with Prometheus, StatsD, or similar.
    """

    # Counters
    events_received: int = 0
    events_rejected: int = 0
    commitments_issued: int = 0
    duplicate_deliveries: int = 0
    issuance_failures: int = 0
    verifications_public: int = 0
    verifications_full: int = 0
    verifications_unauthorized: int = 0
    integrity_failures: int = 0
    requests_total: int = 0
    requests_failed: int = 0

    # Histograms (simplified as lists)
    issue_latencies_ms: list = field(default_factory=list)
    request_latencies_ms: list = field(default_factory=list)

    _lock: Lock = field(default_factory=Lock, repr=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def record_issue(self, latency_ms: float) -> None:
        with self._lock:
            self.commitments_issued += 1
            self.issue_latencies_ms.append(latency_ms)
            # Keep only last 1000 samples
            if len(self.issue_latencies_ms) > 1000:
                self.issue_latencies_ms = self.issue_latencies_ms[-1000:]

    def record_request(self, latency_ms: float, success: bool) -> None:
        with self._lock:
            self.requests_total += 1
            if not success:
                self.requests_failed += 1
            self.request_latencies_ms.append(latency_ms)
            if len(self.request_latencies_ms) > 1000:
                self.request_latencies_ms = self.request_latencies_ms[-1000:]

    def get_summary(self) -> Dict[str, Any]:
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            idx = int(len(sorted_data) * p)
            return sorted_data[min(idx, len(sorted_data) - 1)]

        return {
            "events_received": self.events_received,
            "events_rejected": self.events_rejected,
            "commitments_issued": self.commitments_issued,
            "duplicate_deliveries": self.duplicate_deliveries,
            "issuance_failures": self.issuance_failures,
            "verifications_public": self.verifications_public,
            "verifications_full": self.verifications_full,
            "verifications_unauthorized": self.verifications_unauthorized,
            "integrity_failures": self.integrity_failures,
            "requests_total": self.requests_total,
            "requests_failed": self.requests_failed,
            "issue_latency_p50_ms": percentile(self.issue_latencies_ms, 0.5),
            "issue_latency_p95_ms": percentile(self.issue_latencies_ms, 0.95),
            "request_latency_p50_ms": percentile(self.request_latencies_ms, 0.5),
            "request_latency_p95_ms": percentile(self.request_latencies_ms, 0.95),
        }


# Global metrics instance
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(ledger=None, content_store=None, key_ring=None) -> HealthStatus:
    """
    Run all health checks.

    Args:
        ledger: LedgerClient instance
        content_store: ContentStore instance
        key_ring: KeyRing instance
    """
    start = time.perf_counter()
    checks = {"liveness": {"status": "healthy"}}
    all_healthy = True

    if ledger is not None:
        try:
            checks["ledger"] = {"status": "healthy", "commitments": ledger.count()}
        except Exception as e:
            checks["ledger"] = {"status": "unhealthy", "error": str(e)}
            all_healthy = False

    if content_store is not None:
        reachable = content_store.ping()
        checks["content_store"] = {"status": "healthy" if reachable else "unhealthy"}
        all_healthy = all_healthy and reachable

    if key_ring is not None:
        checks["key_ring"] = {
            "status": "healthy",
            "active_version": key_ring.active_version,
            "ephemeral": key_ring.is_ephemeral,
        }

    duration_ms = (time.perf_counter() - start) * 1000
    return HealthStatus(healthy=all_healthy, checks=checks, duration_ms=round(duration_ms, 2))
