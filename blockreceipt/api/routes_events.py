"""
Webhook intake.

POST /events receives the raw provider body plus its Stripe-Signature
header. The body is read unparsed because the signature covers the exact
bytes. Status codes tell the provider whether to redeliver:

- 400: signature or body rejected (redelivery will not help)
- 200: acknowledged (minted, duplicate, ignored, or not mintable)
- 503: issuance backend unavailable (provider should redeliver)
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from ..container import ServiceContainer
from ..core import (
    AuthenticityError,
    IssuanceError,
    KeyUnavailableError,
    ValidationError,
)
from ..observability import get_logger, get_metrics
from .deps import get_container

router = APIRouter(tags=["Events"])
logger = get_logger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"


class EventAck(BaseModel):
    """Acknowledgement returned to the payment provider."""
    received: bool = True
    type: Optional[str] = None
    minted: Optional[bool] = None
    reason: Optional[str] = None
    token_id: Optional[str] = None
    duplicate: Optional[bool] = None


def _process(container: ServiceContainer, raw_body: bytes, signature: Optional[str]) -> EventAck:
    try:
        result = container.ingestor.receive(raw_body, signature)
        if result.event is None:
            return EventAck(type=result.event_type)
        commitment, duplicate = container.issuance.issue_with_outcome(result.event)
    except ValidationError as e:
        logger.info("Event not mintable", reason=str(e))
        return EventAck(minted=False, reason=str(e))

    return EventAck(minted=True, token_id=commitment.token_id, duplicate=duplicate)


@router.post("/events", response_model=EventAck, response_model_exclude_none=True)
async def receive_event(
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    """
    Authenticate a payment webhook and mint its receipt commitment.

    Redelivery of the same payment returns the original token id.
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    get_metrics().increment("events_received")

    try:
        return await run_in_threadpool(_process, container, raw_body, signature)
    except AuthenticityError as e:
        get_metrics().increment("events_rejected")
        logger.warning("Webhook rejected", reason=str(e))
        raise HTTPException(status_code=400, detail="Webhook signature verification failed")
    except (IssuanceError, KeyUnavailableError) as e:
        logger.error("Issuance unavailable", error_type=type(e).__name__, error=str(e))
        raise HTTPException(status_code=503, detail="Receipt issuance temporarily unavailable")
