"""
Receipt verification.

GET /receipts/{token_id} returns the public commitment to anyone, and the
decrypted receipt to callers presenting an authorized credential in the
configured header (X-Vendor-Key unless overridden).
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from ..container import ServiceContainer
from ..core import (
    IntegrityError,
    KeyUnavailableError,
    NotFoundError,
    StorageUnavailableError,
    UnauthorizedError,
)
from ..schemas import VerificationResult
from .deps import get_container

router = APIRouter(tags=["Receipts"])


@router.get(
    "/receipts/{token_id}",
    response_model=VerificationResult,
    response_model_exclude_none=True,
)
async def get_receipt(
    token_id: str,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    """
    Verify a receipt commitment.

    Without a credential only the commitment is returned and the content
    store is never touched. A rejected credential is 401; an unknown token
    is 404.
    """
    credential = request.headers.get(container.config.credential_header)

    try:
        return await run_in_threadpool(container.verification.verify, token_id, credential)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Receipt not found")
    except UnauthorizedError:
        raise HTTPException(status_code=401, detail="Credential not authorized")
    except IntegrityError:
        raise HTTPException(status_code=502, detail="Stored receipt failed integrity verification")
    except (StorageUnavailableError, KeyUnavailableError):
        raise HTTPException(status_code=503, detail="Receipt storage temporarily unavailable")
