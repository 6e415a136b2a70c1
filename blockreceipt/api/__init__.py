# HTTP routes
from .routes_events import router as events_router
from .routes_receipts import router as receipts_router

__all__ = ["events_router", "receipts_router"]
