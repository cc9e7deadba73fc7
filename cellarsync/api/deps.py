"""FastAPI dependencies shared by the routers (overridden in tests)."""
from typing import Optional

from fastapi import Request

from cellarsync.core.cache import TTLCache
from cellarsync.features.billing.provider import BillingProvider
from cellarsync.features.billing.service import get_provider


def get_billing_provider() -> Optional[BillingProvider]:
    return get_provider()


def get_metrics_cache(request: Request) -> TTLCache:
    """The metrics cache is owned by the app instance."""
    return request.app.state.metrics_cache
