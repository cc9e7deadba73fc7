"""
Per-business billing metrics (admin).

- GET /api/business/{business_id}/metrics: MRR, active members, churn

Results are cached per business for METRICS_CACHE_TTL_SECONDS. Response keys
are camelCase.
"""
import logging
from typing import Dict

from fastapi import APIRouter, Depends

from cellarsync.api.deps import get_metrics_cache
from cellarsync.api.schemas import CamelModel
from cellarsync.core.admin_auth import AdminActor, require_admin
from cellarsync.core.cache import TTLCache, metrics_key
from cellarsync.core.database import get_db_session
from cellarsync.core.errors import NotFoundError
from cellarsync.core.metrics import metrics_cache_lookups_total
from cellarsync.features.metrics.service import calculate_metrics
from cellarsync.features.subscriptions import store

logger = logging.getLogger("cellarsync.api.business_metrics")

router = APIRouter(prefix="/api/business", tags=["metrics"])


class BusinessMetricsResponse(CamelModel):
    business_id: str
    mrr: int  # cents
    active_members: int
    churn_rate: float  # percent
    subscription_counts: Dict[str, int]
    computed_at: str
    cached: bool = False


@router.get("/{business_id}/metrics", response_model=BusinessMetricsResponse)
def get_business_metrics(
    business_id: str,
    actor: AdminActor = Depends(require_admin),
    cache: TTLCache = Depends(get_metrics_cache),
):
    """
    Billing metrics for one business, served from cache when fresh.

    Errors:
        404: business not found
    """
    with get_db_session() as session:
        business = store.find_business(session, business_id)
        if not business:
            raise NotFoundError(f"Business not found: {business_id}")

        key = metrics_key(business.id)
        cached = cache.get(key)
        if cached is not None:
            metrics_cache_lookups_total.inc(labels={"result": "hit"})
            return {**cached, "cached": True}

        metrics_cache_lookups_total.inc(labels={"result": "miss"})
        result = calculate_metrics(session, business.id)

    cache.set(key, result)
    logger.info(
        f"[metrics] computed business={business.id} mrr={result['mrr']}",
        extra={"business_id": business.id},
    )
    return {**result, "cached": False}
