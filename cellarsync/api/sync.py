"""
Reconciliation routes (admin only).

- GET  /api/debug/sync-check: drift report for one consumer of one business
- POST /api/debug/sync-subscription: overwrite one mirror row from Stripe
- POST /api/debug/sync-all: reconcile every Stripe subscription of a business
- POST /api/debug/backfill-subscriptions: create missing mirror rows

Routes that write the mirror drop the tenant's cached billing metrics.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from cellarsync.api.deps import get_billing_provider, get_metrics_cache
from cellarsync.api.schemas import (
    BackfillDetails,
    BackfillRequest,
    BackfillResponse,
    DatabaseSection,
    DatabaseSubscription,
    StripeSection,
    StripeSubscription,
    SweepActionModel,
    SweepResponse,
    SyncCheckResponse,
    SyncSubscriptionRequest,
    SyncSubscriptionResponse,
)
from cellarsync.core.admin_auth import AdminActor, require_admin
from cellarsync.core.cache import TTLCache, metrics_key
from cellarsync.core.errors import ValidationError
from cellarsync.features.billing import reconciler
from cellarsync.features.billing.provider import BillingProvider

logger = logging.getLogger("cellarsync.api.sync")

router = APIRouter(prefix="/api/debug", tags=["reconcile"])


def _stripe_subscription(view: reconciler.RemoteSubscriptionView) -> StripeSubscription:
    return StripeSubscription(
        subscription_id=view.subscription_id,
        customer_id=view.customer_id,
        status=view.status,
        in_database=view.in_database,
        created=view.created,
    )


@router.get("/sync-check", response_model=SyncCheckResponse)
def sync_check(
    business: str = Query(..., description="Business id or slug"),
    email: str = Query(..., description="Consumer email"),
    actor: AdminActor = Depends(require_admin),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    """
    Compare Stripe subscriptions with the local mirror for one consumer.

    Read-only. Errors:
        404: business or consumer not found
        400: business has no connected Stripe account
        500: Stripe error (message passed through)
    """
    report = reconciler.find_drift(business, email, provider=provider)
    remote = [_stripe_subscription(s) for s in report.remote]
    return SyncCheckResponse(
        email=report.email,
        business_id=report.business_id,
        database=DatabaseSection(
            count=len(report.database),
            subscriptions=[
                DatabaseSubscription(id=s.id, status=s.status, plan=s.plan) for s in report.database
            ],
        ),
        stripe=StripeSection(
            customer_count=report.customer_count,
            subscription_count=len(remote),
            duplicate_customer_ids=report.duplicate_customer_ids,
            subscriptions=remote,
        ),
        missing=[s for s in remote if not s.in_database],
    )


@router.post("/sync-subscription", response_model=SyncSubscriptionResponse)
def sync_subscription(
    request: SyncSubscriptionRequest,
    actor: AdminActor = Depends(require_admin),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
    cache: TTLCache = Depends(get_metrics_cache),
):
    """
    Overwrite one local subscription from Stripe (Stripe wins).

    Errors:
        400: subscriptionId missing
        404: subscription unknown (Stripe is not called)
        500: Stripe error (message passed through)
    """
    if not request.subscription_id:
        raise ValidationError("subscriptionId required")

    logger.info(f"[sync] reconcile {request.subscription_id} by {actor.actor_id}")
    result = reconciler.reconcile_one(request.subscription_id, provider=provider)
    cache.invalidate(metrics_key(result.business_id))
    return SyncSubscriptionResponse(
        success=True,
        before=result.before,
        after=result.after,
        stripe_status=result.stripe_status,
    )


@router.post("/sync-all", response_model=SweepResponse)
def sync_all(
    business: str = Query(..., description="Business id or slug"),
    actor: AdminActor = Depends(require_admin),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
    cache: TTLCache = Depends(get_metrics_cache),
):
    """Reconcile every Stripe subscription of one business."""
    logger.info(f"[sync] sweep {business} by {actor.actor_id}")
    report = reconciler.sweep_business(business, provider=provider)
    cache.invalidate(metrics_key(report.business_id))
    return SweepResponse(
        success=True,
        business_id=report.business_id,
        checked=report.checked,
        unchanged=report.unchanged,
        total_actions=len(report.actions),
        results=[
            SweepActionModel(
                action=a.action,
                subscription_id=a.subscription_id,
                old_status=a.old_status,
                new_status=a.new_status,
                status=a.status,
                reason=a.reason,
            )
            for a in report.actions
        ],
    )


@router.post("/backfill-subscriptions", response_model=BackfillResponse)
def backfill_subscriptions(
    request: BackfillRequest,
    actor: AdminActor = Depends(require_admin),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
    cache: TTLCache = Depends(get_metrics_cache),
):
    """Create local rows for a consumer's Stripe subscriptions that have none."""
    logger.info(f"[sync] backfill {request.business}/{request.email} by {actor.actor_id}")
    report = reconciler.backfill_missing(request.business, request.email, provider=provider)
    if report.created:
        cache.invalidate(metrics_key(report.business_id))
    return BackfillResponse(
        success=True,
        created=len(report.created),
        skipped=len(report.skipped),
        errors=len(report.errors),
        details=BackfillDetails(created=report.created, skipped=report.skipped, errors=report.errors),
    )
