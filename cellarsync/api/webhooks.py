"""
Stripe webhook routes.

- POST /api/stripe/webhook: verify, record and apply a Stripe event
- GET  /api/debug/webhook-test: webhook configuration and recent deliveries (admin)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func, select

from cellarsync.api.deps import get_billing_provider
from cellarsync.core.admin_auth import AdminActor, require_admin
from cellarsync.core.config import settings
from cellarsync.core.database import get_db_session, plan_subscriptions, webhook_events
from cellarsync.features.billing.provider import BillingProvider, BillingWebhookError
from cellarsync.features.billing.webhooks import process_webhook_event, recent_webhook_events

logger = logging.getLogger("cellarsync.api.webhooks")

router = APIRouter(tags=["webhooks"])


@router.post("/api/stripe/webhook")
async def handle_webhook(
    request: Request,
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    """
    Handle Stripe webhook events.

    Verifies the signature against STRIPE_WEBHOOK_SECRET and processes the
    event idempotently (dedup on stripe_event_id).

    Returns:
        {"received": true, "eventId": "evt_..."}

    Errors:
        400: Invalid signature or payload
        500: Event handler failed (error stored on the event row)
        503: Billing disabled
    """
    if provider is None:
        raise HTTPException(
            status_code=503,
            detail={"error": "Billing disabled", "code": "billing_disabled"},
        )

    # Raw body is required for signature verification
    body = await request.body()
    headers = dict(request.headers)

    try:
        envelope = process_webhook_event(headers, body, provider=provider)
    except BillingWebhookError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return {"received": True, "eventId": envelope.event_id}


def _secret_preview(secret: Optional[str]) -> Optional[str]:
    if not secret:
        return None
    return f"{secret[:6]}..."


@router.get("/api/debug/webhook-test")
def webhook_test(actor: AdminActor = Depends(require_admin)):
    """Webhook configuration, delivery statistics and the 20 most recent events."""
    with get_db_session() as session:
        subscription_count = session.execute(
            select(func.count()).select_from(plan_subscriptions)
        ).scalar() or 0
        event_count = session.execute(
            select(func.count()).select_from(webhook_events)
        ).scalar() or 0
        failed_count = session.execute(
            select(func.count()).select_from(webhook_events).where(
                webhook_events.c.processing_error.isnot(None)
            )
        ).scalar() or 0

    events = recent_webhook_events(limit=20)
    return {
        "environment": {
            "webhookSecretConfigured": bool(settings.STRIPE_WEBHOOK_SECRET),
            "webhookSecretPreview": _secret_preview(settings.STRIPE_WEBHOOK_SECRET),
            "publicAppUrl": settings.PUBLIC_APP_URL,
            "webhookEndpoint": (
                f"{settings.PUBLIC_APP_URL.rstrip('/')}/api/stripe/webhook"
                if settings.PUBLIC_APP_URL else None
            ),
        },
        "statistics": {
            "planSubscriptions": subscription_count,
            "webhookEvents": event_count,
            "failedWebhookEvents": failed_count,
        },
        "recentWebhooks": [
            {
                "id": e.stripe_event_id,
                "type": e.type,
                "accountId": e.account_id,
                "processed": bool(e.processed),
                "error": e.processing_error,
                "receivedAt": e.received_at.isoformat() if e.received_at else None,
            }
            for e in events
        ],
    }
