"""
Stripe webhook ingestion.

1. Verify signature (provider)
2. Skip events already processed (idempotency by stripe_event_id)
3. Record the event in webhook_events; a redelivery of a failed event
   clears the stored error and runs the handler again
4. Apply subscription changes to the local mirror
5. Mark the event processed, or store the processing error once
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from cellarsync.core.database import get_db_session, webhook_events
from cellarsync.core.logging import log_event
from cellarsync.core.metrics import webhook_events_total
from cellarsync.features.billing.provider import (
    BillingProvider,
    BillingWebhookError,
    WebhookEnvelope,
)
from cellarsync.features.billing.service import get_provider
from cellarsync.features.billing.stripe_provider import to_remote_subscription
from cellarsync.features.subscriptions import store

logger = logging.getLogger("cellarsync.webhooks")

SUBSCRIPTION_UPSERT_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
}


def process_webhook_event(
    headers: Dict[str, str],
    body: bytes,
    provider: Optional[BillingProvider] = None,
) -> WebhookEnvelope:
    """
    Process a Stripe webhook event (idempotent).

    Returns:
        The verified event envelope

    Raises:
        BillingWebhookError: If billing disabled or signature invalid
        Exception: Whatever the handler raised, after recording it
    """
    active_provider = provider or get_provider()
    if not active_provider:
        raise BillingWebhookError("Billing not enabled")

    try:
        envelope = active_provider.construct_event(headers, body)
    except BillingWebhookError:
        webhook_events_total.inc(labels={"type": "unknown", "outcome": "invalid_signature"})
        raise

    payload_hash = hashlib.sha256(body).hexdigest()

    with get_db_session() as session:
        existing = session.execute(
            select(webhook_events.c.id, webhook_events.c.processed).where(
                webhook_events.c.stripe_event_id == envelope.event_id
            )
        ).fetchone()

        if existing and existing.processed:
            webhook_events_total.inc(labels={"type": envelope.event_type, "outcome": "duplicate"})
            return envelope

        if existing:
            session.execute(
                update(webhook_events)
                .where(webhook_events.c.id == existing.id)
                .values(processing_error=None)
            )
            session.commit()
            webhook_events_total.inc(labels={"type": envelope.event_type, "outcome": "retry"})
            logger.info(
                f"[webhook] retrying {envelope.event_id} after a failed delivery",
                extra={"event_id": envelope.event_id, "account_id": envelope.account_id},
            )
        else:
            try:
                session.execute(
                    insert(webhook_events).values(
                        stripe_event_id=envelope.event_id,
                        type=envelope.event_type,
                        account_id=envelope.account_id,
                        signature_valid=True,
                        processed=False,
                        payload_hash=payload_hash,
                    )
                )
                session.commit()
            except IntegrityError:
                # Another delivery of the same event won the insert
                session.rollback()
                return envelope

    try:
        handle_event(envelope, active_provider)

        with get_db_session() as session:
            session.execute(
                update(webhook_events)
                .where(webhook_events.c.stripe_event_id == envelope.event_id)
                .values(processed=True, processed_at=datetime.now(timezone.utc))
            )
            session.commit()
    except Exception as e:
        with get_db_session() as session:
            session.execute(
                update(webhook_events)
                .where(webhook_events.c.stripe_event_id == envelope.event_id)
                .values(processing_error=str(e))
            )
            session.commit()
        webhook_events_total.inc(labels={"type": envelope.event_type, "outcome": "error"})
        log_event(
            "error",
            "webhook.failed",
            event_type=envelope.event_type,
            error_code="processing_error",
            event_id=envelope.event_id,
            account_id=envelope.account_id,
            extra={"error": e},
        )
        raise

    webhook_events_total.inc(labels={"type": envelope.event_type, "outcome": "processed"})
    log_event(
        "info",
        "webhook.processed",
        event_type=envelope.event_type,
        event_id=envelope.event_id,
        account_id=envelope.account_id,
    )
    return envelope


def handle_event(envelope: WebhookEnvelope, provider: BillingProvider) -> None:
    obj = envelope.data_object
    if envelope.event_type in SUBSCRIPTION_UPSERT_EVENTS:
        sync_subscription_from_event(obj, envelope.account_id, provider)
    elif envelope.event_type == "customer.subscription.deleted":
        with get_db_session() as session:
            if not store.mark_subscription_canceled(session, obj.get("id")):
                logger.info(f"[webhook] no local subscription for {obj.get('id')}")
            session.commit()
    elif envelope.event_type == "checkout.session.completed":
        create_from_checkout(obj, envelope.account_id, provider)
    else:
        logger.info(f"[webhook] unhandled event type: {envelope.event_type}")


def resolve_tenant_plan(session, plan_id: str, account_id: Optional[str]):
    """
    Load the plan named in event metadata and the Stripe account to act on.

    When the event came from a connected account, the plan's business must
    own that account.

    Returns:
        (plan row, stripe account id)

    Raises:
        ValueError: plan unknown, or owned by a different account
    """
    plan = store.find_plan(session, plan_id)
    if not plan:
        raise ValueError(f"Plan {plan_id} not found")
    business = store.find_business(session, plan.business_id)
    if account_id and business.stripe_account_id != account_id:
        raise ValueError(f"Plan {plan_id} does not belong to account {account_id}")
    return plan, account_id or business.stripe_account_id


def sync_subscription_from_event(
    subscription: Dict[str, Any],
    account_id: Optional[str],
    provider: BillingProvider,
) -> None:
    """Mirror the event's subscription; create the row when metadata names a plan."""
    remote = to_remote_subscription(subscription)
    with get_db_session() as session:
        existing = store.find_subscription_by_stripe_id(session, remote.id)
        if existing:
            store.update_subscription_status(
                session,
                existing.id,
                status=remote.status,
                current_period_start=remote.current_period_start,
                current_period_end=remote.current_period_end,
                cancel_at_period_end=remote.cancel_at_period_end,
            )
            session.commit()
            logger.info(f"[webhook] synced {remote.id}: {existing.status} -> {remote.status}")
            return

        plan_id = remote.metadata.get("planId")
        if not plan_id:
            logger.info(f"[webhook] new subscription {remote.id} has no planId, waiting for checkout")
            return

        plan, effective_account = resolve_tenant_plan(session, plan_id, account_id)

        customer = provider.retrieve_customer(effective_account, remote.customer_id)
        if not customer.email:
            raise ValueError(f"No email for customer {remote.customer_id}")

        consumer = store.get_or_create_consumer(session, customer.email, customer.name)
        store.insert_subscription(
            session,
            plan_id=plan.id,
            consumer_id=consumer.id,
            stripe_subscription_id=remote.id,
            stripe_customer_id=remote.customer_id,
            status=remote.status,
            current_period_start=remote.current_period_start,
            current_period_end=remote.current_period_end,
            cancel_at_period_end=remote.cancel_at_period_end,
        )
        session.commit()
        logger.info(f"[webhook] created mirror row for {remote.id} on plan {plan_id}")


def create_from_checkout(
    checkout_session: Dict[str, Any],
    account_id: Optional[str],
    provider: BillingProvider,
) -> None:
    """Create the mirror row for a completed subscription checkout."""
    subscription_ref = checkout_session.get("subscription")
    if checkout_session.get("mode") != "subscription" or not subscription_ref:
        logger.info(f"[webhook] checkout {checkout_session.get('id')} is not a subscription")
        return
    subscription_id = subscription_ref if isinstance(subscription_ref, str) else subscription_ref.get("id")

    with get_db_session() as session:
        if store.find_subscription_by_stripe_id(session, subscription_id):
            return

        plan_id = (checkout_session.get("metadata") or {}).get("planId")
        if not plan_id:
            raise ValueError(f"No planId in checkout session {checkout_session.get('id')} metadata")
        plan, effective_account = resolve_tenant_plan(session, plan_id, account_id)

        details = checkout_session.get("customer_details") or {}
        email = checkout_session.get("customer_email") or details.get("email")
        if not email:
            raise ValueError(f"No customer email in checkout session {checkout_session.get('id')}")

        remote = provider.retrieve_subscription(effective_account, subscription_id)

        consumer = store.get_or_create_consumer(session, email, details.get("name"))
        store.insert_subscription(
            session,
            plan_id=plan.id,
            consumer_id=consumer.id,
            stripe_subscription_id=remote.id,
            stripe_customer_id=remote.customer_id,
            status=remote.status,
            current_period_start=remote.current_period_start,
            current_period_end=remote.current_period_end,
            cancel_at_period_end=remote.cancel_at_period_end,
        )
        session.commit()
        logger.info(f"[webhook] created mirror row for {remote.id} from checkout")


def recent_webhook_events(limit: int = 20):
    with get_db_session() as session:
        return session.execute(
            select(webhook_events).order_by(webhook_events.c.id.desc()).limit(limit)
        ).fetchall()
