"""
Subscription reconciler.

Compares the billing provider's subscriptions (authoritative) with the local
plan_subscriptions mirror for one tenant:

- find_drift: read-only report of remote subscriptions missing locally.
- reconcile_one: overwrite one mirror row from the provider (remote wins).
- sweep_business: reconcile every remote subscription of a tenant.
- backfill_missing: create mirror rows for a consumer's missing subscriptions.

Provider calls are sequential, never retried. Provider failures surface as
UpstreamError with the provider's message.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from cellarsync.core.database import get_db_session
from cellarsync.core.errors import AppError, ConfigurationError, NotFoundError, UpstreamError
from cellarsync.core.metrics import reconcile_runs_total
from cellarsync.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    RemoteSubscription,
)
from cellarsync.features.billing.service import get_provider
from cellarsync.features.subscriptions import store

logger = logging.getLogger("cellarsync.reconciler")


@dataclass
class LocalSubscriptionView:
    id: str  # stripe subscription id
    status: str
    plan: Optional[str]


@dataclass
class RemoteSubscriptionView:
    subscription_id: str
    customer_id: Optional[str]
    status: str
    in_database: bool
    created: Optional[datetime]


@dataclass
class DriftReport:
    email: str
    business_id: str
    database: List[LocalSubscriptionView]
    customer_count: int
    duplicate_customer_ids: List[str]
    remote: List[RemoteSubscriptionView]

    @property
    def missing(self) -> List[RemoteSubscriptionView]:
        return [s for s in self.remote if not s.in_database]


@dataclass
class ReconcileResult:
    subscription_id: str
    business_id: str
    before: str
    after: str
    stripe_status: str


@dataclass
class SweepAction:
    action: str  # updated, skipped, found_missing
    subscription_id: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class SweepReport:
    business_id: str
    checked: int = 0
    unchanged: int = 0
    actions: List[SweepAction] = field(default_factory=list)


@dataclass
class BackfillReport:
    business_id: str
    created: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)


@contextmanager
def _track(operation: str):
    try:
        yield
    except AppError as e:
        reconcile_runs_total.inc(labels={"operation": operation, "outcome": e.code})
        raise
    reconcile_runs_total.inc(labels={"operation": operation, "outcome": "ok"})


def _resolve_provider(provider: Optional[BillingProvider]) -> BillingProvider:
    resolved = provider or get_provider()
    if resolved is None:
        raise ConfigurationError("Billing is not configured (STRIPE_SECRET_KEY missing)")
    return resolved


def _load_business(session, business_ref: str):
    business = store.find_business(session, business_ref)
    if not business:
        raise NotFoundError(f"Business not found: {business_ref}")
    if not business.stripe_account_id:
        raise ConfigurationError(f"Business {business.slug} has no connected Stripe account")
    return business


def _list_consumer_subscriptions(
    provider: BillingProvider,
    account_id: str,
    email: str,
):
    """Remote customers sharing the email and their subscriptions, in order."""
    try:
        customers = provider.list_customers_by_email(account_id, email)
        per_customer = [
            (customer, provider.list_subscriptions(account_id, customer_id=customer.id))
            for customer in customers
        ]
    except BillingProviderError as e:
        raise UpstreamError(str(e)) from e
    return customers, per_customer


def find_drift(
    business_ref: str,
    consumer_email: str,
    provider: Optional[BillingProvider] = None,
) -> DriftReport:
    """
    Report remote subscriptions for (tenant, consumer) and which are missing locally.

    Raises:
        NotFoundError: tenant or consumer does not exist
        ConfigurationError: tenant has no connected billing account
        UpstreamError: provider call failed
    """
    with _track("find_drift"):
        with get_db_session() as session:
            business = _load_business(session, business_ref)
            consumer = store.find_consumer_by_email(session, consumer_email)
            if not consumer:
                raise NotFoundError(f"Consumer not found: {consumer_email}")
            local_rows = store.find_subscriptions_by_consumer(session, business.id, consumer.id)

        active_provider = _resolve_provider(provider)
        customers, per_customer = _list_consumer_subscriptions(
            active_provider, business.stripe_account_id, consumer.email
        )

        local_ids = {row.stripe_subscription_id for row in local_rows}
        remote: List[RemoteSubscriptionView] = []
        seen = set()
        for customer, subscriptions in per_customer:
            for sub in subscriptions:
                if sub.id in seen:
                    continue
                seen.add(sub.id)
                remote.append(RemoteSubscriptionView(
                    subscription_id=sub.id,
                    customer_id=sub.customer_id or customer.id,
                    status=sub.status,
                    in_database=sub.id in local_ids,
                    created=sub.created,
                ))

        duplicate_customer_ids = [c.id for c in customers] if len(customers) > 1 else []
        if duplicate_customer_ids:
            logger.warning(
                "reconcile.duplicate_customers",
                extra={"business_id": business.id, "customer_ids": duplicate_customer_ids},
            )

        report = DriftReport(
            email=consumer.email,
            business_id=business.id,
            database=[
                LocalSubscriptionView(id=row.stripe_subscription_id, status=row.status, plan=row.plan_name)
                for row in local_rows
            ],
            customer_count=len(customers),
            duplicate_customer_ids=duplicate_customer_ids,
            remote=remote,
        )
        logger.info(
            f"[reconcile] drift check business={business.id} remote={len(remote)} "
            f"local={len(local_rows)} missing={len(report.missing)}",
            extra={"business_id": business.id},
        )
        return report


def _apply_remote(session, subscription_id: str, remote: RemoteSubscription) -> None:
    store.update_subscription_status(
        session,
        subscription_id,
        status=remote.status,
        current_period_start=remote.current_period_start,
        current_period_end=remote.current_period_end,
        cancel_at_period_end=remote.cancel_at_period_end,
    )


def reconcile_one(
    plan_subscription_id: str,
    provider: Optional[BillingProvider] = None,
) -> ReconcileResult:
    """
    Overwrite one mirror row from the provider's current subscription.

    The local lookup happens first; an unknown id never reaches the provider.

    Raises:
        NotFoundError: no local subscription with this id
        ConfigurationError: owning tenant has no connected billing account
        UpstreamError: provider call failed (not retried)
    """
    with _track("reconcile_one"):
        with get_db_session() as session:
            row = store.find_subscription_by_id(session, plan_subscription_id)
            if not row:
                raise NotFoundError("Subscription not found")
            if not row.stripe_account_id:
                raise ConfigurationError("Owning business has no connected Stripe account")

            active_provider = _resolve_provider(provider)
            try:
                remote = active_provider.retrieve_subscription(row.stripe_account_id, row.stripe_subscription_id)
            except BillingProviderError as e:
                logger.error(
                    f"[reconcile] provider error for {row.stripe_subscription_id}: {e}",
                    extra={"subscription_id": plan_subscription_id},
                )
                raise UpstreamError(str(e)) from e

            before = row.status
            _apply_remote(session, row.id, remote)
            session.commit()

            updated = store.find_subscription_by_id(session, plan_subscription_id)

        logger.info(
            f"[reconcile] {row.stripe_subscription_id}: {before} -> {updated.status}",
            extra={"subscription_id": plan_subscription_id, "business_id": row.business_id},
        )
        return ReconcileResult(
            subscription_id=plan_subscription_id,
            business_id=row.business_id,
            before=before,
            after=updated.status,
            stripe_status=remote.status,
        )


def sweep_business(business_ref: str, provider: Optional[BillingProvider] = None) -> SweepReport:
    """
    Reconcile every remote subscription on a tenant's account.

    Mismatched statuses are overwritten. Remote subscriptions without a local
    row are reported, never created: canceled ones are skipped as history,
    others are flagged for investigation.
    """
    with _track("sweep_business"):
        with get_db_session() as session:
            business = _load_business(session, business_ref)
            active_provider = _resolve_provider(provider)
            try:
                remote_subs = active_provider.list_subscriptions(business.stripe_account_id, status="all")
            except BillingProviderError as e:
                raise UpstreamError(str(e)) from e

            local_by_stripe_id = {
                row.stripe_subscription_id: row
                for row in store.find_subscriptions_by_stripe_ids(session, [s.id for s in remote_subs])
            }

            report = SweepReport(business_id=business.id, checked=len(remote_subs))
            for remote in remote_subs:
                local = local_by_stripe_id.get(remote.id)
                if local is not None:
                    if local.status == remote.status:
                        report.unchanged += 1
                        continue
                    _apply_remote(session, local.id, remote)
                    report.actions.append(SweepAction(
                        action="updated",
                        subscription_id=remote.id,
                        old_status=local.status,
                        new_status=remote.status,
                    ))
                elif remote.status == "canceled":
                    report.actions.append(SweepAction(
                        action="skipped",
                        subscription_id=remote.id,
                        status=remote.status,
                        reason="Canceled subscription not in database",
                    ))
                else:
                    report.actions.append(SweepAction(
                        action="found_missing",
                        subscription_id=remote.id,
                        status=remote.status,
                        reason="Subscription missing from database, needs investigation",
                    ))
            session.commit()

        logger.info(
            f"[reconcile] sweep business={business.id} checked={report.checked} actions={len(report.actions)}",
            extra={"business_id": business.id},
        )
        return report


def backfill_missing(
    business_ref: str,
    consumer_email: str,
    provider: Optional[BillingProvider] = None,
) -> BackfillReport:
    """
    Create mirror rows for a consumer's remote subscriptions that have none.

    The plan is resolved from the first item's price within the tenant.
    Per-subscription failures are collected in the report.
    """
    with _track("backfill_missing"):
        with get_db_session() as session:
            business = _load_business(session, business_ref)
            consumer = store.find_consumer_by_email(session, consumer_email)
            if not consumer:
                raise NotFoundError(f"Consumer not found: {consumer_email}")

            active_provider = _resolve_provider(provider)
            _, per_customer = _list_consumer_subscriptions(
                active_provider, business.stripe_account_id, consumer.email
            )

            report = BackfillReport(business_id=business.id)
            for customer, subscriptions in per_customer:
                for sub in subscriptions:
                    if sub.id in report.created or store.find_subscription_by_stripe_id(session, sub.id):
                        report.skipped.append(sub.id)
                        continue
                    if not sub.price_id:
                        report.errors.append({"subscription_id": sub.id, "error": "No price found"})
                        continue
                    plan = store.find_plan_by_price(session, business.id, sub.price_id)
                    if not plan:
                        report.errors.append({
                            "subscription_id": sub.id,
                            "error": f"Plan not found for price {sub.price_id}",
                        })
                        continue
                    try:
                        store.insert_subscription(
                            session,
                            plan_id=plan.id,
                            consumer_id=consumer.id,
                            stripe_subscription_id=sub.id,
                            stripe_customer_id=sub.customer_id or customer.id,
                            status=sub.status,
                            current_period_start=sub.current_period_start,
                            current_period_end=sub.current_period_end,
                            cancel_at_period_end=sub.cancel_at_period_end,
                        )
                        session.commit()
                        report.created.append(sub.id)
                    except SQLAlchemyError as e:
                        session.rollback()
                        report.errors.append({"subscription_id": sub.id, "error": str(e)})

        logger.info(
            f"[reconcile] backfill business={business.id} created={len(report.created)} "
            f"skipped={len(report.skipped)} errors={len(report.errors)}",
            extra={"business_id": business.id},
        )
        return report
