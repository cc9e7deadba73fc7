"""
Per-tenant billing metrics computed from the local subscription mirror.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from cellarsync.core.database import plans, plan_subscriptions

ACTIVE_STATUSES = ("active", "trialing")
CHURN_WINDOW_DAYS = 30


def monthly_amount(price_cents: int, interval: str) -> int:
    """Monthly recurring amount in cents for one subscription."""
    if interval == "month":
        return int(price_cents)
    if interval == "year":
        return int(price_cents) // 12
    return 0


def calculate_metrics(session: Session, business_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Returns:
        {
            "business_id": str,
            "mrr": int (cents),
            "active_members": int,
            "churn_rate": float (percent, 2 decimals),
            "subscription_counts": {status: count},
            "computed_at": ISO8601 str
        }
    """
    current = now or datetime.now(timezone.utc)
    tenant_subs = (
        select(plan_subscriptions)
        .join(plans, plans.c.id == plan_subscriptions.c.plan_id)
        .where(plans.c.business_id == business_id)
        .subquery()
    )

    counts = {
        status: count
        for status, count in session.execute(
            select(tenant_subs.c.status, func.count()).group_by(tenant_subs.c.status)
        ).fetchall()
    }

    active_rows = session.execute(
        select(plans.c.price_cents, plans.c.billing_interval, plan_subscriptions.c.consumer_id)
        .join(plans, plans.c.id == plan_subscriptions.c.plan_id)
        .where(
            plans.c.business_id == business_id,
            plan_subscriptions.c.status.in_(ACTIVE_STATUSES),
        )
    ).fetchall()

    mrr = sum(monthly_amount(row.price_cents, row.billing_interval) for row in active_rows)
    active_consumers = {row.consumer_id for row in active_rows}
    active_members = len(active_consumers)

    window_start = current - timedelta(days=CHURN_WINDOW_DAYS)
    canceled_consumers = {
        row.consumer_id
        for row in session.execute(
            select(tenant_subs.c.consumer_id).where(
                tenant_subs.c.status == "canceled",
                tenant_subs.c.updated_at >= window_start,
            )
        )
    }
    # Consumers still holding an active or trialing plan are not churned
    recently_canceled = len(canceled_consumers - active_consumers)

    base = active_members + recently_canceled
    churn_rate = round((recently_canceled / base) * 100, 2) if base else 0.0

    return {
        "business_id": business_id,
        "mrr": mrr,
        "active_members": active_members,
        "churn_rate": churn_rate,
        "subscription_counts": counts,
        "computed_at": current.isoformat(),
    }
