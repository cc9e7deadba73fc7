"""
Local subscription mirror queries.

Plain functions over a SQLAlchemy session. Every consumer-facing query is
scoped by business (tenant) id through the plan that owns the subscription.
Writes are single statements; callers commit.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select, insert, update, or_
from sqlalchemy.engine import Row
from sqlalchemy.orm import Session

from cellarsync.core.database import (
    businesses,
    consumers,
    plans,
    plan_subscriptions,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def find_business(session: Session, business_ref: str) -> Optional[Row]:
    """Look up a tenant by id or public slug."""
    return session.execute(
        select(businesses).where(
            or_(businesses.c.id == business_ref, businesses.c.slug == business_ref)
        )
    ).first()


def find_consumer_by_email(session: Session, email: str) -> Optional[Row]:
    return session.execute(
        select(consumers).where(consumers.c.email == normalize_email(email))
    ).first()


def get_or_create_consumer(session: Session, email: str, name: Optional[str] = None) -> Row:
    consumer = find_consumer_by_email(session, email)
    if consumer:
        return consumer
    session.execute(
        insert(consumers).values(id=str(uuid4()), email=normalize_email(email), name=name)
    )
    return find_consumer_by_email(session, email)


def find_subscriptions_by_consumer(session: Session, business_id: str, consumer_id: str) -> List[Row]:
    """Mirror rows for one consumer within one tenant, with the plan name."""
    return session.execute(
        select(plan_subscriptions, plans.c.name.label("plan_name"))
        .join(plans, plans.c.id == plan_subscriptions.c.plan_id)
        .where(
            plan_subscriptions.c.consumer_id == consumer_id,
            plans.c.business_id == business_id,
        )
        .order_by(plan_subscriptions.c.created_at)
    ).fetchall()


def find_subscription_by_id(session: Session, subscription_id: str) -> Optional[Row]:
    """Mirror row plus the owning tenant's id and connected account."""
    return session.execute(
        select(
            plan_subscriptions,
            plans.c.business_id.label("business_id"),
            businesses.c.stripe_account_id.label("stripe_account_id"),
        )
        .join(plans, plans.c.id == plan_subscriptions.c.plan_id)
        .join(businesses, businesses.c.id == plans.c.business_id)
        .where(plan_subscriptions.c.id == subscription_id)
    ).first()


def find_subscription_by_stripe_id(session: Session, stripe_subscription_id: str) -> Optional[Row]:
    return session.execute(
        select(plan_subscriptions).where(
            plan_subscriptions.c.stripe_subscription_id == stripe_subscription_id
        )
    ).first()


def find_subscriptions_by_stripe_ids(session: Session, stripe_subscription_ids: List[str]) -> List[Row]:
    if not stripe_subscription_ids:
        return []
    return session.execute(
        select(plan_subscriptions).where(
            plan_subscriptions.c.stripe_subscription_id.in_(stripe_subscription_ids)
        )
    ).fetchall()


def update_subscription_status(
    session: Session,
    subscription_id: str,
    *,
    status: str,
    current_period_start: Optional[datetime],
    current_period_end: Optional[datetime],
    cancel_at_period_end: bool,
) -> None:
    """Overwrite the provider-owned fields of one mirror row."""
    now = _utcnow()
    session.execute(
        update(plan_subscriptions)
        .where(plan_subscriptions.c.id == subscription_id)
        .values(
            status=status,
            current_period_start=current_period_start,
            current_period_end=current_period_end,
            cancel_at_period_end=cancel_at_period_end,
            last_synced_at=now,
            updated_at=now,
        )
    )


def mark_subscription_canceled(session: Session, stripe_subscription_id: str) -> int:
    now = _utcnow()
    result = session.execute(
        update(plan_subscriptions)
        .where(plan_subscriptions.c.stripe_subscription_id == stripe_subscription_id)
        .values(status="canceled", last_synced_at=now, updated_at=now)
    )
    return result.rowcount


def insert_subscription(
    session: Session,
    *,
    plan_id: str,
    consumer_id: str,
    stripe_subscription_id: str,
    stripe_customer_id: Optional[str],
    status: str,
    current_period_start: Optional[datetime],
    current_period_end: Optional[datetime],
    cancel_at_period_end: bool,
) -> str:
    new_id = str(uuid4())
    session.execute(
        insert(plan_subscriptions).values(
            id=new_id,
            plan_id=plan_id,
            consumer_id=consumer_id,
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id=stripe_customer_id,
            status=status,
            current_period_start=current_period_start,
            current_period_end=current_period_end,
            cancel_at_period_end=cancel_at_period_end,
            last_synced_at=_utcnow(),
        )
    )
    return new_id


def find_plan(session: Session, plan_id: str) -> Optional[Row]:
    return session.execute(select(plans).where(plans.c.id == plan_id)).first()


def find_plan_by_price(session: Session, business_id: str, stripe_price_id: str) -> Optional[Row]:
    return session.execute(
        select(plans).where(
            plans.c.business_id == business_id,
            plans.c.stripe_price_id == stripe_price_id,
        )
    ).first()
