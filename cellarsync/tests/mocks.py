"""
Test doubles and seed helpers.

FakeProvider is an in-memory BillingProvider: customers and subscriptions
are keyed by connected account, and every call is recorded in `calls`.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import insert

from cellarsync.core.database import (
    businesses,
    consumers,
    get_db_session,
    memberships,
    plan_subscriptions,
    plans,
)
from cellarsync.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    RemoteCustomer,
    RemoteSubscription,
    WebhookEnvelope,
)

ACCOUNT_ID = "acct_wineclub"
PERIOD_START = datetime(2026, 9, 1, tzinfo=timezone.utc)
PERIOD_END = datetime(2026, 10, 1, tzinfo=timezone.utc)


def remote_sub(
    sub_id: str,
    customer_id: str,
    status: str = "active",
    price_id: Optional[str] = "price_monthly",
    metadata: Optional[dict] = None,
    cancel_at_period_end: bool = False,
) -> RemoteSubscription:
    return RemoteSubscription(
        id=sub_id,
        customer_id=customer_id,
        status=status,
        current_period_start=PERIOD_START,
        current_period_end=PERIOD_END,
        cancel_at_period_end=cancel_at_period_end,
        created=PERIOD_START,
        price_id=price_id,
        metadata=metadata or {},
    )


class FakeProvider:
    def __init__(self):
        self.customers: Dict[str, List[RemoteCustomer]] = {}
        self.subscriptions: Dict[str, List[RemoteSubscription]] = {}
        self.calls: List[tuple] = []
        self.fail_with: Optional[str] = None
        self.events: Dict[bytes, WebhookEnvelope] = {}

    def add_customer(self, customer_id: str, email: str, name: Optional[str] = None, account_id: str = ACCOUNT_ID):
        self.customers.setdefault(account_id, []).append(RemoteCustomer(id=customer_id, email=email, name=name))

    def add_subscription(self, sub: RemoteSubscription, account_id: str = ACCOUNT_ID):
        self.subscriptions.setdefault(account_id, []).append(sub)

    def _check(self, *call):
        self.calls.append(call)
        if self.fail_with:
            raise BillingProviderError(self.fail_with)

    def list_customers_by_email(self, account_id, email):
        self._check("list_customers_by_email", account_id, email)
        return [c for c in self.customers.get(account_id, []) if c.email == email]

    def list_subscriptions(self, account_id, customer_id=None, status=None):
        self._check("list_subscriptions", account_id, customer_id, status)
        subs = self.subscriptions.get(account_id, [])
        if customer_id:
            subs = [s for s in subs if s.customer_id == customer_id]
        if status is None:
            # Provider default listing excludes canceled subscriptions
            subs = [s for s in subs if s.status != "canceled"]
        return list(subs)

    def retrieve_subscription(self, account_id, subscription_id):
        self._check("retrieve_subscription", account_id, subscription_id)
        for sub in self.subscriptions.get(account_id, []):
            if sub.id == subscription_id:
                return sub
        raise BillingProviderError(f"No such subscription: '{subscription_id}'")

    def retrieve_customer(self, account_id, customer_id):
        self._check("retrieve_customer", account_id, customer_id)
        for customer in self.customers.get(account_id, []):
            if customer.id == customer_id:
                return customer
        raise BillingProviderError(f"No such customer: '{customer_id}'")

    def construct_event(self, headers, body):
        if headers.get("stripe-signature") != "valid":
            raise BillingWebhookError("Invalid signature: no signatures found matching the expected signature")
        return self.events[body]

    def add_event(self, body: bytes, event_id: str, event_type: str, data_object: dict, account_id: str = ACCOUNT_ID):
        self.events[body] = WebhookEnvelope(
            event_id=event_id,
            event_type=event_type,
            account_id=account_id,
            data_object=data_object,
        )

    def remote_call_count(self) -> int:
        return len(self.calls)


def seed_business(
    slug: str = "napa-cellars",
    stripe_account_id: Optional[str] = ACCOUNT_ID,
    plan_rows: Optional[List[dict]] = None,
) -> dict:
    """
    Create a business with one membership and its plans.

    Returns {"business_id", "plan_ids": {name: id}}.
    """
    business_id = str(uuid4())
    membership_id = str(uuid4())
    plan_rows = plan_rows or [
        {"name": "Monthly Reds", "stripe_price_id": "price_monthly", "price_cents": 5000, "billing_interval": "month"},
        {"name": "Annual Reserve", "stripe_price_id": "price_annual", "price_cents": 60000, "billing_interval": "year"},
    ]
    plan_ids = {}
    with get_db_session() as session:
        session.execute(insert(businesses).values(
            id=business_id,
            slug=slug,
            name=slug.replace("-", " ").title(),
            status="ONBOARDING_COMPLETE",
            stripe_account_id=stripe_account_id,
            stripe_charges_enabled=bool(stripe_account_id),
        ))
        session.execute(insert(memberships).values(id=membership_id, business_id=business_id, name="Wine Club"))
        for plan in plan_rows:
            plan_id = str(uuid4())
            plan_ids[plan["name"]] = plan_id
            session.execute(insert(plans).values(
                id=plan_id,
                business_id=business_id,
                membership_id=membership_id,
                status="active",
                **plan,
            ))
    return {"business_id": business_id, "plan_ids": plan_ids}


def seed_consumer(email: str = "alice@example.com", name: Optional[str] = "Alice") -> str:
    consumer_id = str(uuid4())
    with get_db_session() as session:
        session.execute(insert(consumers).values(id=consumer_id, email=email, name=name))
    return consumer_id


def seed_subscription(
    plan_id: str,
    consumer_id: str,
    stripe_subscription_id: str,
    status: str = "active",
    stripe_customer_id: Optional[str] = "cus_1",
    updated_at: Optional[datetime] = None,
) -> str:
    subscription_id = str(uuid4())
    values = dict(
        id=subscription_id,
        plan_id=plan_id,
        consumer_id=consumer_id,
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=stripe_customer_id,
        status=status,
    )
    if updated_at is not None:
        values["updated_at"] = updated_at
    with get_db_session() as session:
        session.execute(insert(plan_subscriptions).values(**values))
    return subscription_id
