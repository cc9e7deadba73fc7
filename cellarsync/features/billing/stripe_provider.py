"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API on connected
accounts (Stripe Connect). Handles webhook signature verification.
"""
import json
import os
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import stripe

from cellarsync.core.config import settings
from cellarsync.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    RemoteCustomer,
    RemoteSubscription,
    WebhookEnvelope,
)

PAGE_SIZE = 100


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a StripeObject or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _ts(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: Any) -> Any:
    items = _field(subscription, "items")
    data = _field(items, "data") or []
    return data[0] if data else None


def to_remote_subscription(subscription: Any) -> RemoteSubscription:
    """Normalize a Stripe subscription (object or event payload dict)."""
    item = _first_item(subscription)
    # Newer API versions carry the billing period on the item
    period_start = _field(subscription, "current_period_start") or _field(item, "current_period_start")
    period_end = _field(subscription, "current_period_end") or _field(item, "current_period_end")

    customer = _field(subscription, "customer")
    if customer is not None and not isinstance(customer, str):
        customer = _field(customer, "id")

    metadata = _field(subscription, "metadata") or {}
    return RemoteSubscription(
        id=_field(subscription, "id"),
        customer_id=customer,
        status=_field(subscription, "status") or "unknown",
        current_period_start=_ts(period_start),
        current_period_end=_ts(period_end),
        cancel_at_period_end=bool(_field(subscription, "cancel_at_period_end", False)),
        created=_ts(_field(subscription, "created")),
        price_id=_field(_field(item, "price"), "id"),
        metadata=dict(metadata),
    )


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe platform secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET)
        """
        self.secret_key = secret_key or os.getenv("STRIPE_SECRET_KEY") or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET") or settings.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key
        stripe.api_version = settings.STRIPE_API_VERSION

    def list_customers_by_email(self, account_id: str, email: str) -> List[RemoteCustomer]:
        """List customers with this email on the connected account."""
        try:
            page = stripe.Customer.list(email=email, limit=PAGE_SIZE, stripe_account=account_id)
            return [
                RemoteCustomer(id=c.id, email=_field(c, "email"), name=_field(c, "name"))
                for c in page.auto_paging_iter()
            ]
        except stripe.StripeError as e:
            raise BillingProviderError(str(e)) from e

    def list_subscriptions(
        self,
        account_id: str,
        customer_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[RemoteSubscription]:
        """List subscriptions on the connected account."""
        params: Dict[str, Any] = {"limit": PAGE_SIZE, "stripe_account": account_id}
        if customer_id:
            params["customer"] = customer_id
        if status:
            params["status"] = status
        try:
            page = stripe.Subscription.list(**params)
            return [to_remote_subscription(s) for s in page.auto_paging_iter()]
        except stripe.StripeError as e:
            raise BillingProviderError(str(e)) from e

    def retrieve_subscription(self, account_id: str, subscription_id: str) -> RemoteSubscription:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, stripe_account=account_id)
        except stripe.StripeError as e:
            raise BillingProviderError(str(e)) from e
        return to_remote_subscription(subscription)

    def retrieve_customer(self, account_id: str, customer_id: str) -> RemoteCustomer:
        try:
            customer = stripe.Customer.retrieve(customer_id, stripe_account=account_id)
        except stripe.StripeError as e:
            raise BillingProviderError(str(e)) from e
        return RemoteCustomer(id=customer.id, email=_field(customer, "email"), name=_field(customer, "name"))

    def construct_event(self, headers: Dict[str, str], body: bytes) -> WebhookEnvelope:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            event = stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        payload = json.loads(body)
        account_id = (
            _field(event, "account")
            or headers.get("stripe-account")
            or headers.get("Stripe-Account")
        )
        return WebhookEnvelope(
            event_id=_field(event, "id"),
            event_type=_field(event, "type"),
            account_id=account_id,
            data_object=payload.get("data", {}).get("object", {}),
        )
