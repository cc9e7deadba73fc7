"""
Billing provider protocol.

Defines the read interface the reconciler needs from a billing provider
(Stripe Connect today). Every call is scoped to one tenant's connected
account so tenant data never crosses accounts.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class RemoteCustomer:
    """Customer record on a connected account."""
    id: str
    email: Optional[str]
    name: Optional[str] = None


@dataclass
class RemoteSubscription:
    """Provider subscription normalized to the fields the mirror stores."""
    id: str
    customer_id: Optional[str]
    status: str  # active, past_due, canceled, trialing, unpaid, incomplete, ...
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool
    created: Optional[datetime] = None
    price_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookEnvelope:
    """Verified webhook event."""
    event_id: str
    event_type: str
    account_id: Optional[str]
    data_object: Dict[str, Any]


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer lookup by email
    - Subscription listing and retrieval
    - Webhook signature verification and parsing
    """

    def list_customers_by_email(self, account_id: str, email: str) -> List[RemoteCustomer]:
        """
        List every customer on the account with this email.

        Several customers may share one email; they are returned as-is.

        Raises:
            BillingProviderError: If the provider call fails
        """
        ...

    def list_subscriptions(
        self,
        account_id: str,
        customer_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[RemoteSubscription]:
        """
        List subscriptions on the account, optionally for one customer.

        Args:
            status: Provider status filter ("all" includes canceled)

        Raises:
            BillingProviderError: If the provider call fails
        """
        ...

    def retrieve_subscription(self, account_id: str, subscription_id: str) -> RemoteSubscription:
        """
        Raises:
            BillingProviderError: If the provider call fails
        """
        ...

    def retrieve_customer(self, account_id: str, customer_id: str) -> RemoteCustomer:
        """
        Raises:
            BillingProviderError: If the provider call fails
        """
        ...

    def construct_event(self, headers: Dict[str, str], body: bytes) -> WebhookEnvelope:
        """
        Verify webhook signature and parse event.

        Args:
            headers: HTTP headers (must include signature header)
            body: Raw webhook body (for signature verification)

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    pass
