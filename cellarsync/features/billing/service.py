"""
Billing provider wiring.

Billing is enabled when a Stripe secret key is configured. Callers that
need the provider go through get_provider() so tests can patch one seam.
"""
import os
from typing import Optional

from cellarsync.core.config import settings
from cellarsync.features.billing.provider import BillingProvider, BillingProviderError
from cellarsync.features.billing.stripe_provider import StripeProvider


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(os.getenv("STRIPE_SECRET_KEY") or settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except BillingProviderError:
        return None
