"""Response and request models shared by the admin/debug routes.

Wire keys are camelCase to match the dashboard clients.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DatabaseSubscription(CamelModel):
    id: str
    status: str
    plan: Optional[str] = None


class DatabaseSection(CamelModel):
    count: int
    subscriptions: List[DatabaseSubscription]


class StripeSubscription(CamelModel):
    subscription_id: str
    customer_id: Optional[str] = None
    status: str
    in_database: bool
    created: Optional[datetime] = None


class StripeSection(CamelModel):
    customer_count: int
    subscription_count: int
    duplicate_customer_ids: List[str] = []
    subscriptions: List[StripeSubscription]


class SyncCheckResponse(CamelModel):
    email: str
    business_id: str
    database: DatabaseSection
    stripe: StripeSection
    missing: List[StripeSubscription]


class SyncSubscriptionRequest(CamelModel):
    subscription_id: Optional[str] = None


class SyncSubscriptionResponse(CamelModel):
    success: bool
    before: str
    after: str
    stripe_status: str


class SweepActionModel(CamelModel):
    action: str
    subscription_id: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None


class SweepResponse(CamelModel):
    success: bool
    business_id: str
    checked: int
    unchanged: int
    total_actions: int
    results: List[SweepActionModel]


class BackfillRequest(CamelModel):
    business: str = Field(..., description="Business id or slug")
    email: str


class BackfillDetails(CamelModel):
    created: List[str]
    skipped: List[str]
    errors: List[Dict[str, str]]


class BackfillResponse(CamelModel):
    success: bool
    created: int
    skipped: int
    errors: int
    details: BackfillDetails
