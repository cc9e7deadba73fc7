"""
Tests for per-business billing metrics.
"""
from datetime import datetime, timedelta, timezone

from cellarsync.core.database import get_db_session
from cellarsync.features.metrics.service import calculate_metrics, monthly_amount
from cellarsync.tests.mocks import seed_business, seed_consumer, seed_subscription

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def test_monthly_amount_normalizes_yearly_prices():
    assert monthly_amount(5000, "month") == 5000
    assert monthly_amount(60000, "year") == 5000
    assert monthly_amount(1000, "week") == 0


def test_empty_business_has_zero_metrics():
    seeded = seed_business()

    with get_db_session() as session:
        result = calculate_metrics(session, seeded["business_id"], now=NOW)

    assert result["mrr"] == 0
    assert result["active_members"] == 0
    assert result["churn_rate"] == 0.0
    assert result["subscription_counts"] == {}
    assert result["computed_at"] == NOW.isoformat()


def test_mrr_active_members_and_churn():
    seeded = seed_business()
    monthly = seeded["plan_ids"]["Monthly Reds"]
    annual = seeded["plan_ids"]["Annual Reserve"]
    alice = seed_consumer("alice@example.com")
    bob = seed_consumer("bob@example.com")
    carol = seed_consumer("carol@example.com")
    dave = seed_consumer("dave@example.com")

    seed_subscription(monthly, alice, "sub_1", status="active")
    seed_subscription(annual, alice, "sub_2", status="trialing")
    seed_subscription(monthly, bob, "sub_3", status="past_due")
    seed_subscription(monthly, carol, "sub_4", status="canceled", updated_at=NOW - timedelta(days=3))
    seed_subscription(monthly, dave, "sub_5", status="canceled", updated_at=NOW - timedelta(days=90))

    with get_db_session() as session:
        result = calculate_metrics(session, seeded["business_id"], now=NOW)

    assert result["mrr"] == 5000 + 5000
    assert result["active_members"] == 1
    # one recent cancellation over (1 active + 1 canceled)
    assert result["churn_rate"] == 50.0
    assert result["subscription_counts"] == {"active": 1, "trialing": 1, "past_due": 1, "canceled": 2}


def test_metrics_are_scoped_to_business():
    first = seed_business()
    other = seed_business(slug="sonoma-club", stripe_account_id="acct_other")
    alice = seed_consumer("alice@example.com")
    seed_subscription(other["plan_ids"]["Monthly Reds"], alice, "sub_other", status="active")

    with get_db_session() as session:
        result = calculate_metrics(session, first["business_id"], now=NOW)

    assert result["mrr"] == 0
    assert result["active_members"] == 0


def test_member_who_switched_plans_is_not_churned():
    seeded = seed_business()
    alice = seed_consumer("alice@example.com")
    bob = seed_consumer("bob@example.com")
    seed_subscription(seeded["plan_ids"]["Monthly Reds"], alice, "sub_old", status="canceled",
                      updated_at=NOW - timedelta(days=2))
    seed_subscription(seeded["plan_ids"]["Annual Reserve"], alice, "sub_new", status="active")
    seed_subscription(seeded["plan_ids"]["Monthly Reds"], bob, "sub_bob", status="canceled",
                      updated_at=NOW - timedelta(days=5))

    with get_db_session() as session:
        result = calculate_metrics(session, seeded["business_id"], now=NOW)

    assert result["active_members"] == 1
    # only bob churned: 1 / (1 active + 1 canceled)
    assert result["churn_rate"] == 50.0
