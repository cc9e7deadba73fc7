"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (in-memory SQLite)
- Table definitions for the local subscription mirror
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index, ForeignKey, UniqueConstraint
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import logging
import os

from cellarsync.core.config import settings


logger = logging.getLogger("cellarsync")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
            session.commit()
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Tenants (onboarded merchants)
businesses = Table(
    'businesses',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('slug', String(100), nullable=False, unique=True),
    Column('name', String(255), nullable=False),
    Column('status', String(50), nullable=False, default='PENDING'),
    Column('stripe_account_id', String(100), nullable=True, unique=True),
    Column('stripe_charges_enabled', Boolean, nullable=False, default=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_businesses_status', 'status'),
)

memberships = Table(
    'memberships',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False, index=True),
    Column('name', String(255), nullable=False),
    Column('status', String(50), nullable=False, default='active'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

plans = Table(
    'plans',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False, index=True),
    Column('membership_id', String(36), ForeignKey('memberships.id'), nullable=False, index=True),
    Column('name', String(255), nullable=False),
    Column('stripe_price_id', String(100), nullable=True, index=True),
    Column('price_cents', Integer, nullable=False, default=0),
    Column('currency', String(3), nullable=False, default='usd'),
    Column('billing_interval', String(10), nullable=False, default='month'),  # month, year
    Column('status', String(20), nullable=False, default='draft'),  # draft, active, archived
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

consumers = Table(
    'consumers',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('email', String(255), nullable=False, unique=True),
    Column('name', String(255), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Local mirror of one Stripe subscription
plan_subscriptions = Table(
    'plan_subscriptions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('plan_id', String(36), ForeignKey('plans.id'), nullable=False, index=True),
    Column('consumer_id', String(36), ForeignKey('consumers.id'), nullable=False, index=True),
    Column('stripe_subscription_id', String(100), nullable=False, unique=True),
    Column('stripe_customer_id', String(100), nullable=True, index=True),
    Column('status', String(50), nullable=False),  # Stripe vocabulary: active, past_due, canceled, ...
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, default=False),
    Column('last_synced_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_plan_subscriptions_status', 'status'),
)

# Inbound Stripe webhook audit log (append-only)
webhook_events = Table(
    'webhook_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False),
    Column('type', String(100), nullable=False, index=True),
    Column('account_id', String(100), nullable=True),
    Column('signature_valid', Boolean, nullable=False, default=False),
    Column('processed', Boolean, nullable=False, default=False),
    Column('processing_error', Text, nullable=True),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of raw body
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    UniqueConstraint('stripe_event_id', name='uq_webhook_events_stripe_id'),
    Index('idx_webhook_events_processed', 'processed'),
)
