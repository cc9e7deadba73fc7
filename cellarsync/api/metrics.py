"""
Prometheus scrape endpoint.

Counters are process-local. The webhook backlog gauge is read from
webhook_events on every scrape:

- pending: recorded, not yet processed
- failed: handler raised, waiting for Stripe to redeliver
"""
import logging

from fastapi import APIRouter, Response
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from cellarsync.core.database import get_db_session, webhook_events
from cellarsync.core.metrics import METRICS, webhook_events_backlog

logger = logging.getLogger("cellarsync.api.metrics")

router = APIRouter(tags=["metrics"])


def refresh_webhook_backlog() -> None:
    try:
        with get_db_session() as session:
            rows = session.execute(
                select(webhook_events.c.processing_error.is_(None), func.count())
                .where(webhook_events.c.processed.is_(False))
                .group_by(webhook_events.c.processing_error.is_(None))
            ).fetchall()
    except SQLAlchemyError as e:
        logger.warning(f"[metrics] webhook backlog unavailable: {e}")
        return

    counts = {"pending": 0, "failed": 0}
    for no_error, count in rows:
        counts["pending" if no_error else "failed"] += count
    for state, count in counts.items():
        webhook_events_backlog.set(count, labels={"state": state})


@router.get("/metrics")
def metrics_endpoint():
    refresh_webhook_backlog()
    return Response(content=METRICS.export_prometheus(), media_type="text/plain; version=0.0.4")
