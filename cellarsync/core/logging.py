"""
Logging for cellarsync.

Every record carries the request id of the HTTP request (or CLI run) that
produced it. Reconciliation and webhook code attach the tenant, Stripe
account, subscription and event they touched through `extra=`; those
fields are lifted into the output:

- production: one JSON object per line
- development: one compact line, domain fields as short key=value pairs
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Domain fields promoted from `extra=`, in display order, with their short names
RECORD_FIELDS = {
    "business_id": "biz",
    "account_id": "acct",
    "subscription_id": "sub",
    "event_id": "evt",
    "event_type": "type",
    "error_code": "code",
}


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for bound, label in ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms")):
        if latency_ms < bound:
            return label
    return ">=1000ms"


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


def _record_fields(record: logging.LogRecord) -> Dict[str, object]:
    return {
        key: getattr(record, key)
        for key in RECORD_FIELDS
        if getattr(record, key, None) is not None
    }


class RequestIdFilter(logging.Filter):
    """Fill request_id from context when the caller did not pass one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(_record_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_timestamp(record), record.levelname, record.name]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{RECORD_FIELDS[key]}={value}" for key, value in _record_fields(record).items())
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development", level: str = "INFO") -> None:
    """Install the cellarsync handler: JSON in production, pretty otherwise."""
    logger = logging.getLogger("cellarsync")
    logger.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).propagate = False
    # The Stripe SDK logs every request at INFO when STRIPE_LOG is set
    logging.getLogger("stripe").setLevel(logging.WARNING)


def _truncate(value, limit: int = 500) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    business_id: Optional[str] = None,
    account_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    event_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Log a named reconciliation or webhook event with its domain fields."""
    logger = logging.getLogger("cellarsync")
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields = {
        "business_id": business_id,
        "account_id": account_id,
        "subscription_id": subscription_id,
        "event_id": event_id,
        "event_type": event_type,
        "error_code": error_code,
    }
    payload: Dict[str, object] = {"request_id": get_request_id()}
    payload.update({key: value for key, value in fields.items() if value is not None})
    for key, value in (extra or {}).items():
        payload[key] = _truncate(value)

    getattr(logger, level, logger.info)(msg, extra=payload)
