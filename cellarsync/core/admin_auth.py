"""
Admin authentication for reconciliation and debug routes.

Admin routes require the X-Admin-Key header to match ADMIN_KEY.
If no key is configured the routes answer 503 instead of running open.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from cellarsync.core.config import settings
from cellarsync.core.metrics import admin_auth_failures_total

logger = logging.getLogger("cellarsync.admin")


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str  # "key:<hash>"
    auth_mechanism: str = "x_admin_key"


def get_admin_key() -> Optional[str]:
    return settings.ADMIN_KEY


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """
    Verify X-Admin-Key header.
    Returns AdminActor if valid, None if not present/invalid.
    """
    expected_key = get_admin_key()
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"key:{key_hash}")


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.

    Usage:
        @router.get("/api/debug/endpoint")
        def endpoint(actor: AdminActor = Depends(require_admin)):
            ...
    """
    if not get_admin_key():
        admin_auth_failures_total.inc(labels={"reason": "unconfigured"})
        raise HTTPException(
            status_code=503,
            detail={
                "error": "Admin authentication not configured",
                "code": "admin_auth_unconfigured",
            },
        )

    actor = verify_admin_key(request)
    if not actor:
        admin_auth_failures_total.inc(labels={"reason": "invalid_key"})
        logger.warning("admin.unauthorized", extra={"path": request.url.path})
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Unauthorized: invalid or missing admin credentials",
                "code": "admin_unauthorized",
            },
        )

    return actor
