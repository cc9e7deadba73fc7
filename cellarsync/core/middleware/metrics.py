from starlette.middleware.base import BaseHTTPMiddleware

from cellarsync.core.metrics import http_requests_total, normalize_path, route_family


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count requests per route family (admin, webhook, health, metrics)."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        path = request.url.path
        http_requests_total.inc(labels={
            "family": route_family(path),
            "method": request.method.upper(),
            "path": normalize_path(path),
            "status": str(response.status_code),
        })
        return response
