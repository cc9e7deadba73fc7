import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

# Load env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from cellarsync.core.config import settings, validate_config
from cellarsync.core.logging import configure_logging
from cellarsync.core.middleware.request_id import RequestIdMiddleware
from cellarsync.core.middleware.metrics import MetricsMiddleware
from cellarsync.core.validation import validate_env
from cellarsync.core.cache import build_cache
from cellarsync.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from cellarsync.api import business_metrics, health, metrics, sync, webhooks

configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("cellarsync")
    logger.info("Starting CellarSync...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("cellarsync").info("Stopping CellarSync...")


app = FastAPI(title="CellarSync - subscription reconciliation", lifespan=lifespan)

# Per-app billing metrics cache
app.state.metrics_cache = build_cache(settings)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(sync.router)
app.include_router(webhooks.router)
app.include_router(business_metrics.router)
app.include_router(health.router)
app.include_router(health.root_router)
app.include_router(metrics.router)

