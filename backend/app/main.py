# backend/app/main.py
"""
FastAPI application for the marketplace payments core.

Mounts the v1 API, the unversioned health check and the Prometheus
scrape endpoint, and wires request-id logging and HTTP metrics.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.routing import APIRoute

from .core.config import settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_V1_PREFIX, API_VERSION, BRAND_NAME
from .core.request_context import attach_request_id_filter
from .middleware.performance import PerformanceMiddleware
from .middleware.prometheus_middleware import PrometheusMiddleware
from .routes.v1 import (
    bookings as bookings_v1,
    health as health_v1,
    payments as payments_v1,
    prometheus as prometheus_v1,
    providers as providers_v1,
)

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
attach_request_id_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{BRAND_NAME} API starting up...")
    logger.info(f"Environment: {settings.environment}")
    if not settings.stripe_configured:
        logger.warning("Stripe secret key not configured - payment calls will fail")
    yield
    logger.info(f"{BRAND_NAME} API shutting down...")


def _unique_operation_id(route: APIRoute) -> str:
    methods = "_".join(sorted(m.lower() for m in route.methods or []))
    path = route.path_format.replace("/", "_").replace("{", "").replace("}", "").strip("_")
    name = (route.name or "operation").lower().replace(" ", "_")
    return f"{methods}__{path}__{name}".strip("_")


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
    generate_unique_id_function=_unique_operation_id,
)

# Register unified error envelope handlers
from .errors import register_error_handlers  # noqa: E402

register_error_handlers(app)

# Outermost last: request id must be bound before metrics and handlers run
app.add_middleware(PrometheusMiddleware)
app.add_middleware(PerformanceMiddleware)

# Create API v1 router
api_v1 = APIRouter(prefix=API_V1_PREFIX)
api_v1.include_router(payments_v1.router, prefix="/payments")
api_v1.include_router(providers_v1.router, prefix="/providers")
api_v1.include_router(bookings_v1.router, prefix="/bookings")

app.include_router(api_v1)
app.include_router(health_v1.router)
app.include_router(prometheus_v1.router, prefix="/metrics")
