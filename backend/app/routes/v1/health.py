# backend/app/routes/v1/health.py
"""
Health check endpoint for monitoring and load balancer checks.
"""

import logging

from fastapi import APIRouter, Response

from app.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(response: Response) -> dict[str, str]:
    """Liveness check. Does not touch the database, Redis or Stripe."""
    response.headers["X-Environment"] = settings.environment
    return {"status": "ok"}
