# backend/app/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import bookings, health, payments, prometheus, providers

__all__ = [
    "bookings",
    "health",
    "payments",
    "prometheus",
    "providers",
]
