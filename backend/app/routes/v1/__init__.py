# backend/app/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1, plus the unversioned /metrics
endpoint.
"""

from . import availability, bookings, credits, health, prometheus

__all__ = [
    "availability",
    "bookings",
    "credits",
    "health",
    "prometheus",
]
