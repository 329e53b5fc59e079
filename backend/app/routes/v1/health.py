# backend/app/routes/v1/health.py
"""
Health check endpoints for monitoring and load balancer probes.
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...api.dependencies import get_cache_service_dep, get_db
from ...core.config import settings
from ...core.constants import API_VERSION, BRAND_NAME
from ...schemas.base_responses import HealthCheckResponse
from ...services.cache_service import CacheService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _database_ok(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        logger.warning("Health check database probe failed", exc_info=True)
        return False


@router.get("", response_model=HealthCheckResponse)
def health_check(
    response: Response,
    db: Session = Depends(get_db),
    cache_service: CacheService = Depends(get_cache_service_dep),
) -> HealthCheckResponse:
    """
    Health check endpoint.

    Reports "degraded" when the slot cache circuit is open and "unhealthy"
    when the database cannot be reached.
    """
    checks = {
        "database": _database_ok(db),
        "cache": cache_service.get_stats()["circuit_breaker"]["state"] != "open",
    }
    if not checks["database"]:
        status = "unhealthy"
        response.status_code = 503
    elif not checks["cache"]:
        status = "degraded"
    else:
        status = "healthy"
    response.headers["X-Environment"] = settings.environment
    return HealthCheckResponse(
        status=status,
        service=f"{BRAND_NAME.lower()}-api",
        version=API_VERSION,
        checks=checks,
    )
