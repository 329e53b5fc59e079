# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache
import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.availability_service import AvailabilityService
from ...services.booking_service import BookingService
from ...services.cache_service import CacheService, get_cache_service
from ...services.credit_service import CreditService
from ...services.room_access_service import RoomAccessService
from ...services.slot_engine import Clock
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_cache_service_singleton() -> CacheService:
    """Get singleton cache service instance."""
    return get_cache_service()


def get_cache_service_dep() -> CacheService:
    """Get cache service instance for dependency injection."""
    return get_cache_service_singleton()


def get_clock() -> Optional[Clock]:
    """Clock used for booking windows; None means the wall clock."""
    return None


def get_availability_service(
    db: Session = Depends(get_db),
    cache_service: CacheService = Depends(get_cache_service_dep),
    clock: Optional[Clock] = Depends(get_clock),
) -> AvailabilityService:
    return AvailabilityService(db, cache_service=cache_service, clock=clock)


def get_booking_service(
    db: Session = Depends(get_db),
    cache_service: CacheService = Depends(get_cache_service_dep),
    clock: Optional[Clock] = Depends(get_clock),
) -> BookingService:
    """
    Get booking service instance with all dependencies.

    Args:
        db: Database session
        cache_service: Cache service for slot invalidation
        clock: Optional clock override

    Returns:
        BookingService instance
    """
    return BookingService(db, cache_service=cache_service, clock=clock)


def get_credit_service(db: Session = Depends(get_db)) -> CreditService:
    return CreditService(db)


def get_room_access_service(db: Session = Depends(get_db)) -> RoomAccessService:
    return RoomAccessService(db)
