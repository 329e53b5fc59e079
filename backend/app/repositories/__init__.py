# backend/app/repositories/__init__.py
"""
Repository Pattern Implementation for ClassBook

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- RepositoryFactory: Factory for creating repository instances
- AvailabilityRepository: Recurring rules, date overrides, blocked dates, policy
- BookingRepository: Booking overlap queries and user listings
- CourseRepository: Course and enrollment lookups
- CreditRepository: Append-only credit ledger

Usage:
    from app.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_booking_repository(db)
    bookings = repository.get_scheduled_overlapping(instructor_id, start_utc, end_utc)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .course_repository import CourseRepository
from .credit_repository import CreditRepository
from .factory import RepositoryFactory

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "BookingRepository",
    "CourseRepository",
    "CreditRepository",
    "RepositoryFactory",
]
