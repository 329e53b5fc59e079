# backend/app/repositories/factory.py
"""
Repository Factory for ClassBook

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .availability_repository import AvailabilityRepository
    from .booking_repository import BookingRepository
    from .course_repository import CourseRepository
    from .credit_repository import CreditRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_base_repository(db: Session, model: Any) -> BaseRepository:
        """Create a generic base repository for any model."""
        return BaseRepository(db, model)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        """Create repository for availability rules, overrides and policy."""
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_course_repository(db: Session) -> "CourseRepository":
        """Create repository for course and enrollment lookups."""
        from .course_repository import CourseRepository

        return CourseRepository(db)

    @staticmethod
    def create_credit_repository(db: Session) -> "CreditRepository":
        """Create repository for the credit ledger."""
        from .credit_repository import CreditRepository

        return CreditRepository(db)
