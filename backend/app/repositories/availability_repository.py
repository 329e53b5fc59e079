# backend/app/repositories/availability_repository.py
"""
AvailabilityRepository - Rules, Overrides, Blocked Dates and Policy

This repository handles every availability entity of a course:
- Recurring weekly rules (soft-deactivated, never deleted)
- Specific-date slots that add or remove time
- Blocked dates
- The per-course booking policy
"""

from datetime import date
import logging
from typing import Any, List, Optional, cast

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import IntegrityConflictException
from ..models.availability import (
    BlockedDate,
    BookingPolicy,
    RecurringAvailabilityRule,
    SpecificDateSlot,
)
from .base_repository import repository_error

logger = logging.getLogger(__name__)


class AvailabilityRepository:
    """Repository for course availability entities."""

    def __init__(self, db: Session):
        """Initialize repository."""
        self.db = db
        self.logger = logging.getLogger(__name__)

    def flush(self) -> None:
        self.db.flush()

    def _add(self, entity: Any) -> Any:
        try:
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as e:
            self.logger.warning(f"Integrity error creating {type(entity).__name__}: {str(e)}")
            self.db.rollback()
            raise IntegrityConflictException(f"Integrity constraint violated: {str(e)}") from e
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {type(entity).__name__}: {str(e)}")
            self.db.rollback()
            raise repository_error(f"Failed to create {type(entity).__name__}", e) from e

    # Recurring rules

    def get_active_rules(self, course_id: str) -> List[RecurringAvailabilityRule]:
        """Active recurring rules of a course ordered by weekday and start."""
        try:
            return cast(
                List[RecurringAvailabilityRule],
                self.db.query(RecurringAvailabilityRule)
                .filter(
                    and_(
                        RecurringAvailabilityRule.course_id == course_id,
                        RecurringAvailabilityRule.is_active.is_(True),
                    )
                )
                .order_by(
                    RecurringAvailabilityRule.day_of_week, RecurringAvailabilityRule.start_time
                )
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting recurring rules: {str(e)}")
            raise repository_error("Failed to get recurring rules", e) from e

    def get_rule(self, rule_id: str) -> Optional[RecurringAvailabilityRule]:
        try:
            return self.db.get(RecurringAvailabilityRule, rule_id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting recurring rule {rule_id}: {str(e)}")
            raise repository_error("Failed to get recurring rule", e) from e

    def create_rule(self, **kwargs: Any) -> RecurringAvailabilityRule:
        return cast(RecurringAvailabilityRule, self._add(RecurringAvailabilityRule(**kwargs)))

    # Specific-date slots

    def get_specific_slots(
        self, course_id: str, start_date: date, end_date: date
    ) -> List[SpecificDateSlot]:
        """Overrides of a course within an inclusive date range."""
        try:
            return cast(
                List[SpecificDateSlot],
                self.db.query(SpecificDateSlot)
                .filter(
                    SpecificDateSlot.course_id == course_id,
                    SpecificDateSlot.date >= start_date,
                    SpecificDateSlot.date <= end_date,
                )
                .order_by(SpecificDateSlot.date, SpecificDateSlot.start_time)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting specific slots: {str(e)}")
            raise repository_error("Failed to get specific slots", e) from e

    def get_all_specific_slots(self, course_id: str) -> List[SpecificDateSlot]:
        try:
            return cast(
                List[SpecificDateSlot],
                self.db.query(SpecificDateSlot)
                .filter(SpecificDateSlot.course_id == course_id)
                .order_by(SpecificDateSlot.date, SpecificDateSlot.start_time)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting specific slots: {str(e)}")
            raise repository_error("Failed to get specific slots", e) from e

    def create_specific_slot(self, **kwargs: Any) -> SpecificDateSlot:
        return cast(SpecificDateSlot, self._add(SpecificDateSlot(**kwargs)))

    # Blocked dates

    def get_blocked_dates(
        self, course_id: str, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> List[BlockedDate]:
        """Blocked dates of a course, optionally limited to an inclusive range."""
        try:
            query = self.db.query(BlockedDate).filter(BlockedDate.course_id == course_id)
            if start_date is not None:
                query = query.filter(BlockedDate.date >= start_date)
            if end_date is not None:
                query = query.filter(BlockedDate.date <= end_date)
            return cast(List[BlockedDate], query.order_by(BlockedDate.date).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting blocked dates: {str(e)}")
            raise repository_error("Failed to get blocked dates", e) from e

    def get_blocked_date(self, course_id: str, blocked_date: date) -> Optional[BlockedDate]:
        try:
            return (
                self.db.query(BlockedDate)
                .filter(BlockedDate.course_id == course_id, BlockedDate.date == blocked_date)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting blocked date: {str(e)}")
            raise repository_error("Failed to get blocked date", e) from e

    def create_blocked_date(self, **kwargs: Any) -> BlockedDate:
        return cast(BlockedDate, self._add(BlockedDate(**kwargs)))

    # Policy

    def get_policy(self, course_id: str) -> Optional[BookingPolicy]:
        try:
            return self.db.query(BookingPolicy).filter(BookingPolicy.course_id == course_id).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting booking policy: {str(e)}")
            raise repository_error("Failed to get booking policy", e) from e

    def upsert_policy(self, course_id: str, **fields: Any) -> BookingPolicy:
        """Update the course policy in place, creating it on first write."""
        policy = self.get_policy(course_id)
        if policy is None:
            return cast(BookingPolicy, self._add(BookingPolicy(course_id=course_id, **fields)))
        try:
            for key, value in fields.items():
                setattr(policy, key, value)
            self.db.flush()
            return policy
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating booking policy: {str(e)}")
            self.db.rollback()
            raise repository_error("Failed to update booking policy", e) from e
