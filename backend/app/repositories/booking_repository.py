# backend/app/repositories/booking_repository.py
"""
Booking Repository for ClassBook

Implements all data access operations for booking management.
Overlap queries work on the UTC instants stored on each booking so they
stay correct across midnight and daylight-saving changes.

This repository handles:
- Booking CRUD operations
- Instructor overlap queries for slot computation and reservation
- User-specific booking listings (student or instructor)
- Month windows for the personal calendar
"""

from datetime import date, datetime
import logging
from typing import List, Optional, Tuple, cast

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..models.booking import Booking, BookingStatus
from .base_repository import BaseRepository, repository_error

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        """Initialize with Booking model."""
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    # Overlap queries

    def get_scheduled_overlapping(
        self,
        instructor_id: str,
        range_start_utc: datetime,
        range_end_utc: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Scheduled bookings of an instructor intersecting ``[start, end)``.

        Callers widen the range by the buffer before querying.

        Args:
            instructor_id: The instructor ID
            range_start_utc: Range start (aware UTC)
            range_end_utc: Range end (aware UTC)
            exclude_booking_id: Optional booking to exclude

        Returns:
            Bookings ordered by start
        """
        try:
            query = self.db.query(Booking).filter(
                Booking.instructor_id == instructor_id,
                Booking.status == BookingStatus.SCHEDULED.value,
                Booking.booking_start_utc < range_end_utc,
                Booking.booking_end_utc > range_start_utc,
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return cast(List[Booking], query.order_by(Booking.booking_start_utc).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting overlapping bookings: {str(e)}")
            raise repository_error("Failed to get overlapping bookings", e) from e

    def has_scheduled_overlap(
        self, instructor_id: str, range_start_utc: datetime, range_end_utc: datetime
    ) -> bool:
        """Efficient boolean form of get_scheduled_overlapping."""
        try:
            return (
                self.db.query(Booking.id)
                .filter(
                    Booking.instructor_id == instructor_id,
                    Booking.status == BookingStatus.SCHEDULED.value,
                    Booking.booking_start_utc < range_end_utc,
                    Booking.booking_end_utc > range_start_utc,
                )
                .first()
                is not None
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking booking overlap: {str(e)}")
            raise repository_error("Failed to check overlap", e) from e

    # User listings

    def _user_query(self, user_id: str) -> Query:
        return self.db.query(Booking).filter(
            or_(Booking.student_id == user_id, Booking.instructor_id == user_id)
        )

    def get_user_bookings(
        self,
        user_id: str,
        status: Optional[BookingStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Booking], int]:
        """
        Bookings where the user is student or instructor, newest first.

        Returns:
            (page of bookings, total matching)
        """
        try:
            query = self._user_query(user_id)
            if status is not None:
                query = query.filter(Booking.status == BookingStatus(status).value)
            total = query.count()
            items = (
                query.order_by(Booking.booking_start_utc.desc(), Booking.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return cast(List[Booking], items), total
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing bookings for {user_id}: {str(e)}")
            raise repository_error("Failed to list bookings", e) from e

    def get_upcoming(self, user_id: str, now_utc: datetime, limit: int) -> List[Booking]:
        """Future scheduled bookings, soonest first."""
        try:
            return cast(
                List[Booking],
                self._user_query(user_id)
                .filter(
                    Booking.status == BookingStatus.SCHEDULED.value,
                    Booking.booking_start_utc >= now_utc,
                )
                .order_by(Booking.booking_start_utc.asc(), Booking.id.asc())
                .limit(limit)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting upcoming bookings: {str(e)}")
            raise repository_error("Failed to get upcoming bookings", e) from e

    def get_history(
        self, user_id: str, now_utc: datetime, offset: int = 0, limit: int = 20
    ) -> Tuple[List[Booking], int]:
        """Completed or cancelled bookings plus scheduled ones already started."""
        try:
            query = self._user_query(user_id).filter(
                or_(
                    Booking.status != BookingStatus.SCHEDULED.value,
                    Booking.booking_start_utc < now_utc,
                )
            )
            total = query.count()
            items = (
                query.order_by(Booking.booking_start_utc.desc(), Booking.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return cast(List[Booking], items), total
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting booking history: {str(e)}")
            raise repository_error("Failed to get booking history", e) from e

    def get_user_bookings_between(
        self, user_id: str, start_date: date, end_date: date
    ) -> List[Booking]:
        """Bookings of the user with a local date in ``[start_date, end_date]``, by start."""
        try:
            return cast(
                List[Booking],
                self._user_query(user_id)
                .filter(Booking.booking_date >= start_date, Booking.booking_date <= end_date)
                .order_by(Booking.booking_start_utc.asc(), Booking.id.asc())
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting calendar bookings for {user_id}: {str(e)}")
            raise repository_error("Failed to get calendar bookings", e) from e
