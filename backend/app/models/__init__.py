"""
Database models for ClassBook.

The models are organized by functionality:
- Courses and enrollments (read-only inputs from the catalog)
- Availability rules, overrides, blocked dates and booking policy
- Bookings
- Credit ledger
"""

from .availability import BlockedDate, BookingPolicy, RecurringAvailabilityRule, SpecificDateSlot
from .booking import Booking, BookingStatus
from .course import Course, CourseEnrollment, EnrollmentType
from .credit import CreditEntryType, CreditLedgerEntry

__all__ = [
    "BlockedDate",
    "Booking",
    "BookingPolicy",
    "BookingStatus",
    "Course",
    "CourseEnrollment",
    "CreditEntryType",
    "CreditLedgerEntry",
    "EnrollmentType",
    "RecurringAvailabilityRule",
    "SpecificDateSlot",
]
