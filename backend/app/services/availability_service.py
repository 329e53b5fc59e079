# backend/app/services/availability_service.py
"""
Availability Service for ClassBook

Owns the instructor-facing availability store of a course: weekly rules,
specific-date overrides, blocked dates and the booking policy. Every write
is restricted to the course's instructor and invalidates cached slots.

Also serves the public slot query, going through the slot cache.
"""

from dataclasses import dataclass
from datetime import date, time, timedelta
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy.orm import Session
import pytz

from ..core.exceptions import (
    IntegrityConflictException,
    InvalidPolicyException,
    NotFoundException,
    UnauthorizedActionException,
    ValidationException,
)
from ..models.availability import (
    BlockedDate,
    BookingPolicy,
    RecurringAvailabilityRule,
    SpecificDateSlot,
)
from ..models.course import Course
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .slot_engine import Clock, EffectivePolicy, Slot, SlotComputationEngine, window_minutes

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

POLICY_FIELDS = (
    "min_advance_booking_hours",
    "max_advance_booking_days",
    "slot_duration_hours",
    "buffer_time_minutes",
    "timezone",
)


def validate_window(start_time: time, end_time: time) -> None:
    """Reject windows that end before they start (00:00 as end means midnight)."""
    start, end = window_minutes(start_time, end_time)
    if end <= start:
        raise ValidationException(
            "end_time must be after start_time",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )


def is_whole_minutes(hours: float) -> bool:
    minutes = hours * 60
    return round(minutes) >= 1 and abs(minutes - round(minutes)) < 1e-6


def validate_policy_fields(fields: Dict[str, Any]) -> None:
    """
    Range checks for policy values.

    Raises:
        InvalidPolicyException: on the first out-of-range value
    """
    slot_duration = fields.get("slot_duration_hours")
    if slot_duration is not None and slot_duration <= 0:
        raise InvalidPolicyException(
            "slot_duration_hours must be greater than 0",
            field="slot_duration_hours",
            value=slot_duration,
        )
    if slot_duration is not None and not is_whole_minutes(slot_duration):
        raise InvalidPolicyException(
            "slot_duration_hours must be a whole number of minutes",
            field="slot_duration_hours",
            value=slot_duration,
        )
    min_advance = fields.get("min_advance_booking_hours")
    if min_advance is not None and min_advance < 0:
        raise InvalidPolicyException(
            "min_advance_booking_hours cannot be negative",
            field="min_advance_booking_hours",
            value=min_advance,
        )
    max_advance = fields.get("max_advance_booking_days")
    if max_advance is not None and max_advance < 1:
        raise InvalidPolicyException(
            "max_advance_booking_days must be at least 1",
            field="max_advance_booking_days",
            value=max_advance,
        )
    buffer = fields.get("buffer_time_minutes")
    if buffer is not None and buffer < 0:
        raise InvalidPolicyException(
            "buffer_time_minutes cannot be negative", field="buffer_time_minutes", value=buffer
        )
    tz_name = fields.get("timezone")
    if tz_name is not None and tz_name not in pytz.all_timezones_set:
        raise InvalidPolicyException(
            f"Unknown timezone: {tz_name}", field="timezone", value=tz_name
        )


@dataclass(frozen=True)
class CourseSlot:
    """A bookable slot tagged with the course that offers it."""

    course_id: str
    timezone: str
    slot: Slot

    def to_dict(self) -> Dict[str, str]:
        return {**self.slot.to_dict(), "course_id": self.course_id, "timezone": self.timezone}


@dataclass(frozen=True)
class InstructorCalendar:
    instructor_id: str
    year: int
    month: int
    # Every date of the month, empty when nothing is bookable
    days: Dict[date, List[CourseSlot]]


class AvailabilityService(BaseService):
    """
    Service layer for course availability.

    Validation happens before any repository access; authorization needs
    the course and therefore follows it.
    """

    def __init__(
        self,
        db: Session,
        cache_service: Optional["CacheService"] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, cache=cache_service)
        self.logger = logging.getLogger(__name__)
        self.repository = RepositoryFactory.create_availability_repository(db)
        self.course_repository = RepositoryFactory.create_course_repository(db)
        self.slot_engine = SlotComputationEngine(db, clock=clock)

    # Helpers

    def _get_owned_course(self, actor_id: str, course_id: str) -> Course:
        course = self.course_repository.get_by_id(course_id, load_relationships=False)
        if course is None:
            raise NotFoundException("Course not found", details={"course_id": course_id})
        if course.instructor_id != actor_id:
            self.logger.warning(
                "Availability change rejected",
                extra={"actor_id": actor_id, "course_id": course_id},
            )
            raise UnauthorizedActionException(
                "Only the course instructor can manage its availability",
                details={"course_id": course_id},
            )
        return course

    def _invalidate_course(self, course_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate_course_slots(course_id)

    # Writes

    @BaseService.measure_operation("add_recurring_rule")
    def add_recurring_rule(
        self,
        actor_id: str,
        course_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
    ) -> RecurringAvailabilityRule:
        """
        Add a weekly window. Overlap with existing rules is allowed;
        overlapping windows are unioned when slots are computed.
        """
        if not 0 <= day_of_week <= 6:
            raise ValidationException(
                "day_of_week must be between 0 (Sunday) and 6 (Saturday)",
                details={"day_of_week": day_of_week},
            )
        validate_window(start_time, end_time)

        course = self._get_owned_course(actor_id, course_id)
        with self.transaction():
            rule = self.repository.create_rule(
                course_id=course.id,
                instructor_id=course.instructor_id,
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                is_active=True,
            )

        self._invalidate_course(course_id)
        self.log_operation(
            "add_recurring_rule", course_id=course_id, rule_id=rule.id, day_of_week=day_of_week
        )
        return rule

    @BaseService.measure_operation("deactivate_recurring_rule")
    def deactivate_recurring_rule(
        self, actor_id: str, rule_id: str, course_id: Optional[str] = None
    ) -> RecurringAvailabilityRule:
        """Soft-delete a weekly rule; deactivating twice is a no-op."""
        rule = self.repository.get_rule(rule_id)
        if rule is None or (course_id is not None and rule.course_id != course_id):
            raise NotFoundException("Recurring rule not found", details={"rule_id": rule_id})
        self._get_owned_course(actor_id, rule.course_id)

        if rule.is_active:
            with self.transaction():
                rule.deactivate()
                self.repository.flush()
            self._invalidate_course(rule.course_id)
            self.log_operation(
                "deactivate_recurring_rule", course_id=rule.course_id, rule_id=rule_id
            )
        return rule

    @BaseService.measure_operation("add_specific_slot")
    def add_specific_slot(
        self,
        actor_id: str,
        course_id: str,
        slot_date: date,
        start_time: time,
        end_time: time,
        is_available: bool = True,
        reason: Optional[str] = None,
    ) -> SpecificDateSlot:
        """Add or remove time on one date."""
        validate_window(start_time, end_time)

        course = self._get_owned_course(actor_id, course_id)
        with self.transaction():
            slot = self.repository.create_specific_slot(
                course_id=course.id,
                instructor_id=course.instructor_id,
                date=slot_date,
                start_time=start_time,
                end_time=end_time,
                is_available=is_available,
                reason=reason,
            )

        self._invalidate_course(course_id)
        self.log_operation(
            "add_specific_slot",
            course_id=course_id,
            date=slot_date.isoformat(),
            is_available=is_available,
        )
        return slot

    @BaseService.measure_operation("block_date")
    def block_date(
        self, actor_id: str, course_id: str, blocked_date: date, reason: Optional[str] = None
    ) -> BlockedDate:
        """Block a whole date. Blocking an already blocked date returns the existing entry."""
        course = self._get_owned_course(actor_id, course_id)

        existing = self.repository.get_blocked_date(course_id, blocked_date)
        if existing is not None:
            return existing

        try:
            with self.transaction():
                blocked = self.repository.create_blocked_date(
                    course_id=course.id,
                    instructor_id=course.instructor_id,
                    date=blocked_date,
                    reason=reason,
                )
        except IntegrityConflictException:
            # A concurrent request blocked the same date first
            existing = self.repository.get_blocked_date(course_id, blocked_date)
            if existing is None:
                raise
            return existing

        self._invalidate_course(course_id)
        self.log_operation("block_date", course_id=course_id, date=blocked_date.isoformat())
        return blocked

    @BaseService.measure_operation("update_policy")
    def update_policy(self, actor_id: str, course_id: str, **fields: Any) -> BookingPolicy:
        """
        Update the booking policy. Omitted (None) fields keep their
        current effective value.

        Raises:
            InvalidPolicyException: before any storage access
        """
        updates = {k: v for k, v in fields.items() if k in POLICY_FIELDS and v is not None}
        validate_policy_fields(updates)

        self._get_owned_course(actor_id, course_id)
        current = self.slot_engine.resolve_policy(course_id).to_dict()
        current.update(updates)

        with self.transaction():
            policy = self.repository.upsert_policy(course_id, **current)

        self._invalidate_course(course_id)
        self.log_operation("update_policy", course_id=course_id, **updates)
        return policy

    # Reads

    @BaseService.measure_operation("get_availability")
    def get_availability(self, actor_id: str, course_id: str) -> Dict[str, Any]:
        """Everything the instructor has configured for a course."""
        self._get_owned_course(actor_id, course_id)
        return {
            "course_id": course_id,
            "recurring_rules": self.repository.get_active_rules(course_id),
            "specific_slots": self.repository.get_all_specific_slots(course_id),
            "blocked_dates": self.repository.get_blocked_dates(course_id),
            "policy": self.get_policy(course_id),
        }

    def get_policy(self, course_id: str) -> EffectivePolicy:
        return self.slot_engine.resolve_policy(course_id)

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(
        self,
        course_id: str,
        instructor_id: Optional[str],
        start_date: date,
        end_date: date,
    ) -> List[Slot]:
        """Public slot query, served from the slot cache when possible."""
        self.slot_engine.validate_range(start_date, end_date)
        if self.cache is not None:
            cached = self.cache.get_slots(course_id, start_date, end_date)
            if cached is not None:
                # Cache keys ignore the instructor; keep the mismatch check
                self.slot_engine.get_offered_course(course_id, instructor_id)
                return [Slot.from_dict(item) for item in cached]

        slots = self.slot_engine.compute_slots(course_id, instructor_id, start_date, end_date)
        if self.cache is not None:
            self.cache.cache_slots(course_id, start_date, end_date, [s.to_dict() for s in slots])
        return slots

    @BaseService.measure_operation("get_instructor_slots")
    def get_instructor_slots(
        self, instructor_id: str, start_date: date, end_date: date
    ) -> List[CourseSlot]:
        """
        Union of the bookable slots of every active course of an instructor,
        sorted by date, start time and course.

        Raises:
            ValidationException: bad or oversized range
            NotFoundException: the instructor offers no active course
        """
        self.slot_engine.validate_range(start_date, end_date)
        courses = self.course_repository.get_active_courses_for_instructor(instructor_id)
        if not courses:
            raise NotFoundException(
                "No course is offered by this instructor",
                details={"instructor_id": instructor_id},
            )

        combined: List[CourseSlot] = []
        for course in courses:
            tz_name = self.get_policy(course.id).timezone
            for slot in self.get_available_slots(course.id, instructor_id, start_date, end_date):
                combined.append(CourseSlot(course.id, tz_name, slot))
        combined.sort(key=lambda item: (item.slot.date, item.slot.start_time, item.course_id))
        return combined

    @BaseService.measure_operation("get_instructor_calendar")
    def get_instructor_calendar(
        self, instructor_id: str, year: int, month: int
    ) -> InstructorCalendar:
        """Public month view of an instructor's bookable slots, grouped by date."""
        start_date, end_date = self.slot_engine.month_range(year, month)
        days: Dict[date, List[CourseSlot]] = {}
        day = start_date
        while day <= end_date:
            days[day] = []
            day += timedelta(days=1)
        for item in self.get_instructor_slots(instructor_id, start_date, end_date):
            days[item.slot.date].append(item)
        return InstructorCalendar(
            instructor_id=instructor_id, year=year, month=month, days=days
        )
