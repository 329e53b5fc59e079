# backend/app/services/booking_service.py
"""
Booking Service for ClassBook

Coordinates every booking write. A reservation re-computes the requested
slot, checks the student's balance and then, under the per-instructor-date
and per-student locks, inserts the booking and its ledger debit in one
transaction. The partial unique index and an in-transaction overlap check
keep the invariant even without the locks.

Cancellation and completion are restricted to the booking's participants;
a refund is a compensating ledger entry written with the status change.
"""

from dataclasses import dataclass
from datetime import date, time, timedelta
from decimal import Decimal
import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.booking_lock import ledger_lock_key, reservation_lock, slot_lock_key
from ..core.config import settings
from ..core.constants import ATTENDANCE_OPENS_MINUTES, DEFAULT_UPCOMING_LIMIT
from ..core.exceptions import (
    InsufficientCreditsException,
    IntegrityConflictException,
    NotFoundException,
    RepositoryException,
    SlotNoLongerAvailableException,
    TransientFailureException,
    UnauthorizedActionException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, local_datetime
from ..models.booking import Booking, BookingStatus
from ..models.course import Course
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.credit_repository import to_credits
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .credit_service import CreditService
from .refund_policy_engine import RefundPolicyEngine
from .slot_engine import Clock, EffectivePolicy, Slot, SlotComputationEngine, time_to_minutes

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationResult:
    booking: Booking
    refunded: bool
    credits_refunded: Decimal
    policy_basis: str = ""


@dataclass(frozen=True)
class UserCalendar:
    """Bookings of one calendar month with per-status counts."""

    year: int
    month: int
    events: List[Booking]
    summary: Dict[str, int]


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Business failures are raised to the caller unchanged and never retried.
    """

    def __init__(
        self,
        db: Session,
        cache_service: Optional["CacheService"] = None,
        clock: Optional[Clock] = None,
        refund_policy: Optional[RefundPolicyEngine] = None,
    ):
        super().__init__(db, cache=cache_service)
        self.logger = logging.getLogger(__name__)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.course_repository = RepositoryFactory.create_course_repository(db)
        self.credit_service = CreditService(db)
        self.slot_engine = SlotComputationEngine(db, clock=clock)
        self.refund_policy = refund_policy or RefundPolicyEngine()

    # Helpers

    def _booking_cost(self, course: Course, policy: EffectivePolicy, student_id: str) -> Decimal:
        """Credits charged for one slot; full-course students pay nothing."""
        enrollment = self.course_repository.get_enrollment(course.id, student_id)
        if enrollment is not None and enrollment.is_full_course:
            return Decimal("0.00")
        price = course.price_per_hour
        if price is None:
            price = settings.default_price_per_hour
        return to_credits(Decimal(str(price)) * Decimal(str(policy.slot_duration_hours)))

    def _find_offered_slot(self, course: Course, booking_date: date, start: time) -> Slot:
        slots = self.slot_engine.compute_slots(
            course.id, course.instructor_id, booking_date, booking_date
        )
        for slot in slots:
            if slot.start_time == start:
                return slot
        raise SlotNoLongerAvailableException(
            details={
                "course_id": course.id,
                "date": booking_date.isoformat(),
                "start_time": start.strftime("%H:%M"),
            }
        )

    def _get_participant_booking(self, actor_id: str, booking_id: str) -> Booking:
        booking = self.repository.get_by_id(booking_id, load_relationships=False)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        if not booking.is_participant(actor_id):
            raise UnauthorizedActionException(
                "You are not a participant of this booking", details={"booking_id": booking_id}
            )
        return booking

    def _invalidate_instructor_slots(self, booking: Booking) -> None:
        """
        Drop cached slots of every course the instructor teaches, since a
        booking occupies the instructor rather than one course.
        """
        if self.cache is None:
            return
        course_ids = {booking.course_id}
        try:
            courses = self.course_repository.get_active_courses_for_instructor(
                booking.instructor_id
            )
        except (RepositoryException, TransientFailureException) as exc:
            # Committed already; stale entries expire with the cache TTL
            self.logger.warning(
                "Could not list instructor courses for cache invalidation: %s",
                exc,
                extra={"instructor_id": booking.instructor_id},
            )
            courses = []
        course_ids.update(course.id for course in courses)
        for course_id in sorted(course_ids):
            self.cache.invalidate_course_slots(course_id)

    # Reservation

    @BaseService.measure_operation("reserve_slot")
    def reserve_slot(
        self, student_id: str, course_id: str, booking_date: date, start_time: time
    ) -> Booking:
        """
        Reserve one offered slot and debit its cost.

        Raises:
            NotFoundException: course unknown or withdrawn
            ValidationException: instructor booking their own course
            SlotNoLongerAvailableException: slot not offered or taken concurrently
            InsufficientCreditsException: balance below cost, nothing written
            TransientFailureException: lock or database temporarily unavailable
        """
        requested = time(start_time.hour, start_time.minute)
        self.log_operation(
            "reserve_slot",
            student_id=student_id,
            course_id=course_id,
            date=booking_date.isoformat(),
            start_time=requested.strftime("%H:%M"),
        )
        try:
            booking = self._reserve(student_id, course_id, booking_date, requested)
        except SlotNoLongerAvailableException:
            prometheus_metrics.record_reservation("slot_unavailable")
            raise
        except InsufficientCreditsException:
            prometheus_metrics.record_reservation("insufficient_credits")
            raise
        except TransientFailureException:
            prometheus_metrics.record_reservation("transient_failure")
            raise
        prometheus_metrics.record_reservation("success")
        self._invalidate_instructor_slots(booking)
        return booking

    def _reserve(
        self, student_id: str, course_id: str, booking_date: date, requested: time
    ) -> Booking:
        course = self.slot_engine.get_offered_course(course_id)
        if course.instructor_id == student_id:
            raise ValidationException(
                "Instructors cannot book their own course", details={"course_id": course_id}
            )
        policy = self.slot_engine.resolve_policy(course_id)
        cost = self._booking_cost(course, policy, student_id)

        slot = self._find_offered_slot(course, booking_date, requested)

        if cost > 0:
            balance = self.credit_service.get_balance(student_id)
            if balance < cost:
                raise InsufficientCreditsException(required=cost, available=balance)

        start_minutes = time_to_minutes(slot.start_time)
        start_local = local_datetime(booking_date, start_minutes, policy.timezone)
        end_minutes = start_minutes + policy.slot_minutes
        end_local = local_datetime(booking_date, end_minutes, policy.timezone)
        start_utc = ensure_utc(start_local)
        end_utc = ensure_utc(end_local)
        buffer = timedelta(minutes=policy.buffer_time_minutes)

        # Buffered ranges near midnight also touch the neighbouring date
        touched_dates = {
            booking_date,
            (start_local - buffer).date(),
            (end_local + buffer - timedelta(microseconds=1)).date(),
        }
        lock_keys = [slot_lock_key(course.instructor_id, d) for d in sorted(touched_dates)]
        if cost > 0:
            lock_keys.append(ledger_lock_key(student_id))

        try:
            with reservation_lock(lock_keys):
                with self.transaction():
                    if self.repository.has_scheduled_overlap(
                        course.instructor_id, start_utc - buffer, end_utc + buffer
                    ):
                        raise SlotNoLongerAvailableException(
                            details={"date": booking_date.isoformat(), "reason": "overlap"}
                        )
                    if cost > 0:
                        balance = self.credit_service.get_balance(student_id)
                        if balance < cost:
                            raise InsufficientCreditsException(required=cost, available=balance)

                    booking = self.repository.create(
                        course_id=course.id,
                        instructor_id=course.instructor_id,
                        student_id=student_id,
                        booking_date=booking_date,
                        start_time=slot.start_time,
                        end_time=slot.end_time,
                        duration_hours=policy.slot_duration_hours,
                        timezone=policy.timezone,
                        booking_start_utc=start_utc,
                        booking_end_utc=end_utc,
                        status=BookingStatus.SCHEDULED.value,
                        credits_charged=cost,
                    )
                    if cost > 0:
                        self.credit_service.record_spend(
                            user_id=student_id, booking_id=booking.id, amount=cost
                        )
        except IntegrityConflictException as exc:
            self.logger.info(
                "Reservation lost to a concurrent booking",
                extra={"course_id": course_id, "date": booking_date.isoformat()},
            )
            raise SlotNoLongerAvailableException(
                details={"date": booking_date.isoformat(), "reason": "conflict"}
            ) from exc

        self.logger.info(
            "Booking reserved",
            extra={
                "booking_id": booking.id,
                "course_id": course_id,
                "student_id": student_id,
                "credits_charged": str(cost),
            },
        )
        return booking

    # Status changes

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self, actor_id: str, booking_id: str, reason: Optional[str] = None
    ) -> CancellationResult:
        """
        Cancel a scheduled booking, refunding per the refund policy.

        Raises:
            NotFoundException: booking missing or not scheduled
            UnauthorizedActionException: actor is not student or instructor
        """
        booking = self._get_participant_booking(actor_id, booking_id)
        if not booking.is_scheduled:
            raise NotFoundException(
                "Scheduled booking not found",
                details={"booking_id": booking_id, "status": booking.status},
            )

        lock_keys = [
            slot_lock_key(booking.instructor_id, booking.booking_date),
            ledger_lock_key(booking.student_id),
        ]
        with reservation_lock(lock_keys):
            self.repository.refresh(booking)
            if not booking.is_scheduled:
                raise NotFoundException(
                    "Scheduled booking not found",
                    details={"booking_id": booking_id, "status": booking.status},
                )

            decision = self.refund_policy.evaluate(
                booking,
                cancelled_by_id=actor_id,
                charged=to_credits(booking.credits_charged),
                now=self.slot_engine.now(),
            )
            credits_refunded = Decimal("0.00")
            with self.transaction():
                booking.cancel(actor_id, reason)
                if decision.refund:
                    entry = self.credit_service.record_refund(
                        user_id=booking.student_id, booking_id=booking.id
                    )
                    if entry is not None:
                        credits_refunded = to_credits(entry.amount)
                booking.refunded = credits_refunded > 0
                self.repository.flush()

        self._invalidate_instructor_slots(booking)
        self.log_operation(
            "cancel_booking",
            booking_id=booking_id,
            actor_id=actor_id,
            refunded=booking.refunded,
            policy_basis=decision.policy_basis,
        )
        return CancellationResult(
            booking=booking,
            refunded=bool(booking.refunded),
            credits_refunded=credits_refunded,
            policy_basis=decision.policy_basis,
        )

    @BaseService.measure_operation("complete_class")
    def complete_class(self, actor_id: str, booking_id: str) -> Booking:
        """
        Mark a scheduled booking completed. Instructor only; no ledger effect.

        Raises:
            NotFoundException: booking missing or not scheduled
            UnauthorizedActionException: actor is not the booking's instructor
        """
        booking = self.repository.get_by_id(booking_id, load_relationships=False)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        if booking.instructor_id != actor_id:
            raise UnauthorizedActionException(
                "Only the instructor can complete this class", details={"booking_id": booking_id}
            )
        if not booking.is_scheduled:
            raise NotFoundException(
                "Scheduled booking not found",
                details={"booking_id": booking_id, "status": booking.status},
            )

        with self.transaction():
            booking.complete()
            self.repository.flush()

        self._invalidate_instructor_slots(booking)
        self.log_operation("complete_class", booking_id=booking_id, actor_id=actor_id)
        return booking

    @BaseService.measure_operation("mark_attendance")
    def mark_attendance(self, actor_id: str, booking_id: str) -> Booking:
        """
        Record that a participant showed up for a scheduled class.

        Allowed from ATTENDANCE_OPENS_MINUTES before the start until the end.
        Marking again keeps the first record.

        Raises:
            NotFoundException: booking missing or not scheduled
            UnauthorizedActionException: actor is not a participant
            ValidationException: outside the attendance window
        """
        booking = self._get_participant_booking(actor_id, booking_id)
        if not booking.is_scheduled:
            raise NotFoundException(
                "Scheduled booking not found",
                details={"booking_id": booking_id, "status": booking.status},
            )
        if booking.attended_at is not None:
            return booking

        now = self.slot_engine.now()
        opens_at = booking.start_utc - timedelta(minutes=ATTENDANCE_OPENS_MINUTES)
        if now < opens_at:
            raise ValidationException(
                "Attendance window has not opened yet",
                details={"booking_id": booking_id, "opens_at": opens_at.isoformat()},
            )
        if now > booking.end_utc:
            raise ValidationException(
                "Attendance window has closed",
                details={"booking_id": booking_id, "closed_at": booking.end_utc.isoformat()},
            )

        with self.transaction():
            booking.mark_attended(actor_id, now)
            self.repository.flush()

        self.log_operation("mark_attendance", booking_id=booking_id, actor_id=actor_id)
        return booking

    # Reads

    @BaseService.measure_operation("get_booking_for_user")
    def get_booking_for_user(self, actor_id: str, booking_id: str) -> Booking:
        return self._get_participant_booking(actor_id, booking_id)

    @BaseService.measure_operation("list_bookings")
    def list_bookings(
        self,
        user_id: str,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Booking], int]:
        """Bookings where the user is student or instructor, newest first."""
        offset = (max(page, 1) - 1) * per_page
        return self.repository.get_user_bookings(user_id, status, offset=offset, limit=per_page)

    @BaseService.measure_operation("get_upcoming_bookings")
    def get_upcoming_bookings(
        self, user_id: str, limit: int = DEFAULT_UPCOMING_LIMIT
    ) -> List[Booking]:
        return self.repository.get_upcoming(user_id, self.slot_engine.now(), limit)

    @BaseService.measure_operation("get_booking_history")
    def get_booking_history(
        self, user_id: str, page: int = 1, per_page: int = 20
    ) -> Tuple[List[Booking], int]:
        offset = (max(page, 1) - 1) * per_page
        return self.repository.get_history(
            user_id, self.slot_engine.now(), offset=offset, limit=per_page
        )

    @BaseService.measure_operation("get_user_calendar")
    def get_user_calendar(self, user_id: str, year: int, month: int) -> UserCalendar:
        """
        Bookings of the user dated in the given month, soonest first.

        The summary counts every status plus the total and how many
        bookings had attendance marked.
        """
        start_date, end_date = self.slot_engine.month_range(year, month)
        events = self.repository.get_user_bookings_between(user_id, start_date, end_date)

        summary = {"total": len(events), "attended": 0}
        summary.update({status.value: 0 for status in BookingStatus})
        for booking in events:
            summary[booking.status] += 1
            if booking.attended_at is not None:
                summary["attended"] += 1
        return UserCalendar(year=year, month=month, events=events, summary=summary)
