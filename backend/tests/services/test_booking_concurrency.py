"""
Concurrent reservations of the same slot from separate sessions.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import time
from decimal import Decimal
import threading

import pytest

from app.core.exceptions import DomainException, SlotNoLongerAvailableException
from app.models.booking import Booking, BookingStatus
from app.models.credit import CreditEntryType, CreditLedgerEntry
from app.services.booking_service import BookingService
from app.services.credit_service import CreditService


@pytest.fixture
def two_funded_students(db, student_id, other_student_id):
    credits = CreditService(db)
    credits.grant_credits(user_id=student_id, amount=5)
    credits.grant_credits(user_id=other_student_id, amount=5)
    return student_id, other_student_id


def race(session_factory, clock, calls):
    """Run each (student_id, course_id, date, time) call in its own thread and session."""
    barrier = threading.Barrier(len(calls))

    def attempt(args):
        session = session_factory()
        try:
            service = BookingService(session, clock=clock)
            barrier.wait()
            try:
                return service.reserve_slot(*args).id
            except DomainException as exc:
                return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(attempt, calls))


def test_same_slot_is_booked_once(
    db, session_factory, clock, course, monday_rule, two_funded_students, target_monday
):
    results = race(
        session_factory,
        clock,
        [(student, course.id, target_monday, time(14)) for student in two_funded_students],
    )

    booking_ids = [r for r in results if isinstance(r, str)]
    errors = [r for r in results if not isinstance(r, str)]
    assert len(booking_ids) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], SlotNoLongerAvailableException)

    db.expire_all()
    scheduled = db.query(Booking).filter_by(status=BookingStatus.SCHEDULED.value).all()
    assert [b.id for b in scheduled] == booking_ids

    spends = db.query(CreditLedgerEntry).filter_by(entry_type=CreditEntryType.SPEND.value).all()
    assert len(spends) == 1
    winner = scheduled[0].student_id
    loser = next(s for s in two_funded_students if s != winner)
    credits = CreditService(db)
    assert credits.get_balance(winner) == Decimal("4.00")
    assert credits.get_balance(loser) == Decimal("5.00")


def test_different_slots_both_succeed(
    db, session_factory, clock, course, monday_rule, two_funded_students, target_monday
):
    first, second = two_funded_students
    results = race(
        session_factory,
        clock,
        [
            (first, course.id, target_monday, time(9)),
            (second, course.id, target_monday, time(10)),
        ],
    )

    assert all(isinstance(r, str) for r in results)
    db.expire_all()
    assert db.query(Booking).count() == 2


def test_one_student_cannot_overspend(
    db, session_factory, clock, course, monday_rule, student_id, target_monday
):
    CreditService(db).grant_credits(user_id=student_id, amount=1)

    results = race(
        session_factory,
        clock,
        [
            (student_id, course.id, target_monday, time(9)),
            (student_id, course.id, target_monday, time(11)),
        ],
    )

    assert sum(isinstance(r, str) for r in results) == 1
    db.expire_all()
    assert CreditService(db).get_balance(student_id) == Decimal("0.00")
