"""
Service tests for the credit ledger.
"""

from datetime import datetime, time, timezone
from decimal import Decimal
from itertools import count

import pytest

from app.core.exceptions import ValidationException
from app.models.booking import Booking
from app.models.credit import CreditEntryType
from app.services.credit_service import CreditService


@pytest.fixture
def credits(db):
    return CreditService(db)


@pytest.fixture
def make_booking(db, course, funded_student, target_monday):
    """Persist a bare scheduled booking for ledger entries to point at."""
    hours = count(9)

    def _make() -> str:
        hour = next(hours)
        booking = Booking(
            course_id=course.id,
            instructor_id=course.instructor_id,
            student_id=funded_student,
            booking_date=target_monday,
            start_time=time(hour),
            end_time=time(hour + 1),
            duration_hours=1,
            timezone="America/Sao_Paulo",
            booking_start_utc=datetime(2024, 12, 23, hour + 3, tzinfo=timezone.utc),
            booking_end_utc=datetime(2024, 12, 23, hour + 4, tzinfo=timezone.utc),
            credits_charged=Decimal("1.00"),
        )
        db.add(booking)
        db.commit()
        return booking.id

    return _make


def test_empty_ledger_has_zero_balance(credits, student_id):
    assert credits.get_balance(student_id) == Decimal("0.00")
    assert not credits.has_sufficient_credits(student_id, 1)


def test_grant_adds_earn_entry(credits, student_id):
    entry = credits.grant_credits(user_id=student_id, amount="2.50", description="Promo")

    assert entry.entry_type == CreditEntryType.EARN.value
    assert entry.description == "Promo"
    assert credits.get_balance(student_id) == Decimal("2.50")
    assert credits.has_sufficient_credits(student_id, Decimal("2.5"))


@pytest.mark.parametrize("amount", [0, -1, "0.001"])
def test_grant_rejects_non_positive_amounts(credits, student_id, amount):
    with pytest.raises(ValidationException):
        credits.grant_credits(user_id=student_id, amount=amount)


def test_spend_is_negative(db, credits, funded_student, make_booking):
    entry = credits.record_spend(user_id=funded_student, booking_id=make_booking(), amount=3)
    db.commit()

    assert entry.amount == Decimal("-3.00")
    assert credits.get_balance(funded_student) == Decimal("7.00")


def test_spend_rejects_zero(credits, funded_student, make_booking):
    with pytest.raises(ValidationException):
        credits.record_spend(user_id=funded_student, booking_id=make_booking(), amount=0)


def test_refund_mirrors_spend_once(db, credits, funded_student, make_booking):
    booking_id = make_booking()
    credits.record_spend(user_id=funded_student, booking_id=booking_id, amount=2)
    db.commit()

    refund = credits.record_refund(user_id=funded_student, booking_id=booking_id)
    db.commit()
    again = credits.record_refund(user_id=funded_student, booking_id=booking_id)

    assert refund is not None
    assert refund.amount == Decimal("2.00")
    assert again is None
    assert credits.get_balance(funded_student) == Decimal("10.00")


def test_refund_without_spend_is_noop(credits, funded_student, make_booking):
    assert credits.record_refund(user_id=funded_student, booking_id=make_booking()) is None


def test_summary_totals(db, credits, funded_student, make_booking):
    first, second = make_booking(), make_booking()
    credits.record_spend(user_id=funded_student, booking_id=first, amount=1)
    credits.record_spend(user_id=funded_student, booking_id=second, amount=1)
    credits.record_refund(user_id=funded_student, booking_id=first)
    db.commit()

    summary = credits.get_summary(funded_student)

    assert summary == {
        "balance": Decimal("9.00"),
        "total_earned": Decimal("10.00"),
        "total_spent": Decimal("2.00"),
        "total_refunded": Decimal("1.00"),
    }


def test_history_is_paginated(credits, funded_student):
    credits.grant_credits(user_id=funded_student, amount=5)
    credits.grant_credits(user_id=funded_student, amount=5)

    items, total = credits.get_history(funded_student, page=1, per_page=2)
    rest, _ = credits.get_history(funded_student, page=2, per_page=2)

    assert total == 3
    assert len(items) == 2
    assert len(rest) == 1
    assert {e.id for e in items}.isdisjoint({e.id for e in rest})


def test_balances_are_per_user(credits, funded_student, other_student_id):
    assert credits.get_balance(other_student_id) == Decimal("0.00")
    assert credits.get_balance(funded_student) == Decimal("10.00")
