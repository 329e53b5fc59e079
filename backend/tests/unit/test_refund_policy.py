"""
Unit tests for cancellation refund decisions.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.services.refund_policy_engine import RefundPolicyEngine

INSTRUCTOR = "instructor"
STUDENT = "student"
CLASS_START = datetime(2024, 12, 23, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def booking():
    return SimpleNamespace(instructor_id=INSTRUCTOR, student_id=STUDENT, start_utc=CLASS_START)


@pytest.fixture
def engine():
    return RefundPolicyEngine(cutoff_hours=24)


def test_student_cancelling_early_is_refunded(engine, booking):
    result = engine.evaluate(
        booking, STUDENT, Decimal("1.00"), CLASS_START - timedelta(hours=48)
    )
    assert result.refund is True
    assert result.amount == Decimal("1.00")
    assert result.hours_before_class == pytest.approx(48)


def test_student_cancelling_exactly_at_cutoff_is_refunded(engine, booking):
    result = engine.evaluate(
        booking, STUDENT, Decimal("1.00"), CLASS_START - timedelta(hours=24)
    )
    assert result.refund is True


def test_student_cancelling_late_is_not_refunded(engine, booking):
    result = engine.evaluate(booking, STUDENT, Decimal("1.00"), CLASS_START - timedelta(hours=3))
    assert result.refund is False
    assert result.amount == Decimal("0.00")
    assert "no refund" in result.policy_basis


def test_instructor_cancellation_always_refunds(engine, booking):
    result = engine.evaluate(
        booking, INSTRUCTOR, Decimal("2.50"), CLASS_START - timedelta(minutes=10)
    )
    assert result.refund is True
    assert result.amount == Decimal("2.50")


def test_nothing_charged_means_nothing_to_refund(engine, booking):
    result = engine.evaluate(booking, INSTRUCTOR, Decimal("0.00"), CLASS_START)
    assert result.refund is False
    assert result.to_payload()["amount"] == "0.00"


def test_naive_now_is_treated_as_utc(engine, booking):
    naive_now = (CLASS_START - timedelta(hours=30)).replace(tzinfo=None)
    assert engine.evaluate(booking, STUDENT, Decimal("1"), naive_now).refund is True
