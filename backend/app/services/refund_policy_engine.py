"""Refund policy evaluation for booking cancellations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from app.core.config import settings
from app.core.timezone_utils import ensure_utc
from app.models.booking import Booking


@dataclass(frozen=True)
class RefundPolicyResult:
    refund: bool
    amount: Decimal = Decimal("0.00")
    policy_basis: str = ""
    hours_before_class: float | None = None

    def to_payload(self) -> dict[str, object]:
        return {
            "refund": self.refund,
            "amount": str(self.amount),
            "policy_basis": self.policy_basis,
            "hours_before_class": self.hours_before_class,
        }


class RefundPolicyEngine:
    """Decides whether a cancellation returns the credits charged."""

    def __init__(self, cutoff_hours: float | None = None):
        self.cutoff_hours = settings.refund_cutoff_hours if cutoff_hours is None else cutoff_hours

    def evaluate(
        self, booking: Booking, cancelled_by_id: str, charged: Decimal, now: datetime
    ) -> RefundPolicyResult:
        if charged <= 0:
            return RefundPolicyResult(refund=False, policy_basis="Nothing was charged")

        delta = ensure_utc(booking.start_utc) - ensure_utc(now)
        hours_before_class = delta.total_seconds() / 3600

        if cancelled_by_id == booking.instructor_id:
            return RefundPolicyResult(
                refund=True,
                amount=charged,
                policy_basis="Cancelled by instructor: full refund",
                hours_before_class=hours_before_class,
            )

        if hours_before_class >= self.cutoff_hours:
            return RefundPolicyResult(
                refund=True,
                amount=charged,
                policy_basis=f">={self.cutoff_hours:g} hours before class: full refund",
                hours_before_class=hours_before_class,
            )

        return RefundPolicyResult(
            refund=False,
            policy_basis=f"<{self.cutoff_hours:g} hours before class: no refund",
            hours_before_class=hours_before_class,
        )
