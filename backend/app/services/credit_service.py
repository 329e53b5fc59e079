"""Credit ledger service: balances, spends, refunds and grants."""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.exceptions import ValidationException
from app.models.credit import CreditEntryType, CreditLedgerEntry
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.credit_repository import to_credits
from app.repositories.factory import RepositoryFactory

from .base import BaseService

logger = logging.getLogger(__name__)


class CreditService(BaseService):
    """
    Manages the append-only credit ledger.

    ``record_spend`` and ``record_refund`` never commit: the booking
    coordinator calls them inside its own unit of work.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    @BaseService.measure_operation("credit_get_balance")
    def get_balance(self, user_id: str) -> Decimal:
        return self.credit_repository.get_balance(user_id)

    def has_sufficient_credits(self, user_id: str, amount: Any) -> bool:
        return self.get_balance(user_id) >= to_credits(amount)

    def record_spend(self, *, user_id: str, booking_id: str, amount: Any) -> CreditLedgerEntry:
        """Append the debit for a booking. Amount is the positive cost."""
        cost = to_credits(amount)
        if cost <= 0:
            raise ValidationException(
                "Spend amount must be positive", details={"amount": str(cost)}
            )
        entry = self.credit_repository.create(
            user_id=user_id,
            amount=-cost,
            entry_type=CreditEntryType.SPEND.value,
            related_booking_id=booking_id,
            description="Class booking",
        )
        prometheus_metrics.inc_credit_entry(CreditEntryType.SPEND.value)
        return entry

    def record_refund(self, *, user_id: str, booking_id: str) -> Optional[CreditLedgerEntry]:
        """
        Append a refund mirroring the booking's spend.

        Returns None when the booking has no spend entry or is already refunded.
        """
        spend = self.credit_repository.get_entry_for_booking(booking_id, CreditEntryType.SPEND)
        if spend is None:
            return None
        if self.credit_repository.get_entry_for_booking(booking_id, CreditEntryType.REFUND):
            self.logger.warning("Refund already recorded", extra={"booking_id": booking_id})
            return None
        entry = self.credit_repository.create(
            user_id=user_id,
            amount=abs(to_credits(spend.amount)),
            entry_type=CreditEntryType.REFUND.value,
            related_booking_id=booking_id,
            description="Class cancellation refund",
        )
        prometheus_metrics.inc_credit_entry(CreditEntryType.REFUND.value)
        return entry

    @BaseService.measure_operation("credit_grant")
    def grant_credits(
        self,
        *,
        user_id: str,
        amount: Any,
        description: Optional[str] = None,
        use_transaction: bool = True,
    ) -> CreditLedgerEntry:
        """Append an earn entry (top-up or promotion)."""
        value = to_credits(amount)
        if value <= 0:
            raise ValidationException(
                "Granted amount must be positive", details={"amount": str(value)}
            )

        def _grant() -> CreditLedgerEntry:
            return self.credit_repository.create(
                user_id=user_id,
                amount=value,
                entry_type=CreditEntryType.EARN.value,
                description=description or "Credits granted",
            )

        if use_transaction:
            with self.transaction():
                entry = _grant()
        else:
            entry = _grant()
        prometheus_metrics.inc_credit_entry(CreditEntryType.EARN.value)
        self.log_operation("grant_credits", user_id=user_id, amount=str(value))
        return entry

    @BaseService.measure_operation("credit_get_history")
    def get_history(
        self, user_id: str, page: int = 1, per_page: int = 20
    ) -> Tuple[List[CreditLedgerEntry], int]:
        """Ledger entries newest first; returns (page items, total)."""
        offset = (max(page, 1) - 1) * per_page
        return self.credit_repository.get_history(user_id, offset=offset, limit=per_page)

    @BaseService.measure_operation("credit_get_summary")
    def get_summary(self, user_id: str) -> Dict[str, Decimal]:
        totals = self.credit_repository.get_totals_by_type(user_id)
        earned = totals[CreditEntryType.EARN.value]
        spent = abs(totals[CreditEntryType.SPEND.value])
        refunded = totals[CreditEntryType.REFUND.value]
        return {
            "balance": to_credits(earned - spent + refunded),
            "total_earned": earned,
            "total_spent": spent,
            "total_refunded": refunded,
        }
