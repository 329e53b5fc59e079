# backend/app/repositories/credit_repository.py
"""
Credit Repository for ClassBook

Append-only access to the credit ledger. Balances are always derived by
summing entries; rows are never updated.
"""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Tuple, cast

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.credit import CreditEntryType, CreditLedgerEntry

from .base_repository import BaseRepository, repository_error

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def to_credits(value: Any) -> Decimal:
    """Normalize a driver value (None, float, Decimal) to a 2-place Decimal."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS)


class CreditRepository(BaseRepository[CreditLedgerEntry]):
    """Repository for credit ledger queries."""

    def __init__(self, db: Session):
        super().__init__(db, CreditLedgerEntry)
        self.logger = logging.getLogger(__name__)

    def get_balance(self, user_id: str) -> Decimal:
        """Sum of every ledger entry of the user."""
        try:
            total = (
                self.db.query(func.sum(CreditLedgerEntry.amount))
                .filter(CreditLedgerEntry.user_id == user_id)
                .scalar()
            )
            return to_credits(total)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get credit balance: %s", str(exc))
            raise repository_error("Failed to get credit balance", exc) from exc

    def get_entry_for_booking(
        self, booking_id: str, entry_type: CreditEntryType
    ) -> Optional[CreditLedgerEntry]:
        try:
            return (
                self.db.query(CreditLedgerEntry)
                .filter(
                    CreditLedgerEntry.related_booking_id == booking_id,
                    CreditLedgerEntry.entry_type == entry_type.value,
                )
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get ledger entry for booking: %s", str(exc))
            raise repository_error("Failed to get ledger entry for booking", exc) from exc

    def get_history(
        self, user_id: str, offset: int = 0, limit: int = 20
    ) -> Tuple[List[CreditLedgerEntry], int]:
        """Entries of a user, newest first."""
        try:
            query = self.db.query(CreditLedgerEntry).filter(CreditLedgerEntry.user_id == user_id)
            total = query.count()
            items = (
                query.order_by(CreditLedgerEntry.created_at.desc(), CreditLedgerEntry.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return cast(List[CreditLedgerEntry], items), total
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get credit history: %s", str(exc))
            raise repository_error("Failed to get credit history", exc) from exc

    def get_totals_by_type(self, user_id: str) -> Dict[str, Decimal]:
        """Signed sum of amounts per entry type."""
        try:
            rows = (
                self.db.query(CreditLedgerEntry.entry_type, func.sum(CreditLedgerEntry.amount))
                .filter(CreditLedgerEntry.user_id == user_id)
                .group_by(CreditLedgerEntry.entry_type)
                .all()
            )
            totals = {entry_type.value: Decimal("0.00") for entry_type in CreditEntryType}
            for entry_type, amount in rows:
                totals[entry_type] = to_credits(amount)
            return totals
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get credit totals: %s", str(exc))
            raise repository_error("Failed to get credit totals", exc) from exc
