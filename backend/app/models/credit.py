# backend/app/models/credit.py
"""
Credit ledger model.

The ledger is append-only: a balance is the sum of a user's entries and a
cancellation appends a compensating refund instead of editing the spend.
"""

from datetime import datetime, timezone
from enum import Enum
import logging

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.constants import MAX_REASON_LENGTH
from ..database import Base

logger = logging.getLogger(__name__)


class CreditEntryType(str, Enum):
    SPEND = "spend"
    REFUND = "refund"
    EARN = "earn"


class CreditLedgerEntry(Base):
    """Signed credit movement; spends are negative, refunds and earnings positive."""

    __tablename__ = "credit_ledger_entries"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    entry_type = Column(String(20), nullable=False)
    related_booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=True)
    description = Column(String(MAX_REASON_LENGTH), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    booking = relationship("Booking")

    __table_args__ = (
        UniqueConstraint(
            "related_booking_id", "entry_type", name="unique_ledger_booking_entry_type"
        ),
        CheckConstraint(
            "entry_type IN ('spend', 'refund', 'earn')", name="ck_credit_ledger_entry_type"
        ),
        CheckConstraint(
            "(entry_type = 'spend' AND amount < 0) OR (entry_type <> 'spend' AND amount > 0)",
            name="check_ledger_amount_sign",
        ),
        Index("idx_credit_ledger_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<CreditLedgerEntry {self.id}: user={self.user_id} {self.entry_type} {self.amount}>"
