"""Balance summary for billable transactions.

Balance formula: Σ non-voided billings − Σ non-voided payments.
Account adjustments are payments, so they reduce the balance like cash does.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from library_fines.models.billing import Billing
from library_fines.models.payment import Payment
from library_fines.services.dates import as_aware
from library_fines.services.money import from_cents, to_cents

logger = logging.getLogger(__name__)


class XactSummary(NamedTuple):
    """Money summary of one transaction."""

    xact_id: int
    total_owed: Decimal
    total_paid: Decimal
    balance_owed: Decimal
    last_billing_ts: datetime | None
    last_payment_ts: datetime | None

    @property
    def zero_owed(self) -> bool:
        return self.balance_owed == 0


class BalanceService:
    """Compute transaction balances."""

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    def xact_summary(self, xact_id: int) -> XactSummary:
        """Summarize billed and paid totals for a transaction.

        Sums are taken in integer cents so that many small fines add up
        exactly.

        Args:
            xact_id: Transaction ID

        Returns:
            XactSummary (all zero for a transaction with no activity)
        """
        billings = self.db.execute(
            select(Billing.amount, Billing.billing_ts).where(
                Billing.xact_id == xact_id,
                Billing.voided.is_(False),
            )
        ).all()
        payments = self.db.execute(
            select(Payment.amount, Payment.payment_ts).where(
                Payment.xact_id == xact_id,
                Payment.voided.is_(False),
            )
        ).all()

        owed_cents = sum(to_cents(amount) for amount, _ in billings)
        paid_cents = sum(to_cents(amount) for amount, _ in payments)

        last_billing_ts = max((as_aware(ts) for _, ts in billings), default=None)
        last_payment_ts = max((as_aware(ts) for _, ts in payments), default=None)

        return XactSummary(
            xact_id=xact_id,
            total_owed=from_cents(owed_cents),
            total_paid=from_cents(paid_cents),
            balance_owed=from_cents(owed_cents - paid_cents),
            last_billing_ts=last_billing_ts,
            last_payment_ts=last_payment_ts,
        )


__all__ = ["BalanceService", "XactSummary"]
