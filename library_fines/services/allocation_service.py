"""Allocation of payments and account adjustments to individual billings.

A transaction only records which payments were made, not which charge each
one paid for. Voiding, adjusting and reporting need that attribution, so it
is re-derived on demand with a deterministic greedy match:

1. Adjustment pass: account adjustments are applied to the billing they name
2. Exact-match pass: a payment equal to a billing's remaining amount pays it
3. Residual pass: remaining payments are spread over unpaid billings in order

Everything runs on integer cents against working copies; ORM rows are never
modified and the result is never persisted.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from library_fines.models.billing import Billing
from library_fines.models.payment import Payment
from library_fines.services.dates import as_aware
from library_fines.services.money import to_cents

logger = logging.getLogger(__name__)


@dataclass
class AllocatedAdjustment:
    """Account adjustment as seen by one allocation pass."""

    id: int
    payment_id: int
    billing_id: int
    amount: int
    """Cents attributed to the billing"""


@dataclass
class AllocatedPayment:
    """Working copy of a payment; amount shrinks as it is split across bills."""

    id: int
    amount: int
    """Cents still available (or, in a map, cents applied to that bill)"""
    payment_ts: datetime
    payment_type: str
    adjustment: AllocatedAdjustment | None = None


@dataclass
class AllocatedBill:
    """Working copy of a billing; amount is what remains unpaid."""

    id: int
    xact_id: int
    btype_id: int
    billing_ts: datetime
    amount: int
    record: Billing | None = field(default=None, repr=False, compare=False)


@dataclass
class BillPaymentMap:
    """Which adjustments and payments satisfy one billing."""

    bill: AllocatedBill
    bill_amount: int
    """Original billed cents"""
    adjustments: list[AllocatedAdjustment] = field(default_factory=list)
    payments: list[AllocatedPayment] = field(default_factory=list)
    adjustment_amount: int = 0
    """Cents covered by adjustments"""

    @property
    def remaining(self) -> int:
        return self.bill.amount

    @property
    def payment_amount(self) -> int:
        return sum(payment.amount for payment in self.payments)


def allocate_payments(
    bills: list[AllocatedBill],
    payments: list[AllocatedPayment],
) -> list[BillPaymentMap]:
    """Attribute payments and adjustments to bills.

    Args:
        bills: Working bills, oldest first; their amounts are reduced in place
        payments: Working payments in payment time order; split payments have
            their amount reduced in place to the unconsumed remainder

    Returns:
        One BillPaymentMap per bill, in bill order
    """
    maps = [BillPaymentMap(bill=bill, bill_amount=bill.amount) for bill in bills]
    if not maps or not payments:
        return maps

    # Largest first so the biggest charges are satisfied before remainders
    # fragment. sorted() is stable, so equal amounts keep payment time order.
    pool = sorted(payments, key=lambda p: p.amount, reverse=True)
    used: set[int] = set()

    _apply_adjustments(maps, pool, used)
    _apply_exact_matches(maps, pool, used)
    _apply_residuals(maps, pool, used)

    return maps


def _apply_adjustments(
    maps: list[BillPaymentMap],
    pool: list[AllocatedPayment],
    used: set[int],
) -> None:
    for bill_map in maps:
        bill = bill_map.bill
        for payment in pool:
            if bill.amount <= 0:
                break
            adjustment = payment.adjustment
            if payment.id in used or adjustment is None or adjustment.billing_id != bill.id:
                continue
            if payment.amount <= 0:
                used.add(payment.id)
                continue

            if payment.amount <= bill.amount:
                consumed = payment.amount
                used.add(payment.id)
            else:
                # More adjustment than bill: only the bill's remainder applies
                # here, the rest stays in the pool.
                consumed = bill.amount
                payment.amount -= consumed
                logger.debug(
                    "Adjustment %d exceeds billing %d; applying %d of it",
                    adjustment.id,
                    bill.id,
                    consumed,
                )

            bill_map.adjustments.append(replace(adjustment, amount=consumed))
            bill_map.adjustment_amount += consumed
            bill.amount -= consumed


def _apply_exact_matches(
    maps: list[BillPaymentMap],
    pool: list[AllocatedPayment],
    used: set[int],
) -> None:
    for payment in pool:
        if payment.id in used or payment.amount <= 0:
            continue
        bill_map = next((m for m in maps if m.bill.amount == payment.amount), None)
        if bill_map is None:
            continue
        bill_map.payments.append(replace(payment))
        bill_map.bill.amount = 0
        used.add(payment.id)


def _apply_residuals(
    maps: list[BillPaymentMap],
    pool: list[AllocatedPayment],
    used: set[int],
) -> None:
    for bill_map in maps:
        bill = bill_map.bill
        for payment in pool:
            if bill.amount <= 0:
                break
            if payment.id in used or payment.amount <= 0:
                continue

            if payment.amount >= bill.amount:
                applied = bill.amount
                bill_map.payments.append(replace(payment, amount=applied))
                payment.amount -= applied
                bill.amount = 0
                if payment.amount == 0:
                    used.add(payment.id)
            else:
                bill_map.payments.append(replace(payment))
                bill.amount -= payment.amount
                used.add(payment.id)


class PaymentAllocationService:
    """Loads a transaction's bills and payments and allocates them."""

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    def load_bills(self, xact_id: int) -> list[AllocatedBill]:
        """Non-voided billings of a transaction as working copies, oldest first."""
        rows = self.db.execute(
            select(Billing)
            .where(Billing.xact_id == xact_id, Billing.voided.is_(False))
            .order_by(Billing.billing_ts.asc(), Billing.id.asc())
        ).scalars().all()

        return [
            AllocatedBill(
                id=row.id,
                xact_id=row.xact_id,
                btype_id=row.btype_id,
                billing_ts=as_aware(row.billing_ts),
                amount=to_cents(row.amount),
                record=row,
            )
            for row in rows
        ]

    def load_payments(self, xact_id: int) -> list[AllocatedPayment]:
        """Non-voided payments of a transaction with adjustments fleshed."""
        rows = self.db.execute(
            select(Payment)
            .options(selectinload(Payment.account_adjustment))
            .where(Payment.xact_id == xact_id, Payment.voided.is_(False))
            .order_by(Payment.payment_ts.asc(), Payment.id.asc())
        ).scalars().all()

        payments = []
        for row in rows:
            adjustment = None
            if row.is_adjustment and row.account_adjustment is not None:
                adjustment = AllocatedAdjustment(
                    id=row.account_adjustment.id,
                    payment_id=row.id,
                    billing_id=row.account_adjustment.billing_id,
                    amount=to_cents(row.account_adjustment.amount),
                )
            payments.append(
                AllocatedPayment(
                    id=row.id,
                    amount=to_cents(row.amount),
                    payment_ts=as_aware(row.payment_ts),
                    payment_type=(
                        row.payment_type.value
                        if hasattr(row.payment_type, "value")
                        else str(row.payment_type)
                    ),
                    adjustment=adjustment,
                )
            )
        return payments

    def bill_payment_map_for_xact(self, xact_id: int) -> list[BillPaymentMap]:
        """Derive which payments and adjustments satisfy each bill of a transaction.

        Args:
            xact_id: Transaction ID

        Returns:
            List of BillPaymentMap in billing time order (empty when the
            transaction has no live bills)
        """
        bills = self.load_bills(xact_id)
        if not bills:
            return []

        payments = self.load_payments(xact_id)
        maps = allocate_payments(bills, payments)

        logger.debug(
            "Allocated %d payments over %d bills for xact %d",
            len(payments),
            len(maps),
            xact_id,
        )
        return maps


__all__ = [
    "AllocatedAdjustment",
    "AllocatedPayment",
    "AllocatedBill",
    "BillPaymentMap",
    "allocate_payments",
    "PaymentAllocationService",
]
