"""Unit tests for payment allocation."""

from datetime import datetime, timedelta, timezone

from library_fines.services.allocation_service import (
    AllocatedAdjustment,
    AllocatedBill,
    AllocatedPayment,
    PaymentAllocationService,
    allocate_payments,
)

NOW = datetime(2025, 3, 12, 12, 0, tzinfo=timezone.utc)
T0 = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


def bill(bill_id: int, cents: int, minutes: int = 0) -> AllocatedBill:
    return AllocatedBill(
        id=bill_id,
        xact_id=1,
        btype_id=1,
        billing_ts=T0 + timedelta(minutes=minutes),
        amount=cents,
    )


def payment(payment_id: int, cents: int, minutes: int = 0, adjusts: int | None = None) -> AllocatedPayment:
    adjustment = None
    payment_type = "cash_payment"
    if adjusts is not None:
        payment_type = "account_adjustment"
        adjustment = AllocatedAdjustment(
            id=payment_id + 1000,
            payment_id=payment_id,
            billing_id=adjusts,
            amount=cents,
        )
    return AllocatedPayment(
        id=payment_id,
        amount=cents,
        payment_ts=T0 + timedelta(minutes=minutes),
        payment_type=payment_type,
        adjustment=adjustment,
    )


def consumed(maps) -> int:
    return sum(m.adjustment_amount + m.payment_amount for m in maps)


class TestAllocatePayments:
    """Tests for the three-pass allocation."""

    def test_exact_match_pass(self):
        """Test that each payment lands on the bill of exactly its size."""
        bills = [bill(1, 500), bill(2, 300, minutes=1)]
        payments = [payment(10, 300), payment(11, 500, minutes=5)]

        maps = allocate_payments(bills, payments)

        assert [p.id for p in maps[0].payments] == [11]
        assert [p.id for p in maps[1].payments] == [10]
        assert maps[0].remaining == 0
        assert maps[1].remaining == 0
        assert maps[0].payment_amount == 500
        assert maps[1].payment_amount == 300

    def test_adjustment_larger_than_bill_is_split(self):
        """Test a $12 adjustment against a $10 bill."""
        bills = [bill(1, 1000)]
        payments = [payment(20, 1200, adjusts=1)]

        maps = allocate_payments(bills, payments)

        assert maps[0].remaining == 0
        assert maps[0].adjustment_amount == 1000
        assert [a.amount for a in maps[0].adjustments] == [1000]
        # The adjustment keeps its unconsumed remainder
        assert payments[0].amount == 200

    def test_adjustment_only_applies_to_its_bill(self):
        """Test that adjustments never pay a bill they do not name."""
        bills = [bill(1, 500), bill(2, 300, minutes=1)]
        payments = [payment(20, 300, adjusts=2)]

        maps = allocate_payments(bills, payments)

        assert maps[0].adjustments == []
        assert maps[0].remaining == 500
        assert maps[1].adjustment_amount == 300
        assert maps[1].remaining == 0

    def test_residual_payment_spread_over_bills(self):
        """Test one payment covering several bills in order."""
        bills = [bill(1, 500), bill(2, 300, minutes=1)]
        payments = [payment(10, 800)]

        maps = allocate_payments(bills, payments)

        assert maps[0].payment_amount == 500
        assert maps[1].payment_amount == 300
        assert all(m.remaining == 0 for m in maps)

    def test_partial_payment_leaves_remainder(self):
        bills = [bill(1, 500), bill(2, 300, minutes=1)]
        payments = [payment(10, 200)]

        maps = allocate_payments(bills, payments)

        assert maps[0].remaining == 300
        assert maps[1].remaining == 300
        assert maps[1].payments == []

    def test_conservation_of_money(self):
        """Test that remaining plus consumed always equals what was billed."""
        bills = [bill(1, 500), bill(2, 300, minutes=1), bill(3, 250, minutes=2)]
        payments = [payment(10, 400), payment(11, 100, minutes=1), payment(12, 300, minutes=2, adjusts=2)]
        billed = sum(b.amount for b in bills)

        maps = allocate_payments(bills, payments)

        assert sum(m.remaining for m in maps) + consumed(maps) == billed
        assert [m.remaining for m in maps] == [0, 0, 250]
        assert all(m.remaining >= 0 for m in maps)

    def test_overpayment_never_drives_bills_negative(self):
        bills = [bill(1, 100), bill(2, 100, minutes=1)]
        payments = [payment(10, 1000), payment(11, 50, adjusts=1)]
        billed = sum(b.amount for b in bills)

        maps = allocate_payments(bills, payments)

        assert all(m.remaining == 0 for m in maps)
        assert sum(m.remaining for m in maps) + consumed(maps) == billed

    def test_each_adjustment_consumed_once(self):
        """Test that no adjustment appears in two maps."""
        bills = [bill(1, 500), bill(2, 300, minutes=1), bill(3, 200, minutes=2)]
        payments = [
            payment(20, 200, adjusts=1),
            payment(21, 300, adjusts=1),
            payment(22, 300, adjusts=2),
            payment(23, 100),
        ]

        maps = allocate_payments(bills, payments)

        adjustment_ids = [a.id for m in maps for a in m.adjustments]
        assert len(adjustment_ids) == len(set(adjustment_ids))
        assert maps[0].adjustment_amount == 500

    def test_no_bills(self):
        assert allocate_payments([], [payment(10, 100)]) == []

    def test_no_payments(self):
        bills = [bill(1, 500)]

        maps = allocate_payments(bills, [])

        assert len(maps) == 1
        assert maps[0].bill_amount == 500
        assert maps[0].remaining == 500
        assert maps[0].payments == []


class TestPaymentAllocationService:
    """Tests for loading and allocating a stored transaction."""

    def test_bill_payment_map_for_xact(self, db_session, make_xact, make_bill, make_payment):
        """Test that voided rows are ignored and adjustments are fleshed."""
        xact = make_xact()
        fine = make_bill(xact, "1.00", NOW - timedelta(days=2))
        make_bill(xact, "9.99", NOW - timedelta(days=2), voided=True)
        lost = make_bill(xact, "25.00", NOW - timedelta(days=1), btype_id=3)
        make_payment(xact, "1.00", NOW - timedelta(hours=5), adjust_bill=fine)
        make_payment(xact, "10.00", NOW - timedelta(hours=4))
        make_payment(xact, "50.00", NOW - timedelta(hours=3), voided=True)

        maps = PaymentAllocationService(db_session).bill_payment_map_for_xact(xact.id)

        assert [m.bill.id for m in maps] == [fine.id, lost.id]
        assert maps[0].adjustment_amount == 100
        assert maps[0].remaining == 0
        assert maps[1].payment_amount == 1000
        assert maps[1].remaining == 1500
        assert maps[1].bill.record is lost

    def test_unbilled_xact_has_no_maps(self, db_session, make_xact):
        xact = make_xact()

        assert PaymentAllocationService(db_session).bill_payment_map_for_xact(xact.id) == []

    def test_load_payments_reports_type_values(self, db_session, make_xact, make_bill, make_payment):
        xact = make_xact()
        fine = make_bill(xact, "2.00", NOW - timedelta(days=1))
        make_payment(xact, "0.50", NOW - timedelta(hours=2))
        make_payment(xact, "1.50", NOW - timedelta(hours=1), adjust_bill=fine)

        payments = PaymentAllocationService(db_session).load_payments(xact.id)

        assert [p.payment_type for p in payments] == ["cash_payment", "account_adjustment"]
        assert payments[1].adjustment.billing_id == fine.id
        assert payments[1].amount == 150
        assert payments[0].amount == 50
