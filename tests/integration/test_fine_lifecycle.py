"""Integration tests: fines, payments, voids and lost-item returns on one transaction.

Uses the database-backed settings resolver so that policies set at the
consortium are inherited by the branch.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from library_fines.models.billing import BTYPE_LOST_MATERIALS
from library_fines.services.allocation_service import PaymentAllocationService
from library_fines.services.balance_service import BalanceService
from library_fines.services.fine_service import FineService
from library_fines.services.settings_service import (
    LIB_TIMEZONE,
    NEGATIVE_BALANCE_INTERVAL_ON_LOST,
    PROHIBIT_NEGATIVE_BALANCE_ON_LOST,
    OrgSettingsService,
)

NOW = datetime(2025, 3, 12, 12, 0, tzinfo=timezone.utc)
STAFF_ID = 9
PATRON_ID = 500
ROOT = 1
BRANCH = 2


@pytest.fixture(autouse=True)
def frozen_now():
    with patch("library_fines.services.dates.utcnow", return_value=NOW):
        yield


@pytest.fixture
def org_settings(db_session, org_tree):
    settings = OrgSettingsService(db_session)
    settings.set_value(LIB_TIMEZONE, ROOT, "UTC")
    db_session.commit()
    return settings


@pytest.fixture
def service(db_session, org_settings, penalties):
    return FineService(db_session, requestor_id=STAFF_ID, penalties=penalties)


class TestOverdueLifecycle:
    """Overdue fines accrue, get paid and forgiven, and the transaction closes."""

    def test_fines_payment_and_void_close_the_xact(self, db_session, service, make_xact, make_payment):
        xact = make_xact(
            circulation=True,
            due_date=NOW - timedelta(days=4),
            recurring_fine=Decimal("0.50"),
            max_fine=Decimal("1.50"),
        )

        fines = service.generate_fines_for_circ(xact.id)

        assert [fine.amount for fine in fines] == [Decimal("0.50")] * 3
        assert BalanceService(db_session).xact_summary(xact.id).balance_owed == Decimal("1.50")

        make_payment(xact, "1.00", NOW)
        xact.circulation.stop_fines = "CHECKIN"
        xact.circulation.stop_fines_time = NOW
        db_session.commit()

        service.ledger.void_bills([fines[2].id], "Forgiven at checkin")

        summary = BalanceService(db_session).xact_summary(xact.id)
        assert summary.zero_owed
        assert xact.xact_finish is not None

        maps = PaymentAllocationService(db_session).bill_payment_map_for_xact(xact.id)
        assert [m.bill.id for m in maps] == [fines[0].id, fines[1].id]
        assert all(m.remaining == 0 for m in maps)
        assert sum(m.payment_amount for m in maps) == 100

    def test_checked_in_item_gets_no_more_fines(self, db_session, service, make_xact):
        make_xact(circulation=True, due_date=NOW - timedelta(days=4), stop_fines="CHECKIN")

        assert service.generate_overdue_fines() == {}


class TestLostItemReturn:
    """Lost item bills are voided or zeroed on return per negative-balance policy."""

    @pytest.fixture
    def lost_xact(self, service, make_xact):
        xact = make_xact(circulation=True, due_date=NOW - timedelta(days=40), stop_fines="LOST")
        service.ledger.create_bill(
            Decimal("25.00"),
            BTYPE_LOST_MATERIALS,
            "Lost materials",
            xact.id,
            billing_ts=NOW - timedelta(days=10),
        )
        return xact

    def test_prohibited_negative_balance_adjusts_to_zero(
        self, db_session, service, org_settings, penalties, lost_xact
    ):
        org_settings.set_value(PROHIBIT_NEGATIVE_BALANCE_ON_LOST, ROOT, True)
        db_session.commit()

        service.ledger.void_or_zero_bills_of_type(
            lost_xact.id, BRANCH, BTYPE_LOST_MATERIALS, "LOST ITEM RETURNED"
        )

        summary = BalanceService(db_session).xact_summary(lost_xact.id)
        assert summary.zero_owed
        assert summary.total_owed == Decimal("25.00")
        assert lost_xact.xact_finish is not None
        assert penalties.calls == [(PATRON_ID, BRANCH)]

    def test_recent_payment_is_refunded_by_voiding(
        self, db_session, service, org_settings, lost_xact, make_payment
    ):
        org_settings.set_value(PROHIBIT_NEGATIVE_BALANCE_ON_LOST, ROOT, True)
        org_settings.set_value(NEGATIVE_BALANCE_INTERVAL_ON_LOST, ROOT, "2 weeks")
        db_session.commit()
        make_payment(lost_xact, "10.00", NOW - timedelta(days=3))

        service.ledger.void_or_zero_bills_of_type(
            lost_xact.id, BRANCH, BTYPE_LOST_MATERIALS, "LOST ITEM RETURNED"
        )

        summary = BalanceService(db_session).xact_summary(lost_xact.id)
        assert summary.balance_owed == Decimal("-10.00")
        assert lost_xact.xact_finish is None

    def test_allowed_negative_balance_voids(self, db_session, service, lost_xact):
        service.ledger.void_or_zero_bills_of_type(
            lost_xact.id, BRANCH, BTYPE_LOST_MATERIALS, "LOST ITEM RETURNED"
        )

        bill = lost_xact.billings[0]
        assert bill.voided
        assert bill.voider_id == STAFF_ID
        assert bill.note.endswith("System: VOIDED LOST ITEM RETURNED")
