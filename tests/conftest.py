"""Pytest configuration and shared fixtures for billing and fine tests."""

import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

# Set test database URL BEFORE any imports from library_fines
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from library_fines.models import Base  # noqa: E402
from library_fines.models.billing import (  # noqa: E402
    BTYPE_LOST_MATERIALS,
    BTYPE_OVERDUE_MATERIALS,
    Billing,
    BillingType,
)
from library_fines.models.org_unit import OrgUnit  # noqa: E402
from library_fines.models.payment import AccountAdjustment, Payment, PaymentType  # noqa: E402
from library_fines.models.transaction import BillableTransaction, Circulation  # noqa: E402

ROOT_ORG_ID = 1
BRANCH_ORG_ID = 2
PATRON_ID = 500


class DictSettings:
    """Settings provider backed by a dict, ignoring org inheritance."""

    def __init__(self, values: dict[str, Any] | None = None):
        self.values = dict(values or {})
        self.lookups: list[tuple[str, int]] = []

    def get_value_at_org(self, name: str, org_id: int) -> Any:
        self.lookups.append((name, org_id))
        return self.values.get(name)


class RecordingPenalties:
    """Penalty engine double that records every call."""

    def __init__(self):
        self.calls: list[tuple[int, int]] = []

    def calculate_penalties(self, user_id: int, org_id: int, context: Any = None) -> None:
        self.calls.append((user_id, org_id))


@pytest.fixture
def db_session():
    """Create test database session with all tables."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def org_tree(db_session):
    """Consortium root with one branch."""
    root = OrgUnit(id=ROOT_ORG_ID, shortname="CONS", name="Consortium")
    branch = OrgUnit(id=BRANCH_ORG_ID, parent_id=ROOT_ORG_ID, shortname="BR1", name="Branch One")
    db_session.add_all([root, branch])
    db_session.add_all(
        [
            BillingType(id=BTYPE_OVERDUE_MATERIALS, name="Overdue materials"),
            BillingType(id=BTYPE_LOST_MATERIALS, name="Lost materials"),
        ]
    )
    db_session.commit()
    return root, branch


@pytest.fixture
def settings():
    return DictSettings()


@pytest.fixture
def penalties():
    return RecordingPenalties()


@pytest.fixture
def make_xact(db_session, org_tree):
    """Factory for billable transactions (optionally circulations)."""

    def _make(
        user_id: int = PATRON_ID,
        org_id: int = BRANCH_ORG_ID,
        circulation: bool = False,
        due_date: datetime | None = None,
        stop_fines: str | None = None,
        xact_finish: datetime | None = None,
        **circ_fields,
    ) -> BillableTransaction:
        xact = BillableTransaction(
            user_id=user_id,
            context_org_id=org_id,
            xact_start=datetime(2025, 1, 1, tzinfo=timezone.utc),
            xact_finish=xact_finish,
        )
        db_session.add(xact)
        db_session.flush()

        if circulation:
            circ_fields.setdefault("target_copy_id", 7001)
            circ_fields.setdefault("recurring_fine", Decimal("0.25"))
            circ_fields.setdefault("fine_interval", "1 day")
            circ_fields.setdefault("max_fine", Decimal("5.00"))
            db_session.add(
                Circulation(
                    id=xact.id,
                    circ_lib_id=org_id,
                    due_date=due_date,
                    stop_fines=stop_fines,
                    **circ_fields,
                )
            )
        db_session.commit()
        return xact

    return _make


@pytest.fixture
def make_bill(db_session):
    """Factory for billings."""

    def _make(
        xact: BillableTransaction,
        amount: str,
        billing_ts: datetime,
        btype_id: int = BTYPE_OVERDUE_MATERIALS,
        voided: bool = False,
        note: str | None = None,
    ) -> Billing:
        bill = Billing(
            xact_id=xact.id,
            amount=Decimal(amount),
            btype_id=btype_id,
            billing_type="Overdue materials" if btype_id == BTYPE_OVERDUE_MATERIALS else "Lost materials",
            billing_ts=billing_ts,
            voided=voided,
            note=note,
        )
        db_session.add(bill)
        db_session.commit()
        return bill

    return _make


@pytest.fixture
def make_payment(db_session):
    """Factory for payments; pass adjust_bill to create an account adjustment."""

    def _make(
        xact: BillableTransaction,
        amount: str,
        payment_ts: datetime,
        payment_type: PaymentType = PaymentType.CASH,
        adjust_bill: Billing | None = None,
        voided: bool = False,
    ) -> Payment:
        if adjust_bill is not None:
            payment_type = PaymentType.ACCOUNT_ADJUSTMENT
        payment = Payment(
            xact_id=xact.id,
            amount=Decimal(amount),
            payment_ts=payment_ts,
            payment_type=payment_type,
            voided=voided,
        )
        db_session.add(payment)
        if adjust_bill is not None:
            db_session.add(
                AccountAdjustment(payment=payment, billing_id=adjust_bill.id, amount=Decimal(amount))
            )
        db_session.commit()
        return payment

    return _make
