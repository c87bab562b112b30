"""Ledger operations over billings and billable transactions.

Provides methods for:
- Voiding billings
- Adjusting billings to zero with account adjustments
- Voiding or zeroing all billings of one type per negative-balance policy
- Creating billings
- Keeping the transaction open/closed state consistent with its balance

Every public mutating method is one atomic unit: the transaction row is
locked, the session commits on success and rolls back on error. Calls made
from inside another ledger operation join the outer unit.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from library_fines.models.billing import Billing
from library_fines.models.payment import AccountAdjustment, Payment, PaymentType
from library_fines.models.transaction import BillableTransaction
from library_fines.services import dates
from library_fines.services.allocation_service import AllocatedAdjustment, PaymentAllocationService
from library_fines.services.audit_service import AuditService
from library_fines.services.balance_service import BalanceService
from library_fines.services.errors import NotFoundError, RequestorRequiredError
from library_fines.services.intervals import interval_to_seconds
from library_fines.services.money import from_cents, quantize
from library_fines.services.penalty_service import NullPenaltyCalculator, PenaltyCalculator
from library_fines.services.settings_service import (
    NEGATIVE_BALANCE_INTERVAL_DEFAULT,
    NEGATIVE_BALANCE_INTERVAL_ON_LOST,
    PROHIBIT_NEGATIVE_BALANCE_DEFAULT,
    PROHIBIT_NEGATIVE_BALANCE_ON_LOST,
    CachedSettings,
    OrgSettingsService,
    SettingsProvider,
    as_bool,
)

logger = logging.getLogger(__name__)

SYSTEM_NOTE = "SYSTEM GENERATED"


class LedgerService:
    """Void, adjust and close operations over billings and transactions."""

    def __init__(
        self,
        db_session: Session,
        settings: SettingsProvider | None = None,
        requestor_id: int | None = None,
        penalties: PenaltyCalculator | None = None,
    ):
        """Initialize ledger service.

        Args:
            db_session: SQLAlchemy database session
            settings: Org settings resolver (defaults to the database-backed one)
            requestor_id: Acting user, required for voids and adjustments
            penalties: Penalty engine called after balance changes
        """
        self.db = db_session
        self.settings = settings if settings is not None else OrgSettingsService(db_session)
        self.requestor_id = requestor_id
        self.penalties = penalties if penalties is not None else NullPenaltyCalculator()
        self._depth = 0
        self._locked: set[int] = set()

    # ---- unit of work ----

    @contextmanager
    def atomic(self, xact_id: int | None = None) -> Iterator[None]:
        """Run a block as one unit of work, locking xact_id if given.

        The outermost block commits or rolls back; nested blocks only add
        locks.
        """
        self._depth += 1
        try:
            if xact_id is not None:
                self.lock_xact(xact_id)
            yield
            if self._depth == 1:
                self.db.commit()
        except Exception:
            if self._depth == 1:
                self.db.rollback()
            raise
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._locked.clear()

    def lock_xact(self, xact_id: int) -> BillableTransaction:
        """Load a transaction, taking a row lock the first time in this unit.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        stmt = select(BillableTransaction).where(BillableTransaction.id == xact_id)
        if xact_id not in self._locked:
            stmt = stmt.with_for_update()
        xact = self.db.execute(stmt).scalar_one_or_none()
        if xact is None:
            raise NotFoundError(f"No such transaction: {xact_id}")
        self._locked.add(xact_id)
        return xact

    def require_requestor(self) -> int:
        if self.requestor_id is None:
            raise RequestorRequiredError()
        return self.requestor_id

    # ---- lookups ----

    def retrieve_xact(self, xact_id: int) -> BillableTransaction:
        """Get transaction by ID.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        xact = self.db.get(BillableTransaction, xact_id)
        if xact is None:
            raise NotFoundError(f"No such transaction: {xact_id}")
        return xact

    def xact_org(self, xact_id: int) -> int:
        """Context org unit (billing location) of a transaction."""
        return self.retrieve_xact(xact_id).context_org_id

    # ---- open/closed invariant ----

    def check_open_xact(self, xact_id: int) -> bool:
        """Set or clear xact_finish as the balance requires.

        Closes an open transaction with nothing owed that is not an open
        circulation; reopens a closed transaction whose balance is non-zero.

        Args:
            xact_id: Transaction ID

        Returns:
            True if the transaction was closed or reopened

        Raises:
            NotFoundError: If the transaction does not exist
        """
        with self.atomic(xact_id):
            self.db.flush()
            xact = self.lock_xact(xact_id)
            summary = BalanceService(self.db).xact_summary(xact_id)

            circ = xact.circulation
            no_open_circ = circ is None or circ.stop_fines is not None

            if summary.zero_owed:
                if xact.is_open and no_open_circ:
                    logger.info("Closing completed transaction %d on zero balance", xact_id)
                    xact.xact_finish = dates.utcnow()
                    AuditService.record(self.db, xact, "close", self.requestor_id)
                    self.db.flush()
                    return True
            elif not xact.is_open:
                logger.info(
                    "Re-opening transaction %d on non-zero balance %s",
                    xact_id,
                    summary.balance_owed,
                )
                xact.xact_finish = None
                AuditService.record(
                    self.db,
                    xact,
                    "reopen",
                    self.requestor_id,
                    {"balance_owed": summary.balance_owed},
                )
                self.db.flush()
                return True

            return False

    # ---- billings ----

    def create_bill(
        self,
        amount: Decimal,
        btype_id: int,
        btype_label: str,
        xact_id: int,
        note: str | None = None,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        billing_ts: datetime | None = None,
    ) -> Billing:
        """Create a billing on a transaction.

        Args:
            amount: Amount to charge
            btype_id: Billing type ID
            btype_label: Billing type label stored on the billing
            xact_id: Transaction to charge
            note: Optional note (defaults to "SYSTEM GENERATED")
            period_start: Start of the period the charge covers (optional)
            period_end: End of the period the charge covers (optional)
            billing_ts: Billing time (defaults to now)

        Returns:
            Created Billing object
        """
        amount = quantize(amount)
        logger.info(
            "System is charging $%s [btype=%d:%s] on xact %d",
            amount,
            btype_id,
            btype_label,
            xact_id,
        )

        with self.atomic(xact_id):
            bill = Billing(
                xact_id=xact_id,
                amount=amount,
                btype_id=btype_id,
                billing_type=btype_label,
                note=note if note is not None else SYSTEM_NOTE,
                billing_ts=dates.to_utc(billing_ts) if billing_ts else dates.utcnow(),
                period_start=dates.to_utc(period_start) if period_start else None,
                period_end=dates.to_utc(period_end) if period_end else None,
            )
            self.db.add(bill)
            self.db.flush()
            self.check_open_xact(xact_id)
            return bill

    def void_bills(self, billing_ids: list[int], note: str | None = None) -> list[Billing]:
        """Void billings.

        Already voided billings are skipped. Penalties are recalculated once
        per distinct (user, org) touched.

        Args:
            billing_ids: Billing IDs to void
            note: Optional note appended to each billing's note

        Returns:
            Billings voided by this call

        Raises:
            RequestorRequiredError: If no requestor is set
            NotFoundError: If no billing matches or a billing's transaction is missing
        """
        requestor_id = self.require_requestor()

        with self.atomic():
            xact_ids = self.db.execute(
                select(Billing.xact_id).where(Billing.id.in_(billing_ids)).distinct()
            ).scalars().all()

            if not xact_ids:
                raise NotFoundError(f"No such billings: {list(billing_ids)}")

            # Transactions are always locked in ID order.
            xacts = {xact_id: self.lock_xact(xact_id) for xact_id in sorted(xact_ids)}

            # Read void state only once the locks are held.
            bills = self.db.execute(
                select(Billing)
                .where(Billing.id.in_(billing_ids))
                .order_by(Billing.id)
                .execution_options(populate_existing=True)
            ).scalars().all()

            penalty_users: set[tuple[int, int]] = set()
            voided = []

            for bill in bills:
                if bill.voided:
                    logger.debug("Billing %d already voided. Skipping", bill.id)
                    continue

                xact = xacts[bill.xact_id]
                penalty_users.add((xact.user_id, xact.context_org_id))

                bill.voided = True
                bill.voider_id = requestor_id
                bill.void_time = dates.utcnow()
                if note:
                    bill.note = f"{bill.note}\n{note}" if bill.note else note

                AuditService.record(
                    self.db, bill, "void", requestor_id, {"amount": bill.amount}
                )
                self.db.flush()
                voided.append(bill)

                self.check_open_xact(xact.id)

            self.recalculate_penalties(penalty_users)
            return voided

    def adjust_bills_to_zero(self, bill_ids: list[int], note: str) -> list[AccountAdjustment]:
        """Zero billings with account adjustments instead of voiding them.

        All billings must belong to the same transaction. A billing that is
        already fully adjusted is never adjusted again, and no adjustment
        exceeds what remains unpaid on the transaction.

        Args:
            bill_ids: Billing IDs on one transaction
            note: Note stored on each adjustment payment

        Returns:
            Created AccountAdjustment objects

        Raises:
            RequestorRequiredError: If no requestor is set
            NotFoundError: If the transaction is missing
        """
        requestor_id = self.require_requestor()

        bills = self.db.execute(
            select(Billing).where(Billing.id.in_(bill_ids)).order_by(Billing.id)
        ).scalars().all()
        if not bills:
            return []

        xact_id = bills[0].xact_id
        with self.atomic(xact_id):
            xact = self.db.execute(
                select(BillableTransaction)
                .options(selectinload(BillableTransaction.circulation))
                .where(BillableTransaction.id == xact_id)
            ).scalar_one_or_none()
            if xact is None:
                raise NotFoundError(f"Billing has no transaction: {xact_id}")

            bill_maps = PaymentAllocationService(self.db).bill_payment_map_for_xact(xact_id)
            if not bill_maps:
                return []
            maps_by_bill = {bill_map.bill.id: bill_map for bill_map in bill_maps}

            xact_total = sum(bill_map.remaining for bill_map in bill_maps)
            created = []

            for bill in bills:
                bill_map = maps_by_bill.get(bill.id)
                if bill_map is None:
                    continue

                amount_to_adjust = bill_map.bill_amount - bill_map.adjustment_amount
                if amount_to_adjust <= 0:
                    # Already adjusted; no double adjustments.
                    continue
                amount_to_adjust = min(amount_to_adjust, xact_total)
                if amount_to_adjust <= 0:
                    continue

                amount = from_cents(amount_to_adjust)
                payment = Payment(
                    xact_id=xact_id,
                    amount=amount,
                    payment_type=PaymentType.ACCOUNT_ADJUSTMENT,
                    payment_ts=dates.utcnow(),
                    accepting_user_id=requestor_id,
                    note=note,
                )
                adjustment = AccountAdjustment(payment=payment, billing_id=bill.id, amount=amount)
                self.db.add_all([payment, adjustment])
                self.db.flush()

                AuditService.record(self.db, bill, "adjust", requestor_id, {"amount": amount})

                bill_map.adjustment_amount += amount_to_adjust
                bill_map.adjustments.append(
                    AllocatedAdjustment(
                        id=adjustment.id,
                        payment_id=payment.id,
                        billing_id=bill.id,
                        amount=amount_to_adjust,
                    )
                )
                bill_map.bill.amount = max(bill_map.bill.amount - amount_to_adjust, 0)
                xact_total -= amount_to_adjust
                created.append(adjustment)

            self.check_open_xact(xact_id)
            self.recalculate_penalties({(xact.user_id, xact.context_org_id)})
            return created

    def void_or_zero_bills_of_type(
        self,
        xact_id: int,
        context_org: int,
        btype_id: int,
        for_note: str,
    ) -> None:
        """Void a transaction's billings of one type, or adjust them to zero.

        Adjusts when negative balances are prohibited at context_org and the
        transaction has no payment recent enough to be refundable; voids
        otherwise.

        Args:
            xact_id: Transaction ID
            context_org: Org unit whose policy applies
            btype_id: Billing type to void or zero
            for_note: Reason appended to the note ("LOST ITEM RETURNED", ...)

        Raises:
            NotFoundError: If the transaction does not exist
        """
        logger.info("Void/Zero Bills for xact=%d and btype=%d", xact_id, btype_id)

        # The void-or-adjust decision and the mutation share one lock.
        with self.atomic(xact_id):
            bill_ids = list(
                self.db.execute(
                    select(Billing.id).where(Billing.xact_id == xact_id, Billing.btype_id == btype_id)
                ).scalars().all()
            )
            if not bill_ids:
                return

            settings = CachedSettings(self.settings)

            # "lost" settings are checked first.
            prohibit_neg_balance = as_bool(
                settings.get_value_at_org(PROHIBIT_NEGATIVE_BALANCE_ON_LOST, context_org)
            ) or as_bool(settings.get_value_at_org(PROHIBIT_NEGATIVE_BALANCE_DEFAULT, context_org))

            neg_balance_interval = settings.get_value_at_org(
                NEGATIVE_BALANCE_INTERVAL_ON_LOST, context_org
            )
            if neg_balance_interval is None:
                neg_balance_interval = settings.get_value_at_org(
                    NEGATIVE_BALANCE_INTERVAL_DEFAULT, context_org
                )

            has_refundable = False
            if isinstance(neg_balance_interval, str) and neg_balance_interval.strip():
                has_refundable = self.xact_has_payment_within(xact_id, neg_balance_interval)

            if prohibit_neg_balance and not has_refundable:
                self.adjust_bills_to_zero(bill_ids, f"System: ADJUSTED {for_note}")
            else:
                self.void_bills(bill_ids, f"System: VOIDED {for_note}")

    # ---- payments ----

    def xact_has_payment_within(self, xact_id: int, interval: str) -> bool:
        """Return True if the latest real payment is newer than now minus interval.

        Account adjustments and voided payments do not count.
        """
        last_payment = self.db.execute(
            select(Payment)
            .where(
                Payment.xact_id == xact_id,
                Payment.payment_type != PaymentType.ACCOUNT_ADJUSTMENT.value,
                Payment.voided.is_(False),
            )
            .order_by(Payment.payment_ts.desc())
            .limit(1)
        ).scalar_one_or_none()

        if last_payment is None:
            return False

        window_start = dates.utcnow() - timedelta(seconds=interval_to_seconds(interval))
        return dates.as_aware(last_payment.payment_ts) > window_start

    # ---- penalties ----

    def recalculate_penalties(self, user_orgs: set[tuple[int, int]]) -> None:
        """Run the penalty engine once per distinct (user, org) pair."""
        for user_id, org_id in sorted(user_orgs):
            self.penalties.calculate_penalties(user_id, org_id)


__all__ = ["LedgerService", "SYSTEM_NOTE"]
