"""Recurring overdue fine generation for circulations.

Fines accrue one billing per fine interval since the due date (or since the
most recent fine), up to the circulation's max fine. A grace period delays
the first fine; once it expires fines are charged from the due date.
"""

import logging
from datetime import datetime, timedelta, tzinfo
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from library_fines.models.billing import (
    BTYPE_LABEL_OVERDUE_MATERIALS,
    BTYPE_OVERDUE_MATERIALS,
    Billing,
)
from library_fines.models.org_unit import HoursOfOperation
from library_fines.models.payment import AccountAdjustment
from library_fines.models.transaction import Circulation
from library_fines.services import dates
from library_fines.services.errors import (
    BillingError,
    InvalidSettingError,
    MissingRequiredFieldError,
    NotFoundError,
)
from library_fines.services.grace_period import GracePeriodExtender
from library_fines.services.intervals import interval_to_seconds
from library_fines.services.ledger_service import LedgerService
from library_fines.services.money import from_cents, to_cents
from library_fines.services.penalty_service import PenaltyCalculator
from library_fines.services.settings_service import (
    FINES_CHARGE_WHEN_CLOSED,
    FINES_TRUNCATE_TO_MAX_FINE,
    LIB_TIMEZONE,
    CachedSettings,
    OrgSettingsService,
    SettingsProvider,
    as_bool,
)

logger = logging.getLogger(__name__)

FINE_NOTE = "System Generated Overdue Fine"


class FineService:
    """Generates overdue fine billings."""

    def __init__(
        self,
        db_session: Session,
        settings: SettingsProvider | None = None,
        requestor_id: int | None = None,
        penalties: PenaltyCalculator | None = None,
    ):
        """Initialize fine service.

        Args:
            db_session: SQLAlchemy database session
            settings: Org settings resolver (defaults to the database-backed one)
            requestor_id: Acting user passed to the ledger (optional)
            penalties: Penalty engine passed to the ledger (optional)
        """
        self.db = db_session
        self.settings = settings if settings is not None else OrgSettingsService(db_session)
        self.ledger = LedgerService(db_session, self.settings, requestor_id, penalties)

    def generate_fines_for_circ(self, circ_id: int) -> list[Billing]:
        """Generate pending fines for one circulation.

        Raises:
            NotFoundError: If the circulation does not exist
            MissingRequiredFieldError: If it has no due date or fine interval
        """
        circ = self.db.get(Circulation, circ_id)
        if circ is None:
            raise NotFoundError(f"No such circulation: {circ_id}")
        if circ.due_date is None:
            raise MissingRequiredFieldError(f"Circulation {circ_id} has no due date")
        if not circ.fine_interval:
            raise MissingRequiredFieldError(f"Circulation {circ_id} has no fine interval")

        return self.generate_fines_for_xact(
            xact_id=circ.id,
            due_date=circ.due_date,
            target_copy=circ.target_copy_id,
            circ_lib=circ.circ_lib_id,
            recurring_fine=circ.recurring_fine,
            fine_interval=circ.fine_interval,
            max_fine=circ.max_fine,
            grace_period=circ.grace_period,
        )

    def generate_overdue_fines(self) -> dict[int, int]:
        """Generate fines for every open overdue circulation.

        Each circulation is its own unit of work; a failure is logged and
        does not stop the run.

        Returns:
            Dict mapping circulation ID to number of fines created
        """
        now = dates.utcnow()
        circ_ids = self.db.execute(
            select(Circulation.id)
            .where(Circulation.stop_fines.is_(None), Circulation.due_date < now)
            .order_by(Circulation.due_date.asc(), Circulation.id.asc())
        ).scalars().all()

        logger.info("Fine generator found %d overdue circulations", len(circ_ids))

        results: dict[int, int] = {}
        for circ_id in circ_ids:
            try:
                results[circ_id] = len(self.generate_fines_for_circ(circ_id))
            except BillingError as e:
                logger.error("Fine generation failed for circulation %d: %s", circ_id, e.message)
        return results

    def current_fine_total(self, fines: list[Billing]) -> int:
        """Net overdue fines in cents: live fines less their live adjustments."""
        total = 0
        for fine in fines:
            if not fine.voided:
                total += to_cents(fine.amount)
            for adjustment in fine.adjustments:
                if not adjustment.voided:
                    total -= to_cents(adjustment.amount)
        return total

    def is_closed_at(
        self,
        circ_lib: int,
        moment: datetime,
        hours: HoursOfOperation | None,
        extender: GracePeriodExtender,
    ) -> bool:
        """True when moment falls on a closed weekday or inside a closed date."""
        if hours is not None and hours.is_closed_on(moment.weekday()):
            return True
        return bool(extender.closed_dates_covering(circ_lib, moment))

    def generate_fines_for_xact(
        self,
        xact_id: int,
        due_date: datetime,
        target_copy: int,
        circ_lib: int,
        recurring_fine: Decimal,
        fine_interval: str,
        max_fine: Decimal,
        grace_period: str | None = None,
    ) -> list[Billing]:
        """
        Create the overdue fines a transaction has accrued since its last fine.

        Args:
            xact_id: Transaction (circulation) ID
            due_date: When the item was due
            target_copy: Circulating item ID
            circ_lib: Org unit whose fine policy applies
            recurring_fine: Amount charged per interval
            fine_interval: Interval string between fines (e.g., "1 day")
            max_fine: Cap on total overdue fines
            grace_period: Interval string before the first fine (optional)

        Returns:
            Created Billing objects (empty when nothing was due)

        Raises:
            InvalidIntervalError: If an interval string is malformed
            InvalidSettingError: If lib.timezone at circ_lib is unknown
            NotFoundError: If the transaction does not exist
        """
        settings = CachedSettings(self.settings)

        interval = interval_to_seconds(fine_interval)
        grace = interval_to_seconds(grace_period or "0s")
        recurring_cents = to_cents(recurring_fine)
        max_cents = to_cents(max_fine)
        now = dates.utcnow()

        if interval <= 0 or recurring_cents == 0 or max_cents == 0:
            logger.info(
                "Fine generator skipping transaction %d due to 0 fine interval, "
                "0 fine rate, or 0 max fine",
                xact_id,
            )
            return []

        with self.ledger.atomic(xact_id):
            fines = list(
                self.db.execute(
                    select(Billing)
                    .options(selectinload(Billing.adjustments).selectinload(AccountAdjustment.payment))
                    .where(Billing.xact_id == xact_id, Billing.btype_id == BTYPE_OVERDUE_MATERIALS)
                    .order_by(Billing.billing_ts.desc(), Billing.id.desc())
                ).scalars().all()
            )
            current_total = self.current_fine_total(fines)
            logger.info(
                "Fine total for transaction %d is %s (item %d)",
                xact_id,
                from_cents(current_total),
                target_copy,
            )

            due = dates.as_aware(due_date)
            tz = fine_timezone(settings, circ_lib)
            extender = GracePeriodExtender(self.db, settings)

            # Only fines billed after the current due date count. Otherwise a
            # due date change would back-fill fines for time the item was
            # not overdue.
            fines = [fine for fine in fines if dates.as_aware(fine.billing_ts) > due]

            if fines:
                last_fine = dates.as_aware(fines[0].billing_ts)
            else:
                grace = extender.extend(circ_lib, grace, due.astimezone(tz))
                last_fine = due

            if last_fine > now:
                logger.warning("Transaction %d has a future last fine date %s", xact_id, last_fine)
                return []

            if not fines and grace > 0 and now < due + timedelta(seconds=grace):
                logger.info("Still within grace period for circulation %d", xact_id)
                return []

            elapsed = int((now - last_fine).total_seconds())
            # Include the interval we are currently inside.
            pending_fine_count = -(-elapsed // interval)
            if pending_fine_count <= 0:
                return []

            charge_when_closed = as_bool(
                settings.get_value_at_org(FINES_CHARGE_WHEN_CLOSED, circ_lib)
            )
            truncate_to_max_fine = as_bool(
                settings.get_value_at_org(FINES_TRUNCATE_TO_MAX_FINE, circ_lib)
            )
            hours = None if charge_when_closed else extender.hours_of_operation(circ_lib)

            created = self._bill_pending_periods(
                xact_id=xact_id,
                circ_lib=circ_lib,
                baseline=last_fine.astimezone(tz),
                interval=interval,
                pending_fine_count=pending_fine_count,
                recurring_cents=recurring_cents,
                max_cents=max_cents,
                current_total=current_total,
                truncate_to_max_fine=truncate_to_max_fine,
                charge_when_closed=charge_when_closed,
                hours=hours,
                extender=extender,
            )

            self.ledger.check_open_xact(xact_id)
            return created

    def _bill_pending_periods(
        self,
        *,
        xact_id: int,
        circ_lib: int,
        baseline: datetime,
        interval: int,
        pending_fine_count: int,
        recurring_cents: int,
        max_cents: int,
        current_total: int,
        truncate_to_max_fine: bool,
        charge_when_closed: bool,
        hours: HoursOfOperation | None,
        extender: GracePeriodExtender,
    ) -> list[Billing]:
        created = []
        step = timedelta(seconds=interval)

        for period in range(1, pending_fine_count + 1):
            if current_total >= max_cents:
                logger.info("Transaction %d reached max fine %s", xact_id, from_cents(max_cents))
                break

            period_start = baseline + step * (period - 1)
            billing_ts = baseline + step * period

            if not charge_when_closed and self.is_closed_at(circ_lib, billing_ts, hours, extender):
                logger.debug("Skipping fine for closed period ending %s", dates.to_iso8601(billing_ts))
                continue

            amount = recurring_cents
            if current_total + amount > max_cents:
                if not truncate_to_max_fine:
                    break
                amount = max_cents - current_total

            bill = self.ledger.create_bill(
                from_cents(amount),
                BTYPE_OVERDUE_MATERIALS,
                BTYPE_LABEL_OVERDUE_MATERIALS,
                xact_id,
                note=FINE_NOTE,
                period_start=period_start,
                period_end=billing_ts,
                billing_ts=billing_ts,
            )
            current_total += amount
            created.append(bill)

        return created


def fine_timezone(settings: SettingsProvider, circ_lib: int) -> tzinfo:
    """Timezone fine periods are computed in for an org unit.

    Raises:
        InvalidSettingError: If lib.timezone names an unknown zone
    """
    name = settings.get_value_at_org(LIB_TIMEZONE, circ_lib)
    try:
        return dates.resolve_timezone(name)
    except ValueError as e:
        raise InvalidSettingError(f"{LIB_TIMEZONE} at org {circ_lib}: {e}") from e


__all__ = ["FineService", "FINE_NOTE"]
