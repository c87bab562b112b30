"""Grace period extension over closed days.

A multi-day grace period should not run out while the library is closed:
a patron returning an item on the first open day after the grace window
must not be fined. When circ.grace.extend is on, the grace period grows by
one day for every closed weekday or closed date found while walking the
calendar from the due date.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from library_fines.models.org_unit import ClosedDate, HoursOfOperation
from library_fines.services.dates import DAY, DAY_OF_SECONDS, as_aware, to_iso8601, to_utc
from library_fines.services.settings_service import (
    GRACE_EXTEND,
    GRACE_EXTEND_ALL,
    GRACE_EXTEND_INTO_CLOSED,
    SettingsProvider,
    as_bool,
)

logger = logging.getLogger(__name__)

MAX_SCAN_DAYS = 366


class GracePeriodExtender:
    """Extends grace periods to skip an org unit's non-operating days."""

    def __init__(self, db_session: Session, settings: SettingsProvider):
        """Initialize with database session and settings provider."""
        self.db = db_session
        self.settings = settings

    def hours_of_operation(self, org_id: int) -> HoursOfOperation | None:
        return self.db.get(HoursOfOperation, org_id)

    def closed_dates_covering(self, org_id: int, moment: datetime) -> list[ClosedDate]:
        """Closed date ranges of an org unit that include moment."""
        moment = to_utc(moment)
        return list(
            self.db.execute(
                select(ClosedDate)
                .where(
                    ClosedDate.org_unit_id == org_id,
                    ClosedDate.close_start <= moment,
                    ClosedDate.close_end >= moment,
                )
                .order_by(ClosedDate.close_start.asc())
            ).scalars().all()
        )

    def extend(
        self,
        context_org: int,
        grace_period: int,
        due_date: datetime,
        hours: HoursOfOperation | None = None,
    ) -> int:
        """
        Extend a grace period past closed days.

        Args:
            context_org: Org unit whose calendar and settings apply
            grace_period: Grace period in seconds
            due_date: Due date; weekdays are taken in its own timezone
            hours: Hours of operation, fetched when not supplied

        Returns:
            Grace period in seconds, never less than the input
        """
        if grace_period < DAY_OF_SECONDS:
            # Only extended for intervals of a day or more.
            return grace_period

        if not as_bool(self.settings.get_value_at_org(GRACE_EXTEND, context_org)):
            return grace_period

        if hours is None:
            hours = self.hours_of_operation(context_org)
        if hours is None:
            # Hours of operation are required for extension
            return grace_period

        closed_weekdays = hours.closed_weekdays()
        if len(closed_weekdays) == 7:
            # Cannot extend if the branch is never open.
            return grace_period

        due_date = as_aware(due_date)
        orig_due = due_date
        scan = due_date

        if as_bool(self.settings.get_value_at_org(GRACE_EXTEND_INTO_CLOSED, context_org)):
            # Merge closed days trailing the grace period into it.
            scan = scan + DAY

        if as_bool(self.settings.get_value_at_org(GRACE_EXTEND_ALL, context_org)):
            # Start checking the day after the item was due.
            scan = scan + DAY
        else:
            # Jump to the end of the grace period.
            scan = scan + timedelta(seconds=grace_period)

        new_grace_period = grace_period
        for _ in range(MAX_SCAN_DAYS):
            closed = False

            if scan.weekday() in closed_weekdays:
                closed = True
                new_grace_period += DAY_OF_SECONDS
                scan = scan + DAY
            else:
                # Hours of operation say we're open, but there may be a
                # configured closed date.
                closures = self.closed_dates_covering(context_org, scan)
                if closures:
                    closed = True
                    for closure in closures:
                        if scan <= as_aware(closure.close_end):
                            new_grace_period += DAY_OF_SECONDS
                            scan = scan + DAY
                else:
                    scan = scan + DAY

            if not closed and scan > orig_due + timedelta(seconds=new_grace_period):
                break

        if new_grace_period > grace_period:
            logger.info(
                "Grace period extended from %ds to %ds (scan reached %s) at org %d",
                grace_period,
                new_grace_period,
                to_iso8601(scan),
                context_org,
            )

        return new_grace_period


__all__ = ["GracePeriodExtender", "MAX_SCAN_DAYS"]
