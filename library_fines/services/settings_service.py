"""Org-scoped configuration values ("library settings").

A setting applies at the org unit where it is set and at every descendant
that does not override it. Services depend on the SettingsProvider protocol;
OrgSettingsService is the database-backed implementation and CachedSettings
memoizes lookups for the duration of one operation.
"""

import logging
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from library_fines.models.org_unit import OrgUnit, OrgUnitSetting

logger = logging.getLogger(__name__)

# Setting names used by the billing subsystem
GRACE_EXTEND = "circ.grace.extend"
GRACE_EXTEND_ALL = "circ.grace.extend.all"
GRACE_EXTEND_INTO_CLOSED = "circ.grace.extend.into_closed"
FINES_CHARGE_WHEN_CLOSED = "circ.fines.charge_when_closed"
FINES_TRUNCATE_TO_MAX_FINE = "circ.fines.truncate_to_max_fine"
LIB_TIMEZONE = "lib.timezone"
PROHIBIT_NEGATIVE_BALANCE_ON_LOST = "bill.prohibit_negative_balance_on_lost"
PROHIBIT_NEGATIVE_BALANCE_DEFAULT = "bill.prohibit_negative_balance_default"
NEGATIVE_BALANCE_INTERVAL_ON_LOST = "bill.negative_balance_interval_on_lost"
NEGATIVE_BALANCE_INTERVAL_DEFAULT = "bill.negative_balance_interval_default"

TRUE_STRINGS = {"t", "true", "1", "yes", "on"}


class SettingsProvider(Protocol):
    """Resolves the effective value of a named setting at an org unit."""

    def get_value_at_org(self, name: str, org_id: int) -> Any:
        """Return the effective value, or None if unset at every ancestor."""
        ...


def as_bool(value: Any) -> bool:
    """Interpret a setting value as a boolean.

    Examples:
        >>> as_bool("t")
        True
        >>> as_bool(None)
        False
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


class OrgSettingsService:
    """Database-backed settings resolver walking the org unit tree."""

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    def ancestor_ids(self, org_id: int) -> list[int]:
        """Return org_id followed by its ancestors, nearest first."""
        chain: list[int] = []
        current: int | None = org_id
        while current is not None and current not in chain:
            chain.append(current)
            current = self.db.execute(
                select(OrgUnit.parent_id).where(OrgUnit.id == current)
            ).scalar_one_or_none()
        return chain

    def get_value_at_org(self, name: str, org_id: int) -> Any:
        """Resolve a setting at org_id, inheriting from the nearest ancestor.

        Args:
            name: Setting name (e.g., "circ.grace.extend")
            org_id: Org unit context

        Returns:
            Setting value or None if not set anywhere up the tree
        """
        chain = self.ancestor_ids(org_id)
        if not chain:
            return None

        rows = self.db.execute(
            select(OrgUnitSetting).where(
                OrgUnitSetting.name == name,
                OrgUnitSetting.org_unit_id.in_(chain),
            )
        ).scalars().all()
        by_org = {row.org_unit_id: row.value for row in rows}

        for ancestor_id in chain:
            if ancestor_id in by_org:
                return by_org[ancestor_id]
        return None

    def set_value(self, name: str, org_id: int, value: Any) -> OrgUnitSetting:
        """Create or replace a setting value at an org unit (not committed)."""
        setting = self.db.execute(
            select(OrgUnitSetting).where(
                OrgUnitSetting.name == name,
                OrgUnitSetting.org_unit_id == org_id,
            )
        ).scalar_one_or_none()

        if setting is None:
            setting = OrgUnitSetting(org_unit_id=org_id, name=name, value=value)
            self.db.add(setting)
        else:
            setting.value = value

        logger.debug("Setting %s=%r at org %d", name, value, org_id)
        return setting


class CachedSettings:
    """Per-operation memo over a SettingsProvider."""

    def __init__(self, provider: SettingsProvider):
        self.provider = provider
        self._cache: dict[tuple[str, int], Any] = {}

    def get_value_at_org(self, name: str, org_id: int) -> Any:
        key = (name, org_id)
        if key not in self._cache:
            self._cache[key] = self.provider.get_value_at_org(name, org_id)
        return self._cache[key]


__all__ = [
    "SettingsProvider",
    "OrgSettingsService",
    "CachedSettings",
    "as_bool",
    "GRACE_EXTEND",
    "GRACE_EXTEND_ALL",
    "GRACE_EXTEND_INTO_CLOSED",
    "FINES_CHARGE_WHEN_CLOSED",
    "FINES_TRUNCATE_TO_MAX_FINE",
    "LIB_TIMEZONE",
    "PROHIBIT_NEGATIVE_BALANCE_ON_LOST",
    "PROHIBIT_NEGATIVE_BALANCE_DEFAULT",
    "NEGATIVE_BALANCE_INTERVAL_ON_LOST",
    "NEGATIVE_BALANCE_INTERVAL_DEFAULT",
]
