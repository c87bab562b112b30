"""Organizational unit ORM models: hierarchy, settings and operating calendar."""

from datetime import datetime, time
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Time, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from library_fines.models import Base, BaseModel

MIDNIGHT = time(0, 0, 0)


class OrgUnit(Base, BaseModel):
    """Model representing a library branch, system or consortium.

    Org units form a tree through parent_id. Settings resolve by walking
    from a unit up to the root.
    """

    __tablename__ = "org_units"

    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("org_units.id"),
        nullable=True,
        index=True,
        comment="Parent org unit (null for the root)",
    )
    shortname: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Short code, e.g. 'BR1'",
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name",
    )

    parent: Mapped["OrgUnit | None"] = relationship(
        "OrgUnit",
        remote_side="OrgUnit.id",
        foreign_keys=[parent_id],
    )

    def __repr__(self) -> str:
        return f"<OrgUnit(id={self.id}, shortname={self.shortname!r}, parent_id={self.parent_id})>"


class OrgUnitSetting(Base, BaseModel):
    """Configuration value set at a specific org unit."""

    __tablename__ = "org_unit_settings"

    org_unit_id: Mapped[int] = mapped_column(
        ForeignKey("org_units.id"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Setting name, e.g. 'circ.grace.extend'",
    )
    value: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
        comment="JSON-encoded setting value",
    )

    __table_args__ = (UniqueConstraint("org_unit_id", "name", name="uq_org_unit_setting"),)

    def __repr__(self) -> str:
        return (
            f"<OrgUnitSetting(org_unit_id={self.org_unit_id}, name={self.name!r}, "
            f"value={self.value!r})>"
        )


class HoursOfOperation(Base):
    """Weekly opening hours of an org unit.

    One row per org unit; the primary key is the org unit id.
    Day 0 is Monday. A day whose open and close are both 00:00:00 is
    fully closed.
    """

    __tablename__ = "hours_of_operation"

    id: Mapped[int] = mapped_column(ForeignKey("org_units.id"), primary_key=True)

    day_0_open: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    day_0_close: Mapped[time] = mapped_column(Time, nullable=False, default=time(17, 0))
    day_1_open: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    day_1_close: Mapped[time] = mapped_column(Time, nullable=False, default=time(17, 0))
    day_2_open: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    day_2_close: Mapped[time] = mapped_column(Time, nullable=False, default=time(17, 0))
    day_3_open: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    day_3_close: Mapped[time] = mapped_column(Time, nullable=False, default=time(17, 0))
    day_4_open: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    day_4_close: Mapped[time] = mapped_column(Time, nullable=False, default=time(17, 0))
    day_5_open: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    day_5_close: Mapped[time] = mapped_column(Time, nullable=False, default=time(17, 0))
    day_6_open: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    day_6_close: Mapped[time] = mapped_column(Time, nullable=False, default=time(17, 0))

    def is_closed_on(self, weekday: int) -> bool:
        """Return True when the branch is closed all day on weekday (0 = Monday)."""
        open_at = getattr(self, f"day_{weekday}_open")
        close_at = getattr(self, f"day_{weekday}_close")
        return open_at == MIDNIGHT and close_at == MIDNIGHT

    def closed_weekdays(self) -> set[int]:
        return {day for day in range(7) if self.is_closed_on(day)}

    def __repr__(self) -> str:
        return f"<HoursOfOperation(org_unit_id={self.id}, closed={sorted(self.closed_weekdays())})>"


class ClosedDate(Base, BaseModel):
    """Ad-hoc closure (holiday, emergency) overriding hours of operation."""

    __tablename__ = "closed_dates"

    org_unit_id: Mapped[int] = mapped_column(
        ForeignKey("org_units.id"),
        nullable=False,
        index=True,
    )
    close_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Closure start (UTC)",
    )
    close_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Closure end (UTC)",
    )
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (Index("idx_closed_date_org_range", "org_unit_id", "close_start", "close_end"),)

    def __repr__(self) -> str:
        return (
            f"<ClosedDate(id={self.id}, org_unit_id={self.org_unit_id}, "
            f"close_start={self.close_start}, close_end={self.close_end})>"
        )


__all__ = ["OrgUnit", "OrgUnitSetting", "HoursOfOperation", "ClosedDate", "MIDNIGHT"]
