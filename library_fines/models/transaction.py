"""Billable transaction and circulation ORM models."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from library_fines.models import Base, BaseModel


class BillableTransaction(Base, BaseModel):
    """Financial container aggregating the bills and payments of one episode.

    A transaction is open while xact_finish is null. The ledger closes it
    once nothing is owed and reopens it when the balance moves off zero.
    """

    __tablename__ = "billable_transactions"

    user_id: Mapped[int] = mapped_column(
        nullable=False,
        index=True,
        comment="Patron who owes the money",
    )
    context_org_id: Mapped[int] = mapped_column(
        ForeignKey("org_units.id"),
        nullable=False,
        index=True,
        comment="Org unit whose policies govern the transaction (billing location)",
    )
    xact_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    xact_finish: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Null while the transaction is open",
    )

    circulation: Mapped["Circulation | None"] = relationship(
        "Circulation",
        back_populates="transaction",
        uselist=False,
    )
    billings: Mapped[list["Billing"]] = relationship(  # noqa: F821
        "Billing",
        back_populates="transaction",
    )
    payments: Mapped[list["Payment"]] = relationship(  # noqa: F821
        "Payment",
        back_populates="transaction",
    )

    __table_args__ = (Index("idx_xact_user_finish", "user_id", "xact_finish"),)

    @property
    def is_open(self) -> bool:
        return self.xact_finish is None

    def __repr__(self) -> str:
        return (
            f"<BillableTransaction(id={self.id}, user_id={self.user_id}, "
            f"context_org_id={self.context_org_id}, xact_finish={self.xact_finish})>"
        )


class Circulation(Base):
    """Checkout of an item; shares its id with the owning transaction."""

    __tablename__ = "circulations"

    id: Mapped[int] = mapped_column(ForeignKey("billable_transactions.id"), primary_key=True)
    target_copy_id: Mapped[int] = mapped_column(
        nullable=False,
        index=True,
        comment="Circulating item",
    )
    circ_lib_id: Mapped[int] = mapped_column(
        ForeignKey("org_units.id"),
        nullable=False,
        index=True,
        comment="Circulating library (fine policy context)",
    )
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recurring_fine: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=0)
    fine_interval: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Interval string, e.g. '1 day'",
    )
    max_fine: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=0)
    grace_period: Mapped[str | None] = mapped_column(String(50), nullable=True)
    stop_fines: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        comment="Set once the circulation is finalized (CHECKIN, LOST, ...)",
    )
    stop_fines_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    checkin_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    transaction: Mapped["BillableTransaction"] = relationship(
        "BillableTransaction",
        back_populates="circulation",
    )

    __table_args__ = (Index("idx_circ_stop_fines_due", "stop_fines", "due_date"),)

    def __repr__(self) -> str:
        return (
            f"<Circulation(id={self.id}, target_copy_id={self.target_copy_id}, "
            f"due_date={self.due_date}, stop_fines={self.stop_fines})>"
        )


__all__ = ["BillableTransaction", "Circulation"]
