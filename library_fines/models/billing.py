"""Billing ORM models: charges placed on billable transactions."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from library_fines.models import Base, BaseModel

BTYPE_OVERDUE_MATERIALS = 1
BTYPE_LONG_OVERDUE_COLLECTION_FEE = 2
BTYPE_LOST_MATERIALS = 3
BTYPE_LOST_MATERIALS_PROCESSING_FEE = 4
BTYPE_DEPOSIT = 5
BTYPE_RENTAL = 6
BTYPE_DAMAGED_ITEM = 7

BTYPE_LABEL_OVERDUE_MATERIALS = "Overdue materials"


class BillingType(Base):
    """Kind of charge (overdue fine, lost item, processing fee, ...)."""

    __tablename__ = "billing_types"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<BillingType(id={self.id}, name={self.name!r})>"


class Billing(Base, BaseModel):
    """A single charge line on a transaction.

    Billings are never deleted. Voiding marks them and removes them from the
    balance; a voided billing is never voided again.
    """

    __tablename__ = "billings"

    xact_id: Mapped[int] = mapped_column(
        ForeignKey("billable_transactions.id"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    btype_id: Mapped[int] = mapped_column(
        ForeignKey("billing_types.id"),
        nullable=False,
        index=True,
    )
    billing_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Billing type label at the time of billing",
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    voider_id: Mapped[int | None] = mapped_column(nullable=True, comment="User who voided the bill")
    void_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    billing_ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    transaction: Mapped["BillableTransaction"] = relationship(  # noqa: F821
        "BillableTransaction",
        back_populates="billings",
    )
    adjustments: Mapped[list["AccountAdjustment"]] = relationship(  # noqa: F821
        "AccountAdjustment",
        back_populates="billing",
    )

    __table_args__ = (
        Index("idx_billing_xact_ts", "xact_id", "billing_ts"),
        Index("idx_billing_xact_btype", "xact_id", "btype_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Billing(id={self.id}, xact_id={self.xact_id}, amount={self.amount}, "
            f"btype_id={self.btype_id}, voided={self.voided})>"
        )


__all__ = [
    "Billing",
    "BillingType",
    "BTYPE_OVERDUE_MATERIALS",
    "BTYPE_LONG_OVERDUE_COLLECTION_FEE",
    "BTYPE_LOST_MATERIALS",
    "BTYPE_LOST_MATERIALS_PROCESSING_FEE",
    "BTYPE_DEPOSIT",
    "BTYPE_RENTAL",
    "BTYPE_DAMAGED_ITEM",
    "BTYPE_LABEL_OVERDUE_MATERIALS",
]
