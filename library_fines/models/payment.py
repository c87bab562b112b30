"""Payment and account adjustment ORM models."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from library_fines.models import Base, BaseModel


class PaymentType(str, Enum):
    """How a payment was made."""

    CASH = "cash_payment"
    CHECK = "check_payment"
    CREDIT_CARD = "credit_card_payment"
    WORK = "work_payment"
    FORGIVE = "forgive_payment"
    GOODS = "goods_payment"

    ACCOUNT_ADJUSTMENT = "account_adjustment"
    """Non-cash correction targeting one billing"""


class Payment(Base, BaseModel):
    """Money (or an adjustment marker) applied toward a transaction.

    Adjustment-type payments carry a one-to-one AccountAdjustment naming the
    billing they correct.
    """

    __tablename__ = "payments"

    xact_id: Mapped[int] = mapped_column(
        ForeignKey("billable_transactions.id"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    payment_ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    payment_type: Mapped[PaymentType] = mapped_column(
        String(30),
        nullable=False,
        default=PaymentType.CASH,
    )
    voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    accepting_user_id: Mapped[int | None] = mapped_column(nullable=True)

    transaction: Mapped["BillableTransaction"] = relationship(  # noqa: F821
        "BillableTransaction",
        back_populates="payments",
    )
    account_adjustment: Mapped["AccountAdjustment | None"] = relationship(
        "AccountAdjustment",
        back_populates="payment",
        uselist=False,
    )

    __table_args__ = (
        Index("idx_payment_xact_ts", "xact_id", "payment_ts"),
        Index("idx_payment_xact_type", "xact_id", "payment_type"),
    )

    @property
    def is_adjustment(self) -> bool:
        return self.payment_type == PaymentType.ACCOUNT_ADJUSTMENT

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, xact_id={self.xact_id}, amount={self.amount}, "
            f"payment_type={self.payment_type}, voided={self.voided})>"
        )


class AccountAdjustment(Base, BaseModel):
    """Non-cash correction that reduces one billing's balance."""

    __tablename__ = "account_adjustments"

    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id"),
        nullable=False,
        unique=True,
    )
    billing_id: Mapped[int] = mapped_column(
        ForeignKey("billings.id"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)

    payment: Mapped["Payment"] = relationship("Payment", back_populates="account_adjustment")
    billing: Mapped["Billing"] = relationship(  # noqa: F821
        "Billing",
        back_populates="adjustments",
    )

    @property
    def voided(self) -> bool:
        return bool(self.payment and self.payment.voided)

    def __repr__(self) -> str:
        return (
            f"<AccountAdjustment(id={self.id}, payment_id={self.payment_id}, "
            f"billing_id={self.billing_id}, amount={self.amount})>"
        )


__all__ = ["Payment", "PaymentType", "AccountAdjustment"]
