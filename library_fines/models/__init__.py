"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from library_fines.models.audit_log import AuditLog  # noqa: E402
from library_fines.models.billing import Billing, BillingType  # noqa: E402
from library_fines.models.org_unit import (  # noqa: E402
    ClosedDate,
    HoursOfOperation,
    OrgUnit,
    OrgUnitSetting,
)
from library_fines.models.payment import AccountAdjustment, Payment, PaymentType  # noqa: E402
from library_fines.models.transaction import BillableTransaction, Circulation  # noqa: E402

__all__ = [
    "Base",
    "BaseModel",
    "AuditLog",
    "OrgUnit",
    "OrgUnitSetting",
    "HoursOfOperation",
    "ClosedDate",
    "BillableTransaction",
    "Circulation",
    "BillingType",
    "Billing",
    "Payment",
    "PaymentType",
    "AccountAdjustment",
]
