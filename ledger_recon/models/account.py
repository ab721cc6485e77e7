"""Account model with reconciliation tracking."""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ledger_recon.database import Base
from ledger_recon.models.base import TimestampMixin, UUIDMixin, enum_values


class AccountReconciliationStatus(str, enum.Enum):
    """Reconciliation state shown on the account itself."""

    NONE = "none"
    IN_PROGRESS = "in_progress"
    RECONCILED = "reconciled"


class Account(UUIDMixin, TimestampMixin, Base):
    """
    A user's bank, card or cash account.

    Only the reconciliation fields are written by this service; everything else
    is maintained by the account management module.
    """

    __tablename__ = "accounts"

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    reconciliation_status: Mapped[AccountReconciliationStatus] = mapped_column(
        Enum(
            AccountReconciliationStatus,
            name="account_reconciliation_status_enum",
            values_callable=enum_values,
        ),
        nullable=False,
        default=AccountReconciliationStatus.NONE,
    )
    last_reconciled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_reconciled_balance: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.name} ({self.reconciliation_status.value})>"

