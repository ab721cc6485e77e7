"""Ledger transaction model (read-only from the reconciliation side)."""

from __future__ import annotations

import enum
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, Enum, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ledger_recon.database import Base
from ledger_recon.models.base import TimestampMixin, UUIDMixin, enum_values


class TransactionType(str, enum.Enum):
    """Ledger transaction classification."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    LEND = "lend"
    BORROW = "borrow"
    GROUP = "group"


class Transaction(UUIDMixin, TimestampMixin, Base):
    """A transaction recorded by the user in their ledger."""

    __tablename__ = "transactions"

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="transaction_type_enum", values_callable=enum_values),
        nullable=False,
    )
    txn_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Transaction {self.txn_date} {self.amount} {self.description!r}>"


Index("ix_transactions_account_date", Transaction.account_id, Transaction.txn_date)
Index("ix_transactions_user_date", Transaction.user_id, Transaction.txn_date)
