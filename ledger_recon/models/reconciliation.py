"""Reconciliation session and statement line models."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_recon.database import Base
from ledger_recon.models.account import Account
from ledger_recon.models.base import JSONType, TimestampMixin, UUIDMixin, enum_values
from ledger_recon.models.transaction import Transaction


class ReconciliationStatus(str, Enum):
    """Lifecycle state of a reconciliation session."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MatchConfidence(str, Enum):
    """Confidence tier for a statement line match."""

    EXACT = "exact"  # 100
    HIGH = "high"  # 80-99
    MEDIUM = "medium"  # 60-79
    LOW = "low"  # <60
    MANUAL = "manual"  # Matched by a person


class Reconciliation(UUIDMixin, TimestampMixin, Base):
    """One reconciliation of an account against a bank statement period."""

    __tablename__ = "reconciliations"

    account_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    statement_balance: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    reconciled_balance: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    difference: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    status: Mapped[ReconciliationStatus] = mapped_column(
        SQLEnum(
            ReconciliationStatus,
            name="reconciliation_status_enum",
            values_callable=enum_values,
        ),
        nullable=False,
        default=ReconciliationStatus.IN_PROGRESS,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    matched_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unmatched_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    statement_transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Holds the adjustment ledger while in progress and the full summary once completed
    summary: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    account: Mapped[Account] = relationship(Account)
    statement_lines: Mapped[list[ReconciliationTransaction]] = relationship(
        "ReconciliationTransaction",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
        order_by="ReconciliationTransaction.line_number",
    )

    @property
    def is_in_progress(self) -> bool:
        return self.status == ReconciliationStatus.IN_PROGRESS

    def __repr__(self) -> str:
        return f"<Reconciliation {self.id} {self.status.value}>"


class ReconciliationTransaction(UUIDMixin, Base):
    """A single bank statement line and its (optional) ledger match."""

    __tablename__ = "reconciliation_transactions"

    reconciliation_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("reconciliations.id", ondelete="CASCADE"),
        nullable=False,
    )
    transaction_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("transactions.id", ondelete="SET NULL"),
        nullable=True,
    )
    matched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    match_confidence: Mapped[MatchConfidence | None] = mapped_column(
        SQLEnum(MatchConfidence, name="match_confidence_enum", values_callable=enum_values),
        nullable=True,
    )
    confidence_score: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    # Position within the session, across all uploads
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    statement_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    statement_date: Mapped[date] = mapped_column(Date, nullable=False)
    statement_description: Mapped[str] = mapped_column(String(500), nullable=False)
    statement_reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_manual_match: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Score breakdown from the matcher, kept for audit
    matching_details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    reconciliation: Mapped[Reconciliation] = relationship(
        "Reconciliation",
        back_populates="statement_lines",
    )
    transaction: Mapped[Transaction | None] = relationship(Transaction)

    def clear_match(self) -> None:
        """Drop the ledger link and every field derived from it."""
        self.transaction_id = None
        self.transaction = None
        self.matched = False
        self.match_confidence = None
        self.confidence_score = None
        self.matching_details = None
        self.is_manual_match = False

    def __repr__(self) -> str:
        return f"<ReconciliationTransaction {self.statement_date} {self.statement_amount} matched={self.matched}>"


Index(
    "ix_reconciliations_account_status",
    Reconciliation.account_id,
    Reconciliation.status,
)
Index(
    "ix_reconciliations_user_created",
    Reconciliation.user_id,
    Reconciliation.created_at,
)
# At most one in-progress reconciliation per account
Index(
    "uq_reconciliations_account_in_progress",
    Reconciliation.account_id,
    unique=True,
    postgresql_where=text("status = 'in_progress'"),
    sqlite_where=text("status = 'in_progress'"),
)
Index(
    "ix_reconciliation_transactions_reconciliation_matched",
    ReconciliationTransaction.reconciliation_id,
    ReconciliationTransaction.matched,
)
Index(
    "uq_reconciliation_transactions_line",
    ReconciliationTransaction.reconciliation_id,
    ReconciliationTransaction.line_number,
    unique=True,
)
