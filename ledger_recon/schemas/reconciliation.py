"""Pydantic schemas for the reconciliation API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ledger_recon.models import MatchConfidence, ReconciliationStatus, TransactionType
from ledger_recon.schemas.base import BaseResponse, ListResponse

MAX_STATEMENT_LINES = 5000


class StartReconciliationRequest(BaseModel):
    """Request body to open a reconciliation for an account and period."""

    account_id: UUID
    start_date: date
    end_date: date
    statement_balance: Decimal = Field(..., max_digits=15, decimal_places=2)
    notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_period(self) -> "StartReconciliationRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class StatementLineInput(BaseModel):
    """One line of a parsed bank statement.

    Raw upload rows are validated against this one at a time, so a bad row
    is reported and skipped instead of rejecting the whole upload.
    """

    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal = Field(..., max_digits=15, decimal_places=2)
    txn_date: date = Field(..., alias="date")
    description: str = Field(..., max_length=500)
    reference_number: str | None = Field(default=None, max_length=100, alias="referenceNumber")

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("description must not be empty")
        return v


class UploadStatementRequest(BaseModel):
    """Statement lines as parsed by the import module.

    Rows stay untyped here; each one is validated on its own during upload.
    """

    transactions: list[Any] = Field(..., max_length=MAX_STATEMENT_LINES)


class MatchTransactionRequest(BaseModel):
    reconciliation_transaction_id: UUID
    transaction_id: UUID
    notes: str | None = Field(default=None, max_length=2000)


class UnmatchTransactionRequest(BaseModel):
    reconciliation_transaction_id: UUID


class BalanceAdjustmentInput(BaseModel):
    """An ad-hoc correction recorded against a reconciliation."""

    amount: Decimal = Field(..., max_digits=15, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=500)


class AdjustBalanceRequest(BalanceAdjustmentInput):
    pass


class CompleteReconciliationRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)
    adjustments: list[BalanceAdjustmentInput] = Field(default_factory=list)


class MatchDetailsResponse(BaseModel):
    """Score breakdown as stored with the statement line."""

    model_config = ConfigDict(populate_by_name=True)

    amount_match: bool = Field(alias="amountMatch")
    date_match: bool = Field(alias="dateMatch")
    date_difference: int = Field(alias="dateDifference")
    description_similarity: float = Field(alias="descriptionSimilarity")


class LedgerTransactionSummary(BaseResponse):
    """Ledger transaction linked to a statement line."""

    id: UUID
    description: str
    amount: Decimal
    type: TransactionType
    txn_date: date
    reference_number: str | None = None


class StatementLineResponse(BaseResponse):
    id: UUID
    reconciliation_id: UUID
    line_number: int
    transaction_id: UUID | None
    matched: bool
    match_confidence: MatchConfidence | None
    confidence_score: Decimal | None
    statement_amount: Decimal
    statement_date: date
    statement_description: str
    statement_reference_number: str | None
    notes: str | None
    is_manual_match: bool
    matching_details: MatchDetailsResponse | None
    created_at: datetime
    transaction: LedgerTransactionSummary | None = None


class ReconciliationSummaryResponse(BaseResponse):
    """Reconciliation header without statement lines."""

    id: UUID
    account_id: UUID
    user_id: UUID
    start_date: date
    end_date: date
    statement_balance: Decimal
    reconciled_balance: Decimal | None
    difference: Decimal
    status: ReconciliationStatus
    completed_at: datetime | None
    notes: str | None
    matched_count: int
    unmatched_count: int
    statement_transaction_count: int
    summary: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime


class ReconciliationResponse(ReconciliationSummaryResponse):
    """Reconciliation with every statement line."""

    statement_lines: list[StatementLineResponse] = Field(default_factory=list)


class SkippedLine(BaseModel):
    """A raw statement row that failed validation."""

    index: int
    errors: list[str]


class UploadStatementResponse(BaseModel):
    reconciliation: ReconciliationResponse
    skipped_lines: list[SkippedLine] = Field(default_factory=list)
    skipped_count: int = 0


ReconciliationHistoryResponse = ListResponse[ReconciliationSummaryResponse]
