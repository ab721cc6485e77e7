"""Pydantic schemas package."""

from ledger_recon.schemas.base import BaseResponse, ListResponse
from ledger_recon.schemas.reconciliation import (
    AdjustBalanceRequest,
    BalanceAdjustmentInput,
    CompleteReconciliationRequest,
    LedgerTransactionSummary,
    MatchDetailsResponse,
    MatchTransactionRequest,
    ReconciliationHistoryResponse,
    ReconciliationResponse,
    ReconciliationSummaryResponse,
    SkippedLine,
    StartReconciliationRequest,
    StatementLineInput,
    StatementLineResponse,
    UnmatchTransactionRequest,
    UploadStatementRequest,
    UploadStatementResponse,
)

__all__ = [
    "AdjustBalanceRequest",
    "BalanceAdjustmentInput",
    "BaseResponse",
    "CompleteReconciliationRequest",
    "LedgerTransactionSummary",
    "ListResponse",
    "MatchDetailsResponse",
    "MatchTransactionRequest",
    "ReconciliationHistoryResponse",
    "ReconciliationResponse",
    "ReconciliationSummaryResponse",
    "SkippedLine",
    "StartReconciliationRequest",
    "StatementLineInput",
    "StatementLineResponse",
    "UnmatchTransactionRequest",
    "UploadStatementRequest",
    "UploadStatementResponse",
]
