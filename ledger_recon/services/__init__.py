"""Services package."""

from ledger_recon.services.adjustments import (
    BalanceAdjustment,
    append_adjustment,
    fold_adjustments,
)
from ledger_recon.services.exceptions import (
    InvalidReconciliationStateError,
    ReconciliationError,
    ReconciliationNotFoundError,
)
from ledger_recon.services.matching import (
    MatchDetails,
    MatchingConfig,
    MatchResult,
    MatchScore,
    StatementEntry,
    confidence_for_score,
    description_similarity,
    find_best_match,
    match_statement_lines,
    score_match,
)
from ledger_recon.services.reconciliation import (
    SkippedStatementLine,
    UploadResult,
    adjust_balance,
    cancel_reconciliation,
    complete_reconciliation,
    get_reconciliation,
    get_reconciliation_history,
    match_transaction,
    start_reconciliation,
    unmatch_transaction,
    upload_statement,
)

__all__ = [
    "BalanceAdjustment",
    "InvalidReconciliationStateError",
    "MatchDetails",
    "MatchResult",
    "MatchScore",
    "MatchingConfig",
    "ReconciliationError",
    "ReconciliationNotFoundError",
    "SkippedStatementLine",
    "StatementEntry",
    "UploadResult",
    "adjust_balance",
    "append_adjustment",
    "cancel_reconciliation",
    "complete_reconciliation",
    "confidence_for_score",
    "description_similarity",
    "find_best_match",
    "fold_adjustments",
    "get_reconciliation",
    "get_reconciliation_history",
    "match_statement_lines",
    "match_transaction",
    "score_match",
    "start_reconciliation",
    "unmatch_transaction",
    "upload_statement",
]
