"""SQLAlchemy models package."""

from ledger_recon.models.account import Account, AccountReconciliationStatus
from ledger_recon.models.reconciliation import (
    MatchConfidence,
    Reconciliation,
    ReconciliationStatus,
    ReconciliationTransaction,
)
from ledger_recon.models.transaction import Transaction, TransactionType
from ledger_recon.models.user import User

# Alias: a reconciliation transaction is one line of the uploaded bank statement
StatementLine = ReconciliationTransaction

__all__ = [
    "Account",
    "AccountReconciliationStatus",
    "MatchConfidence",
    "Reconciliation",
    "ReconciliationStatus",
    "ReconciliationTransaction",
    "StatementLine",  # Alias for ReconciliationTransaction
    "Transaction",
    "TransactionType",
    "User",
]
