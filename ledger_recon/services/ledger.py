"""Data access for the accounts and ledger transactions being reconciled."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_recon.models import Account, AccountReconciliationStatus, Transaction, TransactionType
from ledger_recon.services.exceptions import ReconciliationNotFoundError


async def get_account(
    db: AsyncSession,
    account_id: UUID,
    user_id: UUID,
    *,
    for_update: bool = False,
) -> Account:
    """Load an account owned by ``user_id``, optionally locking its row."""
    query = select(Account).where(Account.id == account_id).where(Account.user_id == user_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    account = result.scalar_one_or_none()
    if account is None:
        raise ReconciliationNotFoundError("Account", account_id)
    return account


async def list_ledger_transactions(
    db: AsyncSession,
    account_id: UUID,
    user_id: UUID,
    start_date: date,
    end_date: date,
    *,
    expense_only: bool = True,
) -> list[Transaction]:
    """Candidate ledger transactions for a statement period (inclusive)."""
    query = (
        select(Transaction)
        .where(Transaction.account_id == account_id)
        .where(Transaction.user_id == user_id)
        .where(Transaction.txn_date >= start_date)
        .where(Transaction.txn_date <= end_date)
        .where(Transaction.is_deleted == False)  # noqa: E712
    )
    if expense_only:
        query = query.where(Transaction.type == TransactionType.EXPENSE)
    query = query.order_by(Transaction.txn_date.asc(), Transaction.created_at.asc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_ledger_transaction(db: AsyncSession, transaction_id: UUID, user_id: UUID) -> Transaction:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .where(Transaction.user_id == user_id)
        .where(Transaction.is_deleted == False)  # noqa: E712
    )
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise ReconciliationNotFoundError("Transaction", transaction_id)
    return transaction


def update_account_reconciliation_status(
    account: Account,
    status: AccountReconciliationStatus,
    last_reconciled_at: datetime | None = None,
    last_reconciled_balance: Decimal | None = None,
) -> None:
    """Set the account's reconciliation marker; the caller flushes."""
    account.reconciliation_status = status
    if last_reconciled_at is not None:
        account.last_reconciled_at = last_reconciled_at
    if last_reconciled_balance is not None:
        account.last_reconciled_balance = last_reconciled_balance
