"""Reconciliation session lifecycle.

A reconciliation moves through exactly one transition:

    in_progress -> completed
    in_progress -> cancelled

Every mutating operation locks the reconciliation row, checks it is still in
progress, applies its change and recomputes the line counters before
flushing. Committing is left to the caller so that each operation is a single
database transaction.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ledger_recon.config import settings
from ledger_recon.logger import get_logger, log_timing
from ledger_recon.models import (
    Account,
    AccountReconciliationStatus,
    MatchConfidence,
    Reconciliation,
    ReconciliationStatus,
    ReconciliationTransaction,
)
from ledger_recon.schemas.reconciliation import StatementLineInput
from ledger_recon.services.adjustments import (
    BalanceAdjustment,
    adjustments_total,
    append_adjustment,
    fold_adjustments,
)
from ledger_recon.services.exceptions import (
    InvalidReconciliationStateError,
    ReconciliationError,
    ReconciliationNotFoundError,
)
from ledger_recon.services.ledger import (
    get_account,
    get_ledger_transaction,
    list_ledger_transactions,
    update_account_reconciliation_status,
)
from ledger_recon.services.matching import (
    MatchingConfig,
    MatchResult,
    StatementEntry,
    load_matching_config,
    match_statement_lines,
)

logger = get_logger(__name__)

__all__ = [
    "InvalidReconciliationStateError",
    "ReconciliationError",
    "ReconciliationNotFoundError",
    "SkippedStatementLine",
    "UploadResult",
    "adjust_balance",
    "cancel_reconciliation",
    "complete_reconciliation",
    "get_reconciliation",
    "get_reconciliation_history",
    "match_transaction",
    "start_reconciliation",
    "unmatch_transaction",
    "upload_statement",
]


@dataclass(frozen=True)
class SkippedStatementLine:
    """A raw statement row rejected during upload."""

    index: int
    errors: list[str]


@dataclass
class UploadResult:
    reconciliation: Reconciliation
    skipped_lines: list[SkippedStatementLine] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_lines)


def _with_lines():
    return selectinload(Reconciliation.statement_lines).selectinload(ReconciliationTransaction.transaction)


async def _load_reconciliation(
    db: AsyncSession,
    reconciliation_id: UUID,
    user_id: UUID,
    *,
    for_update: bool = False,
) -> Reconciliation:
    query = (
        select(Reconciliation)
        .where(Reconciliation.id == reconciliation_id)
        .where(Reconciliation.user_id == user_id)
        .options(_with_lines())
    )
    if for_update:
        query = query.with_for_update(of=Reconciliation)
    result = await db.execute(query)
    reconciliation = result.scalar_one_or_none()
    if reconciliation is None:
        raise ReconciliationNotFoundError("Reconciliation", reconciliation_id)
    return reconciliation


async def _load_in_progress(db: AsyncSession, reconciliation_id: UUID, user_id: UUID) -> Reconciliation:
    reconciliation = await _load_reconciliation(db, reconciliation_id, user_id, for_update=True)
    if not reconciliation.is_in_progress:
        raise InvalidReconciliationStateError(
            f"Reconciliation {reconciliation_id} is {reconciliation.status.value}, not in progress"
        )
    return reconciliation


async def _load_in_progress_with_account(
    db: AsyncSession, reconciliation_id: UUID, user_id: UUID
) -> tuple[Reconciliation, Account]:
    """Lock the account row, then the reconciliation row, in the order start uses."""
    account_id = await db.scalar(
        select(Reconciliation.account_id)
        .where(Reconciliation.id == reconciliation_id)
        .where(Reconciliation.user_id == user_id)
    )
    if account_id is None:
        raise ReconciliationNotFoundError("Reconciliation", reconciliation_id)
    account = await get_account(db, account_id, user_id, for_update=True)
    reconciliation = await _load_in_progress(db, reconciliation_id, user_id)
    return reconciliation, account


def _find_line(reconciliation: Reconciliation, line_id: UUID) -> ReconciliationTransaction:
    for line in reconciliation.statement_lines:
        if line.id == line_id:
            return line
    raise ReconciliationNotFoundError("Reconciliation transaction", line_id)


def _refresh_counters(reconciliation: Reconciliation) -> None:
    """matched_count + unmatched_count always equals the number of lines."""
    lines = reconciliation.statement_lines
    matched = sum(1 for line in lines if line.matched)
    reconciliation.statement_transaction_count = len(lines)
    reconciliation.matched_count = matched
    reconciliation.unmatched_count = len(lines) - matched


def _format_errors(exc: ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return messages


def _parse_statement_lines(
    raw_lines: Sequence[Any],
) -> tuple[list[StatementEntry], list[SkippedStatementLine]]:
    entries: list[StatementEntry] = []
    skipped: list[SkippedStatementLine] = []
    for index, raw in enumerate(raw_lines):
        try:
            parsed = StatementLineInput.model_validate(raw)
        except ValidationError as exc:
            skipped.append(SkippedStatementLine(index=index, errors=_format_errors(exc)))
            continue
        entries.append(
            StatementEntry(
                amount=parsed.amount,
                txn_date=parsed.txn_date,
                description=parsed.description,
                reference_number=parsed.reference_number,
            )
        )
    return entries, skipped


def _build_line(line_number: int, entry: StatementEntry, result: MatchResult | None) -> ReconciliationTransaction:
    line = ReconciliationTransaction(
        line_number=line_number,
        statement_amount=entry.amount,
        statement_date=entry.txn_date,
        statement_description=entry.description,
        statement_reference_number=entry.reference_number,
        matched=False,
        is_manual_match=False,
        transaction=None,
    )
    if result is not None:
        line.transaction = result.transaction
        line.transaction_id = result.transaction.id
        line.matched = True
        line.match_confidence = result.confidence
        line.confidence_score = Decimal(result.score)
        line.matching_details = result.details.as_dict()
    return line


async def start_reconciliation(
    db: AsyncSession,
    user_id: UUID,
    *,
    account_id: UUID,
    start_date: date,
    end_date: date,
    statement_balance: Decimal,
    notes: str | None = None,
) -> Reconciliation:
    """Open a reconciliation for an account; only one may be in progress."""
    if start_date > end_date:
        raise ReconciliationError("start_date must be on or before end_date")

    account = await get_account(db, account_id, user_id, for_update=True)

    existing = await db.execute(
        select(Reconciliation.id)
        .where(Reconciliation.account_id == account_id)
        .where(Reconciliation.status == ReconciliationStatus.IN_PROGRESS)
        .limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        raise InvalidReconciliationStateError(f"Account {account_id} already has a reconciliation in progress")

    reconciliation = Reconciliation(
        account_id=account_id,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        statement_balance=statement_balance,
        difference=Decimal("0.00"),
        status=ReconciliationStatus.IN_PROGRESS,
        notes=notes,
        matched_count=0,
        unmatched_count=0,
        statement_transaction_count=0,
        summary={"adjustments": []},
        statement_lines=[],
    )
    db.add(reconciliation)
    update_account_reconciliation_status(account, AccountReconciliationStatus.IN_PROGRESS)

    try:
        await db.flush()
    except IntegrityError as exc:
        # A concurrent start for the same account won the partial unique index
        raise InvalidReconciliationStateError(
            f"Account {account_id} already has a reconciliation in progress"
        ) from exc

    logger.info(
        "Reconciliation started",
        reconciliation_id=str(reconciliation.id),
        account_id=str(account_id),
        start_date=start_date.isoformat(),
        end_date=end_date.isoformat(),
    )
    return reconciliation


async def upload_statement(
    db: AsyncSession,
    user_id: UUID,
    reconciliation_id: UUID,
    raw_lines: Sequence[Any],
    *,
    config: MatchingConfig | None = None,
) -> UploadResult:
    """Ingest statement lines and auto-match each one against the ledger.

    Rows failing validation are skipped and reported; the rest are stored
    whether or not a match was found.
    """
    reconciliation = await _load_in_progress(db, reconciliation_id, user_id)
    config = config or load_matching_config()

    entries, skipped = _parse_statement_lines(raw_lines)
    for skipped_line in skipped:
        logger.warning(
            "Statement line skipped",
            reconciliation_id=str(reconciliation_id),
            line_index=skipped_line.index,
            errors=skipped_line.errors,
        )

    candidates = await list_ledger_transactions(
        db,
        reconciliation.account_id,
        user_id,
        reconciliation.start_date,
        reconciliation.end_date,
        expense_only=settings.reconciliation_expense_only,
    )

    with log_timing(
        "match_statement_lines",
        logger=logger,
        reconciliation_id=str(reconciliation_id),
        lines=len(entries),
        candidates=len(candidates),
    ) as ctx:
        results = match_statement_lines(entries, candidates, config)
        ctx["matched"] = sum(1 for result in results if result is not None)

    first_line_number = len(reconciliation.statement_lines)
    for offset, (entry, result) in enumerate(zip(entries, results, strict=True)):
        reconciliation.statement_lines.append(_build_line(first_line_number + offset, entry, result))

    _refresh_counters(reconciliation)
    await db.flush()

    logger.info(
        "Statement uploaded",
        reconciliation_id=str(reconciliation_id),
        received=len(raw_lines),
        stored=len(entries),
        skipped=len(skipped),
        matched_count=reconciliation.matched_count,
        unmatched_count=reconciliation.unmatched_count,
    )
    return UploadResult(reconciliation=reconciliation, skipped_lines=skipped)


async def match_transaction(
    db: AsyncSession,
    user_id: UUID,
    reconciliation_id: UUID,
    line_id: UUID,
    transaction_id: UUID,
    notes: str | None = None,
) -> ReconciliationTransaction:
    """Manually link a statement line to a ledger transaction."""
    reconciliation = await _load_in_progress(db, reconciliation_id, user_id)
    line = _find_line(reconciliation, line_id)
    transaction = await get_ledger_transaction(db, transaction_id, user_id)

    line.transaction = transaction
    line.transaction_id = transaction.id
    line.matched = True
    line.match_confidence = MatchConfidence.MANUAL
    line.is_manual_match = True
    # A manual match is not backed by a computed score
    line.confidence_score = None
    line.matching_details = None
    if notes is not None:
        line.notes = notes

    _refresh_counters(reconciliation)
    await db.flush()

    logger.info(
        "Statement line matched manually",
        reconciliation_id=str(reconciliation_id),
        line_id=str(line_id),
        transaction_id=str(transaction_id),
    )
    return line


async def unmatch_transaction(
    db: AsyncSession,
    user_id: UUID,
    reconciliation_id: UUID,
    line_id: UUID,
) -> ReconciliationTransaction:
    """Remove a line's match. Unmatching an unmatched line is a no-op."""
    reconciliation = await _load_in_progress(db, reconciliation_id, user_id)
    line = _find_line(reconciliation, line_id)

    line.clear_match()

    _refresh_counters(reconciliation)
    await db.flush()

    logger.info(
        "Statement line unmatched",
        reconciliation_id=str(reconciliation_id),
        line_id=str(line_id),
    )
    return line


async def complete_reconciliation(
    db: AsyncSession,
    user_id: UUID,
    reconciliation_id: UUID,
    *,
    notes: str | None = None,
    adjustments: Iterable[BalanceAdjustment] = (),
) -> Reconciliation:
    """Close the reconciliation and record the balance difference.

    The reconciled balance is the sum of the matched lines' statement
    amounts, not of the ledger amounts they were matched to.
    """
    reconciliation, account = await _load_in_progress_with_account(db, reconciliation_id, user_id)
    _refresh_counters(reconciliation)

    reconciled_balance = sum(
        (line.statement_amount for line in reconciliation.statement_lines if line.matched),
        Decimal("0.00"),
    )
    difference = abs(reconciliation.statement_balance - reconciled_balance)
    entries = fold_adjustments(reconciliation.summary, adjustments)
    completed_at = datetime.now(UTC)

    reconciliation.reconciled_balance = reconciled_balance
    reconciliation.difference = difference
    reconciliation.summary = {
        "total_matched": reconciliation.matched_count,
        "total_unmatched": reconciliation.unmatched_count,
        "discrepancy_amount": str(difference),
        "adjustments": entries,
        "adjustments_total": str(adjustments_total(entries)),
    }
    if notes is not None:
        reconciliation.notes = notes
    reconciliation.completed_at = completed_at
    reconciliation.status = ReconciliationStatus.COMPLETED

    update_account_reconciliation_status(
        account,
        AccountReconciliationStatus.RECONCILED,
        last_reconciled_at=completed_at,
        last_reconciled_balance=reconciled_balance,
    )
    await db.flush()

    logger.info(
        "Reconciliation completed",
        reconciliation_id=str(reconciliation_id),
        reconciled_balance=str(reconciled_balance),
        difference=str(difference),
        adjustments=len(entries),
    )
    return reconciliation


async def cancel_reconciliation(db: AsyncSession, user_id: UUID, reconciliation_id: UUID) -> Reconciliation:
    """Abandon the reconciliation. Statement lines are kept for history."""
    reconciliation, account = await _load_in_progress_with_account(db, reconciliation_id, user_id)
    reconciliation.status = ReconciliationStatus.CANCELLED
    update_account_reconciliation_status(account, AccountReconciliationStatus.NONE)
    await db.flush()

    logger.info("Reconciliation cancelled", reconciliation_id=str(reconciliation_id))
    return reconciliation


async def adjust_balance(
    db: AsyncSession,
    user_id: UUID,
    reconciliation_id: UUID,
    *,
    amount: Decimal,
    reason: str,
) -> Reconciliation:
    """Record a balance adjustment; it only takes effect in the completion summary."""
    reconciliation = await _load_in_progress(db, reconciliation_id, user_id)
    adjustment = BalanceAdjustment(amount=amount, reason=reason)
    reconciliation.summary = append_adjustment(reconciliation.summary, adjustment)
    await db.flush()

    logger.info(
        "Balance adjustment recorded",
        reconciliation_id=str(reconciliation_id),
        amount=str(amount),
    )
    return reconciliation


async def get_reconciliation(db: AsyncSession, user_id: UUID, reconciliation_id: UUID) -> Reconciliation:
    return await _load_reconciliation(db, reconciliation_id, user_id)


async def get_reconciliation_history(db: AsyncSession, user_id: UUID, account_id: UUID) -> list[Reconciliation]:
    """All reconciliations of an account, newest first."""
    await get_account(db, account_id, user_id)
    result = await db.execute(
        select(Reconciliation)
        .where(Reconciliation.account_id == account_id)
        .where(Reconciliation.user_id == user_id)
        .order_by(Reconciliation.created_at.desc())
    )
    return list(result.scalars().all())
