"""Reconciliation API router."""

from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_recon.deps import CurrentUserId, DbSession
from ledger_recon.logger import get_logger, log_exception
from ledger_recon.schemas import (
    AdjustBalanceRequest,
    CompleteReconciliationRequest,
    MatchTransactionRequest,
    ReconciliationHistoryResponse,
    ReconciliationResponse,
    ReconciliationSummaryResponse,
    SkippedLine,
    StartReconciliationRequest,
    StatementLineResponse,
    UnmatchTransactionRequest,
    UploadStatementRequest,
    UploadStatementResponse,
)
from ledger_recon.services import (
    BalanceAdjustment,
    ReconciliationError,
    ReconciliationNotFoundError,
)
from ledger_recon.services import reconciliation as reconciliation_service
from ledger_recon.utils import raise_bad_request, raise_not_found

router = APIRouter(prefix="/reconciliations", tags=["reconciliations"])
logger = get_logger(__name__)


async def _reject(db: AsyncSession, exc: ReconciliationError, **context: str) -> NoReturn:
    """Roll back the request's transaction and map the service error to HTTP."""
    await db.rollback()
    if isinstance(exc, ReconciliationNotFoundError):
        logger.info("Reconciliation resource not found", resource=exc.resource, **context)
        raise_not_found(exc.resource, cause=exc)
    log_exception(
        logger,
        exc,
        "Reconciliation operation rejected",
        level="warning",
        include_traceback=False,
        **context,
    )
    raise_bad_request(str(exc), cause=exc)


@router.post("/start", response_model=ReconciliationResponse, status_code=status.HTTP_201_CREATED)
async def start_reconciliation(
    payload: StartReconciliationRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationResponse:
    """Start reconciling an account against a statement period."""
    try:
        reconciliation = await reconciliation_service.start_reconciliation(
            db,
            user_id,
            account_id=payload.account_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            statement_balance=payload.statement_balance,
            notes=payload.notes,
        )
        await db.commit()
    except ReconciliationError as exc:
        await _reject(db, exc, account_id=str(payload.account_id))
    return ReconciliationResponse.model_validate(reconciliation)


@router.post("/{reconciliation_id}/upload-statement", response_model=UploadStatementResponse)
async def upload_statement(
    reconciliation_id: UUID,
    payload: UploadStatementRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> UploadStatementResponse:
    """Upload parsed statement lines and auto-match them.

    Rows that fail validation are skipped and listed in ``skipped_lines``.
    """
    try:
        result = await reconciliation_service.upload_statement(
            db, user_id, reconciliation_id, payload.transactions
        )
        await db.commit()
    except ReconciliationError as exc:
        await _reject(db, exc, reconciliation_id=str(reconciliation_id))

    return UploadStatementResponse(
        reconciliation=ReconciliationResponse.model_validate(result.reconciliation),
        skipped_lines=[SkippedLine(index=line.index, errors=line.errors) for line in result.skipped_lines],
        skipped_count=result.skipped_count,
    )


@router.get("/history/{account_id}", response_model=ReconciliationHistoryResponse)
async def get_reconciliation_history(
    account_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationHistoryResponse:
    """List an account's reconciliations, newest first."""
    try:
        reconciliations = await reconciliation_service.get_reconciliation_history(db, user_id, account_id)
    except ReconciliationError as exc:
        await _reject(db, exc, account_id=str(account_id))

    items = [ReconciliationSummaryResponse.model_validate(item) for item in reconciliations]
    return ReconciliationHistoryResponse(items=items, total=len(items))


@router.get("/{reconciliation_id}", response_model=ReconciliationResponse)
async def get_reconciliation(
    reconciliation_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationResponse:
    try:
        reconciliation = await reconciliation_service.get_reconciliation(db, user_id, reconciliation_id)
    except ReconciliationError as exc:
        await _reject(db, exc, reconciliation_id=str(reconciliation_id))
    return ReconciliationResponse.model_validate(reconciliation)


@router.post("/{reconciliation_id}/match", response_model=StatementLineResponse)
async def match_transaction(
    reconciliation_id: UUID,
    payload: MatchTransactionRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> StatementLineResponse:
    """Manually match a statement line to a ledger transaction."""
    try:
        line = await reconciliation_service.match_transaction(
            db,
            user_id,
            reconciliation_id,
            payload.reconciliation_transaction_id,
            payload.transaction_id,
            notes=payload.notes,
        )
        await db.commit()
    except ReconciliationError as exc:
        await _reject(
            db,
            exc,
            reconciliation_id=str(reconciliation_id),
            line_id=str(payload.reconciliation_transaction_id),
        )
    return StatementLineResponse.model_validate(line)


@router.post("/{reconciliation_id}/unmatch", response_model=StatementLineResponse)
async def unmatch_transaction(
    reconciliation_id: UUID,
    payload: UnmatchTransactionRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> StatementLineResponse:
    try:
        line = await reconciliation_service.unmatch_transaction(
            db, user_id, reconciliation_id, payload.reconciliation_transaction_id
        )
        await db.commit()
    except ReconciliationError as exc:
        await _reject(
            db,
            exc,
            reconciliation_id=str(reconciliation_id),
            line_id=str(payload.reconciliation_transaction_id),
        )
    return StatementLineResponse.model_validate(line)


@router.post("/{reconciliation_id}/complete", response_model=ReconciliationResponse)
async def complete_reconciliation(
    reconciliation_id: UUID,
    payload: CompleteReconciliationRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationResponse:
    """Complete the reconciliation and compute the balance difference."""
    adjustments = [BalanceAdjustment(amount=item.amount, reason=item.reason) for item in payload.adjustments]
    try:
        reconciliation = await reconciliation_service.complete_reconciliation(
            db,
            user_id,
            reconciliation_id,
            notes=payload.notes,
            adjustments=adjustments,
        )
        await db.commit()
    except ReconciliationError as exc:
        await _reject(db, exc, reconciliation_id=str(reconciliation_id))
    return ReconciliationResponse.model_validate(reconciliation)


@router.delete("/{reconciliation_id}/cancel", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_reconciliation(
    reconciliation_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> Response:
    try:
        await reconciliation_service.cancel_reconciliation(db, user_id, reconciliation_id)
        await db.commit()
    except ReconciliationError as exc:
        await _reject(db, exc, reconciliation_id=str(reconciliation_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{reconciliation_id}/adjust-balance", response_model=ReconciliationResponse)
async def adjust_balance(
    reconciliation_id: UUID,
    payload: AdjustBalanceRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationResponse:
    """Record a balance adjustment on an in-progress reconciliation."""
    try:
        reconciliation = await reconciliation_service.adjust_balance(
            db,
            user_id,
            reconciliation_id,
            amount=payload.amount,
            reason=payload.reason,
        )
        await db.commit()
    except ReconciliationError as exc:
        await _reject(db, exc, reconciliation_id=str(reconciliation_id))
    return ReconciliationResponse.model_validate(reconciliation)
