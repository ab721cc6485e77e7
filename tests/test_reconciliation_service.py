"""Tests for the reconciliation session lifecycle."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from ledger_recon.models import (
    AccountReconciliationStatus,
    MatchConfidence,
    Reconciliation,
    ReconciliationStatus,
    TransactionType,
)
from ledger_recon.services import BalanceAdjustment
from ledger_recon.services import reconciliation as reconciliation_service
from ledger_recon.services.reconciliation import (
    InvalidReconciliationStateError,
    ReconciliationError,
    ReconciliationNotFoundError,
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
from tests.factories import AccountFactory, TransactionFactory, UserFactory, statement_row

PERIOD_START = date(2025, 1, 1)
PERIOD_END = date(2025, 1, 31)


@pytest_asyncio.fixture
async def user(db):
    return await UserFactory.create_async(db)


@pytest_asyncio.fixture
async def account(db, user):
    return await AccountFactory.create_async(db, user_id=user.id)


async def _start(db, user, account, balance: str = "100.00"):
    return await start_reconciliation(
        db,
        user.id,
        account_id=account.id,
        start_date=PERIOD_START,
        end_date=PERIOD_END,
        statement_balance=Decimal(balance),
    )


def _assert_counters_consistent(reconciliation) -> None:
    lines = reconciliation.statement_lines
    assert reconciliation.statement_transaction_count == len(lines)
    assert reconciliation.matched_count == sum(1 for line in lines if line.matched)
    assert reconciliation.matched_count + reconciliation.unmatched_count == len(lines)


class TestStart:
    @pytest.mark.asyncio
    async def test_start_opens_session_and_flags_account(self, db, user, account):
        reconciliation = await _start(db, user, account)

        assert reconciliation.status == ReconciliationStatus.IN_PROGRESS
        assert reconciliation.statement_transaction_count == 0
        assert reconciliation.matched_count == 0
        assert reconciliation.unmatched_count == 0
        assert reconciliation.summary == {"adjustments": []}
        assert account.reconciliation_status == AccountReconciliationStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_second_start_for_same_account_is_rejected(self, db, user, account):
        await _start(db, user, account)

        with pytest.raises(InvalidReconciliationStateError):
            await _start(db, user, account)

    @pytest.mark.asyncio
    async def test_start_allowed_again_after_cancel(self, db, user, account):
        first = await _start(db, user, account)
        await cancel_reconciliation(db, user.id, first.id)

        second = await _start(db, user, account)

        assert second.id != first.id
        assert second.is_in_progress

    @pytest.mark.asyncio
    async def test_start_allowed_again_after_completion(self, db, user, account):
        first = await _start(db, user, account)
        await complete_reconciliation(db, user.id, first.id)

        second = await _start(db, user, account)

        assert second.is_in_progress

    @pytest.mark.asyncio
    async def test_other_accounts_are_independent(self, db, user, account):
        other_account = await AccountFactory.create_async(db, user_id=user.id)
        await _start(db, user, account)

        reconciliation = await _start(db, user, other_account)

        assert reconciliation.is_in_progress

    @pytest.mark.asyncio
    async def test_start_on_foreign_account_is_not_found(self, db, account):
        intruder = await UserFactory.create_async(db)

        with pytest.raises(ReconciliationNotFoundError):
            await _start(db, intruder, account)

    @pytest.mark.asyncio
    async def test_start_rejects_inverted_period(self, db, user, account):
        with pytest.raises(ReconciliationError):
            await start_reconciliation(
                db,
                user.id,
                account_id=account.id,
                start_date=PERIOD_END,
                end_date=PERIOD_START,
                statement_balance=Decimal("1.00"),
            )


class TestUpload:
    @pytest.mark.asyncio
    async def test_coffee_shop_line_is_matched(self, db, user, account):
        """
        GIVEN a ledger expense "Coffee Shop Downtown" 50.00 on 2025-01-10
        WHEN a statement line "Coffee Shop" 50.00 on the same day is uploaded
        THEN the line is matched with a high confidence score
        """
        ledger_txn = await TransactionFactory.create_async(
            db, user_id=user.id, account_id=account.id, description="Coffee Shop Downtown"
        )
        reconciliation = await _start(db, user, account)

        result = await upload_statement(db, user.id, reconciliation.id, [statement_row()])

        assert result.skipped_count == 0
        [line] = result.reconciliation.statement_lines
        assert line.matched is True
        assert line.transaction_id == ledger_txn.id
        assert line.transaction is ledger_txn
        assert line.match_confidence in (MatchConfidence.HIGH, MatchConfidence.EXACT)
        assert line.confidence_score >= Decimal("90")
        assert line.is_manual_match is False
        assert line.matching_details["amountMatch"] is True
        assert line.matching_details["dateDifference"] == 0
        assert result.reconciliation.matched_count == 1
        assert result.reconciliation.unmatched_count == 0

    @pytest.mark.asyncio
    async def test_line_below_floor_stays_unmatched(self, db, user, account):
        # amount 40 + date 0 (five days apart) + description 15 = 55
        await TransactionFactory.create_async(
            db,
            user_id=user.id,
            account_id=account.id,
            description="Coffee Shop Downtown",
            txn_date=date(2025, 1, 15),
        )
        reconciliation = await _start(db, user, account)

        result = await upload_statement(db, user.id, reconciliation.id, [statement_row(description="Coffee")])

        [line] = result.reconciliation.statement_lines
        assert line.matched is False
        assert line.transaction_id is None
        assert line.match_confidence is None
        assert line.confidence_score is None
        assert result.reconciliation.unmatched_count == 1

    @pytest.mark.asyncio
    async def test_malformed_lines_are_skipped_and_reported(self, db, user, account):
        reconciliation = await _start(db, user, account)
        rows = [
            statement_row(),
            {"amount": "not-a-number", "date": "2025-01-10", "description": "Broken"},
            {"amount": "5.00", "date": "2025-01-11"},
            statement_row(amount="7.00", description="Parking"),
        ]

        result = await upload_statement(db, user.id, reconciliation.id, rows)

        assert result.skipped_count == 2
        assert [skipped.index for skipped in result.skipped_lines] == [1, 2]
        assert all(skipped.errors for skipped in result.skipped_lines)
        assert result.reconciliation.statement_transaction_count == 2
        _assert_counters_consistent(result.reconciliation)

    @pytest.mark.asyncio
    async def test_uploads_accumulate(self, db, user, account):
        reconciliation = await _start(db, user, account)

        await upload_statement(db, user.id, reconciliation.id, [statement_row()])
        result = await upload_statement(
            db, user.id, reconciliation.id, [statement_row(amount="1.00"), statement_row(amount="2.00")]
        )

        assert result.reconciliation.statement_transaction_count == 3
        _assert_counters_consistent(result.reconciliation)

    @pytest.mark.asyncio
    async def test_only_eligible_ledger_transactions_are_candidates(self, db, user, account):
        other_account = await AccountFactory.create_async(db, user_id=user.id)
        base = {"user_id": user.id, "description": "Coffee Shop"}
        await TransactionFactory.create_async(db, account_id=account.id, is_deleted=True, **base)
        await TransactionFactory.create_async(db, account_id=account.id, type=TransactionType.INCOME, **base)
        await TransactionFactory.create_async(db, account_id=other_account.id, **base)
        await TransactionFactory.create_async(
            db, account_id=account.id, txn_date=PERIOD_END + timedelta(days=1), **base
        )
        reconciliation = await _start(db, user, account)

        result = await upload_statement(
            db,
            user.id,
            reconciliation.id,
            [statement_row(txn_date=PERIOD_END.isoformat())],
        )

        [line] = result.reconciliation.statement_lines
        # The only same-description candidates are deleted, income, another account or out of period
        assert line.matched is False

    @pytest.mark.asyncio
    async def test_income_is_a_candidate_when_expense_filter_is_off(self, db, user, account, monkeypatch):
        from ledger_recon.config import settings

        monkeypatch.setattr(settings, "reconciliation_expense_only", False)
        income = await TransactionFactory.create_async(
            db,
            user_id=user.id,
            account_id=account.id,
            description="Salary",
            amount=Decimal("1500.00"),
            type=TransactionType.INCOME,
        )
        reconciliation = await _start(db, user, account)

        result = await upload_statement(
            db, user.id, reconciliation.id, [statement_row(amount="1500.00", description="Salary")]
        )

        [line] = result.reconciliation.statement_lines
        assert line.transaction_id == income.id
        assert line.match_confidence == MatchConfidence.EXACT

    @pytest.mark.asyncio
    async def test_same_ledger_transaction_can_match_several_lines(self, db, user, account):
        ledger_txn = await TransactionFactory.create_async(
            db, user_id=user.id, account_id=account.id, description="Coffee Shop"
        )
        reconciliation = await _start(db, user, account)

        result = await upload_statement(db, user.id, reconciliation.id, [statement_row(), statement_row()])

        assert {line.transaction_id for line in result.reconciliation.statement_lines} == {ledger_txn.id}
        assert result.reconciliation.matched_count == 2

    @pytest.mark.asyncio
    async def test_upload_to_unknown_reconciliation(self, db, user):
        with pytest.raises(ReconciliationNotFoundError):
            await upload_statement(db, user.id, uuid4(), [statement_row()])


class TestManualMatching:
    @pytest.mark.asyncio
    async def test_match_then_unmatch_restores_line(self, db, user, account):
        ledger_txn = await TransactionFactory.create_async(
            db, user_id=user.id, account_id=account.id, description="Hardware Store", amount=Decimal("80.00")
        )
        reconciliation = await _start(db, user, account)
        result = await upload_statement(db, user.id, reconciliation.id, [statement_row()])
        [line] = result.reconciliation.statement_lines
        assert line.matched is False

        matched = await match_transaction(db, user.id, reconciliation.id, line.id, ledger_txn.id, notes="Split bill")

        assert matched.matched is True
        assert matched.transaction_id == ledger_txn.id
        assert matched.match_confidence == MatchConfidence.MANUAL
        assert matched.is_manual_match is True
        assert matched.confidence_score is None
        assert matched.matching_details is None
        assert matched.notes == "Split bill"
        assert reconciliation.matched_count == 1
        _assert_counters_consistent(reconciliation)

        unmatched = await unmatch_transaction(db, user.id, reconciliation.id, line.id)

        assert unmatched.matched is False
        assert unmatched.transaction_id is None
        assert unmatched.match_confidence is None
        assert unmatched.is_manual_match is False
        assert unmatched.confidence_score is None
        assert unmatched.matching_details is None
        assert reconciliation.matched_count == 0
        _assert_counters_consistent(reconciliation)

    @pytest.mark.asyncio
    async def test_manual_match_replaces_automatic_score(self, db, user, account):
        await TransactionFactory.create_async(db, user_id=user.id, account_id=account.id, description="Coffee Shop")
        other = await TransactionFactory.create_async(
            db, user_id=user.id, account_id=account.id, description="Bakery", amount=Decimal("4.00")
        )
        reconciliation = await _start(db, user, account)
        result = await upload_statement(db, user.id, reconciliation.id, [statement_row()])
        [line] = result.reconciliation.statement_lines
        assert line.match_confidence == MatchConfidence.EXACT

        await match_transaction(db, user.id, reconciliation.id, line.id, other.id)

        assert line.transaction_id == other.id
        assert line.match_confidence == MatchConfidence.MANUAL
        assert line.confidence_score is None
        assert line.matching_details is None

    @pytest.mark.asyncio
    async def test_unmatch_is_idempotent(self, db, user, account):
        reconciliation = await _start(db, user, account)
        result = await upload_statement(db, user.id, reconciliation.id, [statement_row()])
        [line] = result.reconciliation.statement_lines

        await unmatch_transaction(db, user.id, reconciliation.id, line.id)
        again = await unmatch_transaction(db, user.id, reconciliation.id, line.id)

        assert again.matched is False
        assert reconciliation.unmatched_count == 1

    @pytest.mark.asyncio
    async def test_match_with_foreign_transaction_is_not_found(self, db, user, account):
        intruder = await UserFactory.create_async(db)
        intruder_account = await AccountFactory.create_async(db, user_id=intruder.id)
        foreign_txn = await TransactionFactory.create_async(db, user_id=intruder.id, account_id=intruder_account.id)
        reconciliation = await _start(db, user, account)
        result = await upload_statement(db, user.id, reconciliation.id, [statement_row()])
        [line] = result.reconciliation.statement_lines

        with pytest.raises(ReconciliationNotFoundError) as exc:
            await match_transaction(db, user.id, reconciliation.id, line.id, foreign_txn.id)

        assert exc.value.resource == "Transaction"
        assert line.matched is False

    @pytest.mark.asyncio
    async def test_unknown_line_is_not_found(self, db, user, account):
        reconciliation = await _start(db, user, account)
        line_id = uuid4()

        with pytest.raises(ReconciliationNotFoundError) as exc:
            await unmatch_transaction(db, user.id, reconciliation.id, line_id)

        assert exc.value.identifier == line_id


class TestCompletion:
    @pytest.mark.asyncio
    async def test_reconciled_balance_sums_matched_statement_amounts(self, db, user, account):
        """
        GIVEN lines 12.50 and 7.00 matched and 5.00 unmatched, statement balance 20.00
        WHEN the reconciliation is completed
        THEN reconciled balance is 19.50 and the difference 0.50
        """
        await TransactionFactory.create_async(
            db, user_id=user.id, account_id=account.id, description="Lunch", amount=Decimal("12.50"),
            txn_date=date(2025, 1, 5),
        )
        await TransactionFactory.create_async(
            db, user_id=user.id, account_id=account.id, description="Parking", amount=Decimal("7.00"),
            txn_date=date(2025, 1, 5),
        )
        reconciliation = await _start(db, user, account, balance="20.00")
        await upload_statement(
            db,
            user.id,
            reconciliation.id,
            [
                statement_row(amount="12.50", txn_date="2025-01-05", description="Lunch"),
                statement_row(amount="7.00", txn_date="2025-01-05", description="Parking"),
                statement_row(amount="5.00", txn_date="2025-01-25", description="Snacks"),
            ],
        )
        assert reconciliation.matched_count == 2

        completed = await complete_reconciliation(db, user.id, reconciliation.id, notes="January")

        assert completed.status == ReconciliationStatus.COMPLETED
        assert completed.reconciled_balance == Decimal("19.50")
        assert completed.difference == Decimal("0.50")
        assert completed.completed_at is not None
        assert completed.notes == "January"
        assert completed.summary["total_matched"] == 2
        assert completed.summary["total_unmatched"] == 1
        assert Decimal(completed.summary["discrepancy_amount"]) == Decimal("0.50")
        assert completed.summary["adjustments"] == []
        assert account.reconciliation_status == AccountReconciliationStatus.RECONCILED
        assert account.last_reconciled_balance == Decimal("19.50")
        assert account.last_reconciled_at == completed.completed_at

    @pytest.mark.asyncio
    async def test_difference_is_absolute(self, db, user, account):
        await TransactionFactory.create_async(db, user_id=user.id, account_id=account.id, description="Coffee Shop")
        reconciliation = await _start(db, user, account, balance="10.00")
        await upload_statement(db, user.id, reconciliation.id, [statement_row()])

        completed = await complete_reconciliation(db, user.id, reconciliation.id)

        assert completed.reconciled_balance == Decimal("50.00")
        assert completed.difference == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_empty_reconciliation_completes_with_zero_balance(self, db, user, account):
        reconciliation = await _start(db, user, account, balance="0.00")
        reconciliation.notes = "kept"

        completed = await complete_reconciliation(db, user.id, reconciliation.id)

        assert completed.reconciled_balance == Decimal("0.00")
        assert completed.difference == Decimal("0.00")
        assert completed.notes == "kept"

    @pytest.mark.asyncio
    async def test_adjustments_are_folded_into_summary(self, db, user, account):
        reconciliation = await _start(db, user, account)
        await adjust_balance(db, user.id, reconciliation.id, amount=Decimal("2.00"), reason="Bank fee")
        await adjust_balance(db, user.id, reconciliation.id, amount=Decimal("-0.50"), reason="Interest")
        assert reconciliation.reconciled_balance is None

        completed = await complete_reconciliation(
            db,
            user.id,
            reconciliation.id,
            adjustments=[BalanceAdjustment(amount=Decimal("1.00"), reason="Late correction")],
        )

        entries = completed.summary["adjustments"]
        assert [entry["reason"] for entry in entries] == ["Bank fee", "Interest", "Late correction"]
        assert all(entry["type"] == "balance_adjustment" for entry in entries)
        assert Decimal(completed.summary["adjustments_total"]) == Decimal("2.50")
        assert completed.reconciled_balance == Decimal("0.00")


class TestTerminalStates:
    @pytest.mark.asyncio
    async def test_completed_session_rejects_every_mutation(self, db, user, account):
        reconciliation = await _start(db, user, account)
        result = await upload_statement(db, user.id, reconciliation.id, [statement_row()])
        [line] = result.reconciliation.statement_lines
        await complete_reconciliation(db, user.id, reconciliation.id)

        with pytest.raises(InvalidReconciliationStateError):
            await upload_statement(db, user.id, reconciliation.id, [statement_row()])
        with pytest.raises(InvalidReconciliationStateError):
            await unmatch_transaction(db, user.id, reconciliation.id, line.id)
        with pytest.raises(InvalidReconciliationStateError):
            await adjust_balance(db, user.id, reconciliation.id, amount=Decimal("1.00"), reason="late")
        with pytest.raises(InvalidReconciliationStateError):
            await complete_reconciliation(db, user.id, reconciliation.id)
        with pytest.raises(InvalidReconciliationStateError):
            await cancel_reconciliation(db, user.id, reconciliation.id)

    @pytest.mark.asyncio
    async def test_cancel_keeps_lines_and_resets_account(self, db, user, account):
        reconciliation = await _start(db, user, account)
        await upload_statement(db, user.id, reconciliation.id, [statement_row(), statement_row(amount="3.00")])

        cancelled = await cancel_reconciliation(db, user.id, reconciliation.id)

        assert cancelled.status == ReconciliationStatus.CANCELLED
        assert account.reconciliation_status == AccountReconciliationStatus.NONE
        reloaded = await get_reconciliation(db, user.id, reconciliation.id)
        assert len(reloaded.statement_lines) == 2

        with pytest.raises(InvalidReconciliationStateError):
            await match_transaction(db, user.id, reconciliation.id, reloaded.statement_lines[0].id, uuid4())


class TestReads:
    @pytest.mark.asyncio
    async def test_get_is_scoped_to_owner(self, db, user, account):
        reconciliation = await _start(db, user, account)
        intruder = await UserFactory.create_async(db)

        with pytest.raises(ReconciliationNotFoundError):
            await get_reconciliation(db, intruder.id, reconciliation.id)

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, db, user, account):
        first = await _start(db, user, account)
        await cancel_reconciliation(db, user.id, first.id)
        second = await _start(db, user, account)

        history = await get_reconciliation_history(db, user.id, account.id)

        assert [item.id for item in history] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_history_of_foreign_account_is_not_found(self, db, account):
        intruder = await UserFactory.create_async(db)

        with pytest.raises(ReconciliationNotFoundError):
            await get_reconciliation_history(db, intruder.id, account.id)


class TestConcurrencyGuards:
    @pytest.mark.asyncio
    async def test_racing_start_is_rejected_by_unique_index(self, db, user, account):
        """
        GIVEN a rival in-progress reconciliation not yet visible to the in-progress lookup
        WHEN a second reconciliation is started for the same account
        THEN the partial unique index rejects it as an invalid state
        """
        db.add(
            Reconciliation(
                account_id=account.id,
                user_id=user.id,
                start_date=PERIOD_START,
                end_date=PERIOD_END,
                statement_balance=Decimal("1.00"),
                status=ReconciliationStatus.IN_PROGRESS,
            )
        )

        # Pending rows are not autoflushed, so the lookup misses the rival like a concurrent transaction would
        with db.no_autoflush:
            with pytest.raises(InvalidReconciliationStateError) as exc:
                await _start(db, user, account)

        assert "already has a reconciliation in progress" in str(exc.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["complete", "cancel"])
    async def test_account_is_locked_before_reconciliation(self, db, user, account, monkeypatch, operation):
        reconciliation = await _start(db, user, account)
        locks: list[str] = []
        get_account = reconciliation_service.get_account
        load_reconciliation = reconciliation_service._load_reconciliation

        async def recording_get_account(*args, for_update=False, **kwargs):
            if for_update:
                locks.append("account")
            return await get_account(*args, for_update=for_update, **kwargs)

        async def recording_load_reconciliation(*args, for_update=False, **kwargs):
            if for_update:
                locks.append("reconciliation")
            return await load_reconciliation(*args, for_update=for_update, **kwargs)

        monkeypatch.setattr(reconciliation_service, "get_account", recording_get_account)
        monkeypatch.setattr(reconciliation_service, "_load_reconciliation", recording_load_reconciliation)

        if operation == "complete":
            await complete_reconciliation(db, user.id, reconciliation.id)
        else:
            await cancel_reconciliation(db, user.id, reconciliation.id)

        assert locks == ["account", "reconciliation"]

    @pytest.mark.asyncio
    async def test_complete_unknown_reconciliation_is_not_found(self, db, user):
        with pytest.raises(ReconciliationNotFoundError):
            await complete_reconciliation(db, user.id, uuid4())


class TestLineOrder:
    @pytest.mark.asyncio
    async def test_line_numbers_continue_across_uploads(self, db, user, account):
        reconciliation = await _start(db, user, account)

        await upload_statement(db, user.id, reconciliation.id, [statement_row(amount="1.00"), statement_row()])
        result = await upload_statement(
            db,
            user.id,
            reconciliation.id,
            [{"amount": "bad"}, statement_row(amount="3.00")],
        )

        lines = result.reconciliation.statement_lines
        assert [line.line_number for line in lines] == [0, 1, 2]
        assert [line.statement_amount for line in lines] == [Decimal("1.00"), Decimal("50.00"), Decimal("3.00")]
