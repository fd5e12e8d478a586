"""Loan repayments: interest-first allocation, postings and payoff."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from lendbook.models.ledger import JournalEntry, JournalSource, Transaction, TransactionType
from lendbook.models.loan import Loan, LoanStage, Repayment
from lendbook.services.errors import NotFoundError, PreconditionFailed, ValidationError
from lendbook.services.loans import repayments


async def _count(db, model) -> int:
    result = await db.execute(select(func.count(model.id)))
    return result.scalar_one()


class TestRecordRepayment:

    @pytest.mark.asyncio
    async def test_first_repayment_pays_interest_first(self, db, make_loan, books, staff, fetch_entries):
        loan = await make_loan(LoanStage.DISBURSED)
        repayment = await repayments.record_repayment(
            db, loan.id, Decimal("50000"), books.cash.id, None, date(2026, 3, 5), staff.id,
        )

        assert repayment.amount_paid == Decimal("50000.00")
        assert repayment.interest_paid == Decimal("20000.00")
        assert repayment.balance_before == Decimal("120000.00")
        assert repayment.balance_after == Decimal("70000.00")
        assert repayment.payment_date == date(2026, 3, 5)

        txn = await db.get(Transaction, repayment.transaction_id)
        assert txn.type == TransactionType.LOAN_PAYMENT
        assert txn.loan_id == loan.id

        [entry] = await fetch_entries(txn.transaction_reference)
        assert entry.source == JournalSource.REPAYMENT
        assert entry.entry_date == date(2026, 3, 5)
        assert [(ln.account_id, ln.debit, ln.credit) for ln in entry.lines] == [
            (books.cash_account, Decimal("50000.00"), Decimal("0.00")),
            (books.interest_income, Decimal("0.00"), Decimal("20000.00")),
            (books.loans_receivable, Decimal("0.00"), Decimal("30000.00")),
        ]

    @pytest.mark.asyncio
    async def test_interest_collected_once(self, db, make_loan, books, staff, fetch_entries):
        loan = await make_loan(LoanStage.DISBURSED)
        await repayments.record_repayment(db, loan.id, "15000", books.cash.id, None, None, staff.id)
        second = await repayments.record_repayment(db, loan.id, "15000", books.cash.id, None, None, staff.id)

        assert second.interest_paid == Decimal("5000.00")
        assert second.balance_after == Decimal("90000.00")

        summary = await repayments.balance_summary(db, loan.id)
        assert summary["interest_paid"] == Decimal("20000.00")
        assert summary["interest_outstanding"] == Decimal("0.00")
        assert summary["amount_paid"] == Decimal("30000.00")
        assert summary["outstanding_balance"] == Decimal("90000.00")

        for entry in await fetch_entries():
            assert entry.is_balanced

    @pytest.mark.asyncio
    async def test_overpayment_rejected_without_writes(self, db, make_loan, books, staff):
        loan = await make_loan(LoanStage.DISBURSED)
        with pytest.raises(ValidationError, match="exceeds the outstanding balance"):
            await repayments.record_repayment(
                db, loan.id, Decimal("150000"), books.cash.id, None, None, staff.id,
            )

        assert await _count(db, Repayment) == 0
        assert await _count(db, Transaction) == 0
        assert await _count(db, JournalEntry) == 0

    @pytest.mark.asyncio
    async def test_payoff_marks_loan_repaid(self, db, make_loan, books, staff):
        loan = await make_loan(LoanStage.DISBURSED)
        await repayments.record_repayment(db, loan.id, "50000", books.cash.id, None, None, staff.id)
        final = await repayments.record_repayment(db, loan.id, "70000", books.bank.id, "Final", None, staff.id)

        assert final.interest_paid == Decimal("0.00")
        assert final.balance_after == Decimal("0.00")

        stored = await db.get(Loan, loan.id, populate_existing=True)
        assert stored.status == "repaid"
        assert stored.stage == LoanStage.DISBURSED

        with pytest.raises(PreconditionFailed, match="already repaid"):
            await repayments.record_repayment(db, loan.id, "1", books.cash.id, None, None, staff.id)

    @pytest.mark.asyncio
    async def test_undisbursed_loan_refused(self, db, make_loan, books, staff):
        loan = await make_loan(LoanStage.APPROVED)
        with pytest.raises(PreconditionFailed, match="only disbursed loans"):
            await repayments.record_repayment(db, loan.id, "100", books.cash.id, None, None, staff.id)

    @pytest.mark.asyncio
    async def test_zero_amount_refused(self, db, make_loan, books, staff):
        loan = await make_loan(LoanStage.DISBURSED)
        with pytest.raises(ValidationError, match="greater than zero"):
            await repayments.record_repayment(db, loan.id, "0", books.cash.id, None, None, staff.id)

    @pytest.mark.asyncio
    async def test_unknown_payment_type_writes_nothing(self, db, make_loan, books, staff):
        loan = await make_loan(LoanStage.DISBURSED)
        with pytest.raises(NotFoundError):
            await repayments.record_repayment(db, loan.id, "100", 4242, None, None, staff.id)
        assert await _count(db, Repayment) == 0


class TestListAndSummary:

    @pytest.mark.asyncio
    async def test_list_in_payment_order(self, db, make_loan, books, staff):
        loan = await make_loan(LoanStage.DISBURSED)
        for amount in ("1000", "2000", "3000"):
            await repayments.record_repayment(db, loan.id, amount, books.cash.id, None, None, staff.id)

        rows = await repayments.list_repayments(db, loan.id)
        assert [r.amount_paid for r in rows] == [Decimal("1000.00"), Decimal("2000.00"), Decimal("3000.00")]
        assert [r.balance_after for r in rows] == [
            Decimal("119000.00"), Decimal("117000.00"), Decimal("114000.00"),
        ]

    @pytest.mark.asyncio
    async def test_summary_of_untouched_loan(self, db, make_loan):
        loan = await make_loan(LoanStage.DISBURSED)
        summary = await repayments.balance_summary(db, loan.id)
        assert summary == {
            "loan_id": loan.id,
            "total_repayment": Decimal("120000.00"),
            "amount_paid": Decimal("0.00"),
            "interest_paid": Decimal("0.00"),
            "outstanding_balance": Decimal("120000.00"),
            "interest_outstanding": Decimal("20000.00"),
            "status": None,
        }

    @pytest.mark.asyncio
    async def test_unknown_loan(self, db):
        with pytest.raises(NotFoundError):
            await repayments.list_repayments(db, 4242)
