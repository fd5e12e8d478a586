"""Savings deposits and withdrawals."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from lendbook.models.ledger import JournalEntry, JournalSource, Transaction, TransactionType
from lendbook.services import savings
from lendbook.services.errors import NotFoundError, ValidationError


class TestSavingsTransactions:

    @pytest.mark.asyncio
    async def test_deposit_opens_account(self, db, books, customer, staff, fetch_entries):
        txn = await savings.record_savings_transaction(
            db, customer.id, "deposit", Decimal("25000"), books.cash.id, None, staff.id,
        )

        assert txn.type == TransactionType.DEPOSIT
        assert txn.savings_id is not None
        assert await savings.savings_balance(db, customer.id) == Decimal("25000.00")

        [entry] = await fetch_entries(txn.transaction_reference)
        assert entry.source == JournalSource.DEPOSIT
        assert entry.description == "Savings Deposit - Amina Mushi"
        assert [(ln.account_id, ln.debit, ln.credit) for ln in entry.lines] == [
            (books.cash_account, Decimal("25000.00"), Decimal("0.00")),
            (books.customer_deposits, Decimal("0.00"), Decimal("25000.00")),
        ]

    @pytest.mark.asyncio
    async def test_withdrawal_reduces_balance(self, db, books, customer, staff, fetch_entries):
        await savings.record_savings_transaction(db, customer.id, "deposit", "25000", books.cash.id, None, staff.id)
        txn = await savings.record_savings_transaction(
            db, customer.id, "withdrawal", "10000", books.cash.id, "School fees", staff.id,
        )

        assert txn.type == TransactionType.WITHDRAWAL
        assert txn.description == "School fees"
        assert await savings.savings_balance(db, customer.id) == Decimal("15000.00")

        [entry] = await fetch_entries(txn.transaction_reference)
        assert [(ln.account_id, ln.debit) for ln in entry.lines if ln.debit] == [
            (books.customer_deposits, Decimal("10000.00")),
        ]

    @pytest.mark.asyncio
    async def test_withdrawal_down_to_zero(self, db, books, customer, staff):
        await savings.record_savings_transaction(db, customer.id, "deposit", "500", books.cash.id, None, staff.id)
        await savings.record_savings_transaction(db, customer.id, "withdrawal", "500", books.cash.id, None, staff.id)
        assert await savings.savings_balance(db, customer.id) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_insufficient_funds_writes_nothing(self, db, books, customer, staff):
        await savings.record_savings_transaction(db, customer.id, "deposit", "1000", books.cash.id, None, staff.id)

        with pytest.raises(ValidationError, match="Insufficient funds"):
            await savings.record_savings_transaction(
                db, customer.id, "withdrawal", "1000.01", books.cash.id, None, staff.id,
            )

        assert await savings.savings_balance(db, customer.id) == Decimal("1000.00")
        txns = (await db.execute(select(func.count(Transaction.id)))).scalar_one()
        entries = (await db.execute(select(func.count(JournalEntry.id)))).scalar_one()
        assert (txns, entries) == (1, 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind,amount", [("transfer", "10"), ("deposit", "0"), ("deposit", "-5")])
    async def test_invalid_requests(self, db, books, customer, staff, kind, amount):
        with pytest.raises(ValidationError):
            await savings.record_savings_transaction(db, customer.id, kind, amount, books.cash.id, None, staff.id)

    @pytest.mark.asyncio
    async def test_unknown_customer(self, db, books, staff):
        with pytest.raises(NotFoundError):
            await savings.record_savings_transaction(db, 4242, "deposit", "10", books.cash.id, None, staff.id)

    @pytest.mark.asyncio
    async def test_balance_without_account_is_zero(self, db, customer):
        assert await savings.savings_balance(db, customer.id) == Decimal("0.00")
