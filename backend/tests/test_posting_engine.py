"""Tests for the double-entry posting engine.

Tests cover:
- Line validation (balance, single-sided lines, zero lines dropped)
- Event line builders for every money-moving event
- Account checks and reference numbers when staging an entry
- Trial check over posted entries
"""

import re
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from lendbook.models.customer import Customer, CustomerType
from lendbook.models.ledger import ChartOfAccount, JournalEntry, JournalEntryLine, JournalSource
from lendbook.services.errors import ConsistencyError, NotFoundError, PostingError, UnbalancedEntryError
from lendbook.services.ledger.posting_engine import (
    DISBURSEMENT_PREFIX,
    LineSpec,
    build_lines,
    debtor_payment_lines,
    deposit_lines,
    describe_customer,
    disbursement_lines,
    is_savings_route,
    make_reference,
    post_entry,
    repayment_lines,
    sale_lines,
    trial_check,
    withdrawal_lines,
)

MAPPING = SimpleNamespace(
    customer_loan_code=11,
    customer_loan_interest_code=41,
    customer_deposit_code=21,
    sales_revenue_code=42,
    debtors_code=12,
)
CASH = SimpleNamespace(id=1, chart_of_account_id=10)
SAVINGS = SimpleNamespace(id=3, chart_of_account_id=21)


def _totals(lines):
    return sum(ln.debit for ln in lines), sum(ln.credit for ln in lines)


# ===================================================================
# Line validation (pure functions, no DB)
# ===================================================================


class TestBuildLines:

    def test_balanced_entry(self):
        lines = build_lines([LineSpec(1, debit=Decimal("1000")), LineSpec(2, credit=Decimal("1000"))])
        assert _totals(lines) == (Decimal("1000.00"), Decimal("1000.00"))

    def test_unbalanced_entry_raises(self):
        with pytest.raises(UnbalancedEntryError, match="not balanced"):
            build_lines([LineSpec(1, debit=Decimal("1000")), LineSpec(2, credit=Decimal("500"))])

    def test_penny_difference_raises(self):
        with pytest.raises(UnbalancedEntryError):
            build_lines([LineSpec(1, debit=Decimal("1000.01")), LineSpec(2, credit=Decimal("1000.00"))])

    def test_zero_lines_are_dropped(self):
        lines = build_lines([
            LineSpec(1, debit=Decimal("500")),
            LineSpec(2, credit=Decimal("0")),
            LineSpec(3, credit=Decimal("500")),
        ])
        assert [ln.account_id for ln in lines] == [1, 3]

    def test_single_remaining_line_raises(self):
        with pytest.raises(UnbalancedEntryError, match="at least two"):
            build_lines([LineSpec(1, debit=Decimal("0")), LineSpec(2, credit=Decimal("0"))])

    def test_double_sided_line_raises(self):
        with pytest.raises(PostingError, match="both a debit and a credit"):
            build_lines([LineSpec(1, debit=Decimal("10"), credit=Decimal("10")), LineSpec(2, credit=Decimal("0"))])

    def test_negative_amount_raises(self):
        with pytest.raises(PostingError, match="Negative"):
            build_lines([LineSpec(1, debit=Decimal("-10")), LineSpec(2, credit=Decimal("-10"))])

    def test_posting_errors_are_consistency_faults(self):
        assert issubclass(UnbalancedEntryError, PostingError)
        assert issubclass(PostingError, ConsistencyError)


# ===================================================================
# Event line builders
# ===================================================================


class TestEventLines:

    def test_disbursement_to_cash(self):
        lines = build_lines(disbursement_lines(MAPPING, CASH, Decimal("100000")))
        assert [(ln.account_id, ln.debit, ln.credit) for ln in lines] == [
            (11, Decimal("100000.00"), Decimal("0.00")),
            (10, Decimal("0.00"), Decimal("100000.00")),
        ]

    def test_disbursement_to_savings(self):
        assert is_savings_route(MAPPING, SAVINGS)
        assert not is_savings_route(MAPPING, CASH)
        lines = build_lines(disbursement_lines(MAPPING, SAVINGS, Decimal("100000")))
        assert lines[1].account_id == MAPPING.customer_deposit_code

    def test_repayment_splits_credit(self):
        lines = build_lines(repayment_lines(MAPPING, CASH, Decimal("50000"), Decimal("20000"), Decimal("30000")))
        assert [(ln.account_id, ln.debit, ln.credit) for ln in lines] == [
            (10, Decimal("50000.00"), Decimal("0.00")),
            (41, Decimal("0.00"), Decimal("20000.00")),
            (11, Decimal("0.00"), Decimal("30000.00")),
        ]

    def test_repayment_without_interest_has_two_lines(self):
        lines = build_lines(repayment_lines(MAPPING, CASH, Decimal("500"), Decimal("0"), Decimal("500")))
        assert [ln.account_id for ln in lines] == [10, 11]

    def test_deposit_and_withdrawal_mirror(self):
        dep = build_lines(deposit_lines(MAPPING, CASH, Decimal("700")))
        wd = build_lines(withdrawal_lines(MAPPING, CASH, Decimal("700")))
        assert (dep[0].account_id, dep[1].account_id) == (10, 21)
        assert (wd[0].account_id, wd[1].account_id) == (21, 10)

    def test_cash_sale(self):
        lines = build_lines(sale_lines(MAPPING, CASH, Decimal("300"), Decimal("300")))
        assert [(ln.account_id, ln.debit, ln.credit) for ln in lines] == [
            (10, Decimal("300.00"), Decimal("0.00")),
            (42, Decimal("0.00"), Decimal("300.00")),
        ]

    def test_overpaid_sale_posts_only_the_total(self):
        lines = build_lines(sale_lines(MAPPING, CASH, Decimal("300"), Decimal("500")))
        assert _totals(lines) == (Decimal("300.00"), Decimal("300.00"))

    def test_partial_sale_splits_debit(self):
        lines = build_lines(sale_lines(MAPPING, CASH, Decimal("300"), Decimal("100")))
        assert [(ln.account_id, ln.debit) for ln in lines if ln.debit] == [
            (10, Decimal("100.00")),
            (12, Decimal("200.00")),
        ]

    def test_credit_sale_needs_no_payment_type(self):
        lines = build_lines(sale_lines(MAPPING, None, Decimal("300"), Decimal("0")))
        assert [ln.account_id for ln in lines] == [12, 42]

    def test_paid_sale_without_payment_type_raises(self):
        with pytest.raises(PostingError):
            sale_lines(MAPPING, None, Decimal("300"), Decimal("100"))

    def test_debtor_payment(self):
        lines = build_lines(debtor_payment_lines(MAPPING, CASH, Decimal("150")))
        assert (lines[0].account_id, lines[1].account_id) == (10, 12)


class TestDescriptions:

    def test_individual(self):
        person = Customer(id=7, customer_type=CustomerType.INDIVIDUAL, first_name="Amina", surname="Mushi")
        assert describe_customer("Loan Disbursement", person) == "Loan Disbursement - Amina Mushi"

    def test_company(self):
        firm = Customer(id=8, customer_type=CustomerType.COMPANY, company_name="Kilimo Traders")
        assert describe_customer("Sale", firm) == "Sale - Kilimo Traders"

    def test_fallback_to_customer_id(self):
        group = Customer(id=9, customer_type=CustomerType.GROUP)
        assert describe_customer("Sale", group) == "Sale - Customer 9"

    def test_reference_format(self):
        ref = make_reference(DISBURSEMENT_PREFIX)
        assert re.fullmatch(r"DISB-[0-9A-F]{13}", ref)
        assert ref != make_reference(DISBURSEMENT_PREFIX)


# ===================================================================
# Staging entries (DB)
# ===================================================================


class TestPostEntry:

    @pytest.mark.asyncio
    async def test_posts_balanced_entry(self, db, books, fetch_entries):
        entry = await post_entry(
            db,
            lines=[
                LineSpec(books.cash_account, debit=Decimal("250")),
                LineSpec(books.customer_deposits, credit=Decimal("250")),
            ],
            description="Opening float",
            source=JournalSource.DEPOSIT,
        )
        await db.commit()

        [stored] = await fetch_entries(entry.reference_number)
        assert stored.reference_number.startswith("TRANS-")
        assert stored.is_balanced
        assert stored.total_debits == Decimal("250.00")
        assert len(stored.lines) == 2

    @pytest.mark.asyncio
    async def test_unknown_account(self, db, books):
        with pytest.raises(NotFoundError):
            await post_entry(
                db,
                lines=[LineSpec(books.cash_account, debit=Decimal("5")), LineSpec(9999, credit=Decimal("5"))],
                description="Bad",
                source=JournalSource.DEPOSIT,
            )

    @pytest.mark.asyncio
    async def test_inactive_account(self, db, books):
        account = await db.get(ChartOfAccount, books.debtors)
        account.is_active = False
        await db.commit()

        with pytest.raises(PostingError, match="inactive"):
            await post_entry(
                db,
                lines=[LineSpec(books.cash_account, debit=Decimal("5")), LineSpec(books.debtors, credit=Decimal("5"))],
                description="Bad",
                source=JournalSource.DEBTOR_PAYMENT,
            )

    @pytest.mark.asyncio
    async def test_nothing_staged_when_unbalanced(self, db, books):
        with pytest.raises(UnbalancedEntryError):
            await post_entry(
                db,
                lines=[LineSpec(books.cash_account, debit=Decimal("5")), LineSpec(books.debtors, credit=Decimal("4"))],
                description="Bad",
                source=JournalSource.DEPOSIT,
            )
        entries = (await db.execute(select(JournalEntry))).scalars().all()
        assert entries == []


class TestTrialCheck:

    @pytest.mark.asyncio
    async def test_empty_ledger_balances(self, db):
        result = await trial_check(db)
        assert result["entries_checked"] == 0
        assert result["is_balanced"]

    @pytest.mark.asyncio
    async def test_flags_tampered_entry(self, db, books):
        entry = await post_entry(
            db,
            lines=[
                LineSpec(books.cash_account, debit=Decimal("100")),
                LineSpec(books.sales_revenue, credit=Decimal("100")),
            ],
            description="Sale",
            source=JournalSource.SALE,
        )
        await db.commit()
        assert (await trial_check(db))["is_balanced"]

        # Simulate a row edited outside the engine
        line = (await db.execute(
            select(JournalEntryLine)
            .where(JournalEntryLine.journal_entry_id == entry.id, JournalEntryLine.credit > 0)
        )).scalar_one()
        line.credit = Decimal("90")
        await db.commit()

        result = await trial_check(db)
        assert result["unbalanced_entries"] == [entry.reference_number]
        assert not result["is_balanced"]
        assert result["total_debits"] == Decimal("100.00")
        assert result["total_credits"] == Decimal("90.00")
