"""Double-entry posting engine.

Every money-moving event (loan disbursement, repayment, savings deposit and
withdrawal, sale payment, debtor payment) becomes exactly one journal entry
whose debits equal its credits. The rule is enforced twice:

1. Application-level validation in ``build_lines`` before anything is staged
2. Database CHECK constraint keeping every line single-sided

The engine only stages and flushes rows in the caller's session. Committing,
or rolling back together with the business rows, is the caller's job.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, func as sa_func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lendbook.models.customer import Customer, CustomerType, PaymentType
from lendbook.models.ledger import (
    ChartOfAccount,
    ChartOfAccountMapping,
    JournalEntry,
    JournalEntryLine,
    JournalSource,
    Transaction,
)
from lendbook.services.errors import NotFoundError, PostingError, UnbalancedEntryError
from lendbook.services.money import ZERO, money_sum, to_money

logger = logging.getLogger(__name__)

DISBURSEMENT_PREFIX = "DISB"
TRANSACTION_PREFIX = "TRANS"
SALE_PREFIX = "SALE"
DEBTOR_PREFIX = "DEBT"


@dataclass(frozen=True)
class LineSpec:
    account_id: int
    debit: Decimal = ZERO
    credit: Decimal = ZERO


# ---------------------------------------------------------------------------
# References and descriptions
# ---------------------------------------------------------------------------

def make_reference(prefix: str) -> str:
    """``PREFIX-<13 hex chars>``, unique enough to sit under a UNIQUE index."""
    return f"{prefix}-{uuid.uuid4().hex[:13].upper()}"


def describe_customer(prefix: str, customer: Customer | None) -> str:
    """Human description such as ``Loan Disbursement - Amina Mushi``."""
    if customer is not None:
        if customer.customer_type == CustomerType.INDIVIDUAL:
            name = " ".join(p for p in (customer.first_name, customer.surname) if p)
        else:
            name = customer.company_name or ""
        if name.strip():
            return f"{prefix} - {name.strip()}"
        return f"{prefix} - Customer {customer.id}"
    return prefix


# ---------------------------------------------------------------------------
# Line validation
# ---------------------------------------------------------------------------

def build_lines(specs: Iterable[LineSpec]) -> list[LineSpec]:
    """Normalise and validate journal lines.

    Zero lines are dropped. A line carrying both a debit and a credit, or a
    negative amount, raises ``PostingError``. Fewer than two remaining lines
    or unequal totals raise ``UnbalancedEntryError``.
    """
    lines: list[LineSpec] = []
    for spec in specs:
        debit = to_money(spec.debit)
        credit = to_money(spec.credit)
        if debit < 0 or credit < 0:
            raise PostingError(
                f"Negative amount on account {spec.account_id}: debit={debit}, credit={credit}"
            )
        if debit > 0 and credit > 0:
            raise PostingError(
                f"Line on account {spec.account_id} has both a debit and a credit"
            )
        if debit == 0 and credit == 0:
            continue
        lines.append(LineSpec(spec.account_id, debit, credit))

    if len(lines) < 2:
        raise UnbalancedEntryError(
            f"Entry needs at least two non-zero lines, got {len(lines)}"
        )
    total_dr = money_sum(ln.debit for ln in lines)
    total_cr = money_sum(ln.credit for ln in lines)
    if total_dr != total_cr:
        raise UnbalancedEntryError(
            f"Entry is not balanced: debits={total_dr}, credits={total_cr}"
        )
    return lines


async def _validate_accounts(db: AsyncSession, account_ids: set[int]) -> None:
    result = await db.execute(
        select(ChartOfAccount).where(ChartOfAccount.id.in_(account_ids))
    )
    accounts = {a.id: a for a in result.scalars().all()}
    for aid in sorted(account_ids):
        acct = accounts.get(aid)
        if acct is None:
            raise NotFoundError(f"Account {aid} not found")
        if not acct.is_active:
            raise PostingError(f"Account {acct.account_code} ({acct.account_name}) is inactive")


# ---------------------------------------------------------------------------
# Posting
# ---------------------------------------------------------------------------

async def post_entry(
    db: AsyncSession,
    *,
    lines: Iterable[LineSpec],
    description: str,
    source: JournalSource,
    reference: str | None = None,
    reference_prefix: str = TRANSACTION_PREFIX,
    entry_date: date | None = None,
    transaction: Transaction | None = None,
    created_by: int | None = None,
) -> JournalEntry:
    """Validate *lines* and stage one journal entry in the caller's session."""
    validated = build_lines(lines)
    await _validate_accounts(db, {ln.account_id for ln in validated})

    entry = JournalEntry(
        entry_date=entry_date or date.today(),
        reference_number=reference or make_reference(reference_prefix),
        description=description,
        source=source,
        transaction_id=transaction.id if transaction is not None else None,
        created_by=created_by,
        lines=[
            JournalEntryLine(account_id=ln.account_id, debit=ln.debit, credit=ln.credit)
            for ln in validated
        ],
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "Posted %s entry %s: %s (total %s)",
        source.value, entry.reference_number, description,
        money_sum(ln.debit for ln in validated),
    )
    return entry


async def post_for_transaction(
    db: AsyncSession,
    txn: Transaction,
    lines: Iterable[LineSpec],
    source: JournalSource,
    description: str,
    *,
    entry_date: date | None = None,
) -> JournalEntry:
    """Post the entry backing *txn* under the transaction's own reference."""
    if txn.id is None:
        await db.flush()
    return await post_entry(
        db,
        lines=lines,
        description=description,
        source=source,
        reference=txn.transaction_reference,
        entry_date=entry_date,
        transaction=txn,
        created_by=txn.user_id,
    )


# ---------------------------------------------------------------------------
# Event line builders
# ---------------------------------------------------------------------------

def is_savings_route(mapping: ChartOfAccountMapping, payment_type: PaymentType) -> bool:
    """True when the payment type settles into the customer deposit account."""
    return payment_type.chart_of_account_id == mapping.customer_deposit_code


def disbursement_lines(
    mapping: ChartOfAccountMapping, payment_type: PaymentType, amount: Decimal
) -> list[LineSpec]:
    credit_account = (
        mapping.customer_deposit_code
        if is_savings_route(mapping, payment_type)
        else payment_type.chart_of_account_id
    )
    return [
        LineSpec(mapping.customer_loan_code, debit=amount),
        LineSpec(credit_account, credit=amount),
    ]


def repayment_lines(
    mapping: ChartOfAccountMapping,
    payment_type: PaymentType,
    amount: Decimal,
    interest_due: Decimal,
    principal_payment: Decimal,
) -> list[LineSpec]:
    return [
        LineSpec(payment_type.chart_of_account_id, debit=amount),
        LineSpec(mapping.customer_loan_interest_code, credit=interest_due),
        LineSpec(mapping.customer_loan_code, credit=principal_payment),
    ]


def deposit_lines(
    mapping: ChartOfAccountMapping, payment_type: PaymentType, amount: Decimal
) -> list[LineSpec]:
    return [
        LineSpec(payment_type.chart_of_account_id, debit=amount),
        LineSpec(mapping.customer_deposit_code, credit=amount),
    ]


def withdrawal_lines(
    mapping: ChartOfAccountMapping, payment_type: PaymentType, amount: Decimal
) -> list[LineSpec]:
    return [
        LineSpec(mapping.customer_deposit_code, debit=amount),
        LineSpec(payment_type.chart_of_account_id, credit=amount),
    ]


def sale_lines(
    mapping: ChartOfAccountMapping,
    payment_type: PaymentType | None,
    total_due: Decimal,
    paid_amount: Decimal,
) -> list[LineSpec]:
    """Cash part to the till, unpaid part to debtors, full total to revenue.

    Change handed back to the customer never touches the ledger.
    """
    settled = min(paid_amount, total_due)
    on_credit = total_due - paid_amount if paid_amount < total_due else ZERO
    lines = []
    if settled > 0:
        if payment_type is None:
            raise PostingError("A payment type is required when money is received")
        lines.append(LineSpec(payment_type.chart_of_account_id, debit=settled))
    if on_credit > 0:
        lines.append(LineSpec(mapping.debtors_code, debit=on_credit))
    lines.append(LineSpec(mapping.sales_revenue_code, credit=total_due))
    return lines


def debtor_payment_lines(
    mapping: ChartOfAccountMapping, payment_type: PaymentType, amount: Decimal
) -> list[LineSpec]:
    return [
        LineSpec(payment_type.chart_of_account_id, debit=amount),
        LineSpec(mapping.debtors_code, credit=amount),
    ]


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

async def get_entry(db: AsyncSession, entry_id: int) -> JournalEntry:
    result = await db.execute(
        select(JournalEntry)
        .options(selectinload(JournalEntry.lines))
        .where(JournalEntry.id == entry_id)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFoundError(f"Journal entry {entry_id} not found")
    return entry


async def trial_check(db: AsyncSession) -> dict:
    """Recompute every entry's totals straight from its lines."""
    result = await db.execute(
        select(
            JournalEntry.reference_number,
            sa_func.coalesce(sa_func.sum(JournalEntryLine.debit), 0),
            sa_func.coalesce(sa_func.sum(JournalEntryLine.credit), 0),
            sa_func.count(JournalEntryLine.id),
        )
        .outerjoin(JournalEntryLine, JournalEntryLine.journal_entry_id == JournalEntry.id)
        .group_by(JournalEntry.id, JournalEntry.reference_number)
        .order_by(JournalEntry.id)
    )
    rows = result.all()

    unbalanced = []
    total_dr = total_cr = ZERO
    for reference, debits, credits, line_count in rows:
        debits, credits = to_money(debits), to_money(credits)
        total_dr += debits
        total_cr += credits
        if debits != credits or line_count < 2:
            unbalanced.append(reference)

    if unbalanced:
        logger.error("Trial check found %d unbalanced entries: %s", len(unbalanced), unbalanced[:20])
    return {
        "entries_checked": len(rows),
        "unbalanced_entries": unbalanced,
        "total_debits": total_dr,
        "total_credits": total_cr,
        "is_balanced": not unbalanced and total_dr == total_cr,
    }
