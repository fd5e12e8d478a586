"""Seed data for the ledger.

Creates (all idempotent):
- Default chart of accounts for cash, bank, loans, savings and sales
- The chart-of-account mapping row
- Payment types settling into cash, bank and customer savings
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.models.customer import PaymentType
from lendbook.models.ledger import (
    MAPPING_ROW_ID,
    AccountType,
    ChartOfAccount,
    ChartOfAccountMapping,
)

logger = logging.getLogger(__name__)


# (code, name, type, parent code)
DEFAULT_ACCOUNTS = [
    ("1000", "Assets", AccountType.ASSET, None),
    ("1010", "Cash on Hand", AccountType.ASSET, "1000"),
    ("1020", "Bank Account", AccountType.ASSET, "1000"),
    ("1100", "Loans Receivable", AccountType.ASSET, "1000"),
    ("1200", "Trade Debtors", AccountType.ASSET, "1000"),
    ("2000", "Liabilities", AccountType.LIABILITY, None),
    ("2100", "Customer Savings Deposits", AccountType.LIABILITY, "2000"),
    ("4000", "Revenue", AccountType.REVENUE, None),
    ("4100", "Loan Interest Income", AccountType.REVENUE, "4000"),
    ("4200", "Sales Revenue", AccountType.REVENUE, "4000"),
]

DEFAULT_MAPPING = {
    "customer_loan_code": "1100",
    "customer_loan_interest_code": "4100",
    "customer_deposit_code": "2100",
    "sales_revenue_code": "4200",
    "debtors_code": "1200",
}

DEFAULT_PAYMENT_TYPES = [
    ("Cash", "1010"),
    ("Bank Transfer", "1020"),
    ("Savings", "2100"),
]


# ---------------------------------------------------------------------------
# Helper: get-or-create
# ---------------------------------------------------------------------------

async def _get_or_create_account(
    db: AsyncSession,
    *,
    code: str,
    name: str,
    account_type: AccountType,
    parent_id: int | None = None,
) -> ChartOfAccount:
    result = await db.execute(
        select(ChartOfAccount).where(ChartOfAccount.account_code == code)
    )
    acct = result.scalar_one_or_none()
    if acct:
        return acct
    acct = ChartOfAccount(
        account_code=code,
        account_name=name,
        account_type=account_type,
        parent_account_id=parent_id,
        is_active=True,
    )
    db.add(acct)
    await db.flush()
    return acct


async def _get_or_create_payment_type(db: AsyncSession, name: str, account_id: int) -> PaymentType:
    result = await db.execute(select(PaymentType).where(PaymentType.name == name))
    payment_type = result.scalar_one_or_none()
    if payment_type:
        return payment_type
    payment_type = PaymentType(name=name, chart_of_account_id=account_id)
    db.add(payment_type)
    await db.flush()
    return payment_type


async def _seed_accounts(db: AsyncSession) -> dict[str, ChartOfAccount]:
    accounts: dict[str, ChartOfAccount] = {}
    for code, name, account_type, parent_code in DEFAULT_ACCOUNTS:
        parent = accounts.get(parent_code) if parent_code else None
        accounts[code] = await _get_or_create_account(
            db,
            code=code,
            name=name,
            account_type=account_type,
            parent_id=parent.id if parent else None,
        )
    return accounts


async def _seed_mapping(db: AsyncSession, accounts: dict[str, ChartOfAccount]) -> None:
    if await db.get(ChartOfAccountMapping, MAPPING_ROW_ID) is not None:
        return
    db.add(ChartOfAccountMapping(
        id=MAPPING_ROW_ID,
        **{role: accounts[code].id for role, code in DEFAULT_MAPPING.items()},
    ))
    await db.flush()


async def seed_ledger_data(db: AsyncSession) -> None:
    """Seed the default chart of accounts, mapping and payment types (idempotent)."""
    accounts = await _seed_accounts(db)
    await _seed_mapping(db, accounts)
    for name, code in DEFAULT_PAYMENT_TYPES:
        await _get_or_create_payment_type(db, name, accounts[code].id)
    await db.commit()
    logger.info("Ledger seed data applied (accounts, mapping, payment types)")
