"""Shared fixtures: a throwaway SQLite database per test, seeded books and actors.

Reference rows are written through their own short-lived sessions, so a
rollback in the `db` session under test never expires them.
"""

import os
import tempfile

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "lendbook-test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="lendbook-uploads-"))

from dataclasses import dataclass
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import selectinload
from sqlalchemy.pool import NullPool

import lendbook.models  # noqa: F401  (registers every table on Base.metadata)
from lendbook.database import Base
from lendbook.models.customer import Customer, CustomerType, Guarantor, PaymentType
from lendbook.models.ledger import ChartOfAccount, JournalEntry
from lendbook.models.loan import Loan, LoanStage
from lendbook.models.user import User, UserRole
from lendbook.seed_ledger import seed_ledger_data
from lendbook.services.file_storage import FileStorage


@dataclass
class Books:
    """Seeded chart of accounts and payment types, keyed for readable asserts."""

    accounts: dict[str, ChartOfAccount]
    cash: PaymentType
    bank: PaymentType
    savings: PaymentType

    @property
    def cash_account(self) -> int:
        return self.accounts["1010"].id

    @property
    def loans_receivable(self) -> int:
        return self.accounts["1100"].id

    @property
    def interest_income(self) -> int:
        return self.accounts["4100"].id

    @property
    def customer_deposits(self) -> int:
        return self.accounts["2100"].id

    @property
    def sales_revenue(self) -> int:
        return self.accounts["4200"].id

    @property
    def debtors(self) -> int:
        return self.accounts["1200"].id


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lendbook.db'}", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def books(session_factory) -> Books:
    async with session_factory() as s:
        await seed_ledger_data(s)
        accounts = {a.account_code: a for a in (await s.execute(select(ChartOfAccount))).scalars()}
        payment_types = {p.name: p for p in (await s.execute(select(PaymentType))).scalars()}
    return Books(
        accounts=accounts,
        cash=payment_types["Cash"],
        bank=payment_types["Bank Transfer"],
        savings=payment_types["Savings"],
    )


@pytest.fixture
async def staff(session_factory) -> User:
    user = User(
        email="admin@lendbook.test", first_name="Neema", last_name="Kweka",
        role=UserRole.ADMIN,
    )
    async with session_factory() as s:
        s.add(user)
        await s.commit()
    return user


@pytest.fixture
async def customer(session_factory) -> Customer:
    person = Customer(customer_type=CustomerType.INDIVIDUAL, first_name="Amina", surname="Mushi")
    async with session_factory() as s:
        s.add(person)
        await s.commit()
    return person


@pytest.fixture
async def guarantors(session_factory) -> list[Guarantor]:
    rows = [
        Guarantor(first_name="Juma", surname="Said"),
        Guarantor(first_name="Rehema", surname="Ally"),
        Guarantor(company_name="Kilimo Traders"),
    ]
    async with session_factory() as s:
        s.add_all(rows)
        await s.commit()
    return rows


@pytest.fixture
def storage(tmp_path) -> FileStorage:
    return FileStorage(root=str(tmp_path / "uploads"), max_bytes=1024 * 1024)


LOAN_TERMS = {
    "loan_type": 1,
    "facilitybranch_id": 1,
    "loan_amount": Decimal("100000.00"),
    "loan_duration": 12,
    "interest_rate": Decimal("20.00"),
    "interest_amount": Decimal("20000.00"),
    "monthly_repayment": Decimal("10000.00"),
    "total_repayment": Decimal("120000.00"),
}


@pytest.fixture
def loan_terms() -> dict:
    return dict(LOAN_TERMS)


@pytest.fixture
def make_loan(session_factory, customer):
    """Insert a loan straight at *stage*, bypassing the wizard."""

    async def _make(stage: LoanStage = LoanStage.APPLICATION, **overrides) -> Loan:
        values = {**LOAN_TERMS, "customer_id": customer.id, "stage": int(stage), **overrides}
        loan = Loan(**values)
        async with session_factory() as s:
            s.add(loan)
            await s.commit()
        return loan

    return _make


@pytest.fixture
def fetch_entries(db):
    """Journal entries (with lines) straight from the database."""

    async def _fetch(reference: str | None = None) -> list[JournalEntry]:
        stmt = select(JournalEntry).options(selectinload(JournalEntry.lines)).order_by(JournalEntry.id)
        if reference is not None:
            stmt = stmt.where(JournalEntry.reference_number == reference)
        result = await db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    return _fetch
