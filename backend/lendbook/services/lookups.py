"""Loaders for the rows business operations act on.

Missing rows raise ``NotFoundError``. The ``lock_*`` variants re-read the row
with ``SELECT ... FOR UPDATE`` and overwrite any stale copy held in the
session, so guards are always checked against committed state.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.models.customer import Customer, Guarantor, PaymentType
from lendbook.models.loan import Loan
from lendbook.services.errors import NotFoundError


async def get_loan(db: AsyncSession, loan_id: int) -> Loan:
    loan = await db.get(Loan, loan_id, populate_existing=True)
    if loan is None:
        raise NotFoundError(f"Loan {loan_id} not found")
    return loan


async def lock_loan(db: AsyncSession, loan_id: int) -> Loan:
    result = await db.execute(
        select(Loan)
        .where(Loan.id == loan_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    loan = result.scalar_one_or_none()
    if loan is None:
        raise NotFoundError(f"Loan {loan_id} not found")
    return loan


async def get_customer(db: AsyncSession, customer_id: int) -> Customer:
    customer = await db.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


async def get_payment_type(db: AsyncSession, payment_type_id: int) -> PaymentType:
    payment_type = await db.get(PaymentType, payment_type_id)
    if payment_type is None:
        raise NotFoundError(f"Payment type {payment_type_id} not found")
    return payment_type


async def require_guarantors(db: AsyncSession, guarantor_ids: list[int]) -> None:
    if not guarantor_ids:
        return
    result = await db.execute(select(Guarantor.id).where(Guarantor.id.in_(guarantor_ids)))
    found = set(result.scalars().all())
    missing = [gid for gid in guarantor_ids if gid not in found]
    if missing:
        raise NotFoundError(f"Guarantor {missing[0]} not found")
