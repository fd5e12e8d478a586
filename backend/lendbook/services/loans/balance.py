"""Outstanding balance and interest-first repayment allocation.

The functions here are pure arithmetic on ``Decimal``; ``outstanding_balance``
is the only one that reads the database.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.models.loan import Loan, Repayment
from lendbook.services.errors import ValidationError
from lendbook.services.money import ZERO, to_money


@dataclass(frozen=True)
class Allocation:
    interest_due: Decimal
    principal_payment: Decimal

    @property
    def total(self) -> Decimal:
        return self.interest_due + self.principal_payment


def calculate_outstanding_balance(total_repayment, payments: Iterable) -> Decimal:
    """``total_repayment`` minus the sum of *payments* (amounts or Repayment rows)."""
    paid = ZERO
    for p in payments:
        paid += to_money(getattr(p, "amount_paid", p))
    return to_money(total_repayment) - paid


async def outstanding_balance(db: AsyncSession, loan: Loan) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(Repayment.amount_paid), 0))
        .where(Repayment.loan_id == loan.id)
    )
    return to_money(loan.total_repayment) - to_money(result.scalar_one())


async def interest_paid_to_date(db: AsyncSession, loan: Loan) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(Repayment.interest_paid), 0))
        .where(Repayment.loan_id == loan.id)
    )
    return to_money(result.scalar_one())


def allocate_repayment(interest_amount, interest_paid, incoming) -> Allocation:
    """Split *incoming* between outstanding interest (first) and principal."""
    interest_amount = to_money(interest_amount)
    interest_paid = to_money(interest_paid)
    incoming = to_money(incoming)
    if incoming < 0:
        raise ValidationError("Repayment amount cannot be negative", field="amount")

    interest_remaining = max(interest_amount - interest_paid, ZERO)
    interest_due = min(interest_remaining, incoming)
    return Allocation(interest_due=interest_due, principal_payment=incoming - interest_due)


def check_repayment_amount(amount, outstanding) -> Decimal:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Repayment amount must be greater than zero", field="amount")
    if amount > to_money(outstanding):
        raise ValidationError(
            f"Repayment of {amount} exceeds the outstanding balance of {to_money(outstanding)}",
            field="amount",
        )
    return amount
