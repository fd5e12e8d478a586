"""Loan repayments: interest first, then principal."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.database import atomic
from lendbook.models.ledger import JournalSource, Transaction, TransactionType
from lendbook.models.loan import LOAN_STATUS_REPAID, LoanStage, Repayment
from lendbook.services.audit import record_audit
from lendbook.services.errors import PreconditionFailed
from lendbook.services.ledger.account_mapping import require_mapping
from lendbook.services.ledger.posting_engine import (
    TRANSACTION_PREFIX,
    describe_customer,
    make_reference,
    post_for_transaction,
    repayment_lines,
)
from lendbook.services.loans.balance import (
    allocate_repayment,
    check_repayment_amount,
    interest_paid_to_date,
    outstanding_balance,
)
from lendbook.services.lookups import get_customer, get_loan, get_payment_type, lock_loan
from lendbook.services.money import to_money

logger = logging.getLogger(__name__)


async def record_repayment(
    db: AsyncSession,
    loan_id: int,
    amount,
    payment_type_id: int,
    remarks: str | None,
    payment_date: date | None,
    actor_id: int | None,
) -> Repayment:
    """Record one repayment and post Dr cash / Cr interest / Cr receivable.

    The loan's ``status`` becomes ``repaid`` once nothing is outstanding; its
    ``stage`` is left as it is.
    """
    async with atomic(db):
        loan = await lock_loan(db, loan_id)
        if loan.stage != int(LoanStage.DISBURSED):
            raise PreconditionFailed(
                f"Loan {loan_id} is at {LoanStage(loan.stage).label}; only disbursed loans take repayments"
            )
        if loan.is_repaid:
            raise PreconditionFailed(f"Loan {loan_id} is already repaid")

        balance_before = await outstanding_balance(db, loan)
        amount = check_repayment_amount(amount, balance_before)
        allocation = allocate_repayment(
            loan.interest_amount, await interest_paid_to_date(db, loan), amount
        )

        payment_type = await get_payment_type(db, payment_type_id)
        customer = await get_customer(db, loan.customer_id)
        mapping = await require_mapping(db)

        description = describe_customer("Loan Repayment", customer)
        txn = Transaction(
            customer_id=loan.customer_id,
            user_id=actor_id,
            loan_id=loan.id,
            amount=amount,
            type=TransactionType.LOAN_PAYMENT,
            payment_type_id=payment_type.id,
            transaction_reference=make_reference(TRANSACTION_PREFIX),
            description=remarks or description,
        )
        db.add(txn)
        await db.flush()
        await post_for_transaction(
            db, txn,
            repayment_lines(
                mapping, payment_type, amount,
                allocation.interest_due, allocation.principal_payment,
            ),
            JournalSource.REPAYMENT,
            description,
            entry_date=payment_date,
        )

        balance_after = balance_before - amount
        repayment = Repayment(
            loan_id=loan.id,
            user_id=actor_id,
            amount_paid=amount,
            interest_paid=allocation.interest_due,
            payment_date=payment_date or date.today(),
            balance_before=balance_before,
            balance_after=balance_after,
            transaction_id=txn.id,
        )
        db.add(repayment)

        if balance_after <= 0:
            loan.status = LOAN_STATUS_REPAID
        await db.flush()

        record_audit(
            db, "loan", loan.id, "repayment", actor_id,
            old_values={"balance": str(balance_before)},
            new_values={
                "balance": str(balance_after),
                "interest_paid": str(allocation.interest_due),
                "principal_paid": str(allocation.principal_payment),
                "status": loan.status,
            },
            details=txn.transaction_reference,
        )

    logger.info(
        "Repayment of %s on loan %s (interest %s, principal %s), balance %s",
        amount, loan_id, allocation.interest_due, allocation.principal_payment, balance_after,
    )
    return repayment


async def list_repayments(db: AsyncSession, loan_id: int) -> list[Repayment]:
    await get_loan(db, loan_id)
    result = await db.execute(
        select(Repayment).where(Repayment.loan_id == loan_id).order_by(Repayment.id)
    )
    return list(result.scalars().all())


async def balance_summary(db: AsyncSession, loan_id: int) -> dict[str, Decimal | int | str | None]:
    loan = await get_loan(db, loan_id)
    outstanding = await outstanding_balance(db, loan)
    interest_paid = await interest_paid_to_date(db, loan)
    return {
        "loan_id": loan.id,
        "total_repayment": to_money(loan.total_repayment),
        "amount_paid": to_money(loan.total_repayment) - outstanding,
        "interest_paid": interest_paid,
        "outstanding_balance": outstanding,
        "interest_outstanding": max(to_money(loan.interest_amount) - interest_paid, to_money(0)),
        "status": loan.status,
    }
