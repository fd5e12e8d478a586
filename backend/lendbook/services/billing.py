"""Point-of-sale payment posting: cash, credit and partial sales.

A sale is on credit when less than the total is paid. Credit sales get an
invoice number and grow the customer's debtor balance by the unpaid part;
any sale where money changed hands gets a receipt number. Change returned on
an overpaid cash sale is recorded on the sale but never posted.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.database import atomic
from lendbook.models.billing import Debtor, Sale
from lendbook.models.ledger import JournalSource, Transaction, TransactionType
from lendbook.services.audit import record_audit
from lendbook.services.errors import NotFoundError, ValidationError
from lendbook.services.ledger.account_mapping import require_mapping
from lendbook.services.ledger.posting_engine import (
    DEBTOR_PREFIX,
    SALE_PREFIX,
    debtor_payment_lines,
    describe_customer,
    make_reference,
    post_for_transaction,
    sale_lines,
)
from lendbook.services.lookups import get_customer, get_payment_type
from lendbook.services.money import ZERO, to_money

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = "REC"
INVOICE_PREFIX = "INV"


async def _lock_debtor(db: AsyncSession, customer_id: int, *, create: bool = False) -> Debtor | None:
    result = await db.execute(
        select(Debtor)
        .where(Debtor.customer_id == customer_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    debtor = result.scalar_one_or_none()
    if debtor is None and create:
        debtor = Debtor(customer_id=customer_id, balance=ZERO)
        db.add(debtor)
        await db.flush()
    return debtor


async def post_sale(
    db: AsyncSession,
    customer_id: int,
    total_due,
    paid_amount,
    payment_type_id: int | None,
    actor_id: int | None,
) -> Sale:
    total_due = to_money(total_due)
    paid_amount = to_money(paid_amount)
    if total_due <= 0:
        raise ValidationError("Sale total must be greater than zero", field="total_due")
    if paid_amount < 0:
        raise ValidationError("Paid amount cannot be negative", field="paid_amount")
    if paid_amount > 0 and payment_type_id is None:
        raise ValidationError("A payment type is required when an amount is paid", field="payment_type_id")

    is_credit_sale = paid_amount < total_due
    balance_due = total_due - paid_amount if is_credit_sale else ZERO
    change_amount = max(ZERO, paid_amount - total_due)

    async with atomic(db):
        customer = await get_customer(db, customer_id)
        payment_type = await get_payment_type(db, payment_type_id) if payment_type_id else None
        roles = ("sales_revenue_code", "debtors_code") if is_credit_sale else ("sales_revenue_code",)
        mapping = await require_mapping(db, *roles)

        description = describe_customer("Sale", customer)
        txn = Transaction(
            customer_id=customer.id,
            user_id=actor_id,
            amount=total_due,
            type=TransactionType.SALE,
            payment_type_id=payment_type.id if payment_type else None,
            transaction_reference=make_reference(SALE_PREFIX),
            description=description,
        )
        db.add(txn)
        await db.flush()
        entry = await post_for_transaction(
            db, txn,
            sale_lines(mapping, payment_type, total_due, paid_amount),
            JournalSource.SALE,
            description,
        )

        sale = Sale(
            customer_id=customer.id,
            user_id=actor_id,
            total_due=total_due,
            total_paid=paid_amount,
            change_amount=change_amount,
            balance_due=balance_due,
            receipt_number=make_reference(RECEIPT_PREFIX) if paid_amount > 0 else None,
            invoice_number=make_reference(INVOICE_PREFIX) if is_credit_sale else None,
            payment_type_id=payment_type.id if payment_type else None,
            transaction_id=txn.id,
            journal_entry_id=entry.id,
        )
        db.add(sale)

        if is_credit_sale:
            debtor = await _lock_debtor(db, customer.id, create=True)
            debtor.balance = to_money(debtor.balance) + balance_due

        await db.flush()
        record_audit(
            db, "sale", sale.id, "posted", actor_id,
            new_values={
                "total_due": str(total_due),
                "total_paid": str(paid_amount),
                "balance_due": str(balance_due),
            },
            details=txn.transaction_reference,
        )

    logger.info(
        "Sale %s posted for customer %s: total %s, paid %s%s",
        sale.id, customer_id, total_due, paid_amount, " (credit)" if is_credit_sale else "",
    )
    return sale


async def receive_debtor_payment(
    db: AsyncSession,
    customer_id: int,
    amount,
    payment_type_id: int,
    actor_id: int | None,
) -> Transaction:
    """Settle part or all of a customer's credit-sale balance."""
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero", field="amount")

    async with atomic(db):
        customer = await get_customer(db, customer_id)
        debtor = await _lock_debtor(db, customer_id)
        if debtor is None:
            raise NotFoundError(f"Customer {customer_id} has no outstanding credit sales")
        if amount > to_money(debtor.balance):
            raise ValidationError(
                f"Payment of {amount} exceeds the debtor balance of {to_money(debtor.balance)}",
                field="amount",
            )
        payment_type = await get_payment_type(db, payment_type_id)
        mapping = await require_mapping(db, "debtors_code")

        old_balance = to_money(debtor.balance)
        debtor.balance = old_balance - amount

        description = describe_customer("Debtor Payment", customer)
        txn = Transaction(
            customer_id=customer.id,
            user_id=actor_id,
            amount=amount,
            type=TransactionType.DEBTOR_PAYMENT,
            payment_type_id=payment_type.id,
            transaction_reference=make_reference(DEBTOR_PREFIX),
            description=description,
        )
        db.add(txn)
        await db.flush()
        await post_for_transaction(
            db, txn,
            debtor_payment_lines(mapping, payment_type, amount),
            JournalSource.DEBTOR_PAYMENT,
            description,
        )
        record_audit(
            db, "debtor", debtor.id, "payment", actor_id,
            old_values={"balance": str(old_balance)},
            new_values={"balance": str(to_money(debtor.balance))},
            details=txn.transaction_reference,
        )

    logger.info("Debtor payment of %s from customer %s (%s)", amount, customer_id, txn.transaction_reference)
    return txn


async def debtor_balance(db: AsyncSession, customer_id: int):
    await get_customer(db, customer_id)
    result = await db.execute(select(Debtor.balance).where(Debtor.customer_id == customer_id))
    return to_money(result.scalar_one_or_none())
