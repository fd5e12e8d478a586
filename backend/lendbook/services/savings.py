"""Customer savings: deposits and withdrawals with a never-negative balance."""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.database import atomic
from lendbook.models.customer import Customer, PaymentType
from lendbook.models.ledger import (
    ChartOfAccountMapping,
    JournalSource,
    Transaction,
    TransactionType,
)
from lendbook.models.saving import Saving
from lendbook.services.audit import record_audit
from lendbook.services.errors import ValidationError
from lendbook.services.ledger.account_mapping import require_mapping
from lendbook.services.ledger.posting_engine import (
    TRANSACTION_PREFIX,
    deposit_lines,
    describe_customer,
    make_reference,
    post_for_transaction,
    withdrawal_lines,
)
from lendbook.services.lookups import get_customer, get_payment_type
from lendbook.services.money import ZERO, to_money

logger = logging.getLogger(__name__)

SAVINGS_KINDS = {
    "deposit": (TransactionType.DEPOSIT, JournalSource.DEPOSIT),
    "withdrawal": (TransactionType.WITHDRAWAL, JournalSource.WITHDRAWAL),
}


async def lock_saving(db: AsyncSession, customer_id: int, *, create: bool = False) -> Saving | None:
    result = await db.execute(
        select(Saving)
        .where(Saving.customer_id == customer_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    saving = result.scalar_one_or_none()
    if saving is None and create:
        saving = Saving(customer_id=customer_id, balance=ZERO)
        db.add(saving)
        await db.flush()
    return saving


async def apply_savings_movement(
    db: AsyncSession,
    *,
    customer: Customer,
    saving: Saving,
    kind: str,
    amount: Decimal,
    payment_type: PaymentType,
    mapping: ChartOfAccountMapping,
    actor_id: int | None,
    remarks: str | None = None,
) -> Transaction:
    """Move *amount* in or out of a locked Saving row and post its entry.

    Runs inside the caller's transaction.
    """
    txn_type, source = SAVINGS_KINDS[kind]
    old_balance = to_money(saving.balance)
    if kind == "withdrawal":
        if old_balance < amount:
            raise ValidationError("Insufficient funds in savings account.", field="amount")
        saving.balance = old_balance - amount
        lines = withdrawal_lines(mapping, payment_type, amount)
    else:
        saving.balance = old_balance + amount
        lines = deposit_lines(mapping, payment_type, amount)

    description = describe_customer(f"Savings {kind.capitalize()}", customer)
    txn = Transaction(
        customer_id=customer.id,
        user_id=actor_id,
        savings_id=saving.id,
        amount=amount,
        type=txn_type,
        payment_type_id=payment_type.id,
        transaction_reference=make_reference(TRANSACTION_PREFIX),
        description=remarks or description,
    )
    db.add(txn)
    await db.flush()
    await post_for_transaction(db, txn, lines, source, description)

    record_audit(
        db, "saving", saving.id, kind, actor_id,
        old_values={"balance": str(old_balance)},
        new_values={"balance": str(to_money(saving.balance)), "transaction": txn.transaction_reference},
    )
    return txn


async def record_savings_transaction(
    db: AsyncSession,
    customer_id: int,
    kind: str,
    amount,
    payment_type_id: int,
    remarks: str | None,
    actor_id: int | None,
) -> Transaction:
    if kind not in SAVINGS_KINDS:
        raise ValidationError(f"Unknown savings transaction kind {kind!r}", field="kind")
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero", field="amount")

    async with atomic(db):
        customer = await get_customer(db, customer_id)
        payment_type = await get_payment_type(db, payment_type_id)
        mapping = await require_mapping(db, "customer_deposit_code")
        saving = await lock_saving(db, customer_id, create=True)
        txn = await apply_savings_movement(
            db,
            customer=customer,
            saving=saving,
            kind=kind,
            amount=amount,
            payment_type=payment_type,
            mapping=mapping,
            actor_id=actor_id,
            remarks=remarks,
        )

    logger.info(
        "Savings %s of %s for customer %s (%s)",
        kind, amount, customer_id, txn.transaction_reference,
    )
    return txn


async def savings_balance(db: AsyncSession, customer_id: int) -> Decimal:
    await get_customer(db, customer_id)
    result = await db.execute(select(Saving.balance).where(Saving.customer_id == customer_id))
    return to_money(result.scalar_one_or_none())
