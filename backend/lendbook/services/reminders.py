"""Overdue installment detection for disbursed loans.

Installments fall due monthly from the disbursement date. An installment is
overdue once its due date has passed without any repayment dated in the same
calendar month. Each (loan, due date) pair is reminded at most once.
"""

import calendar
import logging
from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lendbook.database import atomic
from lendbook.models.loan import LOAN_STATUS_REPAID, Loan, LoanStage, Repayment
from lendbook.models.reminder import RepaymentReminder

logger = logging.getLogger(__name__)

REMINDER_TEMPLATE = (
    "Hi {first_name}, your loan repayment for the installment due on {due_date} "
    "is overdue. Please make your payment as soon as possible."
)


def add_months(start: date, months: int) -> date:
    """Same day *months* later, clamped to the last day of a shorter month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def installment_due_dates(start: date, duration: int, today: date) -> list[date]:
    due = []
    for i in range(1, duration + 1):
        d = add_months(start, i)
        if d > today:
            break
        due.append(d)
    return due


def reminder_message(first_name: str | None, due_date: date) -> str:
    return REMINDER_TEMPLATE.format(
        first_name=first_name or "Customer",
        due_date=due_date.strftime("%d %b %Y"),
    )


async def collect_due_reminders(db: AsyncSession, today: date | None = None) -> list[RepaymentReminder]:
    """Record a reminder for every overdue, unreminded installment."""
    today = today or date.today()
    result = await db.execute(
        select(Loan)
        .options(selectinload(Loan.customer))
        .where(
            Loan.stage == int(LoanStage.DISBURSED),
            Loan.disbursed_at.is_not(None),
            or_(Loan.status.is_(None), Loan.status != LOAN_STATUS_REPAID),
        )
        .order_by(Loan.id)
    )
    loans = list(result.scalars().all())

    created: list[RepaymentReminder] = []
    async with atomic(db):
        for loan in loans:
            due_dates = installment_due_dates(loan.disbursed_at.date(), loan.loan_duration, today)
            if not due_dates:
                continue

            paid = await db.execute(
                select(Repayment.payment_date).where(Repayment.loan_id == loan.id)
            )
            paid_months = {(d.year, d.month) for d in paid.scalars().all()}
            sent = await db.execute(
                select(RepaymentReminder.due_date).where(RepaymentReminder.loan_id == loan.id)
            )
            already = set(sent.scalars().all())

            for due in due_dates:
                if (due.year, due.month) in paid_months or due in already:
                    continue
                reminder = RepaymentReminder(
                    loan_id=loan.id,
                    customer_id=loan.customer_id,
                    due_date=due,
                    message=reminder_message(loan.customer.first_name if loan.customer else None, due),
                )
                db.add(reminder)
                created.append(reminder)
        await db.flush()

    logger.info("Repayment reminders recorded: %d", len(created))
    return created
