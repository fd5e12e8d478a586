"""Overdue installment reminders."""

from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from lendbook.models.loan import LoanStage, Repayment
from lendbook.models.reminder import RepaymentReminder
from lendbook.services.reminders import (
    add_months,
    collect_due_reminders,
    installment_due_dates,
    reminder_message,
)
from lendbook.tasks.repayment_reminders import run_reminder_sweep


class TestSchedule:

    @pytest.mark.parametrize("start,months,expected", [
        (date(2026, 1, 15), 1, date(2026, 2, 15)),
        (date(2026, 1, 31), 1, date(2026, 2, 28)),
        (date(2028, 1, 31), 1, date(2028, 2, 29)),
        (date(2026, 11, 30), 3, date(2027, 2, 28)),
        (date(2026, 5, 10), 12, date(2027, 5, 10)),
    ])
    def test_add_months(self, start, months, expected):
        assert add_months(start, months) == expected

    def test_due_dates_stop_at_today(self):
        dues = installment_due_dates(date(2026, 1, 31), 12, date(2026, 4, 30))
        assert dues == [date(2026, 2, 28), date(2026, 3, 31), date(2026, 4, 30)]

    def test_due_dates_capped_by_duration(self):
        dues = installment_due_dates(date(2026, 1, 1), 2, date(2027, 1, 1))
        assert dues == [date(2026, 2, 1), date(2026, 3, 1)]

    def test_message(self):
        text = reminder_message(None, date(2026, 2, 28))
        assert text.startswith("Hi Customer,")
        assert "28 Feb 2026" in text


class TestCollectDueReminders:

    @pytest.mark.asyncio
    async def test_skips_paid_months(self, db, session_factory, make_loan):
        loan = await make_loan(LoanStage.DISBURSED, disbursed_at=datetime(2026, 1, 31, 9, 0))
        async with session_factory() as s:
            s.add(Repayment(
                loan_id=loan.id, amount_paid=Decimal("10000"), interest_paid=Decimal("10000"),
                payment_date=date(2026, 3, 20),
                balance_before=Decimal("120000"), balance_after=Decimal("110000"),
            ))
            await s.commit()

        created = await collect_due_reminders(db, today=date(2026, 4, 30))

        assert [r.due_date for r in created] == [date(2026, 2, 28), date(2026, 4, 30)]
        assert created[0].message.startswith("Hi Amina,")

    @pytest.mark.asyncio
    async def test_each_installment_reminded_once(self, db, make_loan):
        await make_loan(LoanStage.DISBURSED, disbursed_at=datetime(2026, 1, 10, 9, 0))

        first = await collect_due_reminders(db, today=date(2026, 3, 15))
        again = await collect_due_reminders(db, today=date(2026, 3, 15))
        later = await collect_due_reminders(db, today=date(2026, 4, 10))

        assert len(first) == 2
        assert again == []
        assert [r.due_date for r in later] == [date(2026, 4, 10)]
        stored = (await db.execute(select(RepaymentReminder))).scalars().all()
        assert len(stored) == 3

    @pytest.mark.asyncio
    async def test_ignores_repaid_and_undisbursed(self, db, make_loan):
        await make_loan(LoanStage.DISBURSED, disbursed_at=datetime(2026, 1, 10), status="repaid")
        await make_loan(LoanStage.APPROVED)

        assert await collect_due_reminders(db, today=date(2026, 6, 1)) == []

    @pytest.mark.asyncio
    async def test_sweep_summary(self, session_factory, make_loan):
        await make_loan(LoanStage.DISBURSED, disbursed_at=datetime(2026, 1, 10))
        await make_loan(LoanStage.DISBURSED, disbursed_at=datetime(2026, 2, 10))

        stats = await run_reminder_sweep(session_factory, today=date(2026, 3, 10))
        assert stats == {"reminders": 3, "loans": 2}
