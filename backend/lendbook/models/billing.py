"""Point-of-sale billing: sales and debtor (credit-sale) balances."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Numeric, DateTime, ForeignKey, CheckConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lendbook.database import Base


class Sale(Base):
    __tablename__ = "sales"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    total_due: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    change_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0.00"), nullable=False
    )
    balance_due: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0.00"), nullable=False
    )
    receipt_number: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    payment_type_id: Mapped[int | None] = mapped_column(
        ForeignKey("payment_types.id"), nullable=True
    )
    transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id"), nullable=True
    )
    journal_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    journal_entry = relationship("JournalEntry")

    @property
    def is_credit_sale(self) -> bool:
        return self.total_paid < self.total_due


class Debtor(Base):
    """Outstanding credit-sale balance of one customer."""

    __tablename__ = "debtors"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_debtors_balance_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(
        ForeignKey("customers.id"), unique=True, nullable=False
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0.00"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
