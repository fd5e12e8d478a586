"""Customer, guarantor and payment-type reference data.

These tables are maintained by their own CRUD screens; the loan and ledger
flows only read them.
"""

import enum
from datetime import datetime

from sqlalchemy import String, Enum, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lendbook.database import Base


class CustomerType(str, enum.Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"
    GROUP = "group"


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_type: Mapped[CustomerType] = mapped_column(
        Enum(CustomerType), default=CustomerType.INDIVIDUAL, nullable=False
    )
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    surname: Mapped[str | None] = mapped_column(String(100), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    loans = relationship("Loan", back_populates="customer")
    saving = relationship("Saving", back_populates="customer", uselist=False)


class Guarantor(Base):
    __tablename__ = "guarantors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    guarantor_type: Mapped[CustomerType] = mapped_column(
        Enum(CustomerType), default=CustomerType.INDIVIDUAL, nullable=False
    )
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    surname: Mapped[str | None] = mapped_column(String(100), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class PaymentType(Base):
    """A way money moves (cash till, bank account, mobile money, savings).

    ``chart_of_account_id`` is the cash/bank ledger account the payment type
    settles into.
    """

    __tablename__ = "payment_types"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    chart_of_account_id: Mapped[int] = mapped_column(
        ForeignKey("chart_of_accounts.id"), nullable=False
    )

    account = relationship("ChartOfAccount")
