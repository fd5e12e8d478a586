"""Loan, guarantor link, approval and repayment models."""

import enum
from datetime import datetime, date
from decimal import Decimal

from sqlalchemy import (
    String, Numeric, Integer, Enum, DateTime, Date, ForeignKey, Text,
    Index, UniqueConstraint, func, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lendbook.database import Base


class LoanStage(enum.IntEnum):
    APPLICATION = 1
    DOCUMENTATION = 2
    SUBMISSION = 3
    LOAN_OFFICER_REVIEW = 4
    MANAGER_REVIEW = 5
    COMMITTEE_REVIEW = 6
    APPROVED = 7
    DISBURSED = 8
    REJECTED = 9
    REPAID = 10
    DEFAULTED = 11

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]


_STAGE_LABELS = {
    LoanStage.APPLICATION: "Application",
    LoanStage.DOCUMENTATION: "Documentation",
    LoanStage.SUBMISSION: "Submission",
    LoanStage.LOAN_OFFICER_REVIEW: "Loan Officer Review",
    LoanStage.MANAGER_REVIEW: "Manager Review",
    LoanStage.COMMITTEE_REVIEW: "Committee Review",
    LoanStage.APPROVED: "Approved",
    LoanStage.DISBURSED: "Disbursed",
    LoanStage.REJECTED: "Rejected",
    LoanStage.REPAID: "Repaid",
    LoanStage.DEFAULTED: "Defaulted",
}

LOAN_STATUS_REPAID = "repaid"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"


class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), nullable=False, index=True)
    loan_type: Mapped[int] = mapped_column(Integer, nullable=False)
    facilitybranch_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    # Terms
    loan_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    loan_duration: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    monthly_repayment: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_repayment: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # Lifecycle
    stage: Mapped[int] = mapped_column(
        Integer, default=int(LoanStage.APPLICATION), nullable=False, index=True
    )
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    application_form: Mapped[str | None] = mapped_column(String(500), nullable=True)
    submit_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    disbursed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Concurrent writers holding a stale copy fail instead of overwriting.
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    customer = relationship("Customer", back_populates="loans")
    guarantors = relationship(
        "LoanGuarantor", back_populates="loan", cascade="all, delete-orphan"
    )
    approvals = relationship(
        "LoanApproval", back_populates="loan", order_by="LoanApproval.id"
    )
    payments = relationship(
        "Repayment", back_populates="loan", order_by="Repayment.id"
    )

    @property
    def current_stage(self) -> LoanStage:
        return LoanStage(self.stage)

    @property
    def is_repaid(self) -> bool:
        return self.status == LOAN_STATUS_REPAID


class LoanGuarantor(Base):
    __tablename__ = "loan_guarantors"
    __table_args__ = (
        UniqueConstraint("loan_id", "guarantor_id", name="uq_loan_guarantor"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(
        ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    guarantor_id: Mapped[int] = mapped_column(ForeignKey("guarantors.id"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    collateral_doc: Mapped[str | None] = mapped_column(String(500), nullable=True)
    collateral_docname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    loan = relationship("Loan", back_populates="guarantors")
    guarantor = relationship("Guarantor")


class LoanApproval(Base):
    """One review level of one loan (pending until an approver acts)."""

    __tablename__ = "loan_approvals"
    __table_args__ = (
        # At most one pending approval per loan and stage
        Index(
            "uq_loan_approvals_pending", "loan_id", "stage", unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    stage: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False
    )
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    loan = relationship("Loan", back_populates="approvals")


class Repayment(Base):
    __tablename__ = "repayments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    interest_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0.00"), nullable=False
    )
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    loan = relationship("Loan", back_populates="payments")
