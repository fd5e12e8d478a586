"""Pydantic schemas for request/response validation."""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator, model_validator

from lendbook.models.ledger import AccountType, JournalSource, TransactionType
from lendbook.models.loan import ApprovalStatus, Loan


Money = Decimal


# ── Loans ─────────────────────────────────────────────

class LoanApplicationCreate(BaseModel):
    customer_id: int
    loan_type: int
    facilitybranch_id: int
    loan_amount: Money = Field(ge=0, max_digits=15, decimal_places=2)
    loan_duration: int = Field(ge=1, le=600)
    interest_rate: Money = Field(ge=0, max_digits=7, decimal_places=2)
    interest_amount: Money = Field(ge=0, max_digits=15, decimal_places=2)
    monthly_repayment: Money = Field(ge=0, max_digits=15, decimal_places=2)
    total_repayment: Money = Field(ge=0, max_digits=15, decimal_places=2)


class LoanApplicationUpdate(LoanApplicationCreate):
    pass


class GuarantorSelection(BaseModel):
    guarantor_id: int
    collateral_docname: Optional[str] = Field(default=None, max_length=255)


class LoanStepCommand(BaseModel):
    """Body of ``POST /loans/{id}/next``; which part is used depends on the stage."""

    application: Optional[LoanApplicationUpdate] = None
    guarantors: Optional[list[GuarantorSelection]] = None
    remarks: Optional[str] = None

    @field_validator("guarantors")
    @classmethod
    def _unique_guarantors(cls, v):
        if v is not None:
            ids = [g.guarantor_id for g in v]
            if len(ids) != len(set(ids)):
                raise ValueError("Each guarantor may be selected only once")
        return v


class ApproveCommand(BaseModel):
    remarks: Optional[str] = Field(default=None, max_length=2000)


class DisburseCommand(BaseModel):
    payment_type_id: int
    remarks: str = Field(min_length=1, max_length=2000)


class RepaymentCreate(BaseModel):
    amount: Money = Field(gt=0, max_digits=15, decimal_places=2)
    payment_type_id: int
    payment_date: Optional[date] = None
    remarks: Optional[str] = Field(default=None, max_length=2000)


class LoanGuarantorResponse(BaseModel):
    id: int
    guarantor_id: int
    collateral_doc: Optional[str]
    collateral_docname: Optional[str]

    model_config = {"from_attributes": True}


class LoanApprovalResponse(BaseModel):
    id: int
    loan_id: int
    stage: int
    status: ApprovalStatus
    approved_by: Optional[int]
    remarks: Optional[str]

    model_config = {"from_attributes": True}


class LoanResponse(BaseModel):
    id: int
    customer_id: int
    loan_type: int
    facilitybranch_id: int
    loan_amount: Money
    loan_duration: int
    interest_rate: Money
    interest_amount: Money
    monthly_repayment: Money
    total_repayment: Money
    stage: int
    stage_label: str
    status: Optional[str]
    application_form: Optional[str]
    submit_remarks: Optional[str]
    remarks: Optional[str]
    disbursed_at: Optional[datetime]

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def _add_stage_label(cls, data):
        if isinstance(data, Loan):
            return {
                **{name: getattr(data, name) for name in cls.model_fields if name != "stage_label"},
                "stage_label": data.current_stage.label,
            }
        return data


class LoanDetailResponse(LoanResponse):
    approvals: list[LoanApprovalResponse] = []
    guarantors: list[LoanGuarantorResponse] = []


class LoanBalanceResponse(BaseModel):
    loan_id: int
    total_repayment: Money
    amount_paid: Money
    interest_paid: Money
    outstanding_balance: Money
    interest_outstanding: Money
    status: Optional[str]


class RepaymentResponse(BaseModel):
    id: int
    loan_id: int
    amount_paid: Money
    interest_paid: Money
    payment_date: date
    balance_before: Money
    balance_after: Money
    transaction_id: Optional[int]

    model_config = {"from_attributes": True}


# ── Savings ───────────────────────────────────────────

class SavingsTransactionCreate(BaseModel):
    kind: Literal["deposit", "withdrawal"]
    amount: Money = Field(gt=0, max_digits=15, decimal_places=2)
    payment_type_id: int
    remarks: Optional[str] = Field(default=None, max_length=2000)


class SavingsBalanceResponse(BaseModel):
    customer_id: int
    balance: Money


class TransactionResponse(BaseModel):
    id: int
    customer_id: int
    loan_id: Optional[int]
    savings_id: Optional[int]
    amount: Money
    type: TransactionType
    payment_type_id: Optional[int]
    transaction_reference: str
    description: Optional[str]

    model_config = {"from_attributes": True}


# ── Billing ───────────────────────────────────────────

class SaleCreate(BaseModel):
    customer_id: int
    total_due: Money = Field(gt=0, max_digits=15, decimal_places=2)
    paid_amount: Money = Field(ge=0, max_digits=15, decimal_places=2)
    payment_type_id: Optional[int] = None

    @model_validator(mode="after")
    def _payment_type_when_paid(self):
        if self.paid_amount > 0 and self.payment_type_id is None:
            raise ValueError("payment_type_id is required when an amount is paid")
        return self


class SaleResponse(BaseModel):
    id: int
    customer_id: int
    total_due: Money
    total_paid: Money
    change_amount: Money
    balance_due: Money
    receipt_number: Optional[str]
    invoice_number: Optional[str]
    journal_entry_id: Optional[int]

    model_config = {"from_attributes": True}


class DebtorPaymentCreate(BaseModel):
    amount: Money = Field(gt=0, max_digits=15, decimal_places=2)
    payment_type_id: int


class DebtorResponse(BaseModel):
    customer_id: int
    balance: Money

    model_config = {"from_attributes": True}


# ── Ledger ────────────────────────────────────────────

class AccountCreate(BaseModel):
    account_code: str = Field(min_length=1, max_length=30)
    account_name: str = Field(min_length=1, max_length=200)
    account_type: AccountType
    description: Optional[str] = None
    parent_account_id: Optional[int] = None


class AccountResponse(BaseModel):
    id: int
    account_code: str
    account_name: str
    account_type: AccountType
    description: Optional[str]
    is_active: bool
    parent_account_id: Optional[int]

    model_config = {"from_attributes": True}


class AccountMappingCreate(BaseModel):
    customer_loan_code: int
    customer_loan_interest_code: int
    customer_deposit_code: int
    sales_revenue_code: Optional[int] = None
    debtors_code: Optional[int] = None


class AccountMappingUpdate(BaseModel):
    customer_loan_code: Optional[int] = None
    customer_loan_interest_code: Optional[int] = None
    customer_deposit_code: Optional[int] = None
    sales_revenue_code: Optional[int] = None
    debtors_code: Optional[int] = None


class AccountMappingResponse(AccountMappingCreate):
    id: int

    model_config = {"from_attributes": True}


class JournalLineResponse(BaseModel):
    id: int
    account_id: int
    debit: Money
    credit: Money

    model_config = {"from_attributes": True}


class JournalEntryResponse(BaseModel):
    id: int
    entry_date: date
    reference_number: str
    description: str
    source: JournalSource
    transaction_id: Optional[int]
    lines: list[JournalLineResponse] = []
    total_debits: Money
    total_credits: Money
    is_balanced: bool

    model_config = {"from_attributes": True}


class TrialCheckResponse(BaseModel):
    entries_checked: int
    unbalanced_entries: list[str]
    total_debits: Money
    total_credits: Money
    is_balanced: bool
