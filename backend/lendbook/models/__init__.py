"""SQLAlchemy models for the Lendbook back office."""

from lendbook.models.user import User, UserRole
from lendbook.models.customer import Customer, CustomerType, Guarantor, PaymentType
from lendbook.models.loan import (
    Loan,
    LoanStage,
    LoanGuarantor,
    LoanApproval,
    ApprovalStatus,
    Repayment,
    LOAN_STATUS_REPAID,
)
from lendbook.models.ledger import (
    AccountType,
    ChartOfAccount,
    ChartOfAccountMapping,
    JournalEntry,
    JournalEntryLine,
    JournalSource,
    Transaction,
    TransactionType,
    MAPPING_ROW_ID,
)
from lendbook.models.saving import Saving
from lendbook.models.billing import Sale, Debtor
from lendbook.models.reminder import RepaymentReminder
from lendbook.models.audit import AuditLog
from lendbook.models.error_log import ErrorLog, ErrorSeverity

__all__ = [
    "User", "UserRole",
    "Customer", "CustomerType", "Guarantor", "PaymentType",
    "Loan", "LoanStage", "LoanGuarantor", "LoanApproval", "ApprovalStatus",
    "Repayment", "LOAN_STATUS_REPAID",
    "AccountType", "ChartOfAccount", "ChartOfAccountMapping",
    "JournalEntry", "JournalEntryLine", "JournalSource",
    "Transaction", "TransactionType", "MAPPING_ROW_ID",
    "Saving",
    "Sale", "Debtor",
    "RepaymentReminder",
    "AuditLog",
    "ErrorLog", "ErrorSeverity",
]
