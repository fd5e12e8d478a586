"""Loan lifecycle, savings, billing and double-entry ledger tables.

Revision ID: 001
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


# Enum labels are the Python member names, as stored by sqlalchemy.Enum.
ENUMS = {
    "userrole": ("LOAN_OFFICER", "MANAGER", "COMMITTEE", "CASHIER", "ADMIN"),
    "customertype": ("INDIVIDUAL", "COMPANY", "GROUP"),
    "accounttype": ("ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE"),
    "transactiontype": (
        "DEPOSIT", "WITHDRAWAL", "LOAN_PAYMENT", "INTEREST", "FEE", "EXPENSE",
        "DISBURSEMENT", "SALE", "DEBTOR_PAYMENT",
    ),
    "journalsource": (
        "DISBURSEMENT", "REPAYMENT", "DEPOSIT", "WITHDRAWAL", "SALE", "DEBTOR_PAYMENT",
    ),
    "approvalstatus": ("PENDING", "APPROVED"),
    "errorseverity": ("WARNING", "ERROR", "CRITICAL"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _money(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(15, 2), nullable=False, **kwargs)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    # -- Enums -----------------------------------------------------------------
    for name, labels in ENUMS.items():
        postgresql.ENUM(*labels, name=name, create_type=True).create(op.get_bind(), checkfirst=True)

    # -- Reference data --------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("role", _enum("userrole"), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        _created_at(),
    )

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_type", _enum("customertype"), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("surname", sa.String(100), nullable=True),
        sa.Column("company_name", sa.String(200), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(30), nullable=True),
        _created_at(),
    )

    op.create_table(
        "guarantors",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guarantor_type", _enum("customertype"), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("surname", sa.String(100), nullable=True),
        sa.Column("company_name", sa.String(200), nullable=True),
        _created_at(),
    )

    # -- Ledger ----------------------------------------------------------------
    op.create_table(
        "chart_of_accounts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("account_code", sa.String(30), nullable=False, unique=True),
        sa.Column("account_name", sa.String(200), nullable=False),
        sa.Column("account_type", _enum("accounttype"), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "parent_account_id", sa.Integer,
            sa.ForeignKey("chart_of_accounts.id", ondelete="SET NULL"), nullable=True,
        ),
        _created_at(),
    )
    op.create_index("ix_chart_of_accounts_type", "chart_of_accounts", ["account_type"])

    op.create_table(
        "chart_of_account_mappings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("customer_loan_code", sa.Integer, sa.ForeignKey("chart_of_accounts.id"), nullable=False),
        sa.Column("customer_loan_interest_code", sa.Integer, sa.ForeignKey("chart_of_accounts.id"), nullable=False),
        sa.Column("customer_deposit_code", sa.Integer, sa.ForeignKey("chart_of_accounts.id"), nullable=False),
        sa.Column("sales_revenue_code", sa.Integer, sa.ForeignKey("chart_of_accounts.id"), nullable=True),
        sa.Column("debtors_code", sa.Integer, sa.ForeignKey("chart_of_accounts.id"), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("id = 1", name="ck_coa_mapping_singleton"),
    )

    op.create_table(
        "payment_types",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("chart_of_account_id", sa.Integer, sa.ForeignKey("chart_of_accounts.id"), nullable=False),
    )

    # -- Loans -----------------------------------------------------------------
    op.create_table(
        "loans",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False, index=True),
        sa.Column("loan_type", sa.Integer, nullable=False),
        sa.Column("facilitybranch_id", sa.Integer, nullable=False, index=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        _money("loan_amount"),
        sa.Column("loan_duration", sa.Integer, nullable=False),
        sa.Column("interest_rate", sa.Numeric(7, 2), nullable=False),
        _money("interest_amount"),
        _money("monthly_repayment"),
        _money("total_repayment"),
        sa.Column("stage", sa.Integer, nullable=False, server_default="1", index=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("application_form", sa.String(500), nullable=True),
        sa.Column("submit_remarks", sa.Text, nullable=True),
        sa.Column("remarks", sa.Text, nullable=True),
        sa.Column("disbursed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "loan_guarantors",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "loan_id", sa.Integer, sa.ForeignKey("loans.id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("guarantor_id", sa.Integer, sa.ForeignKey("guarantors.id"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("collateral_doc", sa.String(500), nullable=True),
        sa.Column("collateral_docname", sa.String(255), nullable=True),
        _created_at(),
        sa.UniqueConstraint("loan_id", "guarantor_id", name="uq_loan_guarantor"),
    )

    op.create_table(
        "loan_approvals",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer, sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("stage", sa.Integer, nullable=False),
        sa.Column("status", _enum("approvalstatus"), nullable=False),
        sa.Column("approved_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("remarks", sa.Text, nullable=True),
        _created_at(),
        _updated_at(),
    )
    # At most one pending approval per loan and stage
    op.create_index(
        "uq_loan_approvals_pending", "loan_approvals", ["loan_id", "stage"],
        unique=True, postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "savings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False, unique=True),
        _money("balance", server_default="0"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("balance >= 0", name="ck_savings_balance_non_negative"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False, index=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("loan_id", sa.Integer, sa.ForeignKey("loans.id"), nullable=True, index=True),
        sa.Column("savings_id", sa.Integer, sa.ForeignKey("savings.id"), nullable=True, index=True),
        _money("amount"),
        sa.Column("type", _enum("transactiontype"), nullable=False),
        sa.Column("payment_type_id", sa.Integer, sa.ForeignKey("payment_types.id"), nullable=True),
        sa.Column("transaction_reference", sa.String(50), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        _created_at(),
    )

    op.create_table(
        "journal_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("entry_date", sa.Date, nullable=False),
        sa.Column("reference_number", sa.String(50), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("source", _enum("journalsource"), nullable=False),
        sa.Column("transaction_id", sa.Integer, sa.ForeignKey("transactions.id"), nullable=True, unique=True),
        sa.Column("created_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        _created_at(),
    )
    op.create_index("ix_journal_entries_entry_date", "journal_entries", ["entry_date"])

    op.create_table(
        "journal_entry_lines",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "journal_entry_id", sa.Integer,
            sa.ForeignKey("journal_entries.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("account_id", sa.Integer, sa.ForeignKey("chart_of_accounts.id"), nullable=False),
        _money("debit", server_default="0"),
        _money("credit", server_default="0"),
        sa.CheckConstraint(
            "(debit = 0 AND credit > 0) OR (debit > 0 AND credit = 0)",
            name="ck_jel_single_sided",
        ),
    )
    op.create_index("ix_jel_account", "journal_entry_lines", ["account_id"])
    op.create_index("ix_jel_entry", "journal_entry_lines", ["journal_entry_id"])

    op.create_table(
        "repayments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer, sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        _money("amount_paid"),
        _money("interest_paid", server_default="0"),
        sa.Column("payment_date", sa.Date, nullable=False),
        _money("balance_before"),
        _money("balance_after"),
        sa.Column("transaction_id", sa.Integer, sa.ForeignKey("transactions.id"), nullable=True),
        _created_at(),
    )

    # -- Billing ---------------------------------------------------------------
    op.create_table(
        "sales",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False, index=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        _money("total_due"),
        _money("total_paid"),
        _money("change_amount", server_default="0"),
        _money("balance_due", server_default="0"),
        sa.Column("receipt_number", sa.String(50), nullable=True, unique=True),
        sa.Column("invoice_number", sa.String(50), nullable=True, unique=True),
        sa.Column("payment_type_id", sa.Integer, sa.ForeignKey("payment_types.id"), nullable=True),
        sa.Column("transaction_id", sa.Integer, sa.ForeignKey("transactions.id"), nullable=True),
        sa.Column("journal_entry_id", sa.Integer, sa.ForeignKey("journal_entries.id"), nullable=True),
        _created_at(),
    )

    op.create_table(
        "debtors",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False, unique=True),
        _money("balance", server_default="0"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("balance >= 0", name="ck_debtors_balance_non_negative"),
    )

    # -- Reminders, audit and error log ----------------------------------------
    op.create_table(
        "repayment_reminders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer, sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("due_date", sa.Date, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        _created_at(),
        sa.UniqueConstraint("loan_id", "due_date", name="uq_reminder_loan_due_date"),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(50), nullable=False, index=True),
        sa.Column("entity_id", sa.Integer, nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("old_values", sa.JSON, nullable=True),
        sa.Column("new_values", sa.JSON, nullable=True),
        sa.Column("details", sa.Text, nullable=True),
        _created_at(),
    )

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("severity", _enum("errorseverity"), nullable=False),
        sa.Column("error_type", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("traceback", sa.Text, nullable=True),
        sa.Column("module", sa.String(300), nullable=True),
        sa.Column("function_name", sa.String(200), nullable=True),
        sa.Column("line_number", sa.Integer, nullable=True),
        sa.Column("request_method", sa.String(10), nullable=True),
        sa.Column("request_path", sa.String(500), nullable=True),
        sa.Column("status_code", sa.Integer, nullable=True),
        sa.Column("response_time_ms", sa.Float, nullable=True),
        sa.Column("user_id", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_error_logs_created_at", "error_logs", ["created_at"])


def downgrade() -> None:
    for table in (
        "error_logs", "audit_log", "repayment_reminders", "debtors", "sales",
        "repayments", "journal_entry_lines", "journal_entries", "transactions",
        "savings", "loan_approvals", "loan_guarantors", "loans", "payment_types",
        "chart_of_account_mappings", "chart_of_accounts", "guarantors", "customers", "users",
    ):
        op.drop_table(table)
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(op.get_bind(), checkfirst=True)
