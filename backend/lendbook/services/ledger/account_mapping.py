"""Chart of accounts and the singleton account mapping.

The mapping ties the semantic ledger roles (loan receivable, interest income,
customer deposits, sales revenue, debtors) to concrete accounts. It is created
once and updated thereafter.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.database import atomic
from lendbook.models.ledger import (
    AccountType,
    ChartOfAccount,
    ChartOfAccountMapping,
    MAPPING_ROW_ID,
)
from lendbook.services.audit import record_audit
from lendbook.services.errors import (
    ConsistencyError,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
)

logger = logging.getLogger(__name__)

MAPPING_ROLES = (
    "customer_loan_code",
    "customer_loan_interest_code",
    "customer_deposit_code",
    "sales_revenue_code",
    "debtors_code",
)
REQUIRED_ROLES = MAPPING_ROLES[:3]


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------

async def list_accounts(db: AsyncSession, *, active_only: bool = False) -> list[ChartOfAccount]:
    stmt = select(ChartOfAccount).order_by(ChartOfAccount.account_code)
    if active_only:
        stmt = stmt.where(ChartOfAccount.is_active.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_account(db: AsyncSession, account_id: int) -> ChartOfAccount:
    account = await db.get(ChartOfAccount, account_id)
    if account is None:
        raise NotFoundError(f"Account {account_id} not found")
    return account


async def create_account(
    db: AsyncSession,
    *,
    account_code: str,
    account_name: str,
    account_type: AccountType,
    description: str | None = None,
    parent_account_id: int | None = None,
    user_id: int | None = None,
) -> ChartOfAccount:
    """Create a chart-of-accounts entry; account codes are unique."""
    account_code = account_code.strip()
    if not account_code:
        raise ValidationError("Account code is required", field="account_code")

    async with atomic(db):
        existing = await db.execute(
            select(ChartOfAccount.id).where(ChartOfAccount.account_code == account_code)
        )
        if existing.scalar_one_or_none() is not None:
            raise PreconditionFailed(f"Account code {account_code} already exists")

        if parent_account_id is not None:
            await get_account(db, parent_account_id)

        account = ChartOfAccount(
            account_code=account_code,
            account_name=account_name,
            account_type=account_type,
            description=description,
            parent_account_id=parent_account_id,
        )
        db.add(account)
        await db.flush()
        record_audit(
            db, "chart_of_account", account.id, "create", user_id,
            new_values={"account_code": account_code, "account_type": account_type.value},
        )

    logger.info("Created account %s (%s)", account.account_code, account.account_name)
    return account


# ---------------------------------------------------------------------------
# Singleton mapping
# ---------------------------------------------------------------------------

async def get_mapping(db: AsyncSession) -> ChartOfAccountMapping | None:
    return await db.get(ChartOfAccountMapping, MAPPING_ROW_ID)


async def require_mapping(db: AsyncSession, *roles: str) -> ChartOfAccountMapping:
    """Mapping for use inside a posting; a missing row or role is a consistency fault."""
    mapping = await get_mapping(db)
    if mapping is None:
        raise ConsistencyError("Chart of account mapping has not been configured")
    missing = [role for role in roles if getattr(mapping, role) is None]
    if missing:
        raise ConsistencyError(
            f"Chart of account mapping is missing: {', '.join(missing)}"
        )
    return mapping


async def _validate_role_accounts(db: AsyncSession, values: dict[str, int | None]) -> None:
    for role, account_id in values.items():
        if role not in MAPPING_ROLES:
            raise ValidationError(f"Unknown mapping role {role}", field=role)
        if account_id is None:
            if role in REQUIRED_ROLES:
                raise ValidationError(f"{role} is required", field=role)
            continue
        account = await db.get(ChartOfAccount, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} for {role} not found")
        if not account.is_active:
            raise ValidationError(f"Account {account.account_code} is inactive", field=role)


async def create_mapping(
    db: AsyncSession, values: dict[str, int | None], user_id: int | None = None
) -> ChartOfAccountMapping:
    """Create the mapping row. Fails with a conflict when it already exists."""
    for role in REQUIRED_ROLES:
        if values.get(role) is None:
            raise ValidationError(f"{role} is required", field=role)

    try:
        async with atomic(db):
            if await get_mapping(db) is not None:
                raise PreconditionFailed(
                    "Chart of account mapping already exists; update it instead"
                )
            await _validate_role_accounts(db, values)
            mapping = ChartOfAccountMapping(id=MAPPING_ROW_ID, **values)
            db.add(mapping)
            await db.flush()
            record_audit(db, "coa_mapping", MAPPING_ROW_ID, "create", user_id, new_values=values)
    except IntegrityError as exc:
        # A concurrent creator won the insert.
        raise PreconditionFailed(
            "Chart of account mapping already exists; update it instead"
        ) from exc

    logger.info("Chart of account mapping created")
    return mapping


async def update_mapping(
    db: AsyncSession, values: dict[str, int | None], user_id: int | None = None
) -> ChartOfAccountMapping:
    """Update only the roles present in *values*."""
    async with atomic(db):
        result = await db.execute(
            select(ChartOfAccountMapping)
            .where(ChartOfAccountMapping.id == MAPPING_ROW_ID)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        mapping = result.scalar_one_or_none()
        if mapping is None:
            raise NotFoundError("Chart of account mapping has not been configured")

        await _validate_role_accounts(db, values)
        old_values = {role: getattr(mapping, role) for role in values}
        for role, account_id in values.items():
            setattr(mapping, role, account_id)
        await db.flush()
        record_audit(
            db, "coa_mapping", MAPPING_ROW_ID, "update", user_id,
            old_values=old_values, new_values=values,
        )

    logger.info("Chart of account mapping updated: %s", sorted(values))
    return mapping
