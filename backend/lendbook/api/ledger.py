"""Chart of accounts, account mapping and journal inspection endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.api.errors import http_error
from lendbook.auth_utils import get_current_user, require_roles
from lendbook.database import get_db
from lendbook.models.user import User, UserRole
from lendbook.schemas import (
    AccountCreate,
    AccountMappingCreate,
    AccountMappingResponse,
    AccountMappingUpdate,
    AccountResponse,
    JournalEntryResponse,
    TrialCheckResponse,
)
from lendbook.services.error_logger import log_error
from lendbook.services.errors import LendbookError, NotFoundError
from lendbook.services.ledger import account_mapping, posting_engine

logger = logging.getLogger(__name__)
router = APIRouter()

ACCOUNTING_ROLES = (UserRole.MANAGER,)


# ── Chart of accounts ────────────────────────────────────────


@router.get("/accounts", response_model=list[AccountResponse])
async def list_accounts(
    active_only: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await account_mapping.list_accounts(db, active_only=active_only)
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="list_accounts")
        raise


@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_account(
    data: AccountCreate,
    request: Request,
    current_user: User = Depends(require_roles(*ACCOUNTING_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            account = await account_mapping.create_account(
                db,
                account_code=data.account_code,
                account_name=data.account_name,
                account_type=data.account_type,
                description=data.description,
                parent_account_id=data.parent_account_id,
                user_id=current_user.id,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.ledger", function_name="create_account",
                request=request, user_id=current_user.id,
            )
        return account
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="create_account")
        raise


# ── Account mapping ──────────────────────────────────────────


@router.get("/mapping", response_model=AccountMappingResponse)
async def get_mapping(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            mapping = await account_mapping.get_mapping(db)
            if mapping is None:
                raise NotFoundError("Chart of account mapping has not been configured")
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.ledger", function_name="get_mapping", request=request,
            )
        return mapping
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="get_mapping")
        raise


@router.post("/mapping", response_model=AccountMappingResponse, status_code=status.HTTP_201_CREATED)
async def create_mapping(
    data: AccountMappingCreate,
    request: Request,
    current_user: User = Depends(require_roles(*ACCOUNTING_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Create the single account mapping row."""
    try:
        try:
            mapping = await account_mapping.create_mapping(db, data.model_dump(), current_user.id)
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.ledger", function_name="create_mapping",
                request=request, user_id=current_user.id,
            )
        return mapping
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="create_mapping")
        raise


@router.put("/mapping", response_model=AccountMappingResponse)
async def update_mapping(
    data: AccountMappingUpdate,
    request: Request,
    current_user: User = Depends(require_roles(*ACCOUNTING_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            mapping = await account_mapping.update_mapping(
                db, data.model_dump(exclude_unset=True), current_user.id,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.ledger", function_name="update_mapping",
                request=request, user_id=current_user.id,
            )
        return mapping
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="update_mapping")
        raise


# ── Journal ──────────────────────────────────────────────────


@router.get("/entries/{entry_id}", response_model=JournalEntryResponse)
async def get_journal_entry(
    entry_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            return await posting_engine.get_entry(db, entry_id)
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.ledger", function_name="get_journal_entry", request=request,
            )
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="get_journal_entry")
        raise


@router.get("/trial-check", response_model=TrialCheckResponse)
async def trial_check(
    current_user: User = Depends(require_roles(*ACCOUNTING_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Verify that every posted journal entry balances."""
    try:
        return await posting_engine.trial_check(db)
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="trial_check")
        raise
