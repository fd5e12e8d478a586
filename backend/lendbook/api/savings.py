"""Customer savings deposits and withdrawals."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.api.errors import http_error
from lendbook.auth_utils import get_current_user, require_roles
from lendbook.database import get_db
from lendbook.models.user import User, UserRole
from lendbook.schemas import SavingsBalanceResponse, SavingsTransactionCreate, TransactionResponse
from lendbook.services import savings
from lendbook.services.error_logger import log_error
from lendbook.services.errors import LendbookError

logger = logging.getLogger(__name__)
router = APIRouter()
limiter = Limiter(key_func=get_remote_address)

CASH_ROLES = (UserRole.CASHIER, UserRole.MANAGER)


@router.post(
    "/{customer_id}/transactions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
async def create_savings_transaction(
    customer_id: int,
    data: SavingsTransactionCreate,
    request: Request,
    current_user: User = Depends(require_roles(*CASH_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Record a deposit into or a withdrawal from the customer's savings."""
    try:
        try:
            txn = await savings.record_savings_transaction(
                db, customer_id, data.kind, data.amount,
                data.payment_type_id, data.remarks, current_user.id,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.savings", function_name="create_savings_transaction",
                request=request, user_id=current_user.id,
            )
        return txn
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.savings", function_name="create_savings_transaction")
        raise


@router.get("/{customer_id}", response_model=SavingsBalanceResponse)
async def get_savings_balance(
    customer_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            balance = await savings.savings_balance(db, customer_id)
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.savings", function_name="get_savings_balance", request=request,
            )
        return SavingsBalanceResponse(customer_id=customer_id, balance=balance)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.savings", function_name="get_savings_balance")
        raise
