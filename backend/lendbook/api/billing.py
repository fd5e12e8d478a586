"""Point-of-sale payments and debtor settlements."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.api.errors import http_error
from lendbook.auth_utils import get_current_user, require_roles
from lendbook.database import get_db
from lendbook.models.user import User, UserRole
from lendbook.schemas import (
    DebtorPaymentCreate,
    DebtorResponse,
    SaleCreate,
    SaleResponse,
    TransactionResponse,
)
from lendbook.services import billing
from lendbook.services.error_logger import log_error
from lendbook.services.errors import LendbookError

logger = logging.getLogger(__name__)
router = APIRouter()

CASH_ROLES = (UserRole.CASHIER, UserRole.MANAGER)


@router.post("/sales", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
async def create_sale(
    data: SaleCreate,
    request: Request,
    current_user: User = Depends(require_roles(*CASH_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Post a cash, credit or partially paid sale."""
    try:
        try:
            sale = await billing.post_sale(
                db, data.customer_id, data.total_due, data.paid_amount,
                data.payment_type_id, current_user.id,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.billing", function_name="create_sale",
                request=request, user_id=current_user.id,
            )
        return sale
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.billing", function_name="create_sale")
        raise


@router.post(
    "/debtors/{customer_id}/payments",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_debtor_payment(
    customer_id: int,
    data: DebtorPaymentCreate,
    request: Request,
    current_user: User = Depends(require_roles(*CASH_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            txn = await billing.receive_debtor_payment(
                db, customer_id, data.amount, data.payment_type_id, current_user.id,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.billing", function_name="create_debtor_payment",
                request=request, user_id=current_user.id,
            )
        return txn
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.billing", function_name="create_debtor_payment")
        raise


@router.get("/debtors/{customer_id}", response_model=DebtorResponse)
async def get_debtor(
    customer_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            balance = await billing.debtor_balance(db, customer_id)
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.billing", function_name="get_debtor", request=request,
            )
        return DebtorResponse(customer_id=customer_id, balance=balance)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.billing", function_name="get_debtor")
        raise
