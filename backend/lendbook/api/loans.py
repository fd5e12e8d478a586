"""Loan application wizard, approvals, disbursement and repayment endpoints.

The wizard endpoints accept either a JSON body or a multipart form whose
``payload`` field holds the JSON command. Multipart requests may carry an
``application_form`` file and one ``collateral_<guarantor_id>`` file per
selected guarantor.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError as PydanticValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from starlette.datastructures import UploadFile

from lendbook.api.errors import http_error
from lendbook.auth_utils import get_current_user, require_roles
from lendbook.database import get_db
from lendbook.models.loan import Loan
from lendbook.models.user import User, UserRole
from lendbook.schemas import (
    ApproveCommand,
    DisburseCommand,
    LoanApplicationCreate,
    LoanApplicationUpdate,
    LoanApprovalResponse,
    LoanBalanceResponse,
    LoanDetailResponse,
    LoanGuarantorResponse,
    LoanResponse,
    LoanStepCommand,
    RepaymentCreate,
    RepaymentResponse,
    TransactionResponse,
)
from lendbook.services.error_logger import log_error
from lendbook.services.errors import LendbookError, NotFoundError
from lendbook.services.file_storage import FileStorage, UploadedFile, get_file_storage
from lendbook.services.loans import repayments, workflow

logger = logging.getLogger(__name__)
router = APIRouter()
limiter = Limiter(key_func=get_remote_address)

OFFICER_ROLES = (UserRole.LOAN_OFFICER, UserRole.MANAGER)
REVIEW_ROLES = (UserRole.LOAN_OFFICER, UserRole.MANAGER, UserRole.COMMITTEE)
CASH_ROLES = (UserRole.CASHIER, UserRole.MANAGER)

COLLATERAL_FIELD_PREFIX = "collateral_"


# ── Request parsing ──────────────────────────────────────────


async def _to_upload(value) -> UploadedFile | None:
    if not isinstance(value, UploadFile) or not value.filename:
        return None
    return UploadedFile(filename=value.filename, content=await value.read())


async def _read_wizard_request(
    request: Request, model: type[BaseModel]
) -> tuple[BaseModel, UploadedFile | None, dict[int, UploadedFile]]:
    """Parse a wizard command plus any uploaded files from JSON or multipart."""
    content_type = request.headers.get("content-type", "")
    uploads: dict[int, UploadedFile] = {}
    application_form = None

    try:
        if content_type.startswith("multipart/form-data") or content_type.startswith(
            "application/x-www-form-urlencoded"
        ):
            form = await request.form()
            raw = form.get("payload") or "{}"
            data = json.loads(raw)
            application_form = await _to_upload(form.get("application_form"))
            for key, value in form.multi_items():
                if not key.startswith(COLLATERAL_FIELD_PREFIX):
                    continue
                try:
                    guarantor_id = int(key[len(COLLATERAL_FIELD_PREFIX):])
                except ValueError:
                    raise RequestValidationError(
                        [{"loc": ("body", key), "msg": "Unknown collateral field", "type": "value_error"}]
                    )
                upload = await _to_upload(value)
                if upload is not None:
                    uploads[guarantor_id] = upload
        else:
            body = await request.body()
            data = json.loads(body) if body else {}
    except json.JSONDecodeError:
        raise RequestValidationError(
            [{"loc": ("body", "payload"), "msg": "Invalid JSON", "type": "json_invalid"}]
        )

    try:
        command = model.model_validate(data)
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors())
    return command, application_form, uploads


async def _loan_detail(db: AsyncSession, loan_id: int) -> LoanDetailResponse:
    result = await db.execute(
        select(Loan)
        .options(selectinload(Loan.approvals), selectinload(Loan.guarantors))
        .where(Loan.id == loan_id)
        .execution_options(populate_existing=True)
    )
    loan = result.scalar_one_or_none()
    if loan is None:
        raise NotFoundError(f"Loan {loan_id} not found")
    return LoanDetailResponse(
        **LoanResponse.model_validate(loan).model_dump(),
        approvals=[LoanApprovalResponse.model_validate(a) for a in loan.approvals],
        guarantors=[LoanGuarantorResponse.model_validate(g) for g in loan.guarantors],
    )


# ── Application wizard ───────────────────────────────────────


@router.post(
    "",
    response_model=LoanResponse,
    status_code=status.HTTP_201_CREATED,
    openapi_extra={"requestBody": {"content": {"multipart/form-data": {}, "application/json": {}}}},
)
async def create_loan(
    request: Request,
    current_user: User = Depends(require_roles(*OFFICER_ROLES)),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
):
    """Open a loan application at the Application stage."""
    try:
        command, application_form, _ = await _read_wizard_request(request, LoanApplicationCreate)
        try:
            loan = await workflow.create_loan(
                db, command, current_user.id,
                application_form=application_form, storage=storage,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="create_loan",
                request=request, user_id=current_user.id,
            )
        return loan
    except (HTTPException, RequestValidationError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="create_loan")
        raise


@router.put("/{loan_id}", response_model=LoanResponse)
async def update_loan(
    loan_id: int,
    request: Request,
    current_user: User = Depends(require_roles(*OFFICER_ROLES)),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
):
    try:
        command, application_form, _ = await _read_wizard_request(request, LoanApplicationUpdate)
        try:
            loan = await workflow.update_application(
                db, loan_id, command, current_user.id,
                application_form=application_form, storage=storage,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="update_loan",
                request=request, user_id=current_user.id,
            )
        return loan
    except (HTTPException, RequestValidationError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="update_loan")
        raise


@router.post("/{loan_id}/next", response_model=LoanResponse)
async def next_step(
    loan_id: int,
    request: Request,
    current_user: User = Depends(require_roles(*OFFICER_ROLES)),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
):
    """Advance the wizard: save the application, record guarantors, or submit."""
    try:
        command, application_form, collateral = await _read_wizard_request(request, LoanStepCommand)
        try:
            loan = await workflow.next_step(
                db, loan_id, command, current_user.id,
                application_form=application_form,
                collateral_docs=collateral,
                storage=storage,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="next_step",
                request=request, user_id=current_user.id,
            )
        return loan
    except (HTTPException, RequestValidationError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="next_step")
        raise


@router.post("/{loan_id}/back", response_model=LoanResponse)
async def step_back(
    loan_id: int,
    request: Request,
    current_user: User = Depends(require_roles(*OFFICER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            loan = await workflow.back(db, loan_id, current_user.id)
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="step_back",
                request=request, user_id=current_user.id,
            )
        return loan
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="step_back")
        raise


@router.get("/{loan_id}", response_model=LoanDetailResponse)
async def get_loan(
    loan_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            return await _loan_detail(db, loan_id)
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="get_loan", request=request,
            )
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="get_loan")
        raise


@router.get("/{loan_id}/balance", response_model=LoanBalanceResponse)
async def get_loan_balance(
    loan_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            return await repayments.balance_summary(db, loan_id)
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="get_loan_balance", request=request,
            )
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="get_loan_balance")
        raise


# ── Review and disbursement ──────────────────────────────────


@router.post("/{loan_id}/approve", response_model=LoanResponse)
async def approve_loan(
    loan_id: int,
    data: ApproveCommand,
    request: Request,
    current_user: User = Depends(require_roles(*REVIEW_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Approve the loan at its current review level."""
    try:
        try:
            loan = await workflow.approve(db, loan_id, current_user.id, data.remarks)
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="approve_loan",
                request=request, user_id=current_user.id,
            )
        return loan
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="approve_loan")
        raise


@router.post("/{loan_id}/disburse", response_model=TransactionResponse)
@limiter.limit("30/minute")
async def disburse_loan(
    loan_id: int,
    data: DisburseCommand,
    request: Request,
    current_user: User = Depends(require_roles(*CASH_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Release the principal of a fully approved loan."""
    try:
        try:
            txn = await workflow.disburse(
                db, loan_id, data.payment_type_id, data.remarks, current_user.id,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="disburse_loan",
                request=request, user_id=current_user.id,
            )
        return txn
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="disburse_loan")
        raise


# ── Repayments ───────────────────────────────────────────────


@router.post(
    "/{loan_id}/repayments",
    response_model=RepaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
async def create_repayment(
    loan_id: int,
    data: RepaymentCreate,
    request: Request,
    current_user: User = Depends(require_roles(*CASH_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            repayment = await repayments.record_repayment(
                db, loan_id, data.amount, data.payment_type_id,
                data.remarks, data.payment_date, current_user.id,
            )
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="create_repayment",
                request=request, user_id=current_user.id,
            )
        return repayment
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="create_repayment")
        raise


@router.get("/{loan_id}/repayments", response_model=list[RepaymentResponse])
async def list_repayments(
    loan_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            return await repayments.list_repayments(db, loan_id)
        except LendbookError as e:
            raise await http_error(
                e, db=db, module="api.loans", function_name="list_repayments", request=request,
            )
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="list_repayments")
        raise
