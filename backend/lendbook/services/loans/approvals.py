"""Approval rows for the review stages of a loan.

A loan under review has exactly one Pending approval, at its current stage.
Rejection is not modelled yet; a reject action would close the pending row
here and move the loan to ``LoanStage.REJECTED``.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.models.loan import ApprovalStatus, Loan, LoanApproval, LoanStage
from lendbook.services.errors import ApprovalNotFoundError, ConsistencyError

logger = logging.getLogger(__name__)


async def _pending_rows(db: AsyncSession, loan_id: int, stage: int | None = None, *, lock=False):
    stmt = select(LoanApproval).where(
        LoanApproval.loan_id == loan_id,
        LoanApproval.status == ApprovalStatus.PENDING,
    )
    if stage is not None:
        stmt = stmt.where(LoanApproval.stage == int(stage))
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt.order_by(LoanApproval.id))
    return list(result.scalars().all())


async def open_approval(db: AsyncSession, loan: Loan, stage: LoanStage) -> LoanApproval:
    if await _pending_rows(db, loan.id, stage):
        raise ConsistencyError(
            f"Loan {loan.id} already has a pending approval at {LoanStage(stage).label}"
        )
    approval = LoanApproval(loan_id=loan.id, stage=int(stage), status=ApprovalStatus.PENDING)
    db.add(approval)
    await db.flush()
    logger.info("Opened %s approval for loan %s", LoanStage(stage).label, loan.id)
    return approval


async def close_approval(
    db: AsyncSession,
    loan: Loan,
    stage: LoanStage,
    approver_id: int | None,
    remarks: str | None,
) -> LoanApproval:
    rows = await _pending_rows(db, loan.id, stage, lock=True)
    if not rows:
        raise ApprovalNotFoundError(
            f"No pending approval for loan {loan.id} at {LoanStage(stage).label}"
        )
    if len(rows) > 1:
        raise ConsistencyError(
            f"Loan {loan.id} has {len(rows)} pending approvals at {LoanStage(stage).label}"
        )
    approval = rows[0]
    approval.status = ApprovalStatus.APPROVED
    approval.approved_by = approver_id
    approval.remarks = remarks
    await db.flush()
    return approval


async def pending_approval(db: AsyncSession, loan_id: int) -> LoanApproval | None:
    rows = await _pending_rows(db, loan_id)
    return rows[0] if rows else None
