"""Loan lifecycle: application wizard, review approvals, disbursement.

Every mutating operation runs as one ``atomic`` unit that re-reads the loan
under a row lock before checking its guard. Uploaded documents are written
before the unit starts and removed again if it fails; files they replace are
removed only after the unit has committed.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from lendbook.database import atomic
from lendbook.models.ledger import JournalSource, Transaction, TransactionType
from lendbook.models.loan import Loan, LoanGuarantor, LoanStage
from lendbook.schemas import LoanApplicationCreate, LoanStepCommand
from lendbook.services.audit import record_audit
from lendbook.services.errors import (
    ConsistencyError,
    PreconditionFailed,
    TransitionError,
    ValidationError,
)
from lendbook.services.file_storage import FileStorage, UploadedFile
from lendbook.services.ledger.account_mapping import require_mapping
from lendbook.services.ledger.posting_engine import (
    DISBURSEMENT_PREFIX,
    describe_customer,
    disbursement_lines,
    is_savings_route,
    make_reference,
    post_for_transaction,
)
from lendbook.services.loans import approvals
from lendbook.services.loans.stages import (
    APPLICATION_CHAIN,
    APPROVAL_CHAIN,
    DISBURSEMENT_CHAIN,
    has_next_stage,
    next_stage,
    previous_stage,
)
from lendbook.services.lookups import (
    get_customer,
    get_loan,
    get_payment_type,
    lock_loan,
    require_guarantors,
)
from lendbook.services.money import to_money
from lendbook.services.savings import apply_savings_movement, lock_saving

logger = logging.getLogger(__name__)

APPLICATION_FIELDS = (
    "customer_id",
    "loan_type",
    "facilitybranch_id",
    "loan_amount",
    "loan_duration",
    "interest_rate",
    "interest_amount",
    "monthly_repayment",
    "total_repayment",
)


def _application_values(command: LoanApplicationCreate) -> dict:
    data = command.model_dump()
    return {name: data[name] for name in APPLICATION_FIELDS}


def _stage_change(loan: Loan, new_stage: LoanStage) -> dict:
    old = loan.current_stage
    loan.stage = int(new_stage)
    return {"old_values": {"stage": int(old)}, "new_values": {"stage": int(new_stage)}}


async def _flush_loan(db: AsyncSession) -> None:
    """Flush pending loan writes; a concurrent writer surfaces as a consistency fault."""
    try:
        await db.flush()
    except StaleDataError as exc:
        raise ConsistencyError("Loan was modified concurrently") from exc


def _require_stage(loan: Loan, expected: LoanStage, action: str) -> None:
    if loan.stage != int(expected):
        raise PreconditionFailed(
            f"Cannot {action}: loan {loan.id} is at {loan.current_stage.label}"
        )


# ---------------------------------------------------------------------------
# Application wizard
# ---------------------------------------------------------------------------

async def create_loan(
    db: AsyncSession,
    command: LoanApplicationCreate,
    actor_id: int | None,
    application_form: UploadedFile | None = None,
    storage: FileStorage | None = None,
) -> Loan:
    """Open a new application at stage 1."""
    storage = storage or FileStorage()
    stored = None
    if application_form is not None:
        stored = storage.store(application_form.content, application_form.filename, "loan_forms")

    try:
        async with atomic(db):
            await get_customer(db, command.customer_id)
            loan = Loan(
                **_application_values(command),
                stage=int(LoanStage.APPLICATION),
                user_id=actor_id,
                application_form=stored,
            )
            db.add(loan)
            await db.flush()
            record_audit(
                db, "loan", loan.id, "created", actor_id,
                new_values={"stage": int(LoanStage.APPLICATION), "loan_amount": str(loan.loan_amount)},
            )
    except Exception:
        storage.discard([stored])
        raise

    logger.info("Loan %s created for customer %s", loan.id, loan.customer_id)
    return loan


async def update_application(
    db: AsyncSession,
    loan_id: int,
    command: LoanApplicationCreate,
    actor_id: int | None,
    application_form: UploadedFile | None = None,
    storage: FileStorage | None = None,
) -> Loan:
    """Edit the application while the loan is still at stage 1."""
    storage = storage or FileStorage()
    stored = None
    if application_form is not None:
        stored = storage.store(application_form.content, application_form.filename, "loan_forms")

    replaced = None
    try:
        async with atomic(db):
            loan = await lock_loan(db, loan_id)
            _require_stage(loan, LoanStage.APPLICATION, "edit the application")
            await get_customer(db, command.customer_id)
            for name, value in _application_values(command).items():
                setattr(loan, name, value)
            if stored:
                replaced, loan.application_form = loan.application_form, stored
            await _flush_loan(db)
            record_audit(db, "loan", loan.id, "updated", actor_id, new_values={"loan_amount": str(loan.loan_amount)})
    except Exception:
        storage.discard([stored])
        raise

    storage.release([replaced])
    return loan


async def next_step(
    db: AsyncSession,
    loan_id: int,
    command: LoanStepCommand,
    actor_id: int | None,
    application_form: UploadedFile | None = None,
    collateral_docs: dict[int, UploadedFile] | None = None,
    storage: FileStorage | None = None,
) -> Loan:
    """Advance the application wizard by one page.

    Stage 1 saves the application, stage 2 records guarantors and stage 3
    submits the loan for review. Any other stage is not part of the wizard.
    """
    storage = storage or FileStorage()
    loan = await get_loan(db, loan_id)
    stage = loan.current_stage

    if stage == LoanStage.APPLICATION:
        return await _save_application(db, loan_id, command, actor_id, application_form, storage)
    if stage == LoanStage.DOCUMENTATION:
        return await documentation(db, loan_id, command, actor_id, collateral_docs or {}, storage)
    if stage == LoanStage.SUBMISSION:
        return await submit(db, loan_id, command.remarks, actor_id)
    raise PreconditionFailed(f"Loan {loan_id} at {stage.label} has no next wizard step")


async def _save_application(
    db: AsyncSession,
    loan_id: int,
    command: LoanStepCommand,
    actor_id: int | None,
    application_form: UploadedFile | None,
    storage: FileStorage,
) -> Loan:
    stored = None
    if application_form is not None:
        stored = storage.store(application_form.content, application_form.filename, "loan_forms")

    replaced = None
    try:
        async with atomic(db):
            loan = await lock_loan(db, loan_id)
            _require_stage(loan, LoanStage.APPLICATION, "save the application")
            if command.application is not None:
                await get_customer(db, command.application.customer_id)
                for name, value in _application_values(command.application).items():
                    setattr(loan, name, value)
            if stored:
                replaced, loan.application_form = loan.application_form, stored
            change = _stage_change(loan, next_stage(loan.stage, APPLICATION_CHAIN))
            await _flush_loan(db)
            record_audit(db, "loan", loan.id, "application_saved", actor_id, **change)
    except Exception:
        storage.discard([stored])
        raise

    storage.release([replaced])
    logger.info("Loan %s application saved", loan_id)
    return loan


async def documentation(
    db: AsyncSession,
    loan_id: int,
    command: LoanStepCommand,
    actor_id: int | None,
    collateral_docs: dict[int, UploadedFile],
    storage: FileStorage,
) -> Loan:
    """Sync the loan's guarantors with the selection and move to Submission."""
    selection = command.guarantors or []
    selected_ids = [g.guarantor_id for g in selection]
    unknown = set(collateral_docs) - set(selected_ids)
    if unknown:
        raise ValidationError(
            f"Collateral uploaded for unselected guarantor {min(unknown)}", field="guarantors"
        )
    await require_guarantors(db, selected_ids)

    stored: dict[int, str] = {}
    try:
        for gid, upload in collateral_docs.items():
            stored[gid] = storage.store(upload.content, upload.filename, f"collateral/{loan_id}")
    except Exception:
        storage.discard(stored.values())
        raise

    released: list[str | None] = []
    try:
        async with atomic(db):
            loan = await lock_loan(db, loan_id)
            _require_stage(loan, LoanStage.DOCUMENTATION, "record documentation")

            result = await db.execute(
                select(LoanGuarantor).where(LoanGuarantor.loan_id == loan.id)
            )
            existing = {lg.guarantor_id: lg for lg in result.scalars().all()}

            for choice in selection:
                gid = choice.guarantor_id
                link = existing.pop(gid, None)
                if link is None:
                    link = LoanGuarantor(loan_id=loan.id, guarantor_id=gid, user_id=actor_id)
                    db.add(link)
                if gid in stored:
                    released.append(link.collateral_doc)
                    link.collateral_doc = stored[gid]
                    link.collateral_docname = choice.collateral_docname or collateral_docs[gid].filename
                elif choice.collateral_docname is not None:
                    link.collateral_docname = choice.collateral_docname

            for link in existing.values():
                released.append(link.collateral_doc)
                await db.delete(link)

            change = _stage_change(loan, next_stage(loan.stage, APPLICATION_CHAIN))
            await _flush_loan(db)
            record_audit(
                db, "loan", loan.id, "documentation", actor_id,
                details=f"guarantors={sorted(selected_ids)}", **change,
            )
    except Exception:
        storage.discard(stored.values())
        raise

    storage.release(released)
    logger.info("Loan %s documentation recorded (%d guarantors)", loan_id, len(selection))
    return loan


async def submit(db: AsyncSession, loan_id: int, remarks: str | None, actor_id: int | None) -> Loan:
    """Put the loan on the review track with a pending Loan Officer approval."""
    if not remarks or not remarks.strip():
        raise ValidationError("Remarks are required to submit a loan", field="remarks")

    async with atomic(db):
        loan = await lock_loan(db, loan_id)
        _require_stage(loan, LoanStage.SUBMISSION, "submit")
        loan.submit_remarks = remarks.strip()
        target = next_stage(loan.stage, APPLICATION_CHAIN)
        change = _stage_change(loan, target)
        await _flush_loan(db)
        await approvals.open_approval(db, loan, target)
        record_audit(db, "loan", loan.id, "submitted", actor_id, **change)

    logger.info("Loan %s submitted for review", loan_id)
    return loan


async def back(db: AsyncSession, loan_id: int, actor_id: int | None = None) -> Loan:
    """Step the wizard back one page; a loan at stage 1 stays put."""
    async with atomic(db):
        loan = await lock_loan(db, loan_id)
        target = previous_stage(loan.stage)
        if target != loan.stage:
            change = _stage_change(loan, target)
            await _flush_loan(db)
            record_audit(db, "loan", loan.id, "back", actor_id, **change)
    return loan


# ---------------------------------------------------------------------------
# Review and disbursement
# ---------------------------------------------------------------------------

async def approve(
    db: AsyncSession, loan_id: int, approver_id: int | None, remarks: str | None
) -> Loan:
    """Approve the loan's current review level and hand it to the next one."""
    async with atomic(db):
        loan = await lock_loan(db, loan_id)
        current = loan.current_stage
        approval = await approvals.close_approval(db, loan, current, approver_id, remarks)

        if has_next_stage(current, APPROVAL_CHAIN):
            target = next_stage(current, APPROVAL_CHAIN)
            change = _stage_change(loan, target)
            await _flush_loan(db)
            await approvals.open_approval(db, loan, target)
        else:
            change = {}
        record_audit(
            db, "loan_approval", approval.id, "approved", approver_id,
            details=remarks, **change,
        )

    logger.info(
        "Loan %s approved at %s by user %s", loan_id, current.label, approver_id,
    )
    return loan


async def disburse(
    db: AsyncSession,
    loan_id: int,
    payment_type_id: int,
    remarks: str,
    actor_id: int | None,
) -> Transaction:
    """Release the principal and post the disbursement entry.

    When the payment type settles into the customer deposit account the money
    lands in the customer's savings, recorded as a second Deposit transaction.
    Its journal entry debits and credits the deposit account alike and nets to
    zero in the ledger; it is posted so every savings movement has a balanced
    entry behind it, and the savings history shows where the deposit came from.
    """
    async with atomic(db):
        loan = await lock_loan(db, loan_id)
        if loan.stage < int(LoanStage.APPROVED):
            raise PreconditionFailed(
                f"Loan {loan_id} is not yet fully approved ({loan.current_stage.label})"
            )
        amount = to_money(loan.loan_amount)
        if amount <= 0:
            raise PreconditionFailed(f"Loan {loan_id} has no amount to disburse")
        try:
            target = next_stage(loan.stage, DISBURSEMENT_CHAIN)
        except TransitionError as exc:
            raise PreconditionFailed(f"Loan {loan_id} has already been disbursed") from exc

        payment_type = await get_payment_type(db, payment_type_id)
        customer = await get_customer(db, loan.customer_id)
        mapping = await require_mapping(db)

        change = _stage_change(loan, target)
        loan.remarks = remarks
        loan.disbursed_at = datetime.now(timezone.utc)
        await _flush_loan(db)

        txn = Transaction(
            customer_id=loan.customer_id,
            user_id=actor_id,
            loan_id=loan.id,
            amount=amount,
            type=TransactionType.DISBURSEMENT,
            payment_type_id=payment_type.id,
            transaction_reference=make_reference(DISBURSEMENT_PREFIX),
            description=remarks,
        )
        db.add(txn)
        await db.flush()
        await post_for_transaction(
            db, txn,
            disbursement_lines(mapping, payment_type, amount),
            JournalSource.DISBURSEMENT,
            describe_customer("Loan Disbursement", customer),
        )

        if is_savings_route(mapping, payment_type):
            saving = await lock_saving(db, loan.customer_id, create=True)
            await apply_savings_movement(
                db,
                customer=customer,
                saving=saving,
                kind="deposit",
                amount=amount,
                payment_type=payment_type,
                mapping=mapping,
                actor_id=actor_id,
                remarks="Loan disbursement deposit",
            )

        record_audit(
            db, "loan", loan.id, "disbursed", actor_id,
            details=txn.transaction_reference, **change,
        )

    logger.info(
        "Loan %s disbursed: %s via payment type %s (%s)",
        loan_id, amount, payment_type_id, txn.transaction_reference,
    )
    return txn
