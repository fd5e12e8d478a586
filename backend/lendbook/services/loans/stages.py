"""Loan stage transition tables.

Transitions are data: each chain maps a stage to its successor, and a stage
absent from a chain has no successor in it. ``Rejected``, ``Repaid`` and
``Defaulted`` are reserved values no transition currently leads to.
"""

from types import MappingProxyType

from lendbook.models.loan import LoanStage
from lendbook.services.errors import TransitionError

# Application track, walked by next_step().
APPLICATION_CHAIN = MappingProxyType({
    LoanStage.APPLICATION: LoanStage.DOCUMENTATION,
    LoanStage.DOCUMENTATION: LoanStage.SUBMISSION,
    LoanStage.SUBMISSION: LoanStage.LOAN_OFFICER_REVIEW,
})

APPROVAL_CHAIN = MappingProxyType({
    LoanStage.LOAN_OFFICER_REVIEW: LoanStage.MANAGER_REVIEW,
    LoanStage.MANAGER_REVIEW: LoanStage.COMMITTEE_REVIEW,
    LoanStage.COMMITTEE_REVIEW: LoanStage.APPROVED,
})

DISBURSEMENT_CHAIN = MappingProxyType({
    **APPROVAL_CHAIN,
    LoanStage.APPROVED: LoanStage.DISBURSED,
})


def next_stage(stage: int | LoanStage, chain) -> LoanStage:
    """Successor of *stage* in *chain*, or ``TransitionError`` when none exists."""
    try:
        current = LoanStage(stage)
    except ValueError as exc:
        raise TransitionError(f"Unknown loan stage {stage}") from exc
    try:
        return chain[current]
    except KeyError:
        raise TransitionError(f"No stage follows {current.label}") from None


def has_next_stage(stage: int | LoanStage, chain) -> bool:
    """True when *chain* has a successor for *stage*."""
    try:
        next_stage(stage, chain)
    except TransitionError:
        return False
    return True


def previous_stage(stage: int | LoanStage) -> LoanStage:
    """One step back, floored at ``Application``."""
    return LoanStage(max(int(stage) - 1, int(LoanStage.APPLICATION)))
