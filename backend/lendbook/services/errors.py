"""Domain exception hierarchy shared by every service.

Routers translate these into HTTP responses using ``status_code``; anything
flagged ``internal`` is logged in full and reported to the client with a
generic message only.
"""


class LendbookError(Exception):
    """Base exception for all business-rule failures."""

    status_code = 400
    internal = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    @property
    def public_message(self) -> str:
        if self.internal:
            return "Operation failed, please retry"
        return self.message


class ValidationError(LendbookError):
    """Malformed or out-of-range input."""

    status_code = 422

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class PreconditionFailed(LendbookError):
    """The entity is not in a state that allows the operation."""

    status_code = 409


class NotFoundError(LendbookError):
    status_code = 404


class ConsistencyError(LendbookError):
    """Stored data contradicts an invariant the operation relies on."""

    status_code = 500
    internal = True


class ApprovalNotFoundError(ConsistencyError):
    """No pending approval exists where the loan's stage says one must."""


class InvalidStateError(ConsistencyError):
    pass


class TransitionError(InvalidStateError):
    """The stage has no successor in the requested chain."""


class PostingError(ConsistencyError):
    """A journal line or account reference is unusable."""


class UnbalancedEntryError(PostingError):
    """Debits do not equal credits, or fewer than two lines remain."""


class StorageError(LendbookError):
    """Storing or deleting an uploaded file failed."""

    status_code = 500
    internal = True
