"""Typed errors raised by the approval engine.

Every error carries the HTTP status the surrounding API should answer with.
None of them are retried by the engine.
"""


class ApprovalEngineError(Exception):
    """Base error for approval engine."""

    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ApprovalConfigurationError(ApprovalEngineError):
    """Approval setup directory cannot produce a valid chain."""
    status_code = 400


class InvoiceNotFoundError(ApprovalEngineError):
    status_code = 404


class InvalidInvoiceStateError(ApprovalEngineError):
    """Invoice status does not allow approval routing (posted, needs review)."""
    status_code = 400


class NoActivePlanError(ApprovalEngineError):
    status_code = 400


class NoPendingStepError(ApprovalEngineError):
    """Every step is already resolved; usually a lost race."""
    status_code = 409


class StepAlreadyActedError(ApprovalEngineError):
    """Conditional step update matched no row: another actor won."""
    status_code = 409


class NotAuthorizedError(ApprovalEngineError):
    status_code = 403


class AmbiguousScopeError(ApprovalEngineError):
    status_code = 400
