"""
Typed outcomes for procurement operations.

Every expected failure carries a stable ``code`` and the HTTP status the API
layer reports it with.
"""


class ProcurementError(Exception):
    """Base exception for procurement operations"""
    code = "PROCUREMENT_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ProcurementError):
    """Raised when an entity id does not exist (or is soft-deleted)"""
    code = "NOT_FOUND"
    status_code = 404


class ValidationError(ProcurementError):
    """Raised when a business rule rejects the operation"""
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidTransitionError(ValidationError):
    """Raised when a status change is not the single forward step"""
    code = "INVALID_TRANSITION"


class UnauthorizedError(ProcurementError):
    """Raised when the caller identity cannot be established"""
    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(ProcurementError):
    """Raised on role or factory-scope denial"""
    code = "FORBIDDEN"
    status_code = 403


class ConflictError(ProcurementError):
    """Raised when an entity would duplicate an existing one"""
    code = "CONFLICT"
    status_code = 409
