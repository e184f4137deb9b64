"""
Services package initialization.
Business logic layer for the procurement request lifecycle.
"""

from .errors import (
    ProcurementError,
    NotFoundError,
    ValidationError,
    InvalidTransitionError,
    UnauthorizedError,
    ForbiddenError,
    ConflictError,
)
from .access_control import AccessControlPolicy
from .status_engine import StatusTransitionEngine, derive_request_status
from .permissions import PermissionValidator, EDIT_MATRIX
from .sanitizer import ResponseSanitizer
from .history import HistoryService
from .line_item_workflow import LineItemWorkflow
from .return_service import ReturnRequestService
from .procurement_service import ProcurementRequestService, get_next_request_number

__all__ = [
    'ProcurementError',
    'NotFoundError',
    'ValidationError',
    'InvalidTransitionError',
    'UnauthorizedError',
    'ForbiddenError',
    'ConflictError',
    'AccessControlPolicy',
    'StatusTransitionEngine',
    'derive_request_status',
    'PermissionValidator',
    'EDIT_MATRIX',
    'ResponseSanitizer',
    'HistoryService',
    'LineItemWorkflow',
    'ReturnRequestService',
    'ProcurementRequestService',
    'get_next_request_number',
]
