"""
Request Status Engine
=====================
State machine for procurement request status:
- Strict forward adjacency DRAFT -> ... -> CLOSED, no skipping, no going back
- Role gate per target status, kept as a lookup table
- Status derived from line-item statuses after every line-item change
"""

import logging
from typing import Callable, Dict, FrozenSet, Iterable, List, NamedTuple, Optional

from sqlalchemy.orm import Session

from ..models import (
    LineItemStatus, ProcurementRequest, RequestStatus, ReturnStatus, UserRole
)
from ..schemas import Actor, SoftFailure
from .access_control import AccessControlPolicy, PURCHASE_TEAM_OR_ABOVE
from .errors import ForbiddenError, InvalidTransitionError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION TABLES
# =============================================================================

FORWARD_TRANSITIONS: Dict[RequestStatus, RequestStatus] = {
    RequestStatus.DRAFT: RequestStatus.SUBMITTED,
    RequestStatus.SUBMITTED: RequestStatus.IN_PROGRESS,
    RequestStatus.IN_PROGRESS: RequestStatus.ORDERED,
    RequestStatus.ORDERED: RequestStatus.DISPATCHED,
    RequestStatus.DISPATCHED: RequestStatus.RECEIVED,
    RequestStatus.RECEIVED: RequestStatus.CLOSED,
}


def _has_line_items(request: ProcurementRequest) -> Optional[str]:
    if not request.line_items:
        return "Cannot submit request without line items"
    return None


def _ready_to_close(request: ProcurementRequest) -> Optional[str]:
    for item in request.line_items:
        if item.status not in RESOLVED_LINE_STATUSES:
            return "Cannot close request until every line item is received or short closed"
        if any(r.return_status == ReturnStatus.REQUESTED for r in item.return_requests):
            return "Cannot close request while return requests are pending approval"
    return None


class RoleGate(NamedTuple):
    roles: FrozenSet[UserRole]
    creator_only: bool = False
    factory_scoped: bool = False
    condition: Optional[Callable[[ProcurementRequest], Optional[str]]] = None


ROLE_GATES: Dict[RequestStatus, RoleGate] = {
    RequestStatus.SUBMITTED: RoleGate(frozenset({UserRole.FACTORY_USER}), creator_only=True, condition=_has_line_items),
    RequestStatus.IN_PROGRESS: RoleGate(PURCHASE_TEAM_OR_ABOVE),
    RequestStatus.ORDERED: RoleGate(PURCHASE_TEAM_OR_ABOVE),
    RequestStatus.DISPATCHED: RoleGate(PURCHASE_TEAM_OR_ABOVE),
    RequestStatus.RECEIVED: RoleGate(frozenset({UserRole.FACTORY_USER}), factory_scoped=True),
    RequestStatus.CLOSED: RoleGate(PURCHASE_TEAM_OR_ABOVE, condition=_ready_to_close),
}

# Explicit states that a derived recompute never overwrites
PROTECTED_STATUSES = frozenset({RequestStatus.DRAFT, RequestStatus.SUBMITTED, RequestStatus.CLOSED})

RESOLVED_LINE_STATUSES = frozenset({LineItemStatus.RECEIVED, LineItemStatus.SHORT_CLOSED})


# =============================================================================
# DERIVED STATUS
# =============================================================================

def derive_request_status(statuses: Iterable[LineItemStatus]) -> Optional[RequestStatus]:
    """
    Aggregate line-item statuses into a request status.

    Depends only on the multiset of statuses; returns None when there are none.
    """
    statuses = list(statuses)
    if not statuses:
        return None
    if all(s in RESOLVED_LINE_STATUSES for s in statuses):
        return RequestStatus.RECEIVED
    if LineItemStatus.DISPATCHED in statuses:
        return RequestStatus.DISPATCHED
    if LineItemStatus.ORDERED in statuses:
        return RequestStatus.ORDERED
    return RequestStatus.IN_PROGRESS


class StatusTransitionEngine:
    """Validates and applies request status changes"""

    @staticmethod
    def validate_transition(current: RequestStatus, target: RequestStatus) -> None:
        if FORWARD_TRANSITIONS.get(current) != target:
            raise InvalidTransitionError(
                f"Invalid status transition from {current.value} to {target.value}"
            )

    @staticmethod
    def check_role_gate(actor: Actor, request: ProcurementRequest, target: RequestStatus) -> None:
        gate = ROLE_GATES[target]
        if actor.role not in gate.roles:
            raise ForbiddenError(
                f"Role {actor.role.value} cannot move a request to {target.value}"
            )
        if gate.creator_only and request.created_by_id != actor.id:
            raise ForbiddenError(f"Only the request creator can move it to {target.value}")
        if gate.factory_scoped:
            AccessControlPolicy.validate_factory_access(actor, request.factory_id, f"mark requests {target.value}")
        if gate.condition is not None:
            problem = gate.condition(request)
            if problem:
                raise ValidationError(problem)

    @staticmethod
    def validate_status_change(actor: Actor, request: ProcurementRequest, target: RequestStatus) -> None:
        """Adjacency first, then the role gate and its extra condition."""
        StatusTransitionEngine.validate_transition(request.status, target)
        StatusTransitionEngine.check_role_gate(actor, request, target)

    @staticmethod
    def apply_status_change(
        db: Session,
        actor: Actor,
        request: ProcurementRequest,
        target: RequestStatus,
    ) -> ProcurementRequest:
        StatusTransitionEngine.validate_status_change(actor, request, target)
        previous = request.status
        request.status = target
        db.flush()
        logger.info(
            "Request %s status %s -> %s by %s",
            request.request_number, previous.value, target.value, actor.username,
        )
        return request

    @staticmethod
    def next_valid_statuses(actor: Actor, request: ProcurementRequest) -> List[RequestStatus]:
        """Targets this actor could move the request to right now."""
        target = FORWARD_TRANSITIONS.get(request.status)
        if target is None:
            return []
        try:
            StatusTransitionEngine.check_role_gate(actor, request, target)
        except (ForbiddenError, ValidationError):
            return []
        return [target]

    @staticmethod
    def recompute_request_status(db: Session, request: ProcurementRequest) -> Optional[SoftFailure]:
        """
        Re-derive request status from its line items.

        Best-effort: a failure is logged and returned, never raised. Runs in a
        savepoint so a failed flush leaves the caller's transaction usable.
        """
        try:
            if request.status in PROTECTED_STATUSES:
                return None
            derived = derive_request_status(item.status for item in request.line_items)
            if derived is None or derived == request.status:
                return None
            with db.begin_nested():
                previous = request.status
                request.status = derived
            logger.info(
                "Request %s derived status %s -> %s",
                request.request_number, previous.value, derived.value,
            )
            return None
        except Exception as exc:
            logger.exception("Failed to recompute status for request %s", request.id)
            return SoftFailure(effect="recompute_request_status", message=str(exc))
