"""
Permission Validator
====================
Field-level edit rules for procurement requests, keyed by request status,
plus the approval, assignment and deletion guards.
"""

import logging
from typing import Callable, Dict, FrozenSet, Iterable, NamedTuple

from sqlalchemy.orm import Session

from ..models import LineItemStatus, ProcurementRequest, RequestStatus, User, UserRole
from ..schemas import Actor
from .access_control import AccessControlPolicy, can_approve, is_purchase_team_or_above
from .errors import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# Every field a RequestUpdate payload can carry
REQUEST_FIELDS = frozenset({
    "priority", "expected_delivery_date", "justification", "requires_approval",
    "assigned_to_id", "status", "line_items",
})


class EditRule(NamedTuple):
    description: str
    allowed: Callable[[Actor, ProcurementRequest], bool]
    fields: FrozenSet[str]


def _creator(actor: Actor, request: ProcurementRequest) -> bool:
    return request.created_by_id == actor.id


def _purchase_team(actor: Actor, request: ProcurementRequest) -> bool:
    return is_purchase_team_or_above(actor)


def _factory_user_in_scope(actor: Actor, request: ProcurementRequest) -> bool:
    return actor.role == UserRole.FACTORY_USER and AccessControlPolicy.has_factory_access(actor, request.factory_id)


EDIT_MATRIX: Dict[RequestStatus, EditRule] = {
    RequestStatus.DRAFT: EditRule("the request creator", _creator, REQUEST_FIELDS - {"status", "assigned_to_id"}),
    RequestStatus.SUBMITTED: EditRule("the purchase team", _purchase_team, frozenset({"assigned_to_id"})),
    RequestStatus.IN_PROGRESS: EditRule(
        "the purchase team", _purchase_team, frozenset({"assigned_to_id", "requires_approval", "status"})
    ),
    RequestStatus.ORDERED: EditRule("the purchase team", _purchase_team, frozenset({"status"})),
    RequestStatus.DISPATCHED: EditRule("the purchase team", _purchase_team, frozenset({"status"})),
    RequestStatus.RECEIVED: EditRule("factory users of this factory", _factory_user_in_scope, frozenset({"status"})),
}

APPROVAL_FLAG_STATUSES = frozenset({RequestStatus.SUBMITTED, RequestStatus.IN_PROGRESS})


class PermissionValidator:
    """Stateless checks; every method raises on denial and returns nothing useful otherwise."""

    @staticmethod
    def validate_not_pending_approval(actor: Actor, request: ProcurementRequest) -> None:
        """Block non-approvers while the request waits for management approval."""
        if request.requires_approval and not can_approve(actor):
            raise ValidationError("Request is pending management approval and cannot be modified")

    @staticmethod
    def editable_fields(actor: Actor, request: ProcurementRequest) -> FrozenSet[str]:
        rule = EDIT_MATRIX.get(request.status)
        if rule is None or not rule.allowed(actor, request):
            return frozenset()
        if request.requires_approval and not can_approve(actor):
            return frozenset()
        return rule.fields

    @staticmethod
    def validate_edit(actor: Actor, request: ProcurementRequest, fields: Iterable[str]) -> None:
        fields = set(fields)
        PermissionValidator.validate_not_pending_approval(actor, request)

        rule = EDIT_MATRIX.get(request.status)
        if rule is None:
            raise ValidationError(f"Requests in {request.status.value} status cannot be edited")

        if request.status == RequestStatus.RECEIVED:
            AccessControlPolicy.validate_factory_access(actor, request.factory_id, "edit received requests")
        if not rule.allowed(actor, request):
            raise ForbiddenError(
                f"Only {rule.description} can edit requests in {request.status.value} status"
            )

        forbidden = sorted(fields - rule.fields)
        if forbidden:
            raise ValidationError(
                f"Fields not editable in {request.status.value} status: {', '.join(forbidden)}"
            )

    @staticmethod
    def validate_approval(actor: Actor, request: ProcurementRequest) -> None:
        if not can_approve(actor):
            raise ForbiddenError("Only management can approve requests")
        if not request.requires_approval:
            raise ValidationError("Request does not require approval")
        if request.approved_by_id is not None:
            raise ValidationError("Request is already approved")

    @staticmethod
    def validate_approval_flag_change(actor: Actor, request: ProcurementRequest, flag: bool) -> None:
        if not is_purchase_team_or_above(actor):
            raise ForbiddenError("Only the purchase team can change the approval requirement")
        if request.status not in APPROVAL_FLAG_STATUSES:
            raise ValidationError(
                f"Approval requirement cannot be changed in {request.status.value} status"
            )
        PermissionValidator.validate_not_pending_approval(actor, request)
        if flag and request.approved_by_id is not None:
            raise ValidationError("Request is already approved")
        if bool(request.requires_approval) == flag:
            raise ValidationError(
                "Request already requires approval" if flag else "Request does not require approval"
            )

    @staticmethod
    def validate_assignment_target(db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise NotFoundError("User not found")
        if user.role != UserRole.PURCHASE_TEAM:
            raise ValidationError("Requests can only be assigned to purchase team members")
        if not user.is_active:
            raise ValidationError("Cannot assign request to an inactive user")
        return user

    @staticmethod
    def validate_deletion(actor: Actor, request: ProcurementRequest) -> None:
        if request.status != RequestStatus.DRAFT:
            raise ValidationError("Only draft requests can be deleted")
        if actor.role != UserRole.ADMIN and request.created_by_id != actor.id:
            raise ForbiddenError("Only the creator or an admin can delete this request")
        for item in request.line_items:
            if (item.assigned_vendor_id is not None or item.assigned_price is not None
                    or item.status != LineItemStatus.PENDING):
                raise ValidationError("Cannot delete a request whose line items have been processed")
