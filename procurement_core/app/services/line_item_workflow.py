"""
Line Item Workflow
==================
Mutations on procurement line items:
- Vendor and price assignment (with history side effects)
- Status updates gated by role and current status
- Short close and receipt

Every mutation locks the parent request row first, then the line item, and
finishes through on_line_item_changed so the derived request status is
recomputed from a consistent snapshot.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple

from sqlalchemy.orm import Session

from ..models import (
    LineItemStatus, ProcurementLineItem, ProcurementRequest, RequestStatus, UserRole, Vendor
)
from ..schemas import Actor, LineItemOut, OperationResult, SoftFailure
from .access_control import AccessControlPolicy, PURCHASE_TEAM_OR_ABOVE, is_factory_user, is_purchase_team_or_above
from .errors import ForbiddenError, NotFoundError, ValidationError
from .history import HistoryService
from .permissions import PermissionValidator
from .sanitizer import ResponseSanitizer
from .status_engine import StatusTransitionEngine

logger = logging.getLogger(__name__)


MAX_SHORT_CLOSE_REASON = 500

# Line items change only once a buyer owns the request and before it is received
LINE_ITEM_MUTABLE_REQUEST_STATUSES = frozenset({
    RequestStatus.IN_PROGRESS, RequestStatus.ORDERED, RequestStatus.DISPATCHED,
})
VENDOR_ASSIGNABLE_ITEM_STATUSES = frozenset({LineItemStatus.PENDING, LineItemStatus.IN_PROGRESS, LineItemStatus.ORDERED})
SHORT_CLOSABLE_STATUSES = frozenset({LineItemStatus.PENDING, LineItemStatus.IN_PROGRESS, LineItemStatus.ORDERED})


class LineItemTransition(NamedTuple):
    roles: FrozenSet[UserRole]
    from_statuses: FrozenSet[LineItemStatus]


LINE_ITEM_TRANSITIONS: Dict[LineItemStatus, LineItemTransition] = {
    LineItemStatus.ORDERED: LineItemTransition(
        PURCHASE_TEAM_OR_ABOVE, frozenset({LineItemStatus.PENDING, LineItemStatus.IN_PROGRESS})
    ),
    LineItemStatus.DISPATCHED: LineItemTransition(PURCHASE_TEAM_OR_ABOVE, frozenset({LineItemStatus.ORDERED})),
    LineItemStatus.RECEIVED: LineItemTransition(frozenset({UserRole.FACTORY_USER}), frozenset({LineItemStatus.DISPATCHED})),
}


# =============================================================================
# LOADING AND LOCKING
# =============================================================================

def to_decimal(value, field: str) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number")
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return number


def get_line_item(db: Session, line_item_id: int) -> ProcurementLineItem:
    item = db.query(ProcurementLineItem).join(ProcurementRequest).filter(
        ProcurementLineItem.id == line_item_id,
        ProcurementRequest.is_deleted == False,  # noqa: E712
    ).first()
    if item is None:
        raise NotFoundError("Line item not found")
    return item


def lock_line_item(db: Session, line_item_id: int) -> Tuple[ProcurementRequest, ProcurementLineItem]:
    """
    Lock parent request then line item, re-reading both from the database.

    Request-first ordering serializes all line-item mutations on one request.
    """
    item = get_line_item(db, line_item_id)
    request = db.query(ProcurementRequest).filter(
        ProcurementRequest.id == item.request_id
    ).with_for_update().populate_existing().one()
    item = db.query(ProcurementLineItem).filter(
        ProcurementLineItem.id == line_item_id
    ).with_for_update().populate_existing().one()
    return request, item


def validate_request_open(request: ProcurementRequest) -> None:
    """Line items of draft, submitted, received or closed requests are frozen."""
    if request.status not in LINE_ITEM_MUTABLE_REQUEST_STATUSES:
        raise ValidationError(
            f"Line items cannot be changed while the request is {request.status.value}"
        )


def line_item_out(actor: Actor, item: ProcurementLineItem) -> LineItemOut:
    return ResponseSanitizer.sanitize(actor, LineItemOut.model_validate(item))


# =============================================================================
# WORKFLOW
# =============================================================================

class LineItemWorkflow:

    @staticmethod
    def on_line_item_changed(db: Session, line_item: ProcurementLineItem) -> List[SoftFailure]:
        """Single post-step for every line-item mutation."""
        db.flush()
        failure = StatusTransitionEngine.recompute_request_status(db, line_item.request)
        return [failure] if failure else []

    @staticmethod
    def assign_vendor_and_price(
        db: Session,
        actor: Actor,
        line_item_id: int,
        vendor_id: int,
        price,
    ) -> OperationResult:
        if not is_purchase_team_or_above(actor):
            raise ForbiddenError("Only the purchase team can assign vendors to line items")
        price = to_decimal(price, "Price") if price is not None else None
        if price is None or price <= 0:
            raise ValidationError("Price must be greater than zero")

        request, item = lock_line_item(db, line_item_id)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "assign vendors")
        PermissionValidator.validate_not_pending_approval(actor, request)
        validate_request_open(request)
        if item.status not in VENDOR_ASSIGNABLE_ITEM_STATUSES:
            raise ValidationError(f"Cannot assign a vendor to a line item in {item.status.value} status")

        vendor = db.query(Vendor).filter(Vendor.id == vendor_id).first()
        if vendor is None:
            raise NotFoundError("Vendor not found")
        if not vendor.is_active:
            raise ValidationError("Vendor is inactive")

        item.assigned_vendor_id = vendor.id
        item.assigned_vendor = vendor
        item.assigned_price = price
        item.status = LineItemStatus.ORDERED
        db.flush()

        soft_failures = HistoryService.record_vendor_assignment(db, actor, item, vendor, price)
        soft_failures += LineItemWorkflow.on_line_item_changed(db, item)

        logger.info(
            "Vendor %s assigned to line item %s at %s by %s",
            vendor.name, item.id, price, actor.username,
        )
        return OperationResult(data=line_item_out(actor, item), soft_failures=soft_failures)

    @staticmethod
    def update_line_item_status(
        db: Session,
        actor: Actor,
        line_item_id: int,
        new_status: LineItemStatus,
    ) -> OperationResult:
        rule = LINE_ITEM_TRANSITIONS.get(new_status)
        if rule is None:
            raise ValidationError(f"Line items cannot be moved to {new_status.value} directly")
        if actor.role not in rule.roles:
            raise ForbiddenError(f"Role {actor.role.value} cannot mark line items {new_status.value}")

        request, item = lock_line_item(db, line_item_id)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "update line items")
        PermissionValidator.validate_not_pending_approval(actor, request)
        validate_request_open(request)
        if item.status not in rule.from_statuses:
            raise ValidationError(
                f"Cannot change line item status from {item.status.value} to {new_status.value}"
            )

        previous = item.status
        item.status = new_status
        soft_failures = LineItemWorkflow.on_line_item_changed(db, item)

        logger.info("Line item %s status %s -> %s by %s", item.id, previous.value, new_status.value, actor.username)
        return OperationResult(data=line_item_out(actor, item), soft_failures=soft_failures)

    @staticmethod
    def short_close_line_item(
        db: Session,
        actor: Actor,
        line_item_id: int,
        reason: Optional[str],
    ) -> OperationResult:
        if not is_purchase_team_or_above(actor):
            raise ForbiddenError("Only the purchase team can short close line items")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Short close reason is required")
        if len(reason) > MAX_SHORT_CLOSE_REASON:
            raise ValidationError(f"Short close reason cannot exceed {MAX_SHORT_CLOSE_REASON} characters")

        request, item = lock_line_item(db, line_item_id)
        PermissionValidator.validate_not_pending_approval(actor, request)
        validate_request_open(request)
        if item.is_short_closed or item.status == LineItemStatus.SHORT_CLOSED:
            raise ValidationError("Line item is already short closed")
        if item.status not in SHORT_CLOSABLE_STATUSES:
            raise ValidationError(f"Cannot short close a line item in {item.status.value} status")

        item.is_short_closed = True
        item.short_close_reason = reason
        item.actual_quantity = Decimal("0")
        item.status = LineItemStatus.SHORT_CLOSED
        soft_failures = LineItemWorkflow.on_line_item_changed(db, item)

        logger.info("Line item %s short closed by %s: %s", item.id, actor.username, reason)
        return OperationResult(data=line_item_out(actor, item), soft_failures=soft_failures)

    @staticmethod
    def receive_line_item(
        db: Session,
        actor: Actor,
        line_item_id: int,
        actual_quantity,
    ) -> OperationResult:
        if not is_factory_user(actor):
            raise ForbiddenError("Only factory users can receive line items")
        if actual_quantity is None:
            raise ValidationError("Actual quantity is required")
        actual_quantity = to_decimal(actual_quantity, "Actual quantity")

        request, item = lock_line_item(db, line_item_id)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "receive line items")
        PermissionValidator.validate_not_pending_approval(actor, request)
        validate_request_open(request)
        if item.status != LineItemStatus.DISPATCHED:
            raise ValidationError("Only dispatched line items can be received")
        if item.actual_quantity is not None:
            raise ValidationError("Line item has already been received")
        if actual_quantity < 0:
            raise ValidationError("Actual quantity cannot be negative")
        if actual_quantity > Decimal(item.requested_quantity):
            raise ValidationError("Actual quantity cannot exceed requested quantity")

        item.actual_quantity = actual_quantity
        item.status = LineItemStatus.RECEIVED
        soft_failures = LineItemWorkflow.on_line_item_changed(db, item)

        logger.info("Line item %s received (%s) by %s", item.id, actual_quantity, actor.username)
        return OperationResult(data=line_item_out(actor, item), soft_failures=soft_failures)

    # =========================================================================
    # READS
    # =========================================================================

    @staticmethod
    def get(db: Session, actor: Actor, line_item_id: int) -> LineItemOut:
        item = get_line_item(db, line_item_id)
        AccessControlPolicy.validate_factory_access(actor, item.request.factory_id, "view line items")
        return line_item_out(actor, item)

    @staticmethod
    def list_for_request(db: Session, actor: Actor, request_id: int) -> List[LineItemOut]:
        request = db.query(ProcurementRequest).filter(
            ProcurementRequest.id == request_id,
            ProcurementRequest.is_deleted == False,  # noqa: E712
        ).first()
        if request is None:
            raise NotFoundError("Procurement request not found")
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "view line items")
        return [line_item_out(actor, item) for item in request.line_items]
