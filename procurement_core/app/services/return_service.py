"""
Return Requests
===============
Factory users claim back received quantity; the purchase team approves.

A line item may carry at most one return request over its lifetime.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models import (
    LineItemStatus, ProcurementLineItem, ProcurementRequest, ReturnRequest, ReturnStatus
)
from ..schemas import Actor, OperationResult, ReturnRequestOut, ReturnSummary
from .access_control import AccessControlPolicy, is_factory_user, is_purchase_team_or_above
from .errors import ForbiddenError, NotFoundError, ValidationError
from .line_item_workflow import LineItemWorkflow, lock_line_item, to_decimal
from .sanitizer import ResponseSanitizer

logger = logging.getLogger(__name__)


MAX_RETURN_REASON = 1000


def return_out(actor: Actor, ret: ReturnRequest) -> ReturnRequestOut:
    return ResponseSanitizer.sanitize(actor, ReturnRequestOut.model_validate(ret))


def _scoped_returns(db: Session, actor: Actor):
    query = db.query(ReturnRequest).join(
        ProcurementLineItem, ReturnRequest.line_item_id == ProcurementLineItem.id
    ).join(
        ProcurementRequest, ProcurementLineItem.request_id == ProcurementRequest.id
    ).filter(ProcurementRequest.is_deleted == False)  # noqa: E712
    return AccessControlPolicy.scope_requests(query, actor)


def _refresh_return_totals(item: ProcurementLineItem) -> None:
    item.total_returned_quantity = item.approved_return_quantity
    item.has_returns = bool(item.return_requests)


class ReturnRequestService:

    @staticmethod
    def create_return_request(
        db: Session,
        actor: Actor,
        line_item_id: int,
        return_quantity,
        return_reason: Optional[str],
    ) -> OperationResult:
        if not is_factory_user(actor):
            raise ForbiddenError("Only factory users can create return requests")
        if return_quantity is None:
            raise ValidationError("Return quantity is required")
        quantity = to_decimal(return_quantity, "Return quantity")
        reason = (return_reason or "").strip()
        if not reason:
            raise ValidationError("Return reason is required")
        if len(reason) > MAX_RETURN_REASON:
            raise ValidationError(f"Return reason cannot exceed {MAX_RETURN_REASON} characters")

        request, item = lock_line_item(db, line_item_id)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "create return requests")

        if item.status != LineItemStatus.RECEIVED:
            raise ValidationError("Returns can only be requested for received line items")
        if item.actual_quantity is None or Decimal(item.actual_quantity) <= 0:
            raise ValidationError("Nothing was received on this line item")
        if item.return_requests:
            raise ValidationError("A return request already exists for this line item")
        if quantity <= 0:
            raise ValidationError("Return quantity must be greater than zero")
        if quantity > item.max_returnable_quantity:
            raise ValidationError(
                f"Return quantity exceeds the returnable quantity of {item.max_returnable_quantity}"
            )

        ret = ReturnRequest(
            line_item_id=item.id,
            return_quantity=quantity,
            return_reason=reason,
            return_status=ReturnStatus.REQUESTED,
            requested_by_id=actor.id,
        )
        db.add(ret)
        item.return_requests.append(ret)
        _refresh_return_totals(item)
        soft_failures = LineItemWorkflow.on_line_item_changed(db, item)

        logger.info("Return request %s created for line item %s by %s", ret.id, item.id, actor.username)
        return OperationResult(data=return_out(actor, ret), soft_failures=soft_failures)

    @staticmethod
    def approve_return_request(db: Session, actor: Actor, return_request_id: int) -> OperationResult:
        """
        Approve a pending return as the acting user.

        The returnable quantity is re-checked under the line-item lock, so two
        approvals racing on one item cannot both pass.
        """
        if not is_purchase_team_or_above(actor):
            raise ForbiddenError("Only the purchase team can approve return requests")

        ret = db.query(ReturnRequest).filter(ReturnRequest.id == return_request_id).first()
        if ret is None:
            raise NotFoundError("Return request not found")

        request, item = lock_line_item(db, ret.line_item_id)
        ret = db.query(ReturnRequest).filter(
            ReturnRequest.id == return_request_id
        ).with_for_update().populate_existing().one()
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "approve return requests")

        if ret.return_status != ReturnStatus.REQUESTED:
            raise ValidationError("Only requested returns can be approved")
        if item.status != LineItemStatus.RECEIVED:
            raise ValidationError("Line item is no longer in received status")
        if Decimal(ret.return_quantity) > item.max_returnable_quantity:
            raise ValidationError(
                f"Return quantity exceeds the returnable quantity of {item.max_returnable_quantity}"
            )

        ret.return_status = ReturnStatus.APPROVED
        ret.approved_by_id = actor.id
        ret.approved_at = datetime.utcnow()
        _refresh_return_totals(item)
        soft_failures = LineItemWorkflow.on_line_item_changed(db, item)

        logger.info("Return request %s approved by %s", ret.id, actor.username)
        return OperationResult(data=return_out(actor, ret), soft_failures=soft_failures)

    # =========================================================================
    # READS
    # =========================================================================

    @staticmethod
    def get(db: Session, actor: Actor, return_request_id: int) -> ReturnRequestOut:
        ret = db.query(ReturnRequest).filter(ReturnRequest.id == return_request_id).first()
        if ret is None or ret.line_item.request.is_deleted:
            raise NotFoundError("Return request not found")
        AccessControlPolicy.validate_factory_access(actor, ret.line_item.request.factory_id, "view return requests")
        return return_out(actor, ret)

    @staticmethod
    def list_all(db: Session, actor: Actor, status: Optional[ReturnStatus] = None) -> List[ReturnRequestOut]:
        query = _scoped_returns(db, actor)
        if status is not None:
            query = query.filter(ReturnRequest.return_status == status)
        returns = query.order_by(ReturnRequest.created_at.desc(), ReturnRequest.id.desc()).all()
        return [return_out(actor, r) for r in returns]

    @staticmethod
    def list_pending(db: Session, actor: Actor) -> List[ReturnRequestOut]:
        return ReturnRequestService.list_all(db, actor, ReturnStatus.REQUESTED)

    @staticmethod
    def list_for_line_item(db: Session, actor: Actor, line_item_id: int) -> List[ReturnRequestOut]:
        item = db.query(ProcurementLineItem).filter(ProcurementLineItem.id == line_item_id).first()
        if item is None or item.request.is_deleted:
            raise NotFoundError("Line item not found")
        AccessControlPolicy.validate_factory_access(actor, item.request.factory_id, "view return requests")
        return [return_out(actor, r) for r in item.return_requests]

    @staticmethod
    def summary_for_request(db: Session, actor: Actor, request_id: int) -> ReturnSummary:
        request = db.query(ProcurementRequest).filter(
            ProcurementRequest.id == request_id,
            ProcurementRequest.is_deleted == False,  # noqa: E712
        ).first()
        if request is None:
            raise NotFoundError("Procurement request not found")
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "view return requests")

        returns = [r for item in request.line_items for r in item.return_requests]
        approved = [r for r in returns if r.return_status == ReturnStatus.APPROVED]
        return ReturnSummary(
            request_id=request.id,
            total_returns=len(returns),
            pending_returns=sum(1 for r in returns if r.return_status == ReturnStatus.REQUESTED),
            approved_returns=len(approved),
            total_returned_quantity=sum((Decimal(r.return_quantity) for r in approved), Decimal("0")),
        )
