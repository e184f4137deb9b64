"""
Procurement Request Service
===========================
Request-level operations:
- Creation with request-number generation and duplicate detection
- Field edits through the status-keyed permission matrix
- Explicit status transitions, assignment, approval and soft delete
- Factory-scoped reads, work queues and the role dashboard
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import get_settings
from ..models import (
    Factory, LineItemStatus, Material, NumberSequence, ProcurementLineItem, ProcurementRequest,
    RequestStatus, User, UserRole, Vendor
)
from ..schemas import (
    Actor, DashboardSummary, LineItemCreate, RequestCreate, RequestFilter, RequestOut, RequestUpdate
)
from .access_control import AccessControlPolicy, can_approve, is_factory_user, is_purchase_team_or_above
from .errors import ForbiddenError, NotFoundError, ValidationError
from .line_item_workflow import to_decimal
from .permissions import PermissionValidator
from .sanitizer import ResponseSanitizer
from .status_engine import StatusTransitionEngine

logger = logging.getLogger(__name__)


MAX_JUSTIFICATION = 1000


# =============================================================================
# HELPERS
# =============================================================================

def business_now() -> datetime:
    """Current wall-clock time in the business timezone, as a naive datetime."""
    tz = ZoneInfo(get_settings().BUSINESS_TIMEZONE)
    return datetime.now(tz).replace(tzinfo=None)


def business_today() -> date:
    return business_now().date()


def get_next_request_number(db: Session, factory: Factory) -> str:
    """
    Next REQ-<factory code>-<year>-<seq> number.

    One counter row per factory and year, locked with SELECT FOR UPDATE.
    """
    year = business_today().year
    sequence_name = f"request:{factory.factory_code}"

    seq = db.query(NumberSequence).filter(
        NumberSequence.sequence_name == sequence_name,
        NumberSequence.year == year,
    ).with_for_update().first()

    if not seq:
        seq = NumberSequence(sequence_name=sequence_name, year=year, current_number=0, padding=3)
        db.add(seq)

    seq.current_number += 1
    db.flush()

    return f"REQ-{factory.factory_code}-{year}-{str(seq.current_number).zfill(seq.padding)}"


def request_out(actor: Actor, request: ProcurementRequest) -> RequestOut:
    return ResponseSanitizer.sanitize(actor, RequestOut.model_validate(request))


def _active_requests(db: Session):
    return db.query(ProcurementRequest).filter(ProcurementRequest.is_deleted == False)  # noqa: E712


def _get_request(db: Session, request_id: int, lock: bool = False) -> ProcurementRequest:
    query = _active_requests(db).filter(ProcurementRequest.id == request_id)
    if lock:
        query = query.with_for_update().populate_existing()
    request = query.first()
    if request is None:
        raise NotFoundError("Procurement request not found")
    return request


def _validate_justification(justification: Optional[str]) -> None:
    if justification is not None and len(justification) > MAX_JUSTIFICATION:
        raise ValidationError(f"Justification cannot exceed {MAX_JUSTIFICATION} characters")


def _validate_delivery_date(expected: Optional[date]) -> None:
    if expected is not None and expected < business_today():
        raise ValidationError("Expected delivery date cannot be in the past")


def _build_line_items(db: Session, items: List[LineItemCreate]) -> List[ProcurementLineItem]:
    if not items:
        raise ValidationError("At least one line item is required")

    material_ids = [i.material_id for i in items]
    if len(set(material_ids)) != len(material_ids):
        raise ValidationError("Duplicate materials are not allowed in a request")

    built = []
    for entry in items:
        quantity = to_decimal(entry.requested_quantity, "Requested quantity")
        if quantity <= 0:
            raise ValidationError("Requested quantity must be greater than zero")
        material = db.query(Material).filter(Material.id == entry.material_id).first()
        if material is None:
            raise NotFoundError(f"Material {entry.material_id} not found")
        if not material.is_active:
            raise ValidationError(f"Material {material.name} is inactive")
        built.append(ProcurementLineItem(
            material_id=material.id,
            requested_quantity=quantity,
            status=LineItemStatus.PENDING,
        ))
    return built


def _check_duplicate_submission(db: Session, factory_id: int, items: List[ProcurementLineItem]) -> None:
    """Reject a request identical to one created for the same factory moments ago."""
    window = get_settings().DUPLICATE_REQUEST_WINDOW_MINUTES
    since = datetime.utcnow() - timedelta(minutes=window)
    wanted = {i.material_id: Decimal(i.requested_quantity) for i in items}

    recent = _active_requests(db).filter(
        ProcurementRequest.factory_id == factory_id,
        ProcurementRequest.created_at >= since,
    ).all()
    for existing in recent:
        existing_items = {i.material_id: Decimal(i.requested_quantity) for i in existing.line_items}
        if existing_items == wanted:
            raise ValidationError(
                f"Duplicate request detected: {existing.request_number} was created with the same "
                f"items in the last {window} minutes"
            )


# =============================================================================
# SERVICE
# =============================================================================

class ProcurementRequestService:

    @staticmethod
    def create_request(db: Session, actor: Actor, payload: RequestCreate) -> RequestOut:
        if not is_factory_user(actor):
            raise ForbiddenError("Only factory users can create procurement requests")

        factory = db.query(Factory).filter(Factory.id == payload.factory_id).first()
        if factory is None:
            raise NotFoundError("Factory not found")
        if not factory.is_active:
            raise ValidationError("Factory is inactive")
        AccessControlPolicy.validate_factory_access(actor, factory.id, "create requests")

        _validate_justification(payload.justification)
        _validate_delivery_date(payload.expected_delivery_date)
        items = _build_line_items(db, payload.line_items)
        _check_duplicate_submission(db, factory.id, items)

        request = ProcurementRequest(
            request_number=get_next_request_number(db, factory),
            factory_id=factory.id,
            status=RequestStatus.DRAFT,
            priority=payload.priority,
            expected_delivery_date=payload.expected_delivery_date,
            justification=payload.justification,
            created_by_id=actor.id,
            requires_approval=False,
            line_items=items,
        )
        db.add(request)
        db.flush()
        db.refresh(request)

        logger.info(
            "Procurement request %s created by %s with %d line items",
            request.request_number, actor.username, len(items),
        )
        return request_out(actor, request)

    @staticmethod
    def update_request(db: Session, actor: Actor, request_id: int, payload: RequestUpdate) -> RequestOut:
        request = _get_request(db, request_id, lock=True)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "edit requests")

        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields to update")
        PermissionValidator.validate_edit(actor, request, changes.keys())

        if "justification" in changes:
            _validate_justification(payload.justification)
            request.justification = payload.justification
        if "expected_delivery_date" in changes:
            _validate_delivery_date(payload.expected_delivery_date)
            request.expected_delivery_date = payload.expected_delivery_date
        if "priority" in changes:
            if payload.priority is None:
                raise ValidationError("Priority cannot be empty")
            request.priority = payload.priority
        if "line_items" in changes:
            request.line_items = _build_line_items(db, payload.line_items or [])
        if "requires_approval" in changes:
            flag = bool(payload.requires_approval)
            if flag and request.approved_by_id is not None:
                raise ValidationError("Request is already approved")
            request.requires_approval = flag
        if "assigned_to_id" in changes:
            if payload.assigned_to_id is None:
                request.assigned_to_id = None
            else:
                request.assigned_to = PermissionValidator.validate_assignment_target(db, payload.assigned_to_id)
        if "status" in changes:
            if payload.status is None:
                raise ValidationError("Status cannot be empty")
            StatusTransitionEngine.apply_status_change(db, actor, request, payload.status)

        db.flush()
        logger.info(
            "Procurement request %s updated by %s: %s",
            request.request_number, actor.username, ", ".join(sorted(changes)),
        )
        return request_out(actor, request)

    @staticmethod
    def update_status(db: Session, actor: Actor, request_id: int, new_status: RequestStatus) -> RequestOut:
        request = _get_request(db, request_id, lock=True)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "change request status")
        PermissionValidator.validate_not_pending_approval(actor, request)
        StatusTransitionEngine.apply_status_change(db, actor, request, new_status)
        return request_out(actor, request)

    @staticmethod
    def submit_request(db: Session, actor: Actor, request_id: int) -> RequestOut:
        return ProcurementRequestService.update_status(db, actor, request_id, RequestStatus.SUBMITTED)

    @staticmethod
    def close_request(db: Session, actor: Actor, request_id: int) -> RequestOut:
        return ProcurementRequestService.update_status(db, actor, request_id, RequestStatus.CLOSED)

    @staticmethod
    def assign_to_user(db: Session, actor: Actor, request_id: int, user_id: int) -> RequestOut:
        """Assign a submitted request to a purchase team member; it moves to IN_PROGRESS."""
        if not is_purchase_team_or_above(actor):
            raise ForbiddenError("Only the purchase team can assign requests")
        request = _get_request(db, request_id, lock=True)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "assign requests")
        PermissionValidator.validate_not_pending_approval(actor, request)
        if request.status != RequestStatus.SUBMITTED:
            raise ValidationError("Only submitted requests can be assigned")

        assignee = PermissionValidator.validate_assignment_target(db, user_id)
        request.assigned_to = assignee
        StatusTransitionEngine.apply_status_change(db, actor, request, RequestStatus.IN_PROGRESS)

        logger.info("Procurement request %s assigned to %s", request.request_number, assignee.username)
        return request_out(actor, request)

    @staticmethod
    def approve_request(db: Session, actor: Actor, request_id: int) -> RequestOut:
        request = _get_request(db, request_id, lock=True)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "approve requests")
        PermissionValidator.validate_approval(actor, request)

        request.approved_by_id = actor.id
        request.approved_date = business_now()
        request.requires_approval = False
        db.flush()

        logger.info("Procurement request %s approved by %s", request.request_number, actor.username)
        return request_out(actor, request)

    @staticmethod
    def set_approval_flag(db: Session, actor: Actor, request_id: int, requires_approval: bool) -> RequestOut:
        request = _get_request(db, request_id, lock=True)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "change approval requirement")
        PermissionValidator.validate_approval_flag_change(actor, request, requires_approval)

        request.requires_approval = requires_approval
        db.flush()

        logger.info(
            "Procurement request %s %s management approval (by %s)",
            request.request_number, "requires" if requires_approval else "no longer requires", actor.username,
        )
        return request_out(actor, request)

    @staticmethod
    def delete_request(db: Session, actor: Actor, request_id: int) -> None:
        request = _get_request(db, request_id, lock=True)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "delete requests")
        PermissionValidator.validate_deletion(actor, request)

        request.is_deleted = True
        db.flush()
        logger.info("Procurement request %s deleted by %s", request.request_number, actor.username)

    # =========================================================================
    # READS
    # =========================================================================

    @staticmethod
    def get_request(db: Session, actor: Actor, request_id: int) -> RequestOut:
        request = _get_request(db, request_id)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "view requests")
        return request_out(actor, request)

    @staticmethod
    def get_by_request_number(db: Session, actor: Actor, request_number: str) -> RequestOut:
        request = _active_requests(db).filter(ProcurementRequest.request_number == request_number).first()
        if request is None:
            raise NotFoundError("Procurement request not found")
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "view requests")
        return request_out(actor, request)

    @staticmethod
    def list_requests(db: Session, actor: Actor, filters: Optional[RequestFilter] = None) -> List[RequestOut]:
        """Filtered listing, silently narrowed to the actor's factories."""
        filters = filters or RequestFilter()
        query = AccessControlPolicy.scope_requests(_active_requests(db), actor)

        if filters.statuses:
            query = query.filter(ProcurementRequest.status.in_(filters.statuses))
        if filters.priorities:
            query = query.filter(ProcurementRequest.priority.in_(filters.priorities))
        if filters.factory_ids:
            query = query.filter(ProcurementRequest.factory_id.in_(filters.factory_ids))
        if filters.assigned_to_id is not None:
            query = query.filter(ProcurementRequest.assigned_to_id == filters.assigned_to_id)
        if filters.requires_approval is not None:
            query = query.filter(ProcurementRequest.requires_approval == filters.requires_approval)
        if filters.request_number:
            query = query.filter(ProcurementRequest.request_number.ilike(f"%{filters.request_number}%"))

        requests = query.order_by(
            ProcurementRequest.created_at.desc(), ProcurementRequest.id.desc()
        ).offset(filters.offset).limit(filters.limit).all()
        return [request_out(actor, r) for r in requests]

    @staticmethod
    def list_unassigned(db: Session, actor: Actor) -> List[RequestOut]:
        if is_factory_user(actor):
            raise ForbiddenError("Factory users cannot view the unassigned queue")
        requests = _active_requests(db).filter(
            ProcurementRequest.status == RequestStatus.SUBMITTED,
            ProcurementRequest.assigned_to_id.is_(None),
        ).order_by(ProcurementRequest.created_at.asc(), ProcurementRequest.id.asc()).all()
        return [request_out(actor, r) for r in requests]

    @staticmethod
    def list_requiring_approval(db: Session, actor: Actor) -> List[RequestOut]:
        if not can_approve(actor):
            raise ForbiddenError("Only management can view requests awaiting approval")
        requests = _active_requests(db).filter(
            ProcurementRequest.requires_approval == True,  # noqa: E712
        ).order_by(ProcurementRequest.created_at.asc(), ProcurementRequest.id.asc()).all()
        return [request_out(actor, r) for r in requests]

    @staticmethod
    def next_valid_statuses(db: Session, actor: Actor, request_id: int) -> List[RequestStatus]:
        request = _get_request(db, request_id)
        AccessControlPolicy.validate_factory_access(actor, request.factory_id, "view requests")
        if request.requires_approval and not can_approve(actor):
            return []
        return StatusTransitionEngine.next_valid_statuses(actor, request)

    @staticmethod
    def dashboard_summary(db: Session, actor: Actor) -> DashboardSummary:
        """Request counts tailored to the caller's role."""
        scoped = AccessControlPolicy.scope_requests(_active_requests(db), actor)
        by_status: Dict[RequestStatus, int] = dict(
            scoped.with_entities(ProcurementRequest.status, func.count(ProcurementRequest.id))
            .group_by(ProcurementRequest.status).all()
        )

        def status_count(status: RequestStatus) -> int:
            return by_status.get(status, 0)

        counts: Dict[str, int] = {"total_requests": sum(by_status.values())}

        if actor.role == UserRole.FACTORY_USER:
            for status in (RequestStatus.DRAFT, RequestStatus.SUBMITTED, RequestStatus.IN_PROGRESS,
                           RequestStatus.RECEIVED, RequestStatus.CLOSED):
                counts[f"{status.value.lower()}_requests"] = status_count(status)
        elif actor.role in (UserRole.PURCHASE_TEAM, UserRole.MANAGEMENT):
            counts["unassigned_requests"] = scoped.filter(
                ProcurementRequest.status == RequestStatus.SUBMITTED,
                ProcurementRequest.assigned_to_id.is_(None),
            ).count()
            counts["my_assigned_requests"] = scoped.filter(ProcurementRequest.assigned_to_id == actor.id).count()
            for status in (RequestStatus.IN_PROGRESS, RequestStatus.ORDERED, RequestStatus.DISPATCHED):
                counts[f"{status.value.lower()}_requests"] = status_count(status)
            if actor.role == UserRole.MANAGEMENT:
                counts["requests_requiring_approval"] = scoped.filter(
                    ProcurementRequest.requires_approval == True,  # noqa: E712
                ).count()
                counts["approved_by_me"] = scoped.filter(ProcurementRequest.approved_by_id == actor.id).count()
        else:
            counts["total_users"] = db.query(User).filter(User.is_active == True).count()  # noqa: E712
            counts["total_factories"] = db.query(Factory).filter(Factory.is_active == True).count()  # noqa: E712
            counts["total_materials"] = db.query(Material).filter(Material.is_active == True).count()  # noqa: E712
            counts["total_vendors"] = db.query(Vendor).filter(Vendor.is_active == True).count()  # noqa: E712
            for status in RequestStatus:
                counts[f"{status.value.lower()}_requests"] = status_count(status)

        return DashboardSummary(role=actor.role, counts=counts)
