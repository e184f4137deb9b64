"""
Procurement Requests API Router
===============================
Request lifecycle endpoints:
- Create, edit, submit and close requests
- Assignment to purchase team members and management approval
- Factory-scoped listing, work queues and the role dashboard
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..deps import get_db, get_current_actor
from ..models import Priority, RequestStatus
from ..schemas import (
    Actor, ApprovalFlagUpdate, AssignmentUpdate, DashboardSummary, LineItemOut, RequestCreate,
    RequestFilter, RequestOut, RequestUpdate, ReturnSummary, StatusUpdate
)
from ..services import LineItemWorkflow, ProcurementRequestService, ReturnRequestService

router = APIRouter(prefix="/api/procurement-requests", tags=["Procurement Requests"])


# =============================================================================
# READS
# =============================================================================

@router.get("/", response_model=List[RequestOut])
def list_requests(
    status: Optional[List[RequestStatus]] = Query(None),
    priority: Optional[List[Priority]] = Query(None),
    factory_id: Optional[List[int]] = Query(None),
    assigned_to_id: Optional[int] = None,
    requires_approval: Optional[bool] = None,
    request_number: Optional[str] = None,
    limit: int = Query(50, gt=0, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    filters = RequestFilter(
        statuses=status,
        priorities=priority,
        factory_ids=factory_id,
        assigned_to_id=assigned_to_id,
        requires_approval=requires_approval,
        request_number=request_number,
        limit=limit,
        offset=offset,
    )
    return ProcurementRequestService.list_requests(db, actor, filters)


@router.get("/unassigned", response_model=List[RequestOut])
def list_unassigned(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ProcurementRequestService.list_unassigned(db, actor)


@router.get("/requiring-approval", response_model=List[RequestOut])
def list_requiring_approval(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ProcurementRequestService.list_requiring_approval(db, actor)


@router.get("/dashboard", response_model=DashboardSummary)
def dashboard(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ProcurementRequestService.dashboard_summary(db, actor)


@router.get("/by-number/{request_number}", response_model=RequestOut)
def get_by_number(request_number: str, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ProcurementRequestService.get_by_request_number(db, actor, request_number)


@router.get("/{request_id}", response_model=RequestOut)
def get_request(request_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ProcurementRequestService.get_request(db, actor, request_id)


@router.get("/{request_id}/next-statuses", response_model=List[RequestStatus])
def next_statuses(request_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ProcurementRequestService.next_valid_statuses(db, actor, request_id)


@router.get("/{request_id}/line-items", response_model=List[LineItemOut])
def list_line_items(request_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return LineItemWorkflow.list_for_request(db, actor, request_id)


@router.get("/{request_id}/return-summary", response_model=ReturnSummary)
def return_summary(request_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ReturnRequestService.summary_for_request(db, actor, request_id)


# =============================================================================
# MUTATIONS
# =============================================================================

@router.post("/", response_model=RequestOut, status_code=201)
def create_request(data: RequestCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    result = ProcurementRequestService.create_request(db, actor, data)
    db.commit()
    return result


@router.patch("/{request_id}", response_model=RequestOut)
def update_request(
    request_id: int,
    data: RequestUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = ProcurementRequestService.update_request(db, actor, request_id, data)
    db.commit()
    return result


@router.post("/{request_id}/status", response_model=RequestOut)
def update_status(
    request_id: int,
    data: StatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = ProcurementRequestService.update_status(db, actor, request_id, data.status)
    db.commit()
    return result


@router.post("/{request_id}/submit", response_model=RequestOut)
def submit_request(request_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    result = ProcurementRequestService.submit_request(db, actor, request_id)
    db.commit()
    return result


@router.post("/{request_id}/close", response_model=RequestOut)
def close_request(request_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    result = ProcurementRequestService.close_request(db, actor, request_id)
    db.commit()
    return result


@router.post("/{request_id}/assign", response_model=RequestOut)
def assign_request(
    request_id: int,
    data: AssignmentUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = ProcurementRequestService.assign_to_user(db, actor, request_id, data.user_id)
    db.commit()
    return result


@router.post("/{request_id}/approve", response_model=RequestOut)
def approve_request(request_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    result = ProcurementRequestService.approve_request(db, actor, request_id)
    db.commit()
    return result


@router.put("/{request_id}/approval-flag", response_model=RequestOut)
def set_approval_flag(
    request_id: int,
    data: ApprovalFlagUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = ProcurementRequestService.set_approval_flag(db, actor, request_id, data.requires_approval)
    db.commit()
    return result


@router.delete("/{request_id}", status_code=204)
def delete_request(request_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    ProcurementRequestService.delete_request(db, actor, request_id)
    db.commit()
