"""
Line Items and Returns API Router
=================================
- Vendor assignment, status updates, short close and receipt
- Return request creation, approval and listing
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..deps import get_db, get_current_actor
from ..models import ReturnStatus
from ..schemas import (
    Actor, LineItemOut, LineItemStatusUpdate, OperationResult, ReceiveRequest, ReturnCreate,
    ReturnRequestOut, ShortCloseRequest, VendorAssignment
)
from ..services import LineItemWorkflow, ReturnRequestService

router = APIRouter(prefix="/api", tags=["Line Items"])


# =============================================================================
# LINE ITEMS
# =============================================================================

@router.get("/line-items/{line_item_id}", response_model=LineItemOut)
def get_line_item(line_item_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return LineItemWorkflow.get(db, actor, line_item_id)


@router.post("/line-items/{line_item_id}/vendor", response_model=OperationResult)
def assign_vendor(
    line_item_id: int,
    data: VendorAssignment,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = LineItemWorkflow.assign_vendor_and_price(db, actor, line_item_id, data.vendor_id, data.price)
    db.commit()
    return result


@router.post("/line-items/{line_item_id}/status", response_model=OperationResult)
def update_line_item_status(
    line_item_id: int,
    data: LineItemStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = LineItemWorkflow.update_line_item_status(db, actor, line_item_id, data.status)
    db.commit()
    return result


@router.post("/line-items/{line_item_id}/short-close", response_model=OperationResult)
def short_close(
    line_item_id: int,
    data: ShortCloseRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = LineItemWorkflow.short_close_line_item(db, actor, line_item_id, data.reason)
    db.commit()
    return result


@router.post("/line-items/{line_item_id}/receive", response_model=OperationResult)
def receive(
    line_item_id: int,
    data: ReceiveRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = LineItemWorkflow.receive_line_item(db, actor, line_item_id, data.actual_quantity)
    db.commit()
    return result


@router.get("/line-items/{line_item_id}/returns", response_model=List[ReturnRequestOut])
def list_line_item_returns(line_item_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ReturnRequestService.list_for_line_item(db, actor, line_item_id)


# =============================================================================
# RETURNS
# =============================================================================

@router.get("/returns", response_model=List[ReturnRequestOut])
def list_returns(
    status: Optional[ReturnStatus] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ReturnRequestService.list_all(db, actor, status)


@router.get("/returns/pending", response_model=List[ReturnRequestOut])
def list_pending_returns(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ReturnRequestService.list_pending(db, actor)


@router.get("/returns/{return_id}", response_model=ReturnRequestOut)
def get_return(return_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ReturnRequestService.get(db, actor, return_id)


@router.post("/returns", response_model=OperationResult, status_code=201)
def create_return(data: ReturnCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    result = ReturnRequestService.create_return_request(
        db, actor, data.line_item_id, data.return_quantity, data.return_reason
    )
    db.commit()
    return result


@router.post("/returns/{return_id}/approve", response_model=OperationResult)
def approve_return(return_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    result = ReturnRequestService.approve_return_request(db, actor, return_id)
    db.commit()
    return result
