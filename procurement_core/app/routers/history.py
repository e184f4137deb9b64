"""
Purchase History API Router
===========================
Read-only views over the history written by vendor assignment.
Not available to factory users.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..deps import get_db, require_role
from ..models import UserRole
from ..schemas import Actor, PriceHistoryOut, PurchaseHistoryOut, VendorHistoryOut
from ..services import HistoryService

router = APIRouter(prefix="/api/history", tags=["History"])

purchase_team = require_role(UserRole.PURCHASE_TEAM, UserRole.MANAGEMENT, UserRole.ADMIN)


@router.get("/materials/{material_id}/prices", response_model=List[PriceHistoryOut])
def material_prices(
    material_id: int,
    limit: int = Query(50, gt=0, le=200),
    db: Session = Depends(get_db),
    actor: Actor = Depends(purchase_team),
):
    return HistoryService.price_history(db, actor, material_id, limit)


@router.get("/materials/{material_id}/vendors", response_model=List[VendorHistoryOut])
def material_vendors(
    material_id: int,
    factory_id: Optional[int] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(purchase_team),
):
    return HistoryService.vendor_history(db, actor, material_id, factory_id)


@router.get("/purchases", response_model=List[PurchaseHistoryOut])
def purchases(
    material_id: Optional[int] = None,
    vendor_id: Optional[int] = None,
    limit: int = Query(50, gt=0, le=200),
    db: Session = Depends(get_db),
    actor: Actor = Depends(purchase_team),
):
    return HistoryService.purchase_history(db, actor, material_id, vendor_id, limit)
