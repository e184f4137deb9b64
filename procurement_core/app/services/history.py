"""
Purchase History Side Effects
=============================
Records written when a vendor and price are assigned to a line item:
- Material price history (one row per assignment)
- Material / vendor / factory history (upsert, order counter)
- Purchase history (quantity, unit price, total)

Each record is best-effort. A failure is logged and returned as a
SoftFailure; it never aborts the vendor assignment.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models import (
    MaterialPriceHistory, MaterialVendorHistory, ProcurementLineItem, PurchaseHistory, Vendor
)
from ..schemas import Actor, SoftFailure
from .access_control import AccessControlPolicy
from .errors import ForbiddenError

logger = logging.getLogger(__name__)


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _record_price(db: Session, actor: Actor, line_item: ProcurementLineItem, vendor: Vendor, price: Decimal) -> None:
    db.add(MaterialPriceHistory(
        material_id=line_item.material_id,
        vendor_id=vendor.id,
        line_item_id=line_item.id,
        price=_money(price),
        recorded_by_id=actor.id,
    ))


def _record_vendor_material(db: Session, line_item: ProcurementLineItem, vendor: Vendor, price: Decimal) -> None:
    factory_id = line_item.request.factory_id
    history = db.query(MaterialVendorHistory).filter(
        MaterialVendorHistory.material_id == line_item.material_id,
        MaterialVendorHistory.vendor_id == vendor.id,
        MaterialVendorHistory.factory_id == factory_id,
    ).with_for_update().first()

    if history is None:
        history = MaterialVendorHistory(
            material_id=line_item.material_id,
            vendor_id=vendor.id,
            factory_id=factory_id,
            order_count=0,
        )
        db.add(history)

    history.last_price = _money(price)
    history.last_ordered_date = datetime.utcnow()
    history.order_count = (history.order_count or 0) + 1


def _record_purchase(db: Session, actor: Actor, line_item: ProcurementLineItem, vendor: Vendor, price: Decimal) -> None:
    quantity = Decimal(line_item.requested_quantity)
    db.add(PurchaseHistory(
        material_id=line_item.material_id,
        vendor_id=vendor.id,
        factory_id=line_item.request.factory_id,
        request_id=line_item.request_id,
        request_number=line_item.request.request_number,
        quantity=quantity,
        unit_price=_money(price),
        total_amount=_money(Decimal(price) * quantity),
        ordered_by_id=actor.id,
    ))


class HistoryService:
    """Writes and reads the vendor-assignment history records"""

    @staticmethod
    def record_vendor_assignment(
        db: Session,
        actor: Actor,
        line_item: ProcurementLineItem,
        vendor: Vendor,
        price: Decimal,
    ) -> List[SoftFailure]:
        effects = (
            ("price_history", lambda: _record_price(db, actor, line_item, vendor, price)),
            ("material_vendor_history", lambda: _record_vendor_material(db, line_item, vendor, price)),
            ("purchase_history", lambda: _record_purchase(db, actor, line_item, vendor, price)),
        )
        failures = []
        for name, effect in effects:
            try:
                with db.begin_nested():
                    effect()
            except Exception as exc:
                logger.exception("Failed to write %s for line item %s", name, line_item.id)
                failures.append(SoftFailure(effect=name, message=str(exc)))
        return failures

    @staticmethod
    def price_history(db: Session, actor: Actor, material_id: int, limit: int = 50) -> List[MaterialPriceHistory]:
        if not AccessControlPolicy.can_see_vendor_information(actor):
            raise ForbiddenError("Price history is not available to factory users")
        return db.query(MaterialPriceHistory).filter(
            MaterialPriceHistory.material_id == material_id
        ).order_by(MaterialPriceHistory.recorded_at.desc(), MaterialPriceHistory.id.desc()).limit(limit).all()

    @staticmethod
    def vendor_history(
        db: Session,
        actor: Actor,
        material_id: int,
        factory_id: Optional[int] = None,
    ) -> List[MaterialVendorHistory]:
        """Vendors that supplied a material, most frequently used first."""
        if not AccessControlPolicy.can_see_vendor_information(actor):
            raise ForbiddenError("Vendor history is not available to factory users")
        query = db.query(MaterialVendorHistory).filter(MaterialVendorHistory.material_id == material_id)
        if factory_id is not None:
            query = query.filter(MaterialVendorHistory.factory_id == factory_id)
        return query.order_by(
            MaterialVendorHistory.order_count.desc(), MaterialVendorHistory.last_ordered_date.desc()
        ).all()

    @staticmethod
    def purchase_history(
        db: Session,
        actor: Actor,
        material_id: Optional[int] = None,
        vendor_id: Optional[int] = None,
        limit: int = 50,
    ) -> List[PurchaseHistory]:
        if not AccessControlPolicy.can_see_vendor_information(actor):
            raise ForbiddenError("Purchase history is not available to factory users")
        query = db.query(PurchaseHistory)
        if material_id is not None:
            query = query.filter(PurchaseHistory.material_id == material_id)
        if vendor_id is not None:
            query = query.filter(PurchaseHistory.vendor_id == vendor_id)
        return query.order_by(PurchaseHistory.purchased_at.desc(), PurchaseHistory.id.desc()).limit(limit).all()
