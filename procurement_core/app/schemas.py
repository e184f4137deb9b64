from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from .models import LineItemStatus, Priority, RequestStatus, ReturnStatus, UserRole


# =============================================================================
# CALLER IDENTITY
# =============================================================================

class Actor(BaseModel):
    """The authenticated caller, passed explicitly into every operation."""
    id: int
    username: str
    role: UserRole
    factory_ids: FrozenSet[int] = frozenset()

    class Config:
        frozen = True

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(
            id=user.id,
            username=user.username,
            role=user.role,
            factory_ids=frozenset(f.id for f in user.factories),
        )


# =============================================================================
# INPUT PAYLOADS
# =============================================================================

class LineItemCreate(BaseModel):
    material_id: int
    requested_quantity: Decimal


class RequestCreate(BaseModel):
    factory_id: int
    priority: Priority = Priority.MEDIUM
    expected_delivery_date: Optional[date] = None
    justification: Optional[str] = None
    line_items: List[LineItemCreate] = []


class RequestUpdate(BaseModel):
    """Partial update; only fields explicitly sent are considered."""
    priority: Optional[Priority] = None
    expected_delivery_date: Optional[date] = None
    justification: Optional[str] = None
    requires_approval: Optional[bool] = None
    assigned_to_id: Optional[int] = None
    status: Optional[RequestStatus] = None
    line_items: Optional[List[LineItemCreate]] = None


class StatusUpdate(BaseModel):
    status: RequestStatus


class AssignmentUpdate(BaseModel):
    user_id: int


class ApprovalFlagUpdate(BaseModel):
    requires_approval: bool


class RequestFilter(BaseModel):
    statuses: Optional[List[RequestStatus]] = None
    priorities: Optional[List[Priority]] = None
    factory_ids: Optional[List[int]] = None
    assigned_to_id: Optional[int] = None
    requires_approval: Optional[bool] = None
    request_number: Optional[str] = None
    limit: int = Field(50, gt=0, le=200)
    offset: int = Field(0, ge=0)


class VendorAssignment(BaseModel):
    vendor_id: int
    price: Decimal


class LineItemStatusUpdate(BaseModel):
    status: LineItemStatus


class ShortCloseRequest(BaseModel):
    reason: Optional[str] = None


class ReceiveRequest(BaseModel):
    actual_quantity: Decimal


class ReturnCreate(BaseModel):
    line_item_id: int
    return_quantity: Decimal
    return_reason: Optional[str] = None


# =============================================================================
# OUTPUT SCHEMAS
# =============================================================================

class FactoryRef(BaseModel):
    id: int
    name: str
    factory_code: str

    class Config:
        from_attributes = True


class UserRef(BaseModel):
    id: int
    username: str
    full_name: str
    role: UserRole

    class Config:
        from_attributes = True


class MaterialRef(BaseModel):
    id: int
    name: str
    unit: Optional[str] = None

    class Config:
        from_attributes = True


class VendorRef(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class LineItemOut(BaseModel):
    id: int
    request_id: int
    material_id: int
    material: Optional[MaterialRef] = None
    requested_quantity: Decimal
    assigned_vendor_id: Optional[int] = None
    assigned_vendor: Optional[VendorRef] = None
    assigned_price: Optional[Decimal] = None
    actual_quantity: Optional[Decimal] = None
    status: LineItemStatus
    is_short_closed: bool = False
    short_close_reason: Optional[str] = None
    total_returned_quantity: Decimal = Decimal("0")
    has_returns: bool = False
    max_returnable_quantity: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReturnRequestOut(BaseModel):
    id: int
    line_item_id: int
    line_item: Optional[LineItemOut] = None
    return_quantity: Decimal
    return_reason: str
    return_status: ReturnStatus
    requested_by_id: int
    approved_by_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RequestOut(BaseModel):
    id: int
    request_number: str
    factory_id: int
    factory: Optional[FactoryRef] = None
    status: RequestStatus
    priority: Priority
    expected_delivery_date: Optional[date] = None
    justification: Optional[str] = None
    created_by_id: int
    assigned_to_id: Optional[int] = None
    assigned_to: Optional[UserRef] = None
    requires_approval: bool = False
    approved_by_id: Optional[int] = None
    approved_date: Optional[datetime] = None
    is_short_closed: bool = False
    short_close_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    line_items: List[LineItemOut] = []

    class Config:
        from_attributes = True


class ReturnSummary(BaseModel):
    request_id: int
    total_returns: int
    pending_returns: int
    approved_returns: int
    total_returned_quantity: Decimal


class DashboardSummary(BaseModel):
    role: UserRole
    counts: Dict[str, int]


class SoftFailure(BaseModel):
    """A best-effort side effect that failed without failing the operation."""
    effect: str
    message: str


class OperationResult(BaseModel):
    data: Any
    soft_failures: List[SoftFailure] = []

    @property
    def ok(self) -> bool:
        return not self.soft_failures


class PriceHistoryOut(BaseModel):
    id: int
    material_id: int
    vendor_id: int
    line_item_id: Optional[int] = None
    price: Decimal
    recorded_by_id: Optional[int] = None
    recorded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VendorHistoryOut(BaseModel):
    id: int
    material_id: int
    vendor_id: int
    factory_id: int
    last_price: Optional[Decimal] = None
    last_ordered_date: Optional[datetime] = None
    order_count: int

    class Config:
        from_attributes = True


class PurchaseHistoryOut(BaseModel):
    id: int
    material_id: int
    vendor_id: int
    factory_id: int
    request_id: Optional[int] = None
    request_number: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    total_amount: Decimal
    ordered_by_id: Optional[int] = None
    purchased_at: Optional[datetime] = None

    class Config:
        from_attributes = True
