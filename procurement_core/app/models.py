"""
Procurement Data Models
=======================
Tables for the procurement request lifecycle:
- Factories, users and their factory assignments
- Materials and vendors (read-only collaborators of the core)
- Procurement requests, line items and return requests
- Price / vendor / purchase history written as side effects
- Number sequences for request numbers
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text, Boolean,
    Numeric, Enum as SQLEnum, Index, Table, UniqueConstraint
)
from sqlalchemy.orm import relationship
from .db import Base


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    ADMIN = "ADMIN"
    FACTORY_USER = "FACTORY_USER"
    PURCHASE_TEAM = "PURCHASE_TEAM"
    MANAGEMENT = "MANAGEMENT"


class RequestStatus(str, Enum):
    """Request lifecycle, in forward order"""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    ORDERED = "ORDERED"
    DISPATCHED = "DISPATCHED"
    RECEIVED = "RECEIVED"
    CLOSED = "CLOSED"


class LineItemStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    ORDERED = "ORDERED"
    DISPATCHED = "DISPATCHED"
    RECEIVED = "RECEIVED"
    SHORT_CLOSED = "SHORT_CLOSED"


class ReturnStatus(str, Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


# =============================================================================
# ORGANISATION
# =============================================================================

user_factories = Table(
    "user_factories",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("factory_id", Integer, ForeignKey("factories.id"), primary_key=True),
)


class Factory(Base):
    __tablename__ = "factories"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), unique=True, nullable=False)
    factory_code = Column(String(2), unique=True, nullable=False)  # used in request numbers
    address = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False)
    is_active = Column(Boolean, default=True)  # Account status
    created_at = Column(DateTime, default=datetime.utcnow)

    # Only meaningful for FACTORY_USER
    factories = relationship("Factory", secondary=user_factories, lazy="selectin")


class Material(Base):
    __tablename__ = "materials"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    unit = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Vendor(Base):
    __tablename__ = "vendors"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    contact_person = Column(String(100), nullable=True)
    email = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# PROCUREMENT
# =============================================================================

class ProcurementRequest(Base):
    __tablename__ = "procurement_requests"

    id = Column(Integer, primary_key=True, index=True)
    request_number = Column(String(50), unique=True, nullable=False, index=True)  # REQ-<code>-<year>-<seq>
    factory_id = Column(Integer, ForeignKey("factories.id"), nullable=False)
    status = Column(SQLEnum(RequestStatus), nullable=False, default=RequestStatus.DRAFT)
    priority = Column(SQLEnum(Priority), nullable=False, default=Priority.MEDIUM)
    expected_delivery_date = Column(Date, nullable=True)
    justification = Column(Text, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    requires_approval = Column(Boolean, default=False, nullable=False)
    approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_date = Column(DateTime, nullable=True)

    is_short_closed = Column(Boolean, default=False, nullable=False)
    short_close_reason = Column(Text, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)

    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    factory = relationship("Factory")
    created_by = relationship("User", foreign_keys=[created_by_id])
    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    approved_by = relationship("User", foreign_keys=[approved_by_id])
    line_items = relationship(
        "ProcurementLineItem",
        back_populates="request",
        order_by="ProcurementLineItem.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index('ix_request_factory_status', 'factory_id', 'status'),
    )


class ProcurementLineItem(Base):
    __tablename__ = "procurement_line_items"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("procurement_requests.id"), nullable=False)
    material_id = Column(Integer, ForeignKey("materials.id"), nullable=False)
    requested_quantity = Column(Numeric(15, 3), nullable=False)

    # Vendor and price are always set together
    assigned_vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=True)
    assigned_price = Column(Numeric(15, 2), nullable=True)

    actual_quantity = Column(Numeric(15, 3), nullable=True)
    status = Column(SQLEnum(LineItemStatus), nullable=False, default=LineItemStatus.PENDING)
    is_short_closed = Column(Boolean, default=False, nullable=False)
    short_close_reason = Column(String(500), nullable=True)

    total_returned_quantity = Column(Numeric(15, 3), default=0, nullable=False)
    has_returns = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    request = relationship("ProcurementRequest", back_populates="line_items")
    material = relationship("Material")
    assigned_vendor = relationship("Vendor")
    return_requests = relationship(
        "ReturnRequest",
        back_populates="line_item",
        order_by="ReturnRequest.id",
    )

    @property
    def approved_return_quantity(self) -> Decimal:
        return sum(
            (Decimal(r.return_quantity) for r in self.return_requests
             if r.return_status == ReturnStatus.APPROVED),
            Decimal("0"),
        )

    @property
    def max_returnable_quantity(self) -> Decimal:
        return Decimal(self.requested_quantity) - self.approved_return_quantity


class ReturnRequest(Base):
    __tablename__ = "return_requests"

    id = Column(Integer, primary_key=True, index=True)
    line_item_id = Column(Integer, ForeignKey("procurement_line_items.id"), nullable=False)
    return_quantity = Column(Numeric(15, 3), nullable=False)
    return_reason = Column(Text, nullable=False)
    return_status = Column(SQLEnum(ReturnStatus), nullable=False, default=ReturnStatus.REQUESTED)
    requested_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    line_item = relationship("ProcurementLineItem", back_populates="return_requests")
    requested_by = relationship("User", foreign_keys=[requested_by_id])
    approved_by = relationship("User", foreign_keys=[approved_by_id])


# =============================================================================
# HISTORY (append-only side effects of vendor assignment)
# =============================================================================

class MaterialPriceHistory(Base):
    __tablename__ = "material_price_history"
    id = Column(Integer, primary_key=True, index=True)
    material_id = Column(Integer, ForeignKey("materials.id"), nullable=False)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False)
    line_item_id = Column(Integer, ForeignKey("procurement_line_items.id"), nullable=True)
    price = Column(Numeric(15, 2), nullable=False)
    recorded_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    recorded_at = Column(DateTime, default=datetime.utcnow)


class MaterialVendorHistory(Base):
    """One row per material / vendor / factory, updated on every order."""
    __tablename__ = "material_vendor_history"
    id = Column(Integer, primary_key=True, index=True)
    material_id = Column(Integer, ForeignKey("materials.id"), nullable=False)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False)
    factory_id = Column(Integer, ForeignKey("factories.id"), nullable=False)
    last_price = Column(Numeric(15, 2), nullable=True)
    last_ordered_date = Column(DateTime, nullable=True)
    order_count = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint('material_id', 'vendor_id', 'factory_id', name='uq_material_vendor_factory'),
    )


class PurchaseHistory(Base):
    __tablename__ = "purchase_history"
    id = Column(Integer, primary_key=True, index=True)
    material_id = Column(Integer, ForeignKey("materials.id"), nullable=False)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False)
    factory_id = Column(Integer, ForeignKey("factories.id"), nullable=False)
    request_id = Column(Integer, ForeignKey("procurement_requests.id"), nullable=True)
    request_number = Column(String(50), nullable=True)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    total_amount = Column(Numeric(15, 2), nullable=False)
    ordered_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    purchased_at = Column(DateTime, default=datetime.utcnow)


class NumberSequence(Base):
    """
    Request-number counters, one row per factory and year.
    Locked with SELECT FOR UPDATE when incremented.
    """
    __tablename__ = "number_sequences"

    id = Column(Integer, primary_key=True, index=True)
    sequence_name = Column(String(50), nullable=False)  # e.g. "request:<factory_code>"
    year = Column(Integer, nullable=False)
    current_number = Column(Integer, default=0, nullable=False)
    padding = Column(Integer, default=3)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('sequence_name', 'year', name='uq_sequence_year'),
    )
