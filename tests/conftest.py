"""
Shared fixtures: an in-memory database seeded with factories, users,
materials and vendors, plus helpers to drive a request through its lifecycle.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PROCUREMENT_SECRET_KEY", "test-secret-key-with-enough-length-000000")

from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from procurement_core.app.db import Base, enable_sqlite_savepoints
from procurement_core.app import models
from procurement_core.app.models import UserRole
from procurement_core.app.schemas import Actor, LineItemCreate, RequestCreate
from procurement_core.app.services import (
    LineItemWorkflow, ProcurementRequestService
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _user(db, username, role, factories=(), is_active=True):
    user = models.User(
        username=username,
        full_name=username.replace("_", " ").title(),
        email=f"{username}@example.com",
        role=role,
        is_active=is_active,
    )
    user.factories = list(factories)
    db.add(user)
    return user


@pytest.fixture
def world(db):
    """Two factories, one user per role, three materials and two vendors."""
    north = models.Factory(name="North Plant", factory_code="NP")
    south = models.Factory(name="South Plant", factory_code="SP")
    closed_plant = models.Factory(name="Old Plant", factory_code="OP", is_active=False)
    db.add_all([north, south, closed_plant])
    db.flush()

    users = SimpleNamespace(
        factory=_user(db, "north_user", UserRole.FACTORY_USER, [north, closed_plant]),
        other_factory=_user(db, "south_user", UserRole.FACTORY_USER, [south]),
        unassigned=_user(db, "floating_user", UserRole.FACTORY_USER),
        purchase=_user(db, "buyer", UserRole.PURCHASE_TEAM),
        purchase_inactive=_user(db, "former_buyer", UserRole.PURCHASE_TEAM, is_active=False),
        management=_user(db, "manager", UserRole.MANAGEMENT),
        admin=_user(db, "admin", UserRole.ADMIN),
    )

    steel = models.Material(name="Steel Rod", unit="kg")
    cement = models.Material(name="Cement", unit="bag")
    paint = models.Material(name="Paint", unit="l")
    retired = models.Material(name="Asbestos Sheet", unit="pcs", is_active=False)
    acme = models.Vendor(name="Acme Supplies")
    defunct = models.Vendor(name="Defunct Traders", is_active=False)
    db.add_all([steel, cement, paint, retired, acme, defunct])
    db.commit()

    actors = SimpleNamespace(**{
        name: Actor.from_user(user) for name, user in vars(users).items()
    })
    return SimpleNamespace(
        north=north,
        south=south,
        closed_plant=closed_plant,
        users=users,
        actors=actors,
        steel=steel,
        cement=cement,
        paint=paint,
        retired=retired,
        acme=acme,
        defunct=defunct,
    )


@pytest.fixture
def make_request(db, world):
    """Create a DRAFT request for the north factory with the given material quantities."""
    def _make(items=None, actor=None, factory=None, **fields):
        items = items or {world.steel.id: Decimal("10"), world.cement.id: Decimal("5")}
        payload = RequestCreate(
            factory_id=(factory or world.north).id,
            line_items=[LineItemCreate(material_id=m, requested_quantity=q) for m, q in items.items()],
            **fields,
        )
        return ProcurementRequestService.create_request(db, actor or world.actors.factory, payload)
    return _make


@pytest.fixture
def in_progress_request(db, world, make_request):
    """A request submitted by its creator and assigned to the buyer."""
    def _make(items=None):
        created = make_request(items)
        ProcurementRequestService.submit_request(db, world.actors.factory, created.id)
        return ProcurementRequestService.assign_to_user(
            db, world.actors.purchase, created.id, world.users.purchase.id
        )
    return _make


@pytest.fixture
def dispatched_item(db, world, in_progress_request):
    """Return (request, line item) where the first line item has been ordered and dispatched."""
    def _make(items=None):
        request = in_progress_request(items)
        item = request.line_items[0]
        LineItemWorkflow.assign_vendor_and_price(db, world.actors.purchase, item.id, world.acme.id, Decimal("100"))
        LineItemWorkflow.update_line_item_status(
            db, world.actors.purchase, item.id, models.LineItemStatus.DISPATCHED
        )
        return request, item
    return _make
