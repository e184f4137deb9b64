"""
Tests for return requests and their effect on closing a request.
"""

from decimal import Decimal

import pytest

from procurement_core.app import models
from procurement_core.app.models import LineItemStatus, RequestStatus, ReturnStatus
from procurement_core.app.services import (
    ForbiddenError, LineItemWorkflow, ProcurementRequestService, ReturnRequestService, ValidationError
)


@pytest.fixture
def received_request(db, world, dispatched_item):
    """A single-item request that has been fully received (10 of 10)."""
    request, item = dispatched_item({world.steel.id: Decimal("10")})
    LineItemWorkflow.receive_line_item(db, world.actors.factory, item.id, Decimal("10"))
    return request, item


class TestCreateReturn:

    def test_create_return(self, db, world, received_request):
        request, item = received_request

        result = ReturnRequestService.create_return_request(
            db, world.actors.factory, item.id, Decimal("3"), "Damaged in transit"
        )

        assert result.data.return_status == ReturnStatus.REQUESTED
        assert result.data.return_quantity == Decimal("3")
        assert db.get(models.ProcurementLineItem, item.id).has_returns is True

    def test_second_return_rejected(self, db, world, received_request):
        request, item = received_request
        ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("1"), "Wrong grade")

        with pytest.raises(ValidationError, match="already exists"):
            ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("1"), "More")

    def test_quantity_above_returnable_rejected(self, db, world, received_request):
        request, item = received_request
        with pytest.raises(ValidationError, match="exceeds"):
            ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("10.5"), "All of it")

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-2")])
    def test_non_positive_quantity_rejected(self, db, world, received_request, quantity):
        request, item = received_request
        with pytest.raises(ValidationError):
            ReturnRequestService.create_return_request(db, world.actors.factory, item.id, quantity, "Broken")

    @pytest.mark.parametrize("reason", [None, "  ", "r" * 1001])
    def test_reason_validated(self, db, world, received_request, reason):
        request, item = received_request
        with pytest.raises(ValidationError):
            ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("1"), reason)

    def test_only_for_received_items(self, db, world, dispatched_item):
        request, item = dispatched_item()
        with pytest.raises(ValidationError, match="received"):
            ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("1"), "Early")

    def test_factory_scope_and_role(self, db, world, received_request):
        request, item = received_request
        with pytest.raises(ForbiddenError):
            ReturnRequestService.create_return_request(db, world.actors.other_factory, item.id, Decimal("1"), "x")
        with pytest.raises(ForbiddenError):
            ReturnRequestService.create_return_request(db, world.actors.purchase, item.id, Decimal("1"), "x")


class TestApproveReturn:

    def test_approve_updates_totals(self, db, world, received_request):
        request, item = received_request
        created = ReturnRequestService.create_return_request(
            db, world.actors.factory, item.id, Decimal("4"), "Rusted"
        ).data

        approved = ReturnRequestService.approve_return_request(db, world.actors.purchase, created.id).data

        assert approved.return_status == ReturnStatus.APPROVED
        assert approved.approved_by_id == world.users.purchase.id
        row = db.get(models.ProcurementLineItem, item.id)
        assert row.total_returned_quantity == Decimal("4")
        assert row.max_returnable_quantity == Decimal("6")

    def test_cannot_approve_twice(self, db, world, received_request):
        request, item = received_request
        created = ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("1"), "x").data
        ReturnRequestService.approve_return_request(db, world.actors.purchase, created.id)

        with pytest.raises(ValidationError, match="Only requested"):
            ReturnRequestService.approve_return_request(db, world.actors.management, created.id)

    def test_factory_user_cannot_approve(self, db, world, received_request):
        request, item = received_request
        created = ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("1"), "x").data
        with pytest.raises(ForbiddenError):
            ReturnRequestService.approve_return_request(db, world.actors.factory, created.id)

    def test_revalidates_returnable_quantity(self, db, world, received_request):
        request, item = received_request
        created = ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("8"), "x").data

        # Simulate another approval consuming most of the quantity in the meantime
        db.add(models.ReturnRequest(
            line_item_id=item.id,
            return_quantity=Decimal("5"),
            return_reason="concurrent",
            return_status=ReturnStatus.APPROVED,
            requested_by_id=world.users.factory.id,
        ))
        db.flush()
        db.expire_all()

        with pytest.raises(ValidationError, match="exceeds"):
            ReturnRequestService.approve_return_request(db, world.actors.purchase, created.id)


class TestCloseWithReturns:

    def test_close_blocked_until_return_approved(self, db, world, received_request):
        request, item = received_request
        assert ProcurementRequestService.get_request(db, world.actors.purchase, request.id).status == RequestStatus.RECEIVED
        created = ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("2"), "x").data

        with pytest.raises(ValidationError, match="pending approval"):
            ProcurementRequestService.update_status(db, world.actors.purchase, request.id, RequestStatus.CLOSED)

        ReturnRequestService.approve_return_request(db, world.actors.purchase, created.id)
        closed = ProcurementRequestService.update_status(db, world.actors.purchase, request.id, RequestStatus.CLOSED)

        assert closed.status == RequestStatus.CLOSED


class TestReturnReads:

    def test_summary(self, db, world, received_request):
        request, item = received_request
        created = ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("2"), "x").data

        summary = ReturnRequestService.summary_for_request(db, world.actors.factory, request.id)
        assert (summary.total_returns, summary.pending_returns, summary.approved_returns) == (1, 1, 0)
        assert summary.total_returned_quantity == Decimal("0")

        ReturnRequestService.approve_return_request(db, world.actors.purchase, created.id)
        summary = ReturnRequestService.summary_for_request(db, world.actors.factory, request.id)
        assert (summary.pending_returns, summary.approved_returns) == (0, 1)
        assert summary.total_returned_quantity == Decimal("2")

    def test_lists_are_factory_scoped(self, db, world, received_request):
        request, item = received_request
        ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("2"), "x")

        assert len(ReturnRequestService.list_pending(db, world.actors.purchase)) == 1
        assert len(ReturnRequestService.list_all(db, world.actors.factory)) == 1
        assert ReturnRequestService.list_all(db, world.actors.other_factory) == []
        assert ReturnRequestService.list_all(db, world.actors.unassigned) == []

    def test_nested_line_item_hides_vendor_from_factory_users(self, db, world, received_request):
        request, item = received_request
        created = ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("2"), "x").data

        assert created.line_item is not None
        assert created.line_item.assigned_vendor is None
        assert created.line_item.assigned_vendor_id is None
        assert created.line_item.assigned_price is None

        for ret in ReturnRequestService.list_all(db, world.actors.factory):
            assert ret.line_item.assigned_price is None

        seen_by_buyer = ReturnRequestService.get(db, world.actors.purchase, created.id)
        assert seen_by_buyer.line_item.assigned_price == Decimal("100")
        assert seen_by_buyer.line_item.assigned_vendor.name == "Acme Supplies"

    def test_line_item_status_unchanged_by_return(self, db, world, received_request):
        request, item = received_request
        ReturnRequestService.create_return_request(db, world.actors.factory, item.id, Decimal("2"), "x")
        assert db.get(models.ProcurementLineItem, item.id).status == LineItemStatus.RECEIVED
