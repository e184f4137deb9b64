"""
Tests for request status transitions and derived status.
"""

from itertools import product
from types import SimpleNamespace

import pytest

from procurement_core.app.models import LineItemStatus, RequestStatus, ReturnStatus, UserRole
from procurement_core.app.schemas import Actor
from procurement_core.app.services import (
    ForbiddenError, InvalidTransitionError, StatusTransitionEngine, ValidationError, derive_request_status
)
from procurement_core.app.services.status_engine import FORWARD_TRANSITIONS


def _actor(role, actor_id=1, factories=(1,)):
    return Actor(id=actor_id, username=f"user{actor_id}", role=role, factory_ids=frozenset(factories))


def _request(status, created_by_id=1, factory_id=1, line_items=None):
    if line_items is None:
        line_items = [SimpleNamespace(status=LineItemStatus.RECEIVED, return_requests=[])]
    return SimpleNamespace(
        id=1,
        request_number="REQ-NP-2026-001",
        status=status,
        created_by_id=created_by_id,
        factory_id=factory_id,
        line_items=line_items,
    )


class TestDerivedStatus:

    @pytest.mark.parametrize("statuses,expected", [
        ([LineItemStatus.RECEIVED, LineItemStatus.SHORT_CLOSED], RequestStatus.RECEIVED),
        ([LineItemStatus.SHORT_CLOSED], RequestStatus.RECEIVED),
        ([LineItemStatus.RECEIVED, LineItemStatus.DISPATCHED, LineItemStatus.ORDERED], RequestStatus.DISPATCHED),
        ([LineItemStatus.ORDERED, LineItemStatus.PENDING], RequestStatus.ORDERED),
        ([LineItemStatus.RECEIVED, LineItemStatus.PENDING], RequestStatus.IN_PROGRESS),
        ([LineItemStatus.PENDING, LineItemStatus.IN_PROGRESS], RequestStatus.IN_PROGRESS),
    ])
    def test_aggregation_rules(self, statuses, expected):
        assert derive_request_status(statuses) == expected

    def test_no_line_items_has_no_derived_status(self):
        assert derive_request_status([]) is None

    def test_depends_only_on_the_multiset(self):
        for combo in product(list(LineItemStatus), repeat=3):
            first = derive_request_status(combo)
            assert derive_request_status(reversed(combo)) == first
            assert derive_request_status(list(combo)) == first


class TestTransitions:

    def test_only_single_forward_steps_are_legal(self):
        for current, target in product(list(RequestStatus), repeat=2):
            if FORWARD_TRANSITIONS.get(current) == target:
                StatusTransitionEngine.validate_transition(current, target)
            else:
                with pytest.raises(InvalidTransitionError):
                    StatusTransitionEngine.validate_transition(current, target)

    def test_no_role_can_skip_or_reverse(self):
        for role in UserRole:
            actor = _actor(role)
            for current, target in product(list(RequestStatus), repeat=2):
                if FORWARD_TRANSITIONS.get(current) == target:
                    continue
                with pytest.raises(InvalidTransitionError):
                    StatusTransitionEngine.validate_status_change(actor, _request(current), target)

    def test_invalid_transition_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            StatusTransitionEngine.validate_transition(RequestStatus.DRAFT, RequestStatus.CLOSED)

    def test_submit_only_by_creating_factory_user(self):
        draft = _request(RequestStatus.DRAFT, created_by_id=1)
        StatusTransitionEngine.validate_status_change(_actor(UserRole.FACTORY_USER, 1), draft, RequestStatus.SUBMITTED)

        with pytest.raises(ForbiddenError):
            StatusTransitionEngine.validate_status_change(
                _actor(UserRole.FACTORY_USER, 2), draft, RequestStatus.SUBMITTED
            )
        with pytest.raises(ForbiddenError):
            StatusTransitionEngine.validate_status_change(_actor(UserRole.ADMIN, 1), draft, RequestStatus.SUBMITTED)

    def test_submit_requires_line_items(self):
        empty = _request(RequestStatus.DRAFT, line_items=[])
        with pytest.raises(ValidationError, match="without line items"):
            StatusTransitionEngine.validate_status_change(_actor(UserRole.FACTORY_USER), empty, RequestStatus.SUBMITTED)

    @pytest.mark.parametrize("current,target", [
        (RequestStatus.SUBMITTED, RequestStatus.IN_PROGRESS),
        (RequestStatus.IN_PROGRESS, RequestStatus.ORDERED),
        (RequestStatus.ORDERED, RequestStatus.DISPATCHED),
    ])
    def test_purchase_side_targets(self, current, target):
        for role in (UserRole.PURCHASE_TEAM, UserRole.MANAGEMENT, UserRole.ADMIN):
            StatusTransitionEngine.validate_status_change(_actor(role), _request(current), target)
        with pytest.raises(ForbiddenError):
            StatusTransitionEngine.validate_status_change(_actor(UserRole.FACTORY_USER), _request(current), target)

    def test_received_requires_factory_scope(self):
        dispatched = _request(RequestStatus.DISPATCHED, factory_id=7)
        StatusTransitionEngine.validate_status_change(
            _actor(UserRole.FACTORY_USER, factories=(7,)), dispatched, RequestStatus.RECEIVED
        )
        with pytest.raises(ForbiddenError):
            StatusTransitionEngine.validate_status_change(
                _actor(UserRole.FACTORY_USER, factories=(8,)), dispatched, RequestStatus.RECEIVED
            )
        with pytest.raises(ForbiddenError):
            StatusTransitionEngine.validate_status_change(_actor(UserRole.PURCHASE_TEAM), dispatched, RequestStatus.RECEIVED)

    def test_close_blocked_by_pending_return(self):
        pending = SimpleNamespace(return_status=ReturnStatus.REQUESTED)
        received = _request(RequestStatus.RECEIVED, line_items=[
            SimpleNamespace(status=LineItemStatus.RECEIVED, return_requests=[pending]),
        ])
        with pytest.raises(ValidationError, match="pending approval"):
            StatusTransitionEngine.validate_status_change(_actor(UserRole.PURCHASE_TEAM), received, RequestStatus.CLOSED)

        pending.return_status = ReturnStatus.APPROVED
        StatusTransitionEngine.validate_status_change(_actor(UserRole.PURCHASE_TEAM), received, RequestStatus.CLOSED)


class TestNextValidStatuses:

    def test_reports_forward_step_for_allowed_actor(self):
        request = _request(RequestStatus.SUBMITTED)
        assert StatusTransitionEngine.next_valid_statuses(_actor(UserRole.PURCHASE_TEAM), request) == [
            RequestStatus.IN_PROGRESS
        ]

    def test_empty_when_gate_fails_or_terminal(self):
        assert StatusTransitionEngine.next_valid_statuses(
            _actor(UserRole.FACTORY_USER), _request(RequestStatus.SUBMITTED)
        ) == []
        assert StatusTransitionEngine.next_valid_statuses(
            _actor(UserRole.ADMIN), _request(RequestStatus.CLOSED)
        ) == []
