"""
Factory Access Control
======================
Factory-scoped data isolation and vendor visibility:
- FACTORY_USER sees only its assigned factories (none assigned => nothing)
- Every other role sees every factory
- Single-entity paths deny with ForbiddenError, list paths narrow silently
"""

import logging
from typing import FrozenSet, Optional

from sqlalchemy import false

from ..models import ProcurementRequest, UserRole
from ..schemas import Actor
from .errors import ForbiddenError

logger = logging.getLogger(__name__)


PURCHASE_TEAM_OR_ABOVE = frozenset({UserRole.PURCHASE_TEAM, UserRole.MANAGEMENT, UserRole.ADMIN})
APPROVER_ROLES = frozenset({UserRole.MANAGEMENT, UserRole.ADMIN})


def is_factory_user(actor: Actor) -> bool:
    return actor.role == UserRole.FACTORY_USER


def is_purchase_team_or_above(actor: Actor) -> bool:
    return actor.role in PURCHASE_TEAM_OR_ABOVE


def can_approve(actor: Actor) -> bool:
    return actor.role in APPROVER_ROLES


class AccessControlPolicy:
    """Answers 'may this actor touch this factory?' for every request path."""

    @staticmethod
    def has_factory_access(actor: Actor, factory_id: Optional[int]) -> bool:
        if factory_id is None:
            return False
        if actor.role != UserRole.FACTORY_USER:
            return True
        return factory_id in actor.factory_ids

    @staticmethod
    def validate_factory_access(actor: Actor, factory_id: Optional[int], operation: str = "access") -> None:
        """Raise ForbiddenError unless the actor may act on the factory."""
        if not AccessControlPolicy.has_factory_access(actor, factory_id):
            logger.warning(
                "Factory access denied: user=%s role=%s operation=%s factory=%s",
                actor.username, actor.role.value, operation, factory_id,
            )
            raise ForbiddenError(f"Access denied: you cannot {operation} for this factory")

    @staticmethod
    def accessible_factory_ids(actor: Actor) -> Optional[FrozenSet[int]]:
        """None means unrestricted; otherwise the (possibly empty) allowed set."""
        if actor.role != UserRole.FACTORY_USER:
            return None
        return frozenset(actor.factory_ids)

    @staticmethod
    def scope_requests(query, actor: Actor):
        """Narrow a ProcurementRequest query to the actor's factories."""
        allowed = AccessControlPolicy.accessible_factory_ids(actor)
        if allowed is None:
            return query
        if not allowed:
            return query.filter(false())
        return query.filter(ProcurementRequest.factory_id.in_(allowed))

    @staticmethod
    def can_see_vendor_information(actor: Actor) -> bool:
        return actor.role != UserRole.FACTORY_USER
