"""
CapacityValidator -- project capacity vs. active sales.

Responsibility:
    Guards the cross-entity invariant between a project and its sales: the
    declared capacity of a category (appartement, garage, lot) is never
    below the number of active (non-cancelled) sales of that category.

Architecture position:
    Kernel > Services.  Flush-free (read + raise).  Callers hold the FOR
    UPDATE lock on the project row, which is also the lock every sale
    creation takes, so the count and the write see the same snapshot.

Failure modes:
    - InvalidCapacityError: negative, non-integer or unknown category.
    - CapacityBelowSoldError: reduction below the active sale count.
    - CapacityExceededError: new sale in a full category.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from payment_kernel.domain.dtos import PropertyType, SaleStatus
from payment_kernel.exceptions import (
    CapacityBelowSoldError,
    CapacityExceededError,
    InvalidCapacityError,
)
from payment_kernel.logging_config import get_logger
from payment_kernel.models import Project, Sale
from payment_kernel.services.base import BaseService
from payment_kernel.services.parents import lock_project

logger = get_logger("services.capacity_validator")


def validate_category(category: str) -> PropertyType:
    try:
        return PropertyType(category)
    except ValueError:
        raise InvalidCapacityError(str(category), None) from None


def validate_capacity_value(category: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidCapacityError(category, value)
    return value


class CapacityValidator(BaseService):

    def active_sold_count(self, project_id: UUID, category: str) -> int:
        return self.session.execute(
            select(func.count(Sale.id)).where(
                Sale.project_id == project_id,
                Sale.type_propriete == category,
                Sale.statut != SaleStatus.ANNULE.value,
            )
        ).scalar_one()

    def validate_capacity_change(
        self,
        project_id: UUID,
        category: str,
        new_capacity: int,
        project: Project | None = None,
    ) -> None:
        """
        Check that ``category`` capacity may become ``new_capacity``.

        Increases (and no-ops) always pass.  ``project`` is the already
        locked row when the caller holds it; otherwise it is locked here.
        """
        category = validate_category(category).value
        new_capacity = validate_capacity_value(category, new_capacity)
        if project is None:
            project = lock_project(self.session, project_id)

        if new_capacity >= project.capacity_for(category):
            return

        sold = self.active_sold_count(project.id, category)
        if new_capacity < sold:
            logger.warning(
                "capacity_change_rejected",
                extra={
                    "project_id": str(project.id),
                    "category": category,
                    "requested": new_capacity,
                    "active_sold": sold,
                },
            )
            raise CapacityBelowSoldError(str(project.id), category, new_capacity, sold)

    def ensure_unit_available(self, project: Project, category: str) -> None:
        """Room left in ``category`` for one more sale. Project row is locked."""
        capacity = project.capacity_for(category)
        sold = self.active_sold_count(project.id, category)
        if sold >= capacity:
            logger.warning(
                "sale_capacity_exceeded",
                extra={
                    "project_id": str(project.id),
                    "category": category,
                    "capacity": capacity,
                    "active_sold": sold,
                },
            )
            raise CapacityExceededError(str(project.id), category, capacity, sold)
