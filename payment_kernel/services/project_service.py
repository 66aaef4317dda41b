"""
ProjectService -- project creation and capacity updates.

Capacity updates are all-or-nothing: every changed category is validated
under the project row lock before any column is written.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from payment_kernel.db.types import round_money, to_money
from payment_kernel.exceptions import ValidationError
from payment_kernel.logging_config import get_logger
from payment_kernel.models import CAPACITY_COLUMNS, Project
from payment_kernel.services.base import BaseService
from payment_kernel.services.capacity_validator import (
    CapacityValidator,
    validate_capacity_value,
)
from payment_kernel.services.parents import lock_project

logger = get_logger("services.project")


class ProjectService(BaseService):

    def __init__(self, session, config=None, validator: CapacityValidator | None = None):
        super().__init__(session, config)
        self.validator = validator or CapacityValidator(session, self.config)

    def create_project(
        self,
        nom: str,
        actor_id: UUID,
        localisation: str | None = None,
        societe: str | None = None,
        surface_totale: Decimal | None = None,
        nombre_lots: int = 0,
        nombre_appartements: int = 0,
        nombre_garages: int = 0,
        description: str | None = None,
    ) -> Project:
        if not nom or not nom.strip():
            raise ValidationError("Project name cannot be empty")
        capacities = {
            "lot": nombre_lots,
            "appartement": nombre_appartements,
            "garage": nombre_garages,
        }
        for category, value in capacities.items():
            validate_capacity_value(category, value)

        project = Project(
            nom=nom.strip(),
            localisation=localisation,
            societe=societe,
            surface_totale=(
                None
                if surface_totale is None
                else round_money(to_money(surface_totale, "surface_totale"))
            ),
            nombre_lots=nombre_lots,
            nombre_appartements=nombre_appartements,
            nombre_garages=nombre_garages,
            description=description,
            created_by_id=actor_id,
        )
        self.session.add(project)
        self.session.flush()

        logger.info(
            "project_created",
            extra={"project_id": str(project.id), "nom": project.nom, **capacities},
        )
        return project

    def update_project_capacity(
        self,
        project_id: UUID,
        actor_id: UUID,
        nombre_appartements: int | None = None,
        nombre_garages: int | None = None,
        nombre_lots: int | None = None,
    ) -> Project:
        """Change one or more capacity columns, each checked against active sales."""
        requested = {
            category: value
            for category, value in (
                ("appartement", nombre_appartements),
                ("garage", nombre_garages),
                ("lot", nombre_lots),
            )
            if value is not None
        }
        project = lock_project(self.session, project_id)

        for category, value in requested.items():
            self.validator.validate_capacity_change(project.id, category, value, project=project)

        changes = {}
        for category, value in requested.items():
            column = CAPACITY_COLUMNS[category]
            if getattr(project, column) != value:
                changes[column] = {"from": getattr(project, column), "to": value}
                setattr(project, column, value)
        if changes:
            project.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "project_capacity_updated",
            extra={"project_id": str(project.id), "changes": changes},
        )
        return project
