"""
Module: payment_kernel.models.project
Responsibility: ORM persistence for real-estate projects and their declared
    unit capacity per category.
Architecture position: Kernel > Models.  Imports db/ only.

Invariants enforced:
    - Capacity columns are never lowered below the number of active sales of
      the category.  Enforced by CapacityValidator under a FOR UPDATE lock on
      this row; ``version`` adds an optimistic check on top.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import TrackedBase

# Unit category -> capacity column
CAPACITY_COLUMNS: dict[str, str] = {
    "appartement": "nombre_appartements",
    "garage": "nombre_garages",
    "lot": "nombre_lots",
}


class Project(TrackedBase):
    """A building programme: apartments, garages and lots for sale."""

    __tablename__ = "projects"

    __table_args__ = (
        CheckConstraint("nombre_lots >= 0", name="ck_project_lots_non_negative"),
        CheckConstraint(
            "nombre_appartements >= 0", name="ck_project_apartments_non_negative"
        ),
        CheckConstraint("nombre_garages >= 0", name="ck_project_garages_non_negative"),
        Index("idx_project_nom", "nom"),
    )

    nom: Mapped[str] = mapped_column(String(255), nullable=False)

    localisation: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Developer company carrying the project
    societe: Mapped[str | None] = mapped_column(String(255), nullable=True)

    surface_totale: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Declared capacity per category
    nombre_lots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    nombre_appartements: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    nombre_garages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Project {self.nom}>"

    def capacity_for(self, category: str) -> int:
        """Declared capacity of one unit category."""
        return getattr(self, CAPACITY_COLUMNS[category])
