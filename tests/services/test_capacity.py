"""
Tests for project capacity vs. active sales.

A category never holds more active sales than its declared capacity, and
its capacity cannot be lowered below the active sales it already has.
"""

from uuid import uuid4

import pytest

from payment_kernel.exceptions import (
    CapacityBelowSoldError,
    CapacityExceededError,
    InvalidCapacityError,
    ProjectNotFoundError,
    ValidationError,
)


class TestCreateProject:

    def test_capacities_stored(self, project):
        assert project.nombre_appartements == 20
        assert project.nombre_garages == 10
        assert project.nombre_lots == 5
        assert project.nom == "Résidence Atlas"

    def test_defaults_to_zero(self, commands, test_actor_id):
        info = commands.create_project("Les Jardins", test_actor_id)
        assert (info.nombre_appartements, info.nombre_garages, info.nombre_lots) == (0, 0, 0)

    def test_negative_capacity_rejected(self, commands, test_actor_id, statements):
        with pytest.raises(InvalidCapacityError):
            commands.create_project("Les Jardins", test_actor_id, nombre_garages=-1)
        assert statements.list_projects() == []

    def test_empty_name_rejected(self, commands, test_actor_id):
        with pytest.raises(ValidationError):
            commands.create_project("   ", test_actor_id)


class TestSaleCapacity:

    def test_full_category_rejected(self, make_sale):
        for _ in range(5):
            make_sale(type_propriete="lot")

        with pytest.raises(CapacityExceededError) as exc_info:
            make_sale(type_propriete="lot")

        assert exc_info.value.category == "lot"
        assert exc_info.value.capacity == 5
        assert exc_info.value.active_sold == 5

    def test_categories_are_independent(self, make_sale):
        for _ in range(5):
            make_sale(type_propriete="lot")
        sale = make_sale(type_propriete="garage")
        assert sale.type_propriete == "garage"

    def test_zero_capacity_category(self, commands, make_sale, test_actor_id):
        empty = commands.create_project("Sans garage", test_actor_id, nombre_appartements=3)
        with pytest.raises(CapacityExceededError):
            make_sale(type_propriete="garage", project_id=empty.id)

    def test_cancelled_sale_frees_slot(self, commands, make_sale, test_actor_id):
        sales = [make_sale(type_propriete="lot") for _ in range(5)]
        commands.cancel_sale(sales[0].id, test_actor_id)

        replacement = make_sale(type_propriete="lot")
        assert replacement.statut == "en_cours"


class TestCapacityChange:

    def test_reduction_below_sold_rejected(self, commands, project, make_sale, statements, test_actor_id):
        for _ in range(3):
            make_sale(type_propriete="garage")

        with pytest.raises(CapacityBelowSoldError) as exc_info:
            commands.update_project_capacity(project.id, test_actor_id, nombre_garages=2)

        assert exc_info.value.requested == 2
        assert exc_info.value.active_sold == 3
        assert statements.get_project(project.id).nombre_garages == 10

    def test_reduction_to_sold_count_accepted(self, commands, project, make_sale, test_actor_id):
        for _ in range(3):
            make_sale(type_propriete="garage")

        info = commands.update_project_capacity(project.id, test_actor_id, nombre_garages=3)
        assert info.nombre_garages == 3

    def test_increase_always_accepted(self, commands, project, test_actor_id):
        info = commands.update_project_capacity(project.id, test_actor_id, nombre_appartements=25)
        assert info.nombre_appartements == 25

    def test_cancelled_sales_not_counted(self, commands, project, make_sale, test_actor_id):
        sales = [make_sale(type_propriete="garage") for _ in range(3)]
        commands.cancel_sale(sales[0].id, test_actor_id)

        info = commands.update_project_capacity(project.id, test_actor_id, nombre_garages=2)
        assert info.nombre_garages == 2

    def test_all_or_nothing(self, commands, project, make_sale, statements, test_actor_id):
        make_sale(type_propriete="lot")

        with pytest.raises(CapacityBelowSoldError):
            commands.update_project_capacity(
                project.id, test_actor_id, nombre_appartements=30, nombre_lots=0
            )

        info = statements.get_project(project.id)
        assert info.nombre_appartements == 20
        assert info.nombre_lots == 5

    def test_negative_capacity_rejected(self, commands, project, test_actor_id):
        with pytest.raises(InvalidCapacityError):
            commands.update_project_capacity(project.id, test_actor_id, nombre_lots=-2)

    def test_unknown_project(self, commands, test_actor_id):
        with pytest.raises(ProjectNotFoundError):
            commands.update_project_capacity(uuid4(), test_actor_id, nombre_lots=1)


class TestValidateCapacityChange:

    def test_dry_run_writes_nothing(self, commands, project, statements, test_actor_id):
        commands.validate_capacity_change(project.id, "appartement", 0, test_actor_id)
        assert statements.get_project(project.id).nombre_appartements == 20

    def test_dry_run_rejects(self, commands, project, make_sale, test_actor_id):
        make_sale()
        make_sale()
        with pytest.raises(CapacityBelowSoldError):
            commands.validate_capacity_change(project.id, "appartement", 1, test_actor_id)

    @pytest.mark.parametrize("category", ["villa", ""])
    def test_unknown_category(self, commands, project, test_actor_id, category):
        with pytest.raises(InvalidCapacityError):
            commands.validate_capacity_change(project.id, category, 3, test_actor_id)

    @pytest.mark.parametrize("value", [-1, 2.5, True, "3"])
    def test_invalid_value(self, commands, project, test_actor_id, value):
        with pytest.raises(InvalidCapacityError):
            commands.validate_capacity_change(project.id, "lot", value, test_actor_id)
