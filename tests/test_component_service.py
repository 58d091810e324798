"""Reusable price component catalog."""

from decimal import Decimal

import pytest

from common.exceptions import ComponentNotFoundError, DuplicateError, ValidationError
from modules.pricing.component_service import component_service


def test_seeding_is_idempotent(db):
    assert component_service.seed_system_components(db) == 1
    db.commit()
    assert component_service.seed_system_components(db) == 0

    metal = component_service.require(db, "metal_cost")
    assert metal.is_system_component
    assert metal.calculation_type == "METAL_COST"


@pytest.mark.parametrize("key", ["", "1st_fee", "making charge", "making-charge"])
def test_key_format(db, key):
    with pytest.raises(ValidationError):
        component_service.create(db, {"key": key, "name": "Making", "calculation_type": "FIXED"})


def test_duplicate_key(db, catalog):
    with pytest.raises(DuplicateError):
        component_service.create(db, {"key": "making", "name": "Making again", "calculation_type": "FIXED"})


def test_percentage_defaults_to_metal_cost_base(db):
    comp = component_service.create(db, {"key": "wastage", "name": "Wastage", "calculation_type": "PERCENTAGE"})

    assert comp.percentage_of == "metalCost"


def test_invalid_calculation_type(db):
    with pytest.raises(ValidationError):
        component_service.create(db, {"key": "bonus", "name": "Bonus", "calculation_type": "MULTIPLIER"})


def test_referenced_component_keeps_its_shape(db, make_node, make_config):
    make_config(make_node("Rings"))

    updated = component_service.update(db, "making", {"name": "Labour", "default_value": 300})
    assert updated.name == "Labour"
    assert updated.default_value == Decimal("300")

    with pytest.raises(ValidationError):
        component_service.update(db, "making", {"calculation_type": "PER_GRAM"})


def test_unreferenced_component_can_change_type(db, catalog):
    updated = component_service.update(db, "hallmark", {"calculation_type": "PER_GRAM"})

    assert updated.calculation_type == "PER_GRAM"


def test_soft_delete_frees_the_key(db, catalog):
    deleted = component_service.delete(db, "hallmark")
    db.commit()

    assert deleted.is_deleted
    assert deleted.key.startswith("hallmark_deleted_")
    assert component_service.get_by_key(db, "hallmark") is None
    assert "hallmark" not in [c.key for c in component_service.list_active(db)]

    again = component_service.create(db, {"key": "hallmark", "name": "Hallmark", "calculation_type": "FIXED"})
    assert again.id != deleted.id


def test_delete_guards(db, make_node, make_config):
    make_config(make_node("Rings"))

    with pytest.raises(ValidationError):
        component_service.delete(db, "metal_cost")
    with pytest.raises(ValidationError):
        component_service.delete(db, "wastage")
    with pytest.raises(ComponentNotFoundError):
        component_service.delete(db, "polish")
