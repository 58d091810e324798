"""Configuration inheritance through the subcategory tree."""

import pytest

from common.exceptions import (
    CorruptHierarchyError, NoPricingConfigurationError, NotFoundError, ValidationError,
)
from modules.catalog.service import hierarchy_service
from modules.pricing.config_service import config_service
from modules.pricing.resolver import resolve_configuration, resolver


def test_own_configuration(db, make_node, make_config):
    root = make_node("Rings")
    config = make_config(root)

    found, source_id = resolve_configuration(db, root.id)
    assert found.id == config.id
    assert source_id == root.id


def test_child_inherits_nearest_ancestor(db, make_node, make_config):
    root = make_node("Rings")
    middle = make_node("Bridal", parent=root)
    leaf = make_node("Solitaire", parent=middle)
    root_config = make_config(root)

    found, source_id = resolve_configuration(db, leaf.id)
    assert found.id == root_config.id
    assert source_id == root.id

    middle_config = make_config(middle, keys=("metal_cost", "making"))
    found, source_id = resolve_configuration(db, leaf.id)
    assert found.id == middle_config.id
    assert source_id == middle.id


def test_override_does_not_leak_to_siblings(db, make_node, make_config):
    root = make_node("Rings")
    bridal = make_node("Bridal", parent=root)
    casual = make_node("Casual", parent=root)
    root_config = make_config(root)
    make_config(bridal, keys=("metal_cost", "making"))

    found, _ = resolve_configuration(db, casual.id)
    assert found.id == root_config.id


def test_no_configuration_anywhere(db, make_node):
    root = make_node("Rings")
    leaf = make_node("Bands", parent=root)

    with pytest.raises(NoPricingConfigurationError):
        resolve_configuration(db, leaf.id)


def test_unknown_node(db):
    with pytest.raises(NotFoundError):
        resolve_configuration(db, 999)


def test_cycle_is_reported(db, make_node):
    first = make_node("A")
    second = make_node("B", parent=first)
    first.parent_id = second.id
    db.commit()

    with pytest.raises(CorruptHierarchyError):
        resolve_configuration(db, second.id)
    with pytest.raises(CorruptHierarchyError):
        hierarchy_service.ancestors(db, second.id)


def test_dangling_parent_is_reported(db, make_node):
    node = make_node("Orphan")
    node.parent_id = 4242
    db.commit()

    with pytest.raises(CorruptHierarchyError):
        resolve_configuration(db, node.id)


def test_flag_without_row_is_reported(db, make_node):
    node = make_node("Flagged")
    node.has_pricing_config = True
    db.commit()

    with pytest.raises(CorruptHierarchyError):
        resolve_configuration(db, node.id)


def test_detach_falls_back_to_ancestor(db, make_node, make_config):
    root = make_node("Rings")
    middle = make_node("Bridal", parent=root)
    leaf = make_node("Solitaire", parent=middle)
    root_config = make_config(root)
    make_config(middle, keys=("metal_cost", "making"))
    resolve_configuration(db, leaf.id)  # warm the cache

    config_service.detach(db, middle.id, "tester")
    db.commit()

    found, source_id = resolve_configuration(db, leaf.id)
    assert found.id == root_config.id
    assert source_id == root.id
    assert middle.has_pricing_config is False


def test_move_invalidates_cached_resolution(db, make_node, make_config):
    gold = make_node("Gold")
    other = make_node("Other")
    leaf = make_node("Chains", parent=gold)
    gold_config = make_config(gold)
    other_config = make_config(other, keys=("metal_cost", "making"))

    assert resolve_configuration(db, leaf.id)[0].id == gold_config.id
    hierarchy_service.move_subcategory(db, leaf.id, other.id)
    db.commit()
    assert resolve_configuration(db, leaf.id)[0].id == other_config.id


def test_move_under_descendant_rejected(db, make_node):
    root = make_node("Rings")
    child = make_node("Bridal", parent=root)
    grandchild = make_node("Solitaire", parent=child)

    with pytest.raises(ValidationError):
        hierarchy_service.move_subcategory(db, root.id, grandchild.id)
    with pytest.raises(ValidationError):
        hierarchy_service.move_subcategory(db, root.id, root.id)


def test_child_metal_type_comes_from_parent(make_node):
    root = make_node("Silver", metal_type="SILVER_925")
    child = make_node("Anklets", parent=root)

    assert child.metal_type == "SILVER_925"


def test_inheriting_ids_stop_at_overrides(db, make_node, make_config):
    root = make_node("Rings")
    bridal = make_node("Bridal", parent=root)
    casual = make_node("Casual", parent=root)
    stackable = make_node("Stackable", parent=casual)
    make_node("Solitaire", parent=bridal)
    make_config(root)
    make_config(bridal, keys=("metal_cost", "making"))

    ids = resolver.inheriting_subcategory_ids(db, root.id)
    assert sorted(ids) == sorted([root.id, casual.id, stackable.id])
