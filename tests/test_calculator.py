"""Breakdown calculator: pure evaluation, no database."""

from decimal import Decimal

import pytest

from common.exceptions import (
    EmptyConfigurationError, InvalidConfigurationError, InvalidContextError,
)
from modules.pricing.calculator import (
    build_context, calculate_breakdown, component_spec,
)


def ring_config(wastage_frozen=None, making_active=True):
    return [
        component_spec("metal_cost", "Metal Cost", "METAL_COST", sort_order=1),
        component_spec(
            "wastage", "Wastage", "PERCENTAGE", value=5, sort_order=2,
            percentage_of="metalCost", frozen_value=wastage_frozen,
        ),
        component_spec("making", "Making Charge", "FIXED", value=200, sort_order=3, is_active=making_active),
    ]


def values(breakdown):
    return {line.component_key: line.value for line in breakdown.components}


def test_reference_breakdown():
    result = calculate_breakdown(ring_config(), build_context(10, 6000))

    assert values(result) == {
        "metal_cost": Decimal("60000.00"),
        "wastage": Decimal("3000.00"),
        "making": Decimal("200.00"),
    }
    assert result.subtotal == Decimal("63200.00")
    assert result.metal_cost == Decimal("60000.00")
    assert result.total_price == Decimal("63200.00")


def test_frozen_component_ignores_new_rate():
    result = calculate_breakdown(ring_config(wastage_frozen=Decimal("2500.00")), build_context(10, 6500))

    assert values(result) == {
        "metal_cost": Decimal("65000.00"),
        "wastage": Decimal("2500.00"),
        "making": Decimal("200.00"),
    }
    assert result.subtotal == Decimal("67700.00")
    assert result.line("wastage").is_frozen
    assert not result.line("metal_cost").is_frozen


def test_subtotal_is_sum_of_rounded_lines():
    config = [
        component_spec("metal_cost", "Metal Cost", "METAL_COST", sort_order=1),
        component_spec("wastage", "Wastage", "PERCENTAGE", value="7.35", sort_order=2, percentage_of="metalCost"),
        component_spec("stone_setting", "Stone Setting", "PER_GRAM", value="112.45", sort_order=3),
        component_spec("gst", "GST", "PERCENTAGE", value=3, sort_order=4, percentage_of="subtotal"),
        component_spec("hallmark", "Hallmark", "FIXED", value="45.555", sort_order=5, is_visible=False),
    ]
    result = calculate_breakdown(config, build_context("3.337", "6123.47"))

    assert result.subtotal == sum(line.value for line in result.components)
    for line in result.components:
        assert line.value == line.value.quantize(Decimal("0.01"))


def test_percentage_of_subtotal_uses_running_subtotal():
    config = [
        component_spec("metal_cost", "Metal Cost", "METAL_COST", sort_order=1),
        component_spec("making", "Making Charge", "FIXED", value=200, sort_order=2),
        component_spec("gst", "GST", "PERCENTAGE", value=3, sort_order=3, percentage_of="subtotal"),
    ]
    result = calculate_breakdown(config, build_context(10, 6000))

    assert result.line("gst").value == Decimal("1806.00")
    assert result.subtotal == Decimal("62006.00")


def test_sort_order_decides_evaluation_order():
    # listed out of order; gst must still see metal and making
    config = [
        component_spec("gst", "GST", "PERCENTAGE", value=10, sort_order=3, percentage_of="subtotal"),
        component_spec("making", "Making Charge", "FIXED", value=100, sort_order=2),
        component_spec("metal_cost", "Metal Cost", "METAL_COST", sort_order=1),
    ]
    result = calculate_breakdown(config, build_context(1, 900))

    assert [line.component_key for line in result.components] == ["metal_cost", "making", "gst"]
    assert result.line("gst").value == Decimal("100.00")


def test_metal_cost_percentage_before_metal_line_is_zero():
    config = [
        component_spec("wastage", "Wastage", "PERCENTAGE", value=5, sort_order=1, percentage_of="metalCost"),
        component_spec("metal_cost", "Metal Cost", "METAL_COST", sort_order=2),
    ]
    result = calculate_breakdown(config, build_context(10, 6000))

    assert result.line("wastage").value == Decimal("0.00")


def test_inactive_components_are_skipped():
    result = calculate_breakdown(ring_config(making_active=False), build_context(10, 6000))

    assert result.line("making") is None
    assert result.subtotal == Decimal("63000.00")


def test_per_gram_and_manual_metal_price():
    config = [
        component_spec(
            "metal_cost", "Metal Cost", "METAL_COST", sort_order=1,
            metal_price_mode="MANUAL", manual_metal_price=5000,
        ),
        component_spec("labour", "Labour", "PER_GRAM", value=150, sort_order=2),
    ]
    result = calculate_breakdown(config, build_context(10, 6000))

    assert result.line("metal_cost").value == Decimal("50000.00")
    assert result.line("labour").value == Decimal("1500.00")
    assert result.metal_rate == Decimal("6000.00")


def test_lines_round_half_up():
    config = [
        component_spec("metal_cost", "Metal Cost", "METAL_COST", sort_order=1),
        component_spec("wastage", "Wastage", "PERCENTAGE", value="0.125", sort_order=2, percentage_of="metalCost"),
    ]
    result = calculate_breakdown(config, build_context(1, 100))

    assert result.line("wastage").value == Decimal("0.13")


def test_hidden_lines_fold_into_unit_cost():
    config = ring_config() + [
        component_spec("hallmark", "Hallmark", "FIXED", value=45, sort_order=4, is_visible=False),
    ]
    result = calculate_breakdown(config, build_context(10, 6000))

    metal = result.line("metal_cost")
    assert metal.component_name == "Unit Cost"
    assert metal.value == Decimal("60045.00")
    assert result.metal_cost == Decimal("60045.00")
    assert result.line("hallmark").value == Decimal("0.00")
    assert result.subtotal == Decimal("63245.00")
    assert result.subtotal == sum(line.value for line in result.components)


def test_no_folding_without_hidden_value():
    config = ring_config() + [
        component_spec("hallmark", "Hallmark", "FIXED", value=0, sort_order=4, is_visible=False),
    ]
    result = calculate_breakdown(config, build_context(10, 6000))

    assert result.line("metal_cost").component_name == "Metal Cost"


def test_gemstone_cost_is_added_to_total():
    result = calculate_breakdown(ring_config(), build_context(10, 6000), gemstone_cost="1250.50")

    assert result.subtotal == Decimal("63200.00")
    assert result.total_price == Decimal("64450.50")


def test_breakdown_serializes_money_as_strings():
    data = calculate_breakdown(ring_config(), build_context(10, 6000)).to_dict()

    assert data["subtotal"] == "63200.00"
    assert data["components"][1] == {
        "component_key": "wastage",
        "component_name": "Wastage",
        "value": "3000.00",
        "is_frozen": False,
        "is_visible": True,
    }


def test_same_inputs_same_output():
    first = calculate_breakdown(ring_config(), build_context("7.25", "5987.10")).to_dict()
    second = calculate_breakdown(ring_config(), build_context("7.25", "5987.10")).to_dict()

    assert first == second


def test_empty_configuration_rejected():
    with pytest.raises(EmptyConfigurationError):
        calculate_breakdown([], build_context(10, 6000))

    inactive = [component_spec("metal_cost", "Metal Cost", "METAL_COST", is_active=False)]
    with pytest.raises(EmptyConfigurationError):
        calculate_breakdown(inactive, build_context(10, 6000))


@pytest.mark.parametrize("net_weight, metal_rate", [
    (-1, 6000),
    (10, -0.01),
    (float("nan"), 6000),
    (10, float("inf")),
    ("heavy", 6000),
])
def test_invalid_context_rejected(net_weight, metal_rate):
    with pytest.raises(InvalidContextError):
        build_context(net_weight, metal_rate)


def test_manual_mode_requires_positive_price():
    with pytest.raises(InvalidConfigurationError):
        component_spec("metal_cost", "Metal Cost", "METAL_COST", metal_price_mode="MANUAL")


def test_percentage_requires_base():
    with pytest.raises(InvalidConfigurationError):
        component_spec("wastage", "Wastage", "PERCENTAGE", value=5)
    with pytest.raises(InvalidConfigurationError):
        component_spec("wastage", "Wastage", "PERCENTAGE", value=5, percentage_of="gross")
