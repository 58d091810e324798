"""Metal price storage, staleness, feed application and product pricing helpers."""

from datetime import timedelta
from decimal import Decimal

import pytest

from common.exceptions import NotFoundError, ValidationError
from common.helpers import now_utc
from modules.pricing.models import MetalPrice
from modules.pricing.service import (
    apply_feed_prices, calculate_product_price, get_metal_rate, initialize_default_prices,
    is_price_fresh, metal_price_history, pricing_summary, recent_manual_update,
    require_fresh_price, update_metal_price,
)


def test_update_records_history_with_change_percent(db):
    update_metal_price(db, "GOLD_22K", Decimal("6000"), "desk")
    update_metal_price(db, "GOLD_22K", Decimal("6600"), "desk")
    db.commit()

    assert get_metal_rate(db, "GOLD_22K") == Decimal("6600.00")
    latest, first = metal_price_history(db, "GOLD_22K")
    assert first.old_price is None
    assert latest.old_price == Decimal("6000.00")
    assert latest.change_percent == Decimal("10.00")
    assert latest.source == "MANUAL"


@pytest.mark.parametrize("price", [0, -5, "NaN"])
def test_update_rejects_non_positive(db, price):
    with pytest.raises(ValidationError):
        update_metal_price(db, "GOLD_22K", price, "desk")


def test_unknown_metal(db):
    with pytest.raises(ValidationError):
        update_metal_price(db, "BRASS", Decimal("10"), "desk")
    with pytest.raises(NotFoundError):
        get_metal_rate(db, "PLATINUM")


def test_staleness_guard(db):
    row = update_metal_price(db, "GOLD_24K", Decimal("6500"), "desk")
    assert is_price_fresh(db, "GOLD_24K")

    row.updated_at = now_utc() - timedelta(minutes=row.stale_after_minutes + 5)
    db.flush()

    assert not is_price_fresh(db, "GOLD_24K")
    with pytest.raises(ValidationError) as exc:
        require_fresh_price(db, "GOLD_24K")
    assert "stale" in exc.value.message


def test_default_prices_seeded_once(db):
    assert initialize_default_prices(db) == 5
    db.commit()
    assert initialize_default_prices(db) == 0
    assert db.query(MetalPrice).count() == 5


def test_feed_skips_manual_only_metals_and_reports_changes(db):
    update_metal_price(db, "GOLD_22K", Decimal("6000"), "desk")
    silver = update_metal_price(db, "SILVER_925", Decimal("80"), "desk")
    silver.auto_update = False
    db.commit()

    changed = apply_feed_prices(db, {
        "GOLD_22K": Decimal("6000.00"),
        "SILVER_925": Decimal("95.00"),
        "PLATINUM": Decimal("3100.00"),
    }, updated_by="feed")
    db.commit()

    assert changed == ["PLATINUM"]
    assert get_metal_rate(db, "SILVER_925") == Decimal("80.00")
    assert db.query(MetalPrice).filter(MetalPrice.metal_type == "GOLD_22K").one().source == "CRON"


def test_recent_manual_update_window(db):
    assert recent_manual_update(db) is None
    update_metal_price(db, "GOLD_22K", Decimal("6000"), "desk")
    db.commit()

    entry = recent_manual_update(db)
    assert entry is not None
    assert entry.changed_by == "desk"


def test_static_product_keeps_fixed_price(db, priced_tree, make_product):
    root, _ = priced_tree
    product = make_product(
        root, pricing_mode="STATIC_PRICE", static_price=Decimal("15000"),
        variants=[{"label": "Small", "net_weight": Decimal("4")}],
    )

    breakdown = calculate_product_price(db, product)
    db.commit()

    assert breakdown.components == []
    assert breakdown.total_price == Decimal("15000.00")
    assert product.calculated_price == Decimal("15000.00")
    assert product.variants[0].calculated_price is None


def test_require_fresh_blocks_stale_calculation(db, priced_tree, make_product):
    root, _ = priced_tree
    product = make_product(root, net="10")
    row = db.query(MetalPrice).filter(MetalPrice.metal_type == "GOLD_22K").one()
    row.updated_at = now_utc() - timedelta(days=3)
    db.commit()

    with pytest.raises(ValidationError):
        calculate_product_price(db, product, require_fresh=True)
    assert calculate_product_price(db, product).total_price == Decimal("63200.00")


def test_pricing_summary_reports_inheritance(db, priced_tree, make_node, make_product):
    root, config = priced_tree
    child = make_node("Bands", parent=root)
    product = make_product(child, net="10")
    calculate_product_price(db, product)
    db.commit()

    summary = pricing_summary(db, product.id)

    assert summary["config_id"] == config.id
    assert summary["config_source_id"] == root.id
    assert summary["inherited"] is True
    assert summary["calculated_price"] == "63200.00"
    assert summary["current_metal_rate"] == "6000.00"
    assert summary["metal_price_fresh"] is True
