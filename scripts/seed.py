"""
Karat Pricing - Demo Data Seeder
==================================
Seeds a small jewelry catalog for local testing.

Usage:
    python scripts/seed.py          # Seed (skips if subcategories exist)
    python scripts/seed.py --reset  # Drop all data and reseed

Seeded:
  1. System + common price components (wastage, making, hallmark, GST)
  2. Default metal prices
  3. Subcategory tree: Gold Jewelry > Rings > Bridal, Gold Jewelry > Chains,
     Silver Jewelry > Anklets
  4. Pricing configurations on Gold Jewelry, Bridal and Silver Jewelry
  5. Products with variants, plus one static-price product
  6. Initial price calculation for every product
"""

import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.database import SessionLocal, Base, engine
from modules.catalog.models import Subcategory, Product, ProductVariant  # noqa: F401
from modules.catalog.service import hierarchy_service, product_service
from modules.pricing.component_service import component_service
from modules.pricing.config_service import config_service
from modules.pricing.models import (  # noqa: F401
    MetalPrice, MetalPriceHistory, PriceComponent, PricingConfiguration,
    ConfigComponent, FreezeHistoryEntry,
)
from modules.pricing.service import calculate_product_price, initialize_default_prices
from modules.recalculation.models import RecalculationJob  # noqa: F401

ACTOR = "seed"

COMPONENTS = [
    {"key": "wastage", "name": "Wastage", "calculation_type": "PERCENTAGE",
     "percentage_of": "metalCost", "default_value": 8, "sort_order": 2},
    {"key": "making", "name": "Making Charge", "calculation_type": "PER_GRAM",
     "default_value": 450, "sort_order": 3},
    {"key": "hallmark", "name": "Hallmark Fee", "calculation_type": "FIXED",
     "default_value": 45, "is_visible": False, "sort_order": 4},
    {"key": "gst", "name": "GST", "calculation_type": "PERCENTAGE",
     "percentage_of": "subtotal", "default_value": 3, "sort_order": 5},
]

PRODUCTS = [
    # (subcategory, name, sku, gross, net, gemstone, variants)
    ("Rings", "Plain Gold Band", "RG-BAND-01", "6.2", "6.0", "0", [("Size 10", "5.6", "5.4"), ("Size 14", "6.8", "6.6")]),
    ("Bridal", "Solitaire Engagement Ring", "RG-SOL-01", "4.8", "4.1", "38500", []),
    ("Chains", "Rope Chain 20in", "CH-ROPE-20", "12.5", "12.5", "0", [("22in", "13.7", "13.7")]),
    ("Anklets", "Ghungroo Anklet Pair", "AN-GHU-01", "42.0", "40.5", "0", []),
]


def ensure_tables():
    Base.metadata.create_all(bind=engine)


def seed():
    ensure_tables()
    db = SessionLocal()
    try:
        if db.query(Subcategory).count():
            print("Subcategories already exist, skipping (use --reset to reseed)")
            return

        print("\n[1] Price components")
        component_service.seed_system_components(db)
        for data in COMPONENTS:
            if component_service.get_by_key(db, data["key"]) is None:
                component_service.create(db, data, actor=ACTOR)
        db.flush()

        print("[2] Metal prices")
        initialize_default_prices(db)

        print("[3] Subcategory tree")
        nodes = {}
        nodes["Gold Jewelry"] = hierarchy_service.create_subcategory(db, {"name": "Gold Jewelry", "metal_type": "GOLD_22K"})
        nodes["Silver Jewelry"] = hierarchy_service.create_subcategory(db, {"name": "Silver Jewelry", "metal_type": "SILVER_925"})
        nodes["Rings"] = hierarchy_service.create_subcategory(db, {"name": "Rings", "parent_id": nodes["Gold Jewelry"].id})
        nodes["Chains"] = hierarchy_service.create_subcategory(db, {"name": "Chains", "parent_id": nodes["Gold Jewelry"].id})
        nodes["Bridal"] = hierarchy_service.create_subcategory(db, {"name": "Bridal", "parent_id": nodes["Rings"].id})
        nodes["Anklets"] = hierarchy_service.create_subcategory(db, {"name": "Anklets", "parent_id": nodes["Silver Jewelry"].id})

        print("[4] Pricing configurations")
        standard = [{"component_key": key} for key in ("metal_cost", "wastage", "making", "hallmark", "gst")]
        config_service.create(db, nodes["Gold Jewelry"].id, standard, ACTOR)
        config_service.create(db, nodes["Bridal"].id, [
            {"component_key": "metal_cost"},
            {"component_key": "wastage", "value": Decimal("12")},
            {"component_key": "making", "value": Decimal("900")},
            {"component_key": "gst"},
        ], ACTOR)
        config_service.create(db, nodes["Silver Jewelry"].id, [
            {"component_key": "metal_cost"},
            {"component_key": "making", "calculation_type": "FIXED", "value": Decimal("350")},
        ], ACTOR)

        print("[5] Products")
        products = []
        for node_name, name, sku, gross, net, gemstone, variants in PRODUCTS:
            products.append(product_service.create(db, {
                "name": name,
                "sku": sku,
                "subcategory_id": nodes[node_name].id,
                "gross_weight": Decimal(gross),
                "net_weight": Decimal(net),
                "gemstone_cost": Decimal(gemstone),
                "variants": [
                    {"label": label, "sku": f"{sku}-{label.replace(' ', '').upper()}",
                     "gross_weight": Decimal(v_gross), "net_weight": Decimal(v_net)}
                    for label, v_gross, v_net in variants
                ],
            }))
        products.append(product_service.create(db, {
            "name": "Gift Coin 1g", "sku": "GC-1G", "subcategory_id": nodes["Gold Jewelry"].id,
            "gross_weight": Decimal("1"), "net_weight": Decimal("1"),
            "pricing_mode": "STATIC_PRICE", "static_price": Decimal("7500"),
        }))

        print("[6] Initial prices")
        for product in products:
            breakdown = calculate_product_price(db, product)
            print(f"  {product.sku:<14} {breakdown.total_price:>12}")

        db.commit()

        print("\n--- Summary ---")
        print(f"  Subcategories:  {db.query(Subcategory).count()}")
        print(f"  Configurations: {db.query(PricingConfiguration).count()}")
        print(f"  Components:     {db.query(PriceComponent).count()}")
        print(f"  Products:       {db.query(Product).count()} (+{db.query(ProductVariant).count()} variants)")
        print(f"  Metal prices:   {db.query(MetalPrice).count()}")

    except Exception as e:
        db.rollback()
        print(f"\nSeed failed: {e}")
        raise
    finally:
        db.close()


def reset_and_seed():
    """Drop all tables and recreate + seed."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    print("All tables recreated")
    seed()


if __name__ == "__main__":
    if "--reset" in sys.argv:
        confirm = input("This will DELETE ALL DATA. Type 'yes' to confirm: ")
        if confirm.strip().lower() == "yes":
            reset_and_seed()
        else:
            print("Aborted.")
    else:
        seed()
