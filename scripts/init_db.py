"""
Karat Pricing - Database Initialization
=========================================
Creates all tables if they don't exist, then seeds the system price
components and default metal prices.
Safe to run multiple times (CREATE IF NOT EXISTS).

Usage:
    python scripts/init_db.py
    python scripts/init_db.py --drop   # Drop and recreate all tables
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.database import Base, SessionLocal, engine

# Import ALL models so Base.metadata knows about them
from modules.catalog.models import Subcategory, Product, ProductVariant  # noqa
from modules.pricing.models import (  # noqa
    MetalPrice, MetalPriceHistory, PriceComponent, PricingConfiguration,
    ConfigComponent, FreezeHistoryEntry,
)
from modules.recalculation.models import RecalculationJob  # noqa
from modules.pricing.component_service import component_service
from modules.pricing.service import initialize_default_prices


def init_db(drop_first=False):
    if drop_first:
        print("Dropping all tables...")
        Base.metadata.drop_all(bind=engine)
        print("Done.")

    print("Creating all tables...")
    Base.metadata.create_all(bind=engine)

    # List created tables
    from sqlalchemy import inspect
    inspector = inspect(engine)
    tables = inspector.get_table_names()
    print(f"\nTables in database ({len(tables)}):")
    for t in sorted(tables):
        print(f"  - {t}")

    db = SessionLocal()
    try:
        components = component_service.seed_system_components(db)
        prices = initialize_default_prices(db)
        db.commit()
        print(f"\nSeeded {components} system component(s), {prices} metal price(s)")
    finally:
        db.close()
    print("\nDatabase initialized successfully!")


if __name__ == "__main__":
    drop = "--drop" in sys.argv
    if drop:
        confirm = input("This will DROP all tables. Type 'yes': ")
        if confirm.strip().lower() != "yes":
            print("Aborted.")
            sys.exit(0)
    init_db(drop_first=drop)
