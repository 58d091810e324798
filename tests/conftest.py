"""Pytest configuration and fixtures."""

import os

# Must be set before config.settings is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
for _key in ("DB_USER", "DB_PASSWORD", "DB_NAME"):
    os.environ.pop(_key, None)

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config.database import Base, enable_sqlite_savepoints
from modules.catalog.models import Subcategory, Product, ProductVariant  # noqa: F401
from modules.catalog.service import hierarchy_service, product_service
from modules.pricing.component_service import component_service
from modules.pricing.config_service import config_service
from modules.pricing.models import (  # noqa: F401
    MetalPrice, MetalPriceHistory, PriceComponent, PricingConfiguration,
    ConfigComponent, FreezeHistoryEntry,
)
from modules.pricing.resolver import resolver
from modules.pricing.service import update_metal_price
from modules.recalculation.models import RecalculationJob  # noqa: F401


DEFAULT_KEYS = ("metal_cost", "wastage", "making")


@pytest.fixture
def engine():
    """Fresh in-memory database per test (one shared connection, SAVEPOINT-capable)."""
    test_engine = enable_sqlite_savepoints(create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    ))
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    resolver.invalidate()
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
        resolver.invalidate()


# ==========================================
# Data factories
# ==========================================

@pytest.fixture
def catalog(db):
    """System components plus the usual jewelry line items."""
    component_service.seed_system_components(db)
    component_service.create(db, {
        "key": "wastage", "name": "Wastage", "calculation_type": "PERCENTAGE",
        "percentage_of": "metalCost", "default_value": 5, "sort_order": 2,
    }, actor="tester")
    component_service.create(db, {
        "key": "making", "name": "Making Charge", "calculation_type": "FIXED",
        "default_value": 200, "sort_order": 3,
    }, actor="tester")
    component_service.create(db, {
        "key": "hallmark", "name": "Hallmark Fee", "calculation_type": "FIXED",
        "default_value": 45, "is_visible": False, "sort_order": 4,
    }, actor="tester")
    component_service.create(db, {
        "key": "gst", "name": "GST", "calculation_type": "PERCENTAGE",
        "percentage_of": "subtotal", "default_value": 3, "sort_order": 5,
    }, actor="tester")
    db.commit()
    return component_service


@pytest.fixture
def set_rate(db):
    def _set(metal_type="GOLD_22K", price="6000"):
        row = update_metal_price(db, metal_type, Decimal(price), "tester")
        db.commit()
        return row
    return _set


@pytest.fixture
def make_node(db):
    def _make(name, parent=None, metal_type="GOLD_22K"):
        node = hierarchy_service.create_subcategory(db, {
            "name": name,
            "parent_id": parent.id if parent is not None else None,
            "metal_type": None if parent is not None else metal_type,
        })
        db.commit()
        return node
    return _make


@pytest.fixture
def make_config(db, catalog):
    def _make(node, keys=DEFAULT_KEYS, **overrides):
        entries = [{"component_key": key, **overrides.get(key, {})} for key in keys]
        config = config_service.create(db, node.id, entries, "tester")
        db.commit()
        return config
    return _make


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(node, net="10", gross=None, **extra):
        counter["n"] += 1
        data = {
            "name": extra.pop("name", f"Ring {counter['n']}"),
            "sku": extra.pop("sku", f"SKU-{counter['n']:04d}"),
            "subcategory_id": node.id,
            "net_weight": Decimal(net),
            "gross_weight": Decimal(gross) if gross is not None else Decimal(net) + 2,
        }
        data.update(extra)
        product = product_service.create(db, data)
        db.commit()
        return product
    return _make


@pytest.fixture
def priced_tree(make_node, make_config, set_rate):
    """GOLD_22K root at 6000/g with [metal_cost, wastage 5% of metal, making 200]."""
    set_rate("GOLD_22K", "6000")
    root = make_node("Rings")
    config = make_config(root)
    return root, config
