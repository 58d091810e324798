"""
Pricing Module - Shared Service
==================================
Metal price management (staleness guard, history, defaults) and product
price calculation helpers shared by the freeze manager, the recalculation
engine, and the API routes.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from common.events import publish_after_commit, METAL_PRICE_UPDATED
from common.exceptions import NotFoundError, ValidationError
from common.helpers import now_utc, round_money, to_decimal, format_money
from config import settings
from modules.catalog.models import Product
from modules.pricing.calculator import PriceBreakdown, build_context, calculate_breakdown
from modules.pricing.models import (
    MetalPrice, MetalPriceHistory, MetalType, PriceSource, METAL_LABELS,
)
from modules.pricing.resolver import resolve_configuration

logger = logging.getLogger("karat.pricing")

# Per-gram seed prices (INR) used when a metal has never been priced
DEFAULT_METAL_PRICES = {
    MetalType.GOLD_24K: Decimal("6500"),
    MetalType.GOLD_22K: Decimal("5960"),
    MetalType.SILVER_999: Decimal("85"),
    MetalType.SILVER_925: Decimal("79"),
    MetalType.PLATINUM: Decimal("3200"),
}


# ==========================================
# Metal Price Helpers
# ==========================================

def _normalize_metal(metal_type) -> str:
    try:
        return MetalType(metal_type).value
    except ValueError:
        raise ValidationError(f"Unknown metal type: {metal_type}")


def get_metal_price(db: Session, metal_type) -> MetalPrice:
    """Get MetalPrice row. Raises NotFoundError if the metal was never priced."""
    code = _normalize_metal(metal_type)
    row = db.query(MetalPrice).filter(MetalPrice.metal_type == code).first()
    if not row:
        raise NotFoundError(f"No price set for metal type {code}")
    return row


def get_metal_rate(db: Session, metal_type) -> Decimal:
    return to_decimal(get_metal_price(db, metal_type).price_per_gram)


def is_price_fresh(db: Session, metal_type) -> bool:
    row = db.query(MetalPrice).filter(MetalPrice.metal_type == _normalize_metal(metal_type)).first()
    return bool(row and row.is_fresh)


def require_fresh_price(db: Session, metal_type) -> Decimal:
    """Return the rate, or raise ValidationError if it is stale."""
    row = get_metal_price(db, metal_type)
    if not row.is_fresh:
        mins = int(row.minutes_since_update)
        raise ValidationError(
            f"{row.label} price is stale (last updated {mins} minutes ago). Please try again later."
        )
    return to_decimal(row.price_per_gram)


def list_metal_prices(db: Session) -> List[MetalPrice]:
    return db.query(MetalPrice).order_by(MetalPrice.metal_type).all()


def update_metal_price(
    db: Session, metal_type, new_price, updated_by: str, source: str = PriceSource.MANUAL
) -> MetalPrice:
    """
    Set a metal's per-gram price and record history. Caller must commit.
    METAL_PRICE_UPDATED is published after the commit when the price changed.
    """
    code = _normalize_metal(metal_type)
    price = round_money(to_decimal(new_price))
    if not price.is_finite() or price <= 0:
        raise ValidationError(f"Metal price must be positive, got {new_price}")

    row = db.query(MetalPrice).filter(MetalPrice.metal_type == code).first()
    if row is None:
        row = MetalPrice(
            metal_type=code,
            label=METAL_LABELS[MetalType(code)],
            currency=settings.METAL_PRICE_CURRENCY,
            stale_after_minutes=settings.METAL_PRICE_STALE_MINUTES,
            price_per_gram=Decimal("0"),
        )
        db.add(row)

    old_price = to_decimal(row.price_per_gram) if row.price_per_gram else None
    change_percent = None
    if old_price:
        change_percent = round_money((price - old_price) / old_price * 100)

    row.price_per_gram = price
    row.source = PriceSource(source).value
    row.updated_at = now_utc()
    row.updated_by = updated_by

    db.add(MetalPriceHistory(
        metal_type=code,
        old_price=old_price,
        new_price=price,
        change_percent=change_percent,
        source=row.source,
        changed_by=updated_by,
        created_at=now_utc(),
    ))
    db.flush()

    if old_price != price:
        publish_after_commit(db, METAL_PRICE_UPDATED, {
            "metal_type": code,
            "old_price": str(old_price) if old_price is not None else None,
            "new_price": str(price),
            "updated_by": updated_by,
        })
    logger.info(f"Metal price {code}: {format_money(old_price)} -> {format_money(price)} ({row.source}, by {updated_by})")
    return row


def metal_price_history(db: Session, metal_type, limit: int = 50) -> List[MetalPriceHistory]:
    code = _normalize_metal(metal_type)
    return (
        db.query(MetalPriceHistory)
        .filter(MetalPriceHistory.metal_type == code)
        .order_by(MetalPriceHistory.id.desc())
        .limit(limit)
        .all()
    )


def initialize_default_prices(db: Session) -> int:
    """Insert seed prices for metals that have no row yet. Returns count created. Caller must commit."""
    existing = {row.metal_type for row in db.query(MetalPrice.metal_type).all()}
    created = 0
    for metal, price in DEFAULT_METAL_PRICES.items():
        if metal.value in existing:
            continue
        db.add(MetalPrice(
            metal_type=metal.value,
            label=METAL_LABELS[metal],
            price_per_gram=price,
            currency=settings.METAL_PRICE_CURRENCY,
            source=PriceSource.MANUAL.value,
            stale_after_minutes=settings.METAL_PRICE_STALE_MINUTES,
            updated_at=now_utc(),
            updated_by="system",
        ))
        created += 1
    if created:
        db.flush()
        logger.info(f"Seeded {created} default metal price(s)")
    return created


def recent_manual_update(db: Session, minutes: int = 10) -> Optional[MetalPriceHistory]:
    """Latest MANUAL price change within the window, if any (the feed must not overwrite it)."""
    since = now_utc() - timedelta(minutes=minutes)
    return (
        db.query(MetalPriceHistory)
        .filter(
            MetalPriceHistory.source == PriceSource.MANUAL.value,
            MetalPriceHistory.created_at >= since,
        )
        .order_by(MetalPriceHistory.id.desc())
        .first()
    )


def apply_feed_prices(db: Session, prices: Dict[str, Decimal], updated_by: str = "cron") -> List[str]:
    """Write fetched prices for auto-updating metals. Returns the metal types whose price changed."""
    changed = []
    for code, price in prices.items():
        row = db.query(MetalPrice).filter(MetalPrice.metal_type == code).first()
        if row is not None and not row.auto_update:
            continue
        before = to_decimal(row.price_per_gram) if row is not None else None
        update_metal_price(db, code, price, updated_by, source=PriceSource.CRON)
        if before != round_money(price):
            changed.append(code)
    return changed


# ==========================================
# Product Price Helpers
# ==========================================

def price_item(config, item, metal_type: str, metal_rate, now=None) -> PriceBreakdown:
    """Breakdown for a product or variant (anything with weights and gemstone_cost)."""
    context = build_context(item.net_weight, metal_rate, item.gross_weight)
    breakdown = calculate_breakdown(config, context, item.gemstone_cost or 0)
    breakdown.metal_type = metal_type
    breakdown.last_calculated = now
    return breakdown


def static_breakdown(product: Product, now=None) -> PriceBreakdown:
    price = round_money(product.static_price or 0)
    return PriceBreakdown(
        components=[],
        subtotal=price,
        metal_rate=Decimal("0.00"),
        metal_cost=Decimal("0.00"),
        gemstone_cost=round_money(product.gemstone_cost or 0),
        total_price=price,
        metal_type=product.metal_type,
        last_calculated=now,
    )


def apply_breakdown(item, breakdown: PriceBreakdown):
    """Write a breakdown onto a product or variant row."""
    item.price_breakdown = breakdown.to_dict()
    item.calculated_price = breakdown.total_price
    item.last_calculated = breakdown.last_calculated


def calculate_product_price(
    db: Session, product: Product, persist: bool = True, require_fresh: bool = False
) -> PriceBreakdown:
    """
    Price one product (and its active variants) under its effective configuration.

    Static-price products keep their fixed price. With persist=True the
    breakdowns are written back and flushed; caller must commit.
    """
    now = now_utc()
    if not product.is_dynamic:
        breakdown = static_breakdown(product, now)
        if persist:
            apply_breakdown(product, breakdown)
            db.flush()
        return breakdown

    config, _ = resolve_configuration(db, product.subcategory_id)
    rate = require_fresh_price(db, product.metal_type) if require_fresh else get_metal_rate(db, product.metal_type)

    breakdown = price_item(config, product, product.metal_type, rate, now)
    if persist:
        apply_breakdown(product, breakdown)
        for variant in product.variants:
            if variant.is_active:
                apply_breakdown(variant, price_item(config, variant, product.metal_type, rate, now))
        db.flush()
    return breakdown


def pricing_summary(db: Session, product_id: int) -> dict:
    """Effective configuration source, current rate and stored breakdown for a product."""
    product = db.query(Product).get(product_id)
    if product is None:
        raise NotFoundError(f"Product not found: {product_id}")

    summary = {
        "product_id": product.id,
        "name": product.name,
        "pricing_mode": product.pricing_mode,
        "metal_type": product.metal_type,
        "calculated_price": str(product.calculated_price) if product.calculated_price is not None else None,
        "price_breakdown": product.price_breakdown,
        "config_id": None,
        "config_source_id": None,
        "inherited": False,
        "current_metal_rate": None,
        "metal_price_fresh": False,
    }

    if product.is_dynamic:
        config, source_id = resolve_configuration(db, product.subcategory_id)
        summary["config_id"] = config.id
        summary["config_source_id"] = source_id
        summary["inherited"] = source_id != product.subcategory_id

    row: Optional[MetalPrice] = (
        db.query(MetalPrice).filter(MetalPrice.metal_type == product.metal_type).first()
    )
    if row is not None:
        summary["current_metal_rate"] = str(round_money(row.price_per_gram))
        summary["metal_price_fresh"] = row.is_fresh
    return summary
