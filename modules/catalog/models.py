"""
Catalog Module - Models
========================
Subcategory (pricing hierarchy node), Product and ProductVariant.
Products carry the weights the pricing engine reads and the breakdown it writes.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, JSON,
    ForeignKey, DateTime,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class PricingMode(str, enum.Enum):
    SUBCATEGORY_DYNAMIC = "SUBCATEGORY_DYNAMIC"   # inherits hierarchy configuration
    STATIC_PRICE = "STATIC_PRICE"                 # fixed price, never recalculated


# ==========================================
# 🗂️ Subcategory (hierarchy node)
# ==========================================

class Subcategory(Base):
    __tablename__ = "subcategories"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=True)
    parent_id = Column(Integer, ForeignKey("subcategories.id", ondelete="RESTRICT"), nullable=True, index=True)
    metal_type = Column(String, nullable=False)
    has_pricing_config = Column(Boolean, default=False, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    parent = relationship("Subcategory", remote_side=[id], back_populates="children")
    children = relationship("Subcategory", back_populates="parent")
    pricing_config = relationship(
        "PricingConfiguration", back_populates="subcategory", uselist=False,
        cascade="all, delete-orphan",
    )
    products = relationship("Product", back_populates="subcategory")

    def __repr__(self):
        return f"<Subcategory {self.name} (parent={self.parent_id})>"


# ==========================================
# 📦 Product
# ==========================================

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, unique=True, nullable=True)
    subcategory_id = Column(Integer, ForeignKey("subcategories.id", ondelete="RESTRICT"), nullable=False, index=True)
    metal_type = Column(String, nullable=False, index=True)
    gross_weight = Column(Numeric(10, 3), nullable=False, default=0)   # grams
    net_weight = Column(Numeric(10, 3), nullable=False, default=0)     # grams (metal only)
    gemstone_cost = Column(Numeric(14, 2), nullable=False, default=0)
    pricing_mode = Column(String, default=PricingMode.SUBCATEGORY_DYNAMIC, nullable=False)
    static_price = Column(Numeric(14, 2), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Written by the pricing engine only
    price_breakdown = Column(JSON, nullable=True)
    calculated_price = Column(Numeric(14, 2), nullable=True)
    last_calculated = Column(DateTime(timezone=True), nullable=True)

    subcategory = relationship("Subcategory", back_populates="products")
    variants = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan",
        order_by="ProductVariant.id",
    )

    @property
    def is_dynamic(self) -> bool:
        return self.pricing_mode == PricingMode.SUBCATEGORY_DYNAMIC

    def __repr__(self):
        return f"<Product {self.name} ({self.net_weight}g {self.metal_type})>"


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String, unique=True, nullable=True)
    label = Column(String, nullable=True)     # e.g. "Size 12"
    gross_weight = Column(Numeric(10, 3), nullable=False, default=0)
    net_weight = Column(Numeric(10, 3), nullable=False, default=0)
    gemstone_cost = Column(Numeric(14, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    price_breakdown = Column(JSON, nullable=True)
    calculated_price = Column(Numeric(14, 2), nullable=True)
    last_calculated = Column(DateTime(timezone=True), nullable=True)

    product = relationship("Product", back_populates="variants")

    def __repr__(self):
        return f"<ProductVariant {self.label or self.id} of product {self.product_id}>"
