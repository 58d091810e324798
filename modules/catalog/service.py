"""
Catalog Module - Service Layer
================================
Subcategory hierarchy (parent-pointer tree, cycle-checked) and products.
Services flush; callers commit.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from common.events import publish_after_commit, HIERARCHY_CHANGED
from common.exceptions import (
    CorruptHierarchyError, DuplicateError, NotFoundError, ValidationError,
)
from common.helpers import safe_decimal
from modules.catalog.models import Product, ProductVariant, PricingMode, Subcategory
from modules.pricing.config_service import config_service
from modules.pricing.models import MetalType

logger = logging.getLogger("karat.pricing")


def _metal(value) -> str:
    try:
        return MetalType(value).value
    except ValueError:
        raise ValidationError(f"Unknown metal type: {value}")


def _weight(data: dict, name: str, default=Decimal("0")) -> Decimal:
    raw = data.get(name)
    if raw is None:
        return default
    value = safe_decimal(raw)
    if value is None or not value.is_finite() or value < 0:
        raise ValidationError(f"{name} must be a non-negative number.")
    return value


# ==========================================
# Hierarchy Service
# ==========================================

class HierarchyService:

    def get(self, db: Session, node_id: int) -> Subcategory:
        node = db.query(Subcategory).get(node_id)
        if node is None:
            raise NotFoundError(f"Subcategory not found: {node_id}")
        return node

    def list_children(self, db: Session, parent_id: Optional[int] = None) -> List[Subcategory]:
        return (
            db.query(Subcategory)
            .filter(Subcategory.parent_id == parent_id if parent_id is not None else Subcategory.parent_id.is_(None))
            .order_by(Subcategory.name)
            .all()
        )

    def ancestors(self, db: Session, node_id: int) -> List[Subcategory]:
        """Parent first, root last. Raises CorruptHierarchyError on a cycle."""
        node = self.get(db, node_id)
        chain = []
        seen = {node.id}
        while node.parent_id is not None:
            if node.parent_id in seen:
                raise CorruptHierarchyError(f"Cycle detected in subcategory tree at node {node.parent_id}.")
            parent = db.query(Subcategory).get(node.parent_id)
            if parent is None:
                raise CorruptHierarchyError(f"Subcategory {node.id} points to missing parent {node.parent_id}.")
            seen.add(parent.id)
            chain.append(parent)
            node = parent
        return chain

    def _check_parent(self, db: Session, node_id: Optional[int], parent_id: int):
        """Parent must exist and must not be the node itself or one of its descendants."""
        parent = self.get(db, parent_id)
        if node_id is not None:
            if parent.id == node_id:
                raise ValidationError("A subcategory cannot be its own parent.")
            if node_id in {a.id for a in self.ancestors(db, parent.id)}:
                raise ValidationError(
                    f"Moving subcategory {node_id} under {parent_id} would create a cycle."
                )
        return parent

    def create_subcategory(self, db: Session, data: dict) -> Subcategory:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Subcategory name is required.")

        parent_id = data.get("parent_id")
        parent = self._check_parent(db, None, parent_id) if parent_id is not None else None
        metal_type = data.get("metal_type") or (parent.metal_type if parent else None)
        if not metal_type:
            raise ValidationError("metal_type is required for a root subcategory.")

        node = Subcategory(
            name=name,
            slug=data.get("slug"),
            parent_id=parent_id,
            metal_type=_metal(metal_type),
            has_pricing_config=False,
            is_active=data.get("is_active", True),
        )
        db.add(node)
        db.flush()
        publish_after_commit(db, HIERARCHY_CHANGED, {"subcategory_id": node.id})
        return node

    def move_subcategory(self, db: Session, node_id: int, new_parent_id: Optional[int]) -> Subcategory:
        """Re-parent a node (None makes it a root)."""
        node = self.get(db, node_id)
        if new_parent_id is not None:
            self._check_parent(db, node.id, new_parent_id)
        old_parent = node.parent_id
        node.parent_id = new_parent_id
        db.flush()
        if old_parent is not None:
            config_service.refresh_for_subcategory(db, old_parent)
        config_service.refresh_for_subcategory(db, node.id)
        publish_after_commit(db, HIERARCHY_CHANGED, {
            "subcategory_id": node.id, "old_parent_id": old_parent, "new_parent_id": new_parent_id,
        })
        logger.info(f"Subcategory {node.id} moved: parent {old_parent} -> {new_parent_id}")
        return node


# ==========================================
# Product Service
# ==========================================

class ProductService:

    def get_by_id(self, db: Session, product_id: int) -> Product:
        product = db.query(Product).get(product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {product_id}")
        return product

    def list_for_subcategory(self, db: Session, subcategory_id: int) -> List[Product]:
        return (
            db.query(Product)
            .filter(Product.subcategory_id == subcategory_id)
            .order_by(Product.id)
            .all()
        )

    def create(self, db: Session, data: dict) -> Product:
        node = hierarchy_service.get(db, data["subcategory_id"])
        sku = data.get("sku")
        if sku and db.query(Product).filter(Product.sku == sku).first():
            raise DuplicateError(f"SKU already exists: {sku}")

        gross = _weight(data, "gross_weight")
        net = _weight(data, "net_weight")
        if net > gross:
            raise ValidationError("net_weight cannot exceed gross_weight.")

        mode = PricingMode(data.get("pricing_mode") or PricingMode.SUBCATEGORY_DYNAMIC)
        static_price = safe_decimal(data.get("static_price"))
        if mode == PricingMode.STATIC_PRICE and (static_price is None or static_price < 0):
            raise ValidationError("STATIC_PRICE products need a non-negative static_price.")

        product = Product(
            name=data["name"],
            sku=sku,
            subcategory_id=node.id,
            metal_type=_metal(data.get("metal_type") or node.metal_type),
            gross_weight=gross,
            net_weight=net,
            gemstone_cost=_weight(data, "gemstone_cost"),
            pricing_mode=mode.value,
            static_price=static_price,
            is_active=data.get("is_active", True),
        )
        db.add(product)
        db.flush()

        for variant_data in data.get("variants") or []:
            self.add_variant(db, product, variant_data)
        config_service.refresh_for_subcategory(db, node.id)
        return product

    def add_variant(self, db: Session, product: Product, data: dict) -> ProductVariant:
        gross = _weight(data, "gross_weight", product.gross_weight)
        net = _weight(data, "net_weight", product.net_weight)
        if net > gross:
            raise ValidationError("net_weight cannot exceed gross_weight.")
        variant = ProductVariant(
            sku=data.get("sku"),
            label=data.get("label"),
            gross_weight=gross,
            net_weight=net,
            gemstone_cost=_weight(data, "gemstone_cost", product.gemstone_cost),
            is_active=data.get("is_active", True),
        )
        product.variants.append(variant)
        db.flush()
        return variant


# Singletons
hierarchy_service = HierarchyService()
product_service = ProductService()
