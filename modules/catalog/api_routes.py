"""
Catalog Module - API Routes
=============================
JSON API for the subcategory tree and products.

Endpoints:
  POST  /api/catalog/subcategories                 - Create subcategory
  GET   /api/catalog/subcategories/{id}            - Node, ancestors, effective pricing config
  PATCH /api/catalog/subcategories/{id}/parent     - Re-parent (cycle-checked)
  POST  /api/catalog/products                      - Create product (+ variants)
  GET   /api/catalog/products/{id}/pricing         - Pricing summary
  POST  /api/catalog/products/{id}/calculate       - Recalculate one product now
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.exceptions import ResolutionError
from modules.catalog.models import Product, PricingMode, Subcategory
from modules.catalog.service import hierarchy_service, product_service
from modules.pricing.resolver import resolve_configuration
from modules.pricing.service import calculate_product_price, pricing_summary


router = APIRouter(prefix="/api/catalog", tags=["catalog-api"])


# ==========================================
# Schemas
# ==========================================

class SubcategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    parent_id: Optional[int] = None
    metal_type: Optional[str] = None
    slug: Optional[str] = None


class SubcategoryMove(BaseModel):
    parent_id: Optional[int] = None


class VariantCreate(BaseModel):
    label: Optional[str] = None
    sku: Optional[str] = None
    gross_weight: Optional[Decimal] = Field(None, ge=0)
    net_weight: Optional[Decimal] = Field(None, ge=0)
    gemstone_cost: Optional[Decimal] = Field(None, ge=0)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    subcategory_id: int = Field(..., gt=0)
    sku: Optional[str] = None
    metal_type: Optional[str] = None
    gross_weight: Decimal = Field(Decimal("0"), ge=0)
    net_weight: Decimal = Field(Decimal("0"), ge=0)
    gemstone_cost: Decimal = Field(Decimal("0"), ge=0)
    pricing_mode: PricingMode = PricingMode.SUBCATEGORY_DYNAMIC
    static_price: Optional[Decimal] = Field(None, ge=0)
    variants: List[VariantCreate] = []


def _subcategory_dict(node: Subcategory) -> dict:
    return {
        "id": node.id,
        "name": node.name,
        "parent_id": node.parent_id,
        "metal_type": node.metal_type,
        "has_pricing_config": node.has_pricing_config,
    }


def _product_dict(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "sku": product.sku,
        "subcategory_id": product.subcategory_id,
        "metal_type": product.metal_type,
        "gross_weight": str(product.gross_weight),
        "net_weight": str(product.net_weight),
        "pricing_mode": product.pricing_mode,
        "calculated_price": str(product.calculated_price) if product.calculated_price is not None else None,
        "variants": [
            {"id": v.id, "label": v.label, "net_weight": str(v.net_weight),
             "calculated_price": str(v.calculated_price) if v.calculated_price is not None else None}
            for v in product.variants
        ],
    }


# ==========================================
# Subcategories
# ==========================================

@router.post("/subcategories", status_code=201)
def create_subcategory(body: SubcategoryCreate, db: Session = Depends(get_db)):
    node = hierarchy_service.create_subcategory(db, body.model_dump())
    db.commit()
    return {"success": True, "subcategory": _subcategory_dict(node)}


@router.get("/subcategories/{node_id}")
def get_subcategory(node_id: int, db: Session = Depends(get_db)):
    node = hierarchy_service.get(db, node_id)
    effective = None
    try:
        config, source_id = resolve_configuration(db, node.id)
        effective = {"config_id": config.id, "source_subcategory_id": source_id, "inherited": source_id != node.id}
    except ResolutionError as e:
        effective = {"error": e.message}
    return {
        "success": True,
        "subcategory": _subcategory_dict(node),
        "ancestors": [_subcategory_dict(a) for a in hierarchy_service.ancestors(db, node.id)],
        "pricing": effective,
    }


@router.patch("/subcategories/{node_id}/parent")
def move_subcategory(node_id: int, body: SubcategoryMove, db: Session = Depends(get_db)):
    node = hierarchy_service.move_subcategory(db, node_id, body.parent_id)
    db.commit()
    return {"success": True, "subcategory": _subcategory_dict(node)}


# ==========================================
# Products
# ==========================================

@router.post("/products", status_code=201)
def create_product(body: ProductCreate, db: Session = Depends(get_db)):
    data = body.model_dump()
    data["variants"] = [v.model_dump(exclude_none=True) for v in body.variants]
    product = product_service.create(db, data)
    db.commit()
    return {"success": True, "product": _product_dict(product)}


@router.get("/products/{product_id}/pricing")
def get_product_pricing(product_id: int, db: Session = Depends(get_db)):
    return {"success": True, "pricing": pricing_summary(db, product_id)}


@router.post("/products/{product_id}/calculate")
def calculate_product(product_id: int, require_fresh: bool = False, db: Session = Depends(get_db)):
    product = product_service.get_by_id(db, product_id)
    breakdown = calculate_product_price(db, product, persist=True, require_fresh=require_fresh)
    db.commit()
    return {"success": True, "breakdown": breakdown.to_dict()}
