"""
Pricing Module - API Routes
=============================
JSON API for price components, subcategory configurations, freezes, and
metal prices. Actor comes from the X-Actor header.

Endpoints:
  GET    /api/pricing/components                               - Active component catalog
  POST   /api/pricing/components                               - Create component
  PATCH  /api/pricing/components/{key}                         - Update component
  DELETE /api/pricing/components/{key}                         - Soft delete component
  POST   /api/pricing/subcategories/{id}/config                - Create config (default or explicit)
  DELETE /api/pricing/subcategories/{id}/config                - Detach (inherit again)
  GET    /api/pricing/configs/{id}                             - Configuration detail
  POST   /api/pricing/configs/{id}/components                  - Add component
  PATCH  /api/pricing/configs/{id}/components/{key}            - Update component
  DELETE /api/pricing/configs/{id}/components/{key}            - Remove component
  PUT    /api/pricing/configs/{id}/order                       - Reorder components
  POST   /api/pricing/configs/{id}/components/{key}/freeze     - Freeze
  POST   /api/pricing/configs/{id}/components/{key}/unfreeze   - Unfreeze
  GET    /api/pricing/configs/{id}/freeze-history              - Freeze audit trail
  GET    /api/pricing/metal-prices                             - Current rates
  PUT    /api/pricing/metal-prices/{metal_type}                - Manual rate update
  GET    /api/pricing/metal-prices/{metal_type}/history        - Rate history

Mutating configuration routes accept ?recalculate=true to dispatch a
recalculation for the configuration once the change is committed.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.deps import get_actor
from common.helpers import money_str
from modules.pricing.component_service import component_service
from modules.pricing.config_service import config_service
from modules.pricing.freeze_service import freeze_service
from modules.pricing.models import (
    CalculationType, ConfigComponent, MetalPriceMode, PercentageBase,
    PriceComponent, PricingConfiguration,
)
from modules.pricing.service import list_metal_prices, metal_price_history, update_metal_price
from modules.recalculation.service import RecalculationTarget, recalculation_service


router = APIRouter(prefix="/api/pricing", tags=["pricing-api"])


# ==========================================
# Schemas
# ==========================================

class ComponentCreate(BaseModel):
    key: str = Field(..., min_length=1, max_length=60)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    calculation_type: CalculationType
    default_value: Decimal = Decimal("0")
    percentage_of: Optional[PercentageBase] = None
    metal_price_mode: Optional[MetalPriceMode] = None
    is_visible: bool = True
    sort_order: int = 0


class ComponentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    default_value: Optional[Decimal] = None
    calculation_type: Optional[CalculationType] = None
    percentage_of: Optional[PercentageBase] = None
    metal_price_mode: Optional[MetalPriceMode] = None
    is_active: Optional[bool] = None
    is_visible: Optional[bool] = None
    sort_order: Optional[int] = None


class ConfigComponentIn(BaseModel):
    component_key: str
    component_name: Optional[str] = None
    calculation_type: Optional[CalculationType] = None
    value: Optional[Decimal] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None
    is_visible: Optional[bool] = None
    percentage_of: Optional[PercentageBase] = None
    metal_price_mode: Optional[MetalPriceMode] = None
    manual_metal_price: Optional[Decimal] = Field(None, gt=0)


class ConfigCreate(BaseModel):
    # empty -> default configuration from system components
    components: List[ConfigComponentIn] = []


class ConfigComponentUpdate(BaseModel):
    component_name: Optional[str] = None
    calculation_type: Optional[CalculationType] = None
    value: Optional[Decimal] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None
    is_visible: Optional[bool] = None
    percentage_of: Optional[PercentageBase] = None
    metal_price_mode: Optional[MetalPriceMode] = None
    manual_metal_price: Optional[Decimal] = Field(None, gt=0)


class ReorderRequest(BaseModel):
    keys: List[str] = Field(..., min_length=1)


class FreezeRequest(BaseModel):
    reason: str = Field("", max_length=500)


class MetalPriceUpdate(BaseModel):
    price_per_gram: Decimal = Field(..., gt=0)


def _clean(model: BaseModel) -> dict:
    """Drop unset fields and unwrap enums to their values."""
    data = model.model_dump(exclude_none=True)
    return {k: (v.value if hasattr(v, "value") else v) for k, v in data.items()}


def _component_dict(comp: PriceComponent) -> dict:
    return {
        "key": comp.key,
        "name": comp.name,
        "description": comp.description,
        "calculation_type": comp.calculation_type,
        "default_value": str(comp.default_value),
        "percentage_of": comp.percentage_of,
        "metal_price_mode": comp.metal_price_mode,
        "is_system_component": comp.is_system_component,
        "is_active": comp.is_active,
        "is_visible": comp.is_visible,
        "sort_order": comp.sort_order,
    }


def _instance_dict(comp: ConfigComponent) -> dict:
    return {
        "component_key": comp.component_key,
        "component_name": comp.component_name,
        "calculation_type": comp.calculation_type,
        "value": str(comp.value),
        "sort_order": comp.sort_order,
        "is_active": comp.is_active,
        "is_visible": comp.is_visible,
        "is_system": comp.is_system,
        "percentage_of": comp.percentage_of,
        "metal_price_mode": comp.metal_price_mode,
        "manual_metal_price": money_str(comp.manual_metal_price),
        "is_frozen": comp.is_frozen,
        "frozen_value": money_str(comp.frozen_value),
        "frozen_at_metal_rate": money_str(comp.frozen_at_metal_rate),
        "freeze_reason": comp.freeze_reason,
        "frozen_by": comp.frozen_by,
    }


def _config_dict(config: PricingConfiguration) -> dict:
    return {
        "id": config.id,
        "subcategory_id": config.subcategory_id,
        "version": config.version,
        "affected_product_count": config.affected_product_count,
        "components": [_instance_dict(c) for c in config.components],
    }


def _maybe_recalculate(db: Session, config_id: int, recalculate: bool, actor: str) -> Optional[dict]:
    if not recalculate:
        return None
    return recalculation_service.execute_recalculation(
        db, RecalculationTarget.for_config(config_id), triggered_by=actor,
    )


# ==========================================
# Component catalog
# ==========================================

@router.get("/components")
def list_components(db: Session = Depends(get_db)):
    return {"success": True, "components": [_component_dict(c) for c in component_service.list_active(db)]}


@router.post("/components", status_code=201)
def create_component(body: ComponentCreate, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    comp = component_service.create(db, _clean(body), actor=actor)
    db.commit()
    return {"success": True, "component": _component_dict(comp)}


@router.patch("/components/{key}")
def update_component(key: str, body: ComponentUpdate, db: Session = Depends(get_db)):
    comp = component_service.update(db, key, _clean(body))
    db.commit()
    return {"success": True, "component": _component_dict(comp)}


@router.delete("/components/{key}")
def delete_component(key: str, db: Session = Depends(get_db)):
    component_service.delete(db, key)
    db.commit()
    return {"success": True}


# ==========================================
# Configurations
# ==========================================

@router.post("/subcategories/{subcategory_id}/config", status_code=201)
def create_config(
    subcategory_id: int,
    body: ConfigCreate,
    recalculate: bool = Query(False),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    if body.components:
        config = config_service.create(db, subcategory_id, [_clean(c) for c in body.components], actor)
    else:
        config = config_service.create_default(db, subcategory_id, actor)
    db.commit()
    job = _maybe_recalculate(db, config.id, recalculate, actor)
    return {"success": True, "config": _config_dict(config), "recalculation": job}


@router.delete("/subcategories/{subcategory_id}/config")
def detach_config(subcategory_id: int, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    config_service.detach(db, subcategory_id, actor)
    db.commit()
    return {"success": True}


@router.get("/configs/{config_id}")
def get_config(config_id: int, db: Session = Depends(get_db)):
    config = config_service.get(db, config_id)
    return {"success": True, "config": _config_dict(config), "problems": config_service.validate(config)}


@router.post("/configs/{config_id}/components", status_code=201)
def add_config_component(
    config_id: int,
    body: ConfigComponentIn,
    recalculate: bool = Query(False),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    data = _clean(body)
    key = data.pop("component_key")
    comp = config_service.add_component(db, config_id, key, data, actor)
    db.commit()
    job = _maybe_recalculate(db, config_id, recalculate, actor)
    return {"success": True, "component": _instance_dict(comp), "recalculation": job}


@router.patch("/configs/{config_id}/components/{key}")
def update_config_component(
    config_id: int,
    key: str,
    body: ConfigComponentUpdate,
    recalculate: bool = Query(False),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    comp = config_service.update_component(db, config_id, key, _clean(body), actor)
    db.commit()
    job = _maybe_recalculate(db, config_id, recalculate, actor)
    return {"success": True, "component": _instance_dict(comp), "recalculation": job}


@router.delete("/configs/{config_id}/components/{key}")
def remove_config_component(
    config_id: int,
    key: str,
    recalculate: bool = Query(False),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    config_service.remove_component(db, config_id, key, actor)
    db.commit()
    job = _maybe_recalculate(db, config_id, recalculate, actor)
    return {"success": True, "recalculation": job}


@router.put("/configs/{config_id}/order")
def reorder_config(config_id: int, body: ReorderRequest, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    config = config_service.reorder(db, config_id, body.keys, actor)
    db.commit()
    return {"success": True, "config": _config_dict(config)}


# ==========================================
# Freeze
# ==========================================

@router.post("/configs/{config_id}/components/{key}/freeze")
def freeze(
    config_id: int,
    key: str,
    body: FreezeRequest,
    recalculate: bool = Query(False),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    value = freeze_service.freeze_component(db, config_id, key, body.reason, actor)
    db.commit()
    job = _maybe_recalculate(db, config_id, recalculate, actor)
    return {"success": True, "frozen_value": str(value), "recalculation": job}


@router.post("/configs/{config_id}/components/{key}/unfreeze")
def unfreeze(
    config_id: int,
    key: str,
    recalculate: bool = Query(False),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    value = freeze_service.unfreeze_component(db, config_id, key, actor)
    db.commit()
    job = _maybe_recalculate(db, config_id, recalculate, actor)
    return {"success": True, "value": str(value), "recalculation": job}


@router.get("/configs/{config_id}/freeze-history")
def freeze_history(config_id: int, db: Session = Depends(get_db)):
    entries = freeze_service.freeze_history(db, config_id)
    return {"success": True, "history": [e.to_dict() for e in entries]}


# ==========================================
# Metal prices
# ==========================================

@router.get("/metal-prices")
def get_metal_prices(db: Session = Depends(get_db)):
    return {
        "success": True,
        "prices": [
            {
                "metal_type": row.metal_type,
                "label": row.label,
                "price_per_gram": money_str(row.price_per_gram),
                "source": row.source,
                "is_fresh": row.is_fresh,
                "updated_by": row.updated_by,
            }
            for row in list_metal_prices(db)
        ],
    }


@router.put("/metal-prices/{metal_type}")
def set_metal_price(
    metal_type: str,
    body: MetalPriceUpdate,
    recalculate: bool = Query(False),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    row = update_metal_price(db, metal_type, body.price_per_gram, actor)
    db.commit()
    job = None
    if recalculate:
        job = recalculation_service.execute_recalculation(
            db, RecalculationTarget.for_metal_type(row.metal_type), triggered_by=actor,
        )
    return {"success": True, "metal_type": row.metal_type, "price_per_gram": money_str(row.price_per_gram), "recalculation": job}


@router.get("/metal-prices/{metal_type}/history")
def get_metal_price_history(metal_type: str, limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_db)):
    rows = metal_price_history(db, metal_type, limit)
    return {
        "success": True,
        "history": [
            {
                "old_price": money_str(r.old_price),
                "new_price": money_str(r.new_price),
                "change_percent": str(r.change_percent) if r.change_percent is not None else None,
                "source": r.source,
                "changed_by": r.changed_by,
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in rows
        ],
    }
