"""
Pricing Module - Component Catalog Service
============================================
Reusable price components (metal cost, wastage, making charge, ...).
Components referenced by a configuration keep their key and calculation
type; only name, description and default value may change.
"""

import logging
import re
from typing import List, Optional

from sqlalchemy.orm import Session

from common.exceptions import (
    ComponentNotFoundError, DuplicateError, InvalidConfigurationError, ValidationError,
)
from common.helpers import now_utc, to_decimal
from modules.pricing.models import (
    CalculationType, ConfigComponent, MetalPriceMode, PercentageBase, PriceComponent,
    METAL_COST_KEY,
)

logger = logging.getLogger("karat.pricing")

KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

# Fields that stay editable once a configuration uses the component
REFERENCED_EDITABLE = {"name", "description", "default_value"}
EDITABLE = REFERENCED_EDITABLE | {
    "calculation_type", "percentage_of", "metal_price_mode",
    "is_active", "is_visible", "sort_order",
}

SYSTEM_COMPONENTS = [
    {
        "key": METAL_COST_KEY,
        "name": "Metal Cost",
        "description": "Net weight multiplied by the live metal rate",
        "calculation_type": CalculationType.METAL_COST.value,
        "default_value": 0,
        "metal_price_mode": MetalPriceMode.AUTO.value,
        "sort_order": 1,
    },
]


class ComponentCatalogService:

    def list_active(self, db: Session) -> List[PriceComponent]:
        return (
            db.query(PriceComponent)
            .filter(PriceComponent.is_active == True, PriceComponent.is_deleted == False)
            .order_by(PriceComponent.sort_order, PriceComponent.name)
            .all()
        )

    def list_system(self, db: Session) -> List[PriceComponent]:
        return (
            db.query(PriceComponent)
            .filter(PriceComponent.is_system_component == True, PriceComponent.is_deleted == False)
            .order_by(PriceComponent.sort_order)
            .all()
        )

    def get_by_key(self, db: Session, key: str) -> Optional[PriceComponent]:
        return (
            db.query(PriceComponent)
            .filter(PriceComponent.key == key, PriceComponent.is_deleted == False)
            .first()
        )

    def require(self, db: Session, key: str) -> PriceComponent:
        comp = self.get_by_key(db, key)
        if comp is None:
            raise ComponentNotFoundError(key)
        return comp

    def usage_count(self, db: Session, key: str) -> int:
        return db.query(ConfigComponent).filter(ConfigComponent.component_key == key).count()

    # ------------------------------------------
    # Authoring
    # ------------------------------------------

    def _validate_kind(self, calculation_type, percentage_of, metal_price_mode) -> str:
        try:
            kind = CalculationType(calculation_type)
        except ValueError:
            raise InvalidConfigurationError(f"Invalid calculation type: {calculation_type}")
        if kind == CalculationType.PERCENTAGE:
            try:
                PercentageBase(percentage_of or PercentageBase.METAL_COST.value)
            except ValueError:
                raise InvalidConfigurationError(f"Invalid percentage base: {percentage_of}")
        if metal_price_mode is not None:
            try:
                MetalPriceMode(metal_price_mode)
            except ValueError:
                raise InvalidConfigurationError(f"Invalid metal price mode: {metal_price_mode}")
        return kind.value

    def create(self, db: Session, data: dict, actor: str = None, system: bool = False) -> PriceComponent:
        key = (data.get("key") or "").strip().lower()
        if not KEY_PATTERN.match(key):
            raise ValidationError(
                "Key must start with a letter and contain only lowercase letters, numbers, and underscores."
            )
        if self.get_by_key(db, key) is not None:
            raise DuplicateError(f"A price component with key '{key}' already exists.")

        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Component name is required.")

        kind = self._validate_kind(
            data.get("calculation_type"), data.get("percentage_of"), data.get("metal_price_mode"),
        )
        percentage_of = None
        if kind == CalculationType.PERCENTAGE.value:
            percentage_of = data.get("percentage_of") or PercentageBase.METAL_COST.value

        comp = PriceComponent(
            key=key,
            name=name,
            description=data.get("description"),
            calculation_type=kind,
            default_value=to_decimal(data.get("default_value", 0)),
            percentage_of=percentage_of,
            metal_price_mode=data.get("metal_price_mode"),
            is_system_component=system,
            is_active=data.get("is_active", True),
            is_visible=data.get("is_visible", True),
            sort_order=data.get("sort_order", 0),
            created_by=actor,
        )
        db.add(comp)
        db.flush()
        logger.info(f"Price component '{key}' created by {actor}")
        return comp

    def update(self, db: Session, key: str, data: dict) -> PriceComponent:
        comp = self.require(db, key)
        changes = {k: v for k, v in data.items() if v is not None}

        unknown = set(changes) - EDITABLE
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        if self.usage_count(db, key) > 0:
            locked = set(changes) - REFERENCED_EDITABLE
            if locked:
                raise ValidationError(
                    f"Component '{key}' is used by a pricing configuration; "
                    f"only name, description and default value can change."
                )

        if {"calculation_type", "percentage_of", "metal_price_mode"} & set(changes):
            self._validate_kind(
                changes.get("calculation_type", comp.calculation_type),
                changes.get("percentage_of", comp.percentage_of),
                changes.get("metal_price_mode", comp.metal_price_mode),
            )

        for field_name, value in changes.items():
            if field_name == "default_value":
                value = to_decimal(value)
            elif field_name == "calculation_type":
                value = CalculationType(value).value
            setattr(comp, field_name, value)
        db.flush()
        return comp

    def delete(self, db: Session, key: str) -> PriceComponent:
        """Soft delete. The key is mangled so it can be reused."""
        comp = self.require(db, key)
        if comp.is_system_component:
            raise ValidationError("System components cannot be deleted.")
        used = self.usage_count(db, key)
        if used:
            raise ValidationError(f"Component is used in {used} pricing configuration(s).")

        comp.is_deleted = True
        comp.deleted_at = now_utc()
        comp.is_active = False
        comp.key = f"{comp.key}_deleted_{comp.id}"
        db.flush()
        logger.info(f"Price component '{key}' soft-deleted")
        return comp

    def seed_system_components(self, db: Session) -> int:
        """Create missing system components. Caller must commit."""
        created = 0
        for data in SYSTEM_COMPONENTS:
            if self.get_by_key(db, data["key"]) is None:
                self.create(db, data, actor="system", system=True)
                created += 1
        return created


# Singleton
component_service = ComponentCatalogService()
