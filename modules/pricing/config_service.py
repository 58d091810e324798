"""
Pricing Module - Configuration Authoring Service
==================================================
Create and edit a subcategory's pricing configuration.

Every mutation validates the resulting configuration, bumps its version
(read by the recalculation engine's optimistic check) and queues a
CONFIG_CHANGED event that is delivered once the caller commits.
Services flush; callers commit.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from common.events import publish_after_commit, CONFIG_CHANGED, HIERARCHY_CHANGED
from common.exceptions import (
    ComponentNotFoundError, DuplicateError, InvalidConfigurationError,
    NoPricingConfigurationError, NotFoundError, ValidationError,
)
from common.helpers import to_decimal
from modules.catalog.models import Product, PricingMode, Subcategory
from modules.pricing.component_service import component_service
from modules.pricing.models import (
    CalculationType, ConfigComponent, MetalPriceMode, PercentageBase,
    PriceComponent, PricingConfiguration,
)
from modules.pricing.resolver import resolver

logger = logging.getLogger("karat.pricing")

UPDATABLE_FIELDS = (
    "component_name", "calculation_type", "value", "percentage_of", "metal_price_mode",
    "manual_metal_price", "is_active", "is_visible", "sort_order",
)


class PricingConfigService:

    # ------------------------------------------
    # Lookup
    # ------------------------------------------

    def get(self, db: Session, config_id: int) -> PricingConfiguration:
        config = db.query(PricingConfiguration).get(config_id)
        if config is None:
            raise NotFoundError(f"Pricing configuration not found: {config_id}")
        return config

    def get_for_subcategory(self, db: Session, subcategory_id: int) -> Optional[PricingConfiguration]:
        return (
            db.query(PricingConfiguration)
            .filter(PricingConfiguration.subcategory_id == subcategory_id)
            .first()
        )

    def _component(self, config: PricingConfiguration, key: str) -> ConfigComponent:
        comp = config.component(key)
        if comp is None:
            raise ComponentNotFoundError(key)
        return comp

    # ------------------------------------------
    # Validation
    # ------------------------------------------

    def validate(self, config: PricingConfiguration) -> List[str]:
        """Authoring rules. Returns a list of problems (empty when valid)."""
        errors = []
        components = list(config.components)

        metal_lines = [
            c for c in components
            if c.is_active and c.calculation_type == CalculationType.METAL_COST.value
        ]
        if len(metal_lines) != 1:
            errors.append(f"Exactly one active METAL_COST component is required (found {len(metal_lines)}).")

        orders = [c.sort_order for c in components]
        if len(orders) != len(set(orders)):
            errors.append("Component sort orders must be unique.")

        for comp in components:
            if not to_decimal(comp.value).is_finite():
                errors.append(f"Component '{comp.component_key}' has a non-numeric value.")
                continue
            if comp.metal_price_mode == MetalPriceMode.MANUAL.value:
                if comp.manual_metal_price is None or to_decimal(comp.manual_metal_price) <= 0:
                    errors.append(f"Component '{comp.component_key}' uses MANUAL mode without a positive manual price.")
                    continue
            # kind-specific parameter checks (percentage base, calculation type)
            try:
                comp.to_spec()
            except InvalidConfigurationError as e:
                errors.append(e.message)
        return errors

    def _ensure_valid(self, config: PricingConfiguration):
        errors = self.validate(config)
        if errors:
            raise InvalidConfigurationError(" ".join(errors))

    def _touch(self, db: Session, config: PricingConfiguration, actor: str, change: str):
        self._ensure_valid(config)
        config.bump_version(actor)
        db.flush()
        self.refresh_affected_count(db, config.id)
        publish_after_commit(db, CONFIG_CHANGED, {
            "config_id": config.id,
            "subcategory_id": config.subcategory_id,
            "version": config.version,
            "change": change,
            "actor": actor,
        })
        logger.info(f"Pricing config {config.id} v{config.version}: {change} (by {actor})")

    # ------------------------------------------
    # Creation
    # ------------------------------------------

    def _instance_from(self, definition: PriceComponent, overrides: dict, sort_order: int) -> ConfigComponent:
        kind = overrides.get("calculation_type") or definition.calculation_type
        percentage_of = overrides.get("percentage_of") or definition.percentage_of
        if kind == CalculationType.PERCENTAGE.value and not percentage_of:
            percentage_of = PercentageBase.METAL_COST.value
        metal_mode = overrides.get("metal_price_mode") or definition.metal_price_mode
        if kind == CalculationType.METAL_COST.value and not metal_mode:
            metal_mode = MetalPriceMode.AUTO.value

        value = overrides.get("value")
        return ConfigComponent(
            component_key=definition.key,
            component_name=overrides.get("component_name") or definition.name,
            calculation_type=CalculationType(kind).value,
            value=to_decimal(value if value is not None else definition.default_value),
            sort_order=overrides.get("sort_order") if overrides.get("sort_order") is not None else sort_order,
            is_active=overrides.get("is_active", definition.is_active),
            is_visible=overrides.get("is_visible", definition.is_visible),
            is_system=definition.is_system_component,
            percentage_of=percentage_of if kind == CalculationType.PERCENTAGE.value else None,
            metal_price_mode=metal_mode if kind == CalculationType.METAL_COST.value else None,
            manual_metal_price=to_decimal(overrides["manual_metal_price"]) if overrides.get("manual_metal_price") is not None else None,
        )

    def _new_config(self, db: Session, subcategory_id: int, actor: str) -> PricingConfiguration:
        node = db.query(Subcategory).get(subcategory_id)
        if node is None:
            raise NotFoundError(f"Subcategory not found: {subcategory_id}")
        if node.has_pricing_config or self.get_for_subcategory(db, subcategory_id) is not None:
            raise DuplicateError(f"Subcategory {subcategory_id} already has a pricing configuration.")
        config = PricingConfiguration(subcategory_id=subcategory_id, version=0, created_by=actor, updated_by=actor)
        node.has_pricing_config = True
        db.add(config)
        return config

    def create_default(self, db: Session, subcategory_id: int, actor: str = "system") -> PricingConfiguration:
        """Own configuration built from the system components."""
        definitions = component_service.list_system(db)
        if not definitions:
            raise InvalidConfigurationError("No system price components exist; seed them first.")
        config = self._new_config(db, subcategory_id, actor)
        for index, definition in enumerate(definitions):
            config.components.append(self._instance_from(definition, {}, definition.sort_order or index))
        db.flush()
        self._touch(db, config, actor, "created (default)")
        self._refresh_parent_owner(db, subcategory_id)
        self._publish_hierarchy(db, subcategory_id)
        return config

    def create(self, db: Session, subcategory_id: int, components: List[dict], actor: str) -> PricingConfiguration:
        """
        Own configuration from explicit component entries.
        Each entry: {"component_key": ..., plus optional overrides}.
        """
        if not components:
            raise InvalidConfigurationError("A pricing configuration needs at least one component.")
        config = self._new_config(db, subcategory_id, actor)
        seen = set()
        for index, entry in enumerate(components, start=1):
            key = entry.get("component_key")
            if key in seen:
                raise DuplicateError(f"Component '{key}' listed twice.")
            seen.add(key)
            definition = component_service.require(db, key)
            config.components.append(self._instance_from(definition, entry, index))
        db.flush()
        self._touch(db, config, actor, "created")
        self._refresh_parent_owner(db, subcategory_id)
        self._publish_hierarchy(db, subcategory_id)
        return config

    # ------------------------------------------
    # Component edits
    # ------------------------------------------

    def add_component(self, db: Session, config_id: int, component_key: str, overrides: dict, actor: str) -> ConfigComponent:
        config = self.get(db, config_id)
        definition = component_service.require(db, component_key)
        if config.component(component_key) is not None:
            raise DuplicateError(f"Component '{component_key}' already exists in this configuration.")

        next_order = max((c.sort_order for c in config.components), default=0) + 1
        comp = self._instance_from(definition, overrides or {}, next_order)
        config.components.append(comp)
        self._touch(db, config, actor, f"added {component_key}")
        return comp

    def update_component(self, db: Session, config_id: int, component_key: str, updates: dict, actor: str) -> ConfigComponent:
        config = self.get(db, config_id)
        comp = self._component(config, component_key)
        if comp.is_frozen:
            raise ValidationError(f"Cannot update frozen component: {component_key}. Unfreeze first.")

        unknown = {k for k, v in updates.items() if v is not None} - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        for field_name in UPDATABLE_FIELDS:
            value = updates.get(field_name)
            if value is None:
                continue
            if field_name in ("value", "manual_metal_price"):
                value = to_decimal(value)
            elif field_name == "calculation_type":
                try:
                    value = CalculationType(value).value
                except ValueError:
                    raise InvalidConfigurationError(f"Invalid calculation type: {value}")
            setattr(comp, field_name, value)

        self._touch(db, config, actor, f"updated {component_key}")
        return comp

    def remove_component(self, db: Session, config_id: int, component_key: str, actor: str):
        config = self.get(db, config_id)
        comp = self._component(config, component_key)
        if comp.is_system:
            raise ValidationError("Cannot remove system components.")
        config.components.remove(comp)
        self._touch(db, config, actor, f"removed {component_key}")

    def reorder(self, db: Session, config_id: int, ordered_keys: List[str], actor: str) -> PricingConfiguration:
        config = self.get(db, config_id)
        current = {c.component_key for c in config.components}
        if len(ordered_keys) != len(set(ordered_keys)) or set(ordered_keys) != current:
            raise ValidationError("Reorder must list every component of the configuration exactly once.")
        for position, key in enumerate(ordered_keys, start=1):
            config.component(key).sort_order = position
        config.components.sort(key=lambda c: c.sort_order)
        self._touch(db, config, actor, "reordered")
        return config

    # ------------------------------------------
    # Inheritance
    # ------------------------------------------

    def detach(self, db: Session, subcategory_id: int, actor: str):
        """Drop a node's own configuration; it inherits from its ancestors again."""
        config = self.get_for_subcategory(db, subcategory_id)
        if config is None:
            raise NotFoundError(f"Subcategory {subcategory_id} has no own pricing configuration.")
        node = config.subcategory
        config_id = config.id
        node.has_pricing_config = False
        db.delete(config)
        db.flush()
        # the products now count toward the ancestor that took over
        self.refresh_for_subcategory(db, subcategory_id)
        publish_after_commit(db, CONFIG_CHANGED, {
            "config_id": config_id, "subcategory_id": subcategory_id, "change": "detached", "actor": actor,
        })
        self._publish_hierarchy(db, subcategory_id)
        logger.info(f"Pricing config {config_id} detached from subcategory {subcategory_id} (by {actor})")

    def _publish_hierarchy(self, db: Session, subcategory_id: int):
        publish_after_commit(db, HIERARCHY_CHANGED, {"subcategory_id": subcategory_id})

    def refresh_affected_count(self, db: Session, config_id: int) -> int:
        """Recount dynamic, active products that inherit this configuration."""
        config = self.get(db, config_id)
        node_ids = resolver.inheriting_subcategory_ids(db, config.subcategory_id)
        count = (
            db.query(Product)
            .filter(
                Product.subcategory_id.in_(node_ids),
                Product.is_active == True,
                Product.pricing_mode == PricingMode.SUBCATEGORY_DYNAMIC.value,
            )
            .count()
        )
        config.affected_product_count = count
        db.flush()
        return count

    def refresh_for_subcategory(self, db: Session, subcategory_id: int) -> Optional[int]:
        """Recount whichever configuration applies to a subcategory now. None when none does."""
        try:
            config, _ = resolver.resolve(db, subcategory_id, use_cache=False)
        except NoPricingConfigurationError:
            return None
        return self.refresh_affected_count(db, config.id)

    def _refresh_parent_owner(self, db: Session, subcategory_id: int):
        node = db.query(Subcategory).get(subcategory_id)
        if node is not None and node.parent_id is not None:
            self.refresh_for_subcategory(db, node.parent_id)


# Singleton
config_service = PricingConfigService()
