"""
Pricing Module - Freeze Manager
=================================
Lock a configuration component to a fixed value, or release it back to
live calculation.

A configuration-level freeze is not tied to one product: the frozen figure
is computed against a canonical sample (FREEZE_SAMPLE_GROSS_WEIGHT /
FREEZE_SAMPLE_NET_WEIGHT) at the current rate of the subcategory's metal.

Products are never touched here; a recalculation picks the change up.
"""

import dataclasses
import logging
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from common.events import (
    publish_after_commit, CONFIG_CHANGED, COMPONENT_FROZEN, COMPONENT_UNFROZEN,
)
from common.exceptions import (
    AlreadyUnfrozenError, ComponentNotFoundError, FreezeReasonRequiredError,
)
from common.helpers import now_utc
from config import settings
from modules.pricing.calculator import active_components, build_context, evaluate_components
from modules.pricing.config_service import config_service
from modules.pricing.models import (
    ConfigComponent, FreezeAction, FreezeHistoryEntry, PricingConfiguration,
)
from modules.pricing.service import get_metal_rate

logger = logging.getLogger("karat.pricing.freeze")


class FreezeService:

    def _sample_value(self, config: PricingConfiguration, target: ConfigComponent, metal_rate: Decimal) -> Decimal:
        """Live value of `target` (ignoring its own freeze) in the canonical sample context."""
        context = build_context(
            settings.FREEZE_SAMPLE_NET_WEIGHT, metal_rate, settings.FREEZE_SAMPLE_GROSS_WEIGHT,
        )
        specs = []
        for comp in config.components:
            spec = comp.to_spec()
            if comp is target:
                spec = dataclasses.replace(spec, is_active=True, frozen_value=None)
            specs.append(spec)

        lines, _ = evaluate_components(active_components(specs), context)
        for line in lines:
            if line.component_key == target.component_key:
                return line.value
        raise ComponentNotFoundError(target.component_key)

    def _metal_rate(self, db: Session, config: PricingConfiguration) -> Decimal:
        return get_metal_rate(db, config.subcategory.metal_type)

    def _record(self, db: Session, config: PricingConfiguration, action: FreezeAction, key: str,
                before, after, metal_rate, reason, actor: str):
        entry = FreezeHistoryEntry(
            action=action.value,
            component_key=key,
            value_before=before,
            value_after=after,
            metal_rate=metal_rate,
            reason=reason,
            actor=actor,
            created_at=now_utc(),
        )
        config.freeze_history.append(entry)
        return entry

    def freeze_component(self, db: Session, config_id: int, component_key: str, reason: str, actor: str) -> Decimal:
        """
        Freeze a component at its current sample value.

        Returns:
            The frozen value.

        Raises:
            ComponentNotFoundError, FreezeReasonRequiredError
        """
        config = config_service.get(db, config_id)
        comp = config.component(component_key)
        if comp is None:
            raise ComponentNotFoundError(component_key)
        if not reason or not reason.strip():
            raise FreezeReasonRequiredError()

        metal_rate = self._metal_rate(db, config)
        value = self._sample_value(config, comp, metal_rate)
        before = comp.frozen_value if comp.is_frozen else comp.value

        comp.is_frozen = True
        comp.frozen_value = value
        comp.frozen_at_metal_rate = metal_rate
        comp.freeze_reason = reason.strip()
        comp.frozen_by = actor
        comp.frozen_at = now_utc()

        self._record(db, config, FreezeAction.FREEZE, component_key, before, value, metal_rate, comp.freeze_reason, actor)
        config.bump_version(actor)
        db.flush()

        payload = {"config_id": config.id, "component_key": component_key, "value": str(value), "actor": actor}
        publish_after_commit(db, COMPONENT_FROZEN, payload)
        publish_after_commit(db, CONFIG_CHANGED, {**payload, "version": config.version, "change": "frozen"})
        logger.info(f"Config {config.id}: '{component_key}' frozen at {value} (rate {metal_rate}) by {actor}")
        return value

    def unfreeze_component(self, db: Session, config_id: int, component_key: str, actor: str) -> Decimal:
        """
        Release a frozen component.

        Returns:
            The live value it recomputes to under the current rate.

        Raises:
            ComponentNotFoundError, AlreadyUnfrozenError
        """
        config = config_service.get(db, config_id)
        comp = config.component(component_key)
        if comp is None:
            raise ComponentNotFoundError(component_key)
        if not comp.is_frozen:
            raise AlreadyUnfrozenError(component_key)

        outgoing = comp.frozen_value
        comp.clear_freeze()

        metal_rate = self._metal_rate(db, config)
        value = self._sample_value(config, comp, metal_rate)

        self._record(db, config, FreezeAction.UNFREEZE, component_key, outgoing, value, metal_rate, None, actor)
        config.bump_version(actor)
        db.flush()

        payload = {"config_id": config.id, "component_key": component_key, "value": str(value), "actor": actor}
        publish_after_commit(db, COMPONENT_UNFROZEN, payload)
        publish_after_commit(db, CONFIG_CHANGED, {**payload, "version": config.version, "change": "unfrozen"})
        logger.info(f"Config {config.id}: '{component_key}' unfrozen ({outgoing} -> {value}) by {actor}")
        return value

    def freeze_history(self, db: Session, config_id: int) -> List[FreezeHistoryEntry]:
        config = config_service.get(db, config_id)
        return list(config.freeze_history)


# Singleton
freeze_service = FreezeService()
