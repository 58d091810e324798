"""
Pricing Module - Configuration Resolver
=========================================
Finds the pricing configuration that applies to a subcategory: its own,
or the nearest ancestor's. Read-only.

Results are cached per subcategory id and dropped whenever a configuration
or the hierarchy changes (see common.events).
"""

import logging
import threading
from typing import Dict, List, Tuple

from sqlalchemy.orm import Session

from common.events import bus, CONFIG_CHANGED, HIERARCHY_CHANGED
from common.exceptions import CorruptHierarchyError, NoPricingConfigurationError, NotFoundError
from modules.catalog.models import Subcategory
from modules.pricing.models import PricingConfiguration

logger = logging.getLogger("karat.pricing")


class ConfigurationResolver:

    def __init__(self):
        self._cache: Dict[int, Tuple[int, int]] = {}   # node_id -> (config_id, source_node_id)
        self._lock = threading.Lock()

    def resolve(self, db: Session, node_id: int, use_cache: bool = True) -> Tuple[PricingConfiguration, int]:
        """
        use_cache=False walks the tree as the session sees it (uncommitted edits included).

        Returns:
            (PricingConfiguration, source_node_id)

        Raises:
            NotFoundError: unknown subcategory
            NoPricingConfigurationError: no owner up to the root
            CorruptHierarchyError: cycle, dangling parent, or flag without a row
        """
        if not use_cache:
            return self._walk(db, node_id)

        with self._lock:
            cached = self._cache.get(node_id)
        if cached:
            config = db.query(PricingConfiguration).get(cached[0])
            if config is not None:
                return config, cached[1]

        config, source_id = self._walk(db, node_id)
        with self._lock:
            self._cache[node_id] = (config.id, source_id)
        return config, source_id

    def _walk(self, db: Session, node_id: int) -> Tuple[PricingConfiguration, int]:
        node = db.query(Subcategory).get(node_id)
        if node is None:
            raise NotFoundError(f"Subcategory not found: {node_id}")

        visited = set()
        while node is not None:
            if node.id in visited:
                raise CorruptHierarchyError(f"Cycle detected in subcategory tree at node {node.id}.")
            visited.add(node.id)

            if node.has_pricing_config:
                config = (
                    db.query(PricingConfiguration)
                    .filter(PricingConfiguration.subcategory_id == node.id)
                    .first()
                )
                if config is None:
                    raise CorruptHierarchyError(
                        f"Subcategory {node.id} is flagged as configured but has no pricing configuration."
                    )
                return config, node.id

            if node.parent_id is None:
                break
            parent = db.query(Subcategory).get(node.parent_id)
            if parent is None:
                raise CorruptHierarchyError(f"Subcategory {node.id} points to missing parent {node.parent_id}.")
            node = parent

        raise NoPricingConfigurationError(node_id)

    def inheriting_subcategory_ids(self, db: Session, source_id: int) -> List[int]:
        """The source node plus every descendant that resolves to it (stops at nodes with their own config)."""
        result = [source_id]
        frontier = [source_id]
        seen = {source_id}
        while frontier:
            children = (
                db.query(Subcategory.id)
                .filter(
                    Subcategory.parent_id.in_(frontier),
                    Subcategory.has_pricing_config.is_(False),
                )
                .all()
            )
            frontier = [row.id for row in children if row.id not in seen]
            seen.update(frontier)
            result.extend(frontier)
        return result

    def invalidate(self, payload: dict = None):
        with self._lock:
            size = len(self._cache)
            self._cache.clear()
        if size:
            logger.debug(f"Resolver cache cleared ({size} entries)")


# Singleton
resolver = ConfigurationResolver()
bus.subscribe(CONFIG_CHANGED, resolver.invalidate)
bus.subscribe(HIERARCHY_CHANGED, resolver.invalidate)


def resolve_configuration(db: Session, node_id: int) -> Tuple[PricingConfiguration, int]:
    return resolver.resolve(db, node_id)
