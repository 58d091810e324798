"""
Karat Pricing - Event Bus
==========================
Lightweight in-process publish/subscribe used for side effects that must
happen only after a configuration write is durable (cache invalidation,
audit hooks, background job kick-off).

Usage:
    from common.events import bus, publish_after_commit, CONFIG_CHANGED

    bus.subscribe(CONFIG_CHANGED, handler)          # handler(payload: dict)
    publish_after_commit(db, CONFIG_CHANGED, {"config_id": 7})
    db.commit()                                     # handler runs here
"""

import logging
from typing import Any, Callable, Dict, List

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger("karat.events")

# Event names
CONFIG_CHANGED = "pricing.config_changed"
HIERARCHY_CHANGED = "pricing.hierarchy_changed"
COMPONENT_FROZEN = "pricing.component_frozen"
COMPONENT_UNFROZEN = "pricing.component_unfrozen"
METAL_PRICE_UPDATED = "pricing.metal_price_updated"
JOB_QUEUED = "recalculation.job_queued"
JOB_FINISHED = "recalculation.job_finished"

_PENDING_KEY = "karat_pending_events"


class EventBus:
    """Synchronous handler registry. A failing handler never breaks the publisher."""

    def __init__(self):
        self._handlers: Dict[str, List[Callable[[dict], Any]]] = {}

    def subscribe(self, event_type: str, handler: Callable[[dict], Any]):
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__name__', handler)} to {event_type}")

    def unsubscribe(self, event_type: str, handler: Callable[[dict], Any]):
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_type: str, payload: dict = None):
        payload = payload or {}
        handlers = list(self._handlers.get(event_type, []))
        logger.debug(f"Publishing {event_type} to {len(handlers)} handler(s)")
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception(f"Handler {getattr(handler, '__name__', handler)} failed for {event_type}")


# Singleton
bus = EventBus()


# ==========================================
# Post-commit delivery
# ==========================================

def publish_after_commit(db: Session, event_type: str, payload: dict = None):
    """Queue an event on the session; delivered after the next successful commit."""
    db.info.setdefault(_PENDING_KEY, []).append((event_type, payload or {}))


@event.listens_for(Session, "after_commit")
def _deliver_pending(session):
    pending = session.info.pop(_PENDING_KEY, [])
    for event_type, payload in pending:
        bus.publish(event_type, payload)


@event.listens_for(Session, "after_soft_rollback")
def _discard_pending(session, previous_transaction):
    # savepoint rollbacks keep the outer transaction (and its events) alive
    if previous_transaction.parent is not None:
        return
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.debug(f"Discarded {len(dropped)} event(s) after rollback")
