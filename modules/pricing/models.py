"""
Pricing Module - Models
========================
MetalPrice: per-metal spot rate with staleness guard and auto-update support.
MetalPriceHistory: audit row for every rate change.
PriceComponent: catalog of reusable pricing line items.
PricingConfiguration / ConfigComponent: a subcategory's ordered components.
FreezeHistoryEntry: append-only freeze/unfreeze audit trail.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Text,
    ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from config.database import Base


# ==========================================
# Enums
# ==========================================

class MetalType(str, enum.Enum):
    GOLD_24K = "GOLD_24K"
    GOLD_22K = "GOLD_22K"
    SILVER_999 = "SILVER_999"
    SILVER_925 = "SILVER_925"
    PLATINUM = "PLATINUM"


class CalculationType(str, enum.Enum):
    FIXED = "FIXED"
    PER_GRAM = "PER_GRAM"
    PERCENTAGE = "PERCENTAGE"
    METAL_COST = "METAL_COST"


class PercentageBase(str, enum.Enum):
    SUBTOTAL = "subtotal"
    METAL_COST = "metalCost"


class MetalPriceMode(str, enum.Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class FreezeAction(str, enum.Enum):
    FREEZE = "freeze"
    UNFREEZE = "unfreeze"


class PriceSource(str, enum.Enum):
    API = "API"
    MANUAL = "MANUAL"
    CRON = "CRON"


METAL_COST_KEY = "metal_cost"

METAL_LABELS = {
    MetalType.GOLD_24K: "Gold 24K",
    MetalType.GOLD_22K: "Gold 22K",
    MetalType.SILVER_999: "Silver 999",
    MetalType.SILVER_925: "Silver 925",
    MetalType.PLATINUM: "Platinum",
}


# ==========================================
# 📈 Metal prices
# ==========================================

class MetalPrice(Base):
    __tablename__ = "metal_prices"

    id = Column(Integer, primary_key=True)
    metal_type = Column(String(30), unique=True, nullable=False)
    label = Column(String(100), nullable=False)
    price_per_gram = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")
    source = Column(String(10), nullable=False, default=PriceSource.MANUAL)
    stale_after_minutes = Column(Integer, nullable=False, default=1440)
    auto_update = Column(Boolean, default=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_by = Column(String, nullable=True)

    @property
    def is_fresh(self) -> bool:
        """Check if price is within staleness threshold."""
        if not self.updated_at:
            return False
        return self.minutes_since_update <= self.stale_after_minutes

    @property
    def minutes_since_update(self) -> float:
        if not self.updated_at:
            return float("inf")
        from common.helpers import now_utc, as_utc
        return (now_utc() - as_utc(self.updated_at)).total_seconds() / 60

    def __repr__(self):
        return f"<MetalPrice {self.metal_type}={self.price_per_gram}>"


class MetalPriceHistory(Base):
    __tablename__ = "metal_price_history"

    id = Column(Integer, primary_key=True)
    metal_type = Column(String(30), nullable=False, index=True)
    old_price = Column(Numeric(14, 2), nullable=True)
    new_price = Column(Numeric(14, 2), nullable=False)
    change_percent = Column(Numeric(8, 2), nullable=True)
    source = Column(String(10), nullable=False)
    changed_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


# ==========================================
# 🧩 Component catalog
# ==========================================

class PriceComponent(Base):
    __tablename__ = "price_components"

    id = Column(Integer, primary_key=True)
    key = Column(String(60), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    calculation_type = Column(String(20), nullable=False)
    default_value = Column(Numeric(14, 4), nullable=False, default=0)
    percentage_of = Column(String(20), nullable=True)
    metal_price_mode = Column(String(10), nullable=True)
    is_system_component = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<PriceComponent {self.key} ({self.calculation_type})>"


# ==========================================
# ⚙️ Configuration
# ==========================================

class PricingConfiguration(Base):
    __tablename__ = "pricing_configurations"

    id = Column(Integer, primary_key=True)
    subcategory_id = Column(
        Integer, ForeignKey("subcategories.id", ondelete="CASCADE"),
        unique=True, nullable=False,
    )
    version = Column(Integer, nullable=False, default=1)
    affected_product_count = Column(Integer, nullable=False, default=0)
    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    subcategory = relationship("Subcategory", back_populates="pricing_config")
    components = relationship(
        "ConfigComponent", back_populates="configuration",
        cascade="all, delete-orphan", order_by="ConfigComponent.sort_order",
    )
    freeze_history = relationship(
        "FreezeHistoryEntry", back_populates="configuration",
        cascade="all, delete-orphan", order_by="FreezeHistoryEntry.id",
    )

    def component(self, key: str):
        for comp in self.components:
            if comp.component_key == key:
                return comp
        return None

    def bump_version(self, actor: str = None):
        self.version = (self.version or 0) + 1
        if actor:
            self.updated_by = actor

    @property
    def all_frozen(self) -> bool:
        active = [c for c in self.components if c.is_active]
        return bool(active) and all(c.is_frozen for c in active)

    def __repr__(self):
        return f"<PricingConfiguration {self.id} subcategory={self.subcategory_id} v{self.version}>"


class ConfigComponent(Base):
    __tablename__ = "pricing_config_components"
    __table_args__ = (
        UniqueConstraint("config_id", "component_key", name="uq_config_component_key"),
    )

    id = Column(Integer, primary_key=True)
    config_id = Column(Integer, ForeignKey("pricing_configurations.id", ondelete="CASCADE"), nullable=False, index=True)
    component_key = Column(String(60), nullable=False)
    component_name = Column(String(100), nullable=False)
    calculation_type = Column(String(20), nullable=False)
    value = Column(Numeric(14, 4), nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    is_system = Column(Boolean, default=False, nullable=False)

    percentage_of = Column(String(20), nullable=True)
    metal_price_mode = Column(String(10), nullable=True)
    manual_metal_price = Column(Numeric(14, 2), nullable=True)

    # Freeze state
    is_frozen = Column(Boolean, default=False, nullable=False)
    frozen_value = Column(Numeric(14, 2), nullable=True)
    frozen_at_metal_rate = Column(Numeric(14, 2), nullable=True)
    freeze_reason = Column(Text, nullable=True)
    frozen_by = Column(String, nullable=True)
    frozen_at = Column(DateTime(timezone=True), nullable=True)

    configuration = relationship("PricingConfiguration", back_populates="components")

    def to_spec(self):
        """Convert the persisted row into the calculator's typed component."""
        from modules.pricing.calculator import component_spec
        return component_spec(
            key=self.component_key,
            name=self.component_name,
            calculation_type=self.calculation_type,
            value=self.value,
            sort_order=self.sort_order,
            is_active=self.is_active,
            is_visible=self.is_visible,
            percentage_of=self.percentage_of,
            metal_price_mode=self.metal_price_mode,
            manual_metal_price=self.manual_metal_price,
            frozen_value=self.frozen_value if self.is_frozen else None,
        )

    def clear_freeze(self):
        self.is_frozen = False
        self.frozen_value = None
        self.frozen_at_metal_rate = None
        self.freeze_reason = None
        self.frozen_by = None
        self.frozen_at = None

    def __repr__(self):
        flag = " frozen" if self.is_frozen else ""
        return f"<ConfigComponent {self.component_key}#{self.sort_order}{flag}>"


class FreezeHistoryEntry(Base):
    __tablename__ = "pricing_freeze_history"

    id = Column(Integer, primary_key=True)
    config_id = Column(Integer, ForeignKey("pricing_configurations.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(10), nullable=False)
    component_key = Column(String(60), nullable=False)
    value_before = Column(Numeric(14, 2), nullable=True)
    value_after = Column(Numeric(14, 2), nullable=True)
    metal_rate = Column(Numeric(14, 2), nullable=True)
    reason = Column(Text, nullable=True)
    actor = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    configuration = relationship("PricingConfiguration", back_populates="freeze_history")

    def to_dict(self) -> dict:
        from common.helpers import money_str
        return {
            "action": self.action,
            "component_key": self.component_key,
            "value_before": money_str(self.value_before),
            "value_after": money_str(self.value_after),
            "metal_rate": money_str(self.metal_rate),
            "reason": self.reason,
            "actor": self.actor,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
