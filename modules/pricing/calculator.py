"""
Pricing Module - Breakdown Calculator
======================================
Turns an ordered list of pricing components plus a numeric context
(net weight, metal rate) into an itemized price breakdown.

Pure: no database access, no clock, no metal-price lookup. The caller
resolves the configuration and passes the live rate in the context.

Evaluation (active components, ascending sort_order):
    frozen      -> frozen_value verbatim
    METAL_COST  -> net_weight * rate (AUTO) or net_weight * manual price (MANUAL)
    PER_GRAM    -> net_weight * value
    PERCENTAGE  -> base * value / 100, base = running subtotal or running metal cost
    FIXED       -> value

Every line is rounded half-up to 2 places before it is accumulated, so the
subtotal always equals the sum of the line values.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Tuple, Union

from common.exceptions import (
    EmptyConfigurationError, InvalidConfigurationError, InvalidContextError,
)
from common.helpers import money_str, round_money, to_decimal
from config.settings import UNIT_COST_LABEL
from modules.pricing.models import CalculationType, MetalPriceMode, PercentageBase

ZERO = Decimal("0")
HUNDRED = Decimal("100")


# ==========================================
# Component parameters (one shape per calculation kind)
# ==========================================

@dataclass(frozen=True)
class FixedParams:
    amount: Decimal
    kind = CalculationType.FIXED


@dataclass(frozen=True)
class PerGramParams:
    rate: Decimal
    kind = CalculationType.PER_GRAM


@dataclass(frozen=True)
class PercentageParams:
    percent: Decimal
    base: PercentageBase
    kind = CalculationType.PERCENTAGE


@dataclass(frozen=True)
class MetalCostParams:
    mode: MetalPriceMode = MetalPriceMode.AUTO
    manual_price: Optional[Decimal] = None
    kind = CalculationType.METAL_COST

    def __post_init__(self):
        if self.mode == MetalPriceMode.MANUAL and (self.manual_price is None or self.manual_price <= 0):
            raise InvalidConfigurationError("MANUAL metal price mode requires a positive manual price.")


ComponentParams = Union[FixedParams, PerGramParams, PercentageParams, MetalCostParams]


@dataclass(frozen=True)
class ComponentSpec:
    key: str
    name: str
    params: ComponentParams
    sort_order: int = 0
    is_active: bool = True
    is_visible: bool = True
    frozen_value: Optional[Decimal] = None

    @property
    def is_frozen(self) -> bool:
        return self.frozen_value is not None

    @property
    def is_metal_cost(self) -> bool:
        return self.params.kind == CalculationType.METAL_COST


def component_spec(
    key: str,
    name: str,
    calculation_type,
    value=0,
    sort_order: int = 0,
    is_active: bool = True,
    is_visible: bool = True,
    percentage_of=None,
    metal_price_mode=None,
    manual_metal_price=None,
    frozen_value=None,
) -> ComponentSpec:
    """Build a ComponentSpec from flat, persisted fields."""
    try:
        kind = CalculationType(calculation_type)
    except ValueError:
        raise InvalidConfigurationError(f"Unsupported calculation type for '{key}': {calculation_type}")

    if kind == CalculationType.FIXED:
        params = FixedParams(amount=to_decimal(value))
    elif kind == CalculationType.PER_GRAM:
        params = PerGramParams(rate=to_decimal(value))
    elif kind == CalculationType.PERCENTAGE:
        if not percentage_of:
            raise InvalidConfigurationError(f"Percentage component '{key}' needs a base (subtotal or metalCost).")
        try:
            base = PercentageBase(percentage_of)
        except ValueError:
            raise InvalidConfigurationError(f"Invalid percentage base for '{key}': {percentage_of}")
        params = PercentageParams(percent=to_decimal(value), base=base)
    else:
        mode = MetalPriceMode(metal_price_mode) if metal_price_mode else MetalPriceMode.AUTO
        manual = to_decimal(manual_metal_price) if manual_metal_price is not None else None
        params = MetalCostParams(mode=mode, manual_price=manual)

    return ComponentSpec(
        key=key,
        name=name,
        params=params,
        sort_order=sort_order or 0,
        is_active=bool(is_active),
        is_visible=bool(is_visible),
        frozen_value=round_money(frozen_value) if frozen_value is not None else None,
    )


# ==========================================
# Context & results
# ==========================================

@dataclass(frozen=True)
class PricingContext:
    net_weight: Decimal
    metal_rate: Decimal
    gross_weight: Optional[Decimal] = None


def _finite_non_negative(name: str, value) -> Decimal:
    try:
        number = to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidContextError(f"{name} must be a number, got {value!r}")
    if not number.is_finite() or number < 0:
        raise InvalidContextError(f"{name} must be a finite, non-negative number, got {value!r}")
    return number


def build_context(net_weight, metal_rate, gross_weight=None) -> PricingContext:
    """Validate raw inputs and build a PricingContext."""
    return PricingContext(
        net_weight=_finite_non_negative("net_weight", net_weight),
        metal_rate=_finite_non_negative("metal_rate", metal_rate),
        gross_weight=_finite_non_negative("gross_weight", gross_weight) if gross_weight is not None else None,
    )


@dataclass
class BreakdownLine:
    component_key: str
    component_name: str
    value: Decimal
    is_frozen: bool
    is_visible: bool
    is_metal_cost: bool = False

    def to_dict(self) -> dict:
        return {
            "component_key": self.component_key,
            "component_name": self.component_name,
            "value": money_str(self.value),
            "is_frozen": self.is_frozen,
            "is_visible": self.is_visible,
        }


@dataclass
class PriceBreakdown:
    components: List[BreakdownLine]
    subtotal: Decimal
    metal_rate: Decimal
    metal_cost: Decimal
    gemstone_cost: Decimal = ZERO
    total_price: Decimal = ZERO
    metal_type: Optional[str] = None
    last_calculated: Optional[object] = field(default=None, compare=False)

    def line(self, key: str) -> Optional[BreakdownLine]:
        for item in self.components:
            if item.component_key == key:
                return item
        return None

    def to_dict(self) -> dict:
        """JSON-safe form stored on products (money as exact strings)."""
        return {
            "components": [item.to_dict() for item in self.components],
            "metal_type": self.metal_type,
            "metal_rate": money_str(self.metal_rate),
            "metal_cost": money_str(self.metal_cost),
            "gemstone_cost": money_str(self.gemstone_cost),
            "subtotal": money_str(self.subtotal),
            "total_price": money_str(self.total_price),
            "last_calculated": self.last_calculated.isoformat() if self.last_calculated else None,
        }


# ==========================================
# Evaluation
# ==========================================

def _specs_of(configuration) -> List[ComponentSpec]:
    """Accepts a PricingConfiguration row, an object with .components, or a plain iterable."""
    items = getattr(configuration, "components", configuration)
    specs = []
    for item in items or []:
        specs.append(item if isinstance(item, ComponentSpec) else item.to_spec())
    return specs


def active_components(configuration) -> List[ComponentSpec]:
    specs = [s for s in _specs_of(configuration) if s.is_active]
    return sorted(specs, key=lambda s: s.sort_order)


def evaluate_components(
    components: Iterable[ComponentSpec], context: PricingContext
) -> Tuple[List[BreakdownLine], Decimal]:
    """
    Evaluate components in the given order, before hidden-line folding.

    Returns:
        (lines, running metal cost)
    """
    lines: List[BreakdownLine] = []
    subtotal = ZERO
    metal_cost = ZERO

    for spec in components:
        params = spec.params

        if spec.is_frozen:
            value = spec.frozen_value
        elif params.kind == CalculationType.METAL_COST:
            unit = params.manual_price if params.mode == MetalPriceMode.MANUAL else context.metal_rate
            value = context.net_weight * unit
        elif params.kind == CalculationType.PER_GRAM:
            value = context.net_weight * params.rate
        elif params.kind == CalculationType.PERCENTAGE:
            base = subtotal if params.base == PercentageBase.SUBTOTAL else metal_cost
            value = base * params.percent / HUNDRED
        else:
            value = params.amount

        value = round_money(value)
        if spec.is_metal_cost:
            metal_cost = value

        lines.append(BreakdownLine(
            component_key=spec.key,
            component_name=spec.name,
            value=value,
            is_frozen=spec.is_frozen,
            is_visible=spec.is_visible,
            is_metal_cost=spec.is_metal_cost,
        ))
        subtotal += value

    return lines, metal_cost


def _fold_hidden_lines(lines: List[BreakdownLine]) -> Optional[BreakdownLine]:
    """Move hidden line values into the metal cost line. Returns that line if anything moved."""
    target = next((item for item in lines if item.is_metal_cost), None)
    if target is None:
        return None

    hidden_total = ZERO
    for item in lines:
        if item is target or item.is_visible:
            continue
        hidden_total += item.value
        item.value = ZERO

    if hidden_total == ZERO:
        return None

    target.value = round_money(target.value + hidden_total)
    target.component_name = UNIT_COST_LABEL
    return target


def calculate_breakdown(configuration, context: PricingContext, gemstone_cost=0) -> PriceBreakdown:
    """
    Compute the itemized breakdown for one product (or variant).

    Args:
        configuration: PricingConfiguration row or an iterable of ComponentSpec
        context: PricingContext (use build_context to validate raw numbers)
        gemstone_cost: added on top of the subtotal for total_price

    Raises:
        InvalidContextError: negative or non-finite inputs
        EmptyConfigurationError: no active components
    """
    if not isinstance(context, PricingContext):
        context = build_context(context["net_weight"], context["metal_rate"], context.get("gross_weight"))
    gemstone = _finite_non_negative("gemstone_cost", gemstone_cost)

    specs = active_components(configuration)
    if not specs:
        raise EmptyConfigurationError()

    lines, metal_cost = evaluate_components(specs, context)
    subtotal = round_money(sum((item.value for item in lines), ZERO))

    folded = _fold_hidden_lines(lines)
    if folded is not None:
        metal_cost = folded.value

    return PriceBreakdown(
        components=lines,
        subtotal=subtotal,
        metal_rate=round_money(context.metal_rate),
        metal_cost=round_money(metal_cost),
        gemstone_cost=round_money(gemstone),
        total_price=round_money(subtotal + gemstone),
    )
