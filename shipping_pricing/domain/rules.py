"""
Pricing rule variants.

A PricingRule is one of a closed set of frozen dataclasses; every variant
carries a ``kind`` tag and only the fields that kind needs. The engine
dispatches on ``kind`` through the evaluator registry in
``shipping_pricing.engine.rule_types``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional, Tuple, Union

from .money import D


class RuleKind(str, Enum):
    WEIGHT_BAND = "weight_band"
    DIMENSIONAL = "dimensional"
    TIERED = "tiered"
    PROGRESSIVE_DISCOUNT = "progressive_discount"
    SEASONAL = "seasonal"
    VOLUME_DISCOUNT = "volume_discount"


class DimensionalAction(str, Enum):
    REJECT = "reject"
    SURCHARGE = "surcharge"


class TierDriver(str, Enum):
    DECLARED_VALUE = "declared_value"
    BILLABLE_WEIGHT = "billable_weight"
    ACTUAL_WEIGHT = "actual_weight"
    VOLUME_CM3 = "volume_cm3"


class ProgressiveDriver(str, Enum):
    PERIOD_SHIPMENT_COUNT = "period_shipment_count"
    PERIOD_ORDER_VALUE = "period_order_value"
    DECLARED_VALUE = "declared_value"


@dataclass(frozen=True)
class Breakpoint:
    threshold: Decimal
    percent: Decimal


def _in_band(value: Decimal, lower: Decimal, upper: Optional[Decimal]) -> bool:
    # [lower, upper)
    return value >= lower and (upper is None or value < upper)


@dataclass(frozen=True)
class WeightBandRule:
    kind: ClassVar[RuleKind] = RuleKind.WEIGHT_BAND

    id: str
    weight_from: Decimal
    weight_to: Optional[Decimal]  # None = open-ended
    price: Decimal
    price_per_kg: Decimal = D("0")
    weight_step: Optional[Decimal] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    name: str = ""
    sort_order: int = 0
    active: bool = True

    def matches(self, weight: Decimal) -> bool:
        return _in_band(weight, self.weight_from, self.weight_to)


@dataclass(frozen=True)
class DimensionalRule:
    kind: ClassVar[RuleKind] = RuleKind.DIMENSIONAL

    id: str
    max_length: Decimal
    max_width: Decimal
    max_height: Decimal
    action: DimensionalAction = DimensionalAction.REJECT
    surcharge: Decimal = D("0")
    name: str = ""
    sort_order: int = 0
    active: bool = True


@dataclass(frozen=True)
class TieredRule:
    kind: ClassVar[RuleKind] = RuleKind.TIERED

    id: str
    driver: TierDriver
    value_from: Decimal
    value_to: Optional[Decimal]
    price: Decimal
    price_per_unit: Decimal = D("0")
    name: str = ""
    sort_order: int = 0
    active: bool = True

    def matches(self, value: Decimal) -> bool:
        return _in_band(value, self.value_from, self.value_to)


@dataclass(frozen=True)
class ProgressiveDiscountRule:
    kind: ClassVar[RuleKind] = RuleKind.PROGRESSIVE_DISCOUNT

    id: str
    driver: ProgressiveDriver
    breakpoints: Tuple[Breakpoint, ...]
    name: str = ""
    sort_order: int = 0
    active: bool = True


@dataclass(frozen=True)
class SeasonalRule:
    kind: ClassVar[RuleKind] = RuleKind.SEASONAL

    id: str
    starts_at: datetime
    ends_at: datetime
    multiplier: Optional[Decimal] = None
    override_price: Optional[Decimal] = None
    name: str = ""
    sort_order: int = 0
    active: bool = True

    def is_active_at(self, as_of: datetime) -> bool:
        return self.active and self.starts_at <= as_of < self.ends_at


@dataclass(frozen=True)
class VolumeDiscountRule:
    kind: ClassVar[RuleKind] = RuleKind.VOLUME_DISCOUNT

    id: str
    breakpoints: Tuple[Breakpoint, ...]
    name: str = ""
    sort_order: int = 0
    active: bool = True


PricingRule = Union[
    WeightBandRule,
    DimensionalRule,
    TieredRule,
    ProgressiveDiscountRule,
    SeasonalRule,
    VolumeDiscountRule,
]

RULE_CLASSES = {
    RuleKind.WEIGHT_BAND: WeightBandRule,
    RuleKind.DIMENSIONAL: DimensionalRule,
    RuleKind.TIERED: TieredRule,
    RuleKind.PROGRESSIVE_DISCOUNT: ProgressiveDiscountRule,
    RuleKind.SEASONAL: SeasonalRule,
    RuleKind.VOLUME_DISCOUNT: VolumeDiscountRule,
}


def highest_breakpoint(
    breakpoints: Tuple[Breakpoint, ...], value: Decimal
) -> Optional[Breakpoint]:
    """Step function: highest threshold <= value, never interpolated."""
    best = None
    for bp in breakpoints:
        if value >= bp.threshold and (best is None or bp.threshold > best.threshold):
            best = bp
    return best
