from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional, Tuple

from .money import D
from .rules import PricingRule


class ZoneType(str, Enum):
    LOCAL = "local"
    NATIONAL = "national"
    INTERNATIONAL = "international"


@dataclass(frozen=True)
class GeoBounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


@dataclass(frozen=True)
class GeoRegion:
    name: str
    lat: float
    lng: float
    radius_km: float


@dataclass(frozen=True)
class Zone:
    code: str
    name: str
    zone_type: ZoneType
    countries: frozenset = frozenset()  # empty = "all others" fallback
    postal_code_patterns: Tuple[str, ...] = ()
    sort_order: int = 0
    active: bool = True
    bounds: Optional[GeoBounds] = None
    regions: Tuple[GeoRegion, ...] = ()

    @property
    def is_fallback(self) -> bool:
        return not self.countries

    def covers_country(self, country: str) -> bool:
        return country.upper() in self.countries

    def matches_postal_code(self, postal_code: str) -> bool:
        # raw form first (00-950), then compact form (00950)
        compact = postal_code.replace("-", "").replace(" ", "")
        for pattern in self.postal_code_patterns:
            if re.fullmatch(pattern, postal_code) or re.fullmatch(pattern, compact):
                return True
        return False


@dataclass(frozen=True)
class Dimensions:
    length: Decimal
    width: Decimal
    height: Decimal

    @property
    def volume_cm3(self) -> Decimal:
        return self.length * self.width * self.height

    def exceeds(self, limit: "Dimensions") -> bool:
        return (
            self.length > limit.length
            or self.width > limit.width
            or self.height > limit.height
        )

    def as_dict(self) -> dict:
        return {"length": str(self.length), "width": str(self.width), "height": str(self.height)}


@dataclass(frozen=True)
class DeliveryTime:
    min_days: int
    max_days: int

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.max_days, self.min_days)


@dataclass(frozen=True)
class Carrier:
    code: str
    name: str
    supported_zones: frozenset = frozenset()
    max_weight_kg: Optional[Decimal] = None
    max_dimensions_cm: Optional[Dimensions] = None
    default_service_type: str = "standard"
    active: bool = True
    volumetric_divisor: Optional[int] = None
    delivery_times: Mapping[str, DeliveryTime] = field(default_factory=dict)

    def supports_zone(self, zone_code: str) -> bool:
        return zone_code in self.supported_zones

    def delivery_time_for(self, zone_code: str) -> Optional[DeliveryTime]:
        return self.delivery_times.get(zone_code)


@dataclass(frozen=True)
class PricingTable:
    id: str
    carrier_code: str
    zone_code: str
    service_type: str
    currency: str = "PLN"
    version: int = 1
    tax_rate: Decimal = D("23")
    min_weight_kg: Decimal = D("0")
    max_weight_kg: Optional[Decimal] = None
    max_dimensions_cm: Optional[Dimensions] = None
    volumetric_divisor: Optional[int] = None
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None
    customer_id: Optional[str] = None
    active: bool = True
    rules: Tuple[PricingRule, ...] = ()

    def is_effective(self, as_of: Optional[datetime]) -> bool:
        if not self.active:
            return False
        if as_of is None:
            return True
        if self.effective_from is not None and as_of < self.effective_from:
            return False
        if self.effective_until is not None and as_of >= self.effective_until:
            return False
        return True


class ServicePricingType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


@dataclass(frozen=True)
class AdditionalService:
    code: str
    name: str
    carrier_code: str
    pricing_type: ServicePricingType = ServicePricingType.FIXED
    default_price: Decimal = D("0")
    percentage_rate: Optional[Decimal] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    supported_zones: frozenset = frozenset()  # empty = all zones
    active: bool = True

    def available_in_zone(self, zone_code: str) -> bool:
        return not self.supported_zones or zone_code in self.supported_zones


@dataclass(frozen=True)
class AdditionalServicePrice:
    """Per-table override of an AdditionalService's price/rate/clamps."""

    table_id: str
    service_code: str
    price: Optional[Decimal] = None
    percentage_rate: Optional[Decimal] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"


@dataclass(frozen=True)
class Promotion:
    code: str
    name: str
    discount_type: DiscountType
    value: Decimal = D("0")
    stackable: bool = False
    priority: int = 100
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    min_order_value: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    eligible_carriers: frozenset = frozenset()
    eligible_zones: frozenset = frozenset()
    eligible_service_types: frozenset = frozenset()
    eligible_customers: frozenset = frozenset()
    auto_apply: bool = False
    active: bool = True

    def is_valid_at(self, as_of: datetime) -> bool:
        if not self.active:
            return False
        if self.valid_from is not None and as_of < self.valid_from:
            return False
        if self.valid_to is not None and as_of >= self.valid_to:
            return False
        return True


@dataclass(frozen=True)
class CustomerPricing:
    """Negotiated contract discount for a customer (optionally per carrier)."""

    customer_id: str
    discount_percent: Decimal
    carrier_code: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    active: bool = True

    def applies_to(self, carrier_code: str, as_of: datetime) -> bool:
        if not self.active:
            return False
        if self.carrier_code is not None and self.carrier_code != carrier_code:
            return False
        if self.valid_from is not None and as_of < self.valid_from:
            return False
        if self.valid_to is not None and as_of >= self.valid_to:
            return False
        return True
