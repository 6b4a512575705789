from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validate

from ..core.settings import Settings, get_settings
from ..domain.errors import CatalogIntegrityError
from ..domain.models import (
    AdditionalService,
    AdditionalServicePrice,
    Carrier,
    CustomerPricing,
    DeliveryTime,
    Dimensions,
    DiscountType,
    GeoBounds,
    GeoRegion,
    PricingTable,
    Promotion,
    ServicePricingType,
    Zone,
    ZoneType,
)
from ..domain.money import D, to_decimal
from ..domain.rules import (
    Breakpoint,
    DimensionalAction,
    DimensionalRule,
    PricingRule,
    ProgressiveDiscountRule,
    ProgressiveDriver,
    RuleKind,
    SeasonalRule,
    TierDriver,
    TieredRule,
    VolumeDiscountRule,
    WeightBandRule,
)
from .integrity import check_catalog
from .snapshot import CatalogSnapshot

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
SCHEMA_PATH = PACKAGE_ROOT / "catalog" / "catalog.schema.json"
DEFAULT_CATALOG_PATH = PACKAGE_ROOT / "data" / "catalog.yaml"


# -----------------------
# field helpers
# -----------------------


def _dt(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # naive timestamps in the catalog are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dims(d: Optional[Dict[str, Any]]) -> Optional[Dimensions]:
    if not d:
        return None
    return Dimensions(
        length=to_decimal(d["length"]),
        width=to_decimal(d["width"]),
        height=to_decimal(d["height"]),
    )


def _codes(values: Optional[List[str]]) -> frozenset:
    return frozenset(str(v).upper() for v in (values or []))


def _breakpoints(items: List[Dict[str, Any]]) -> tuple:
    bps = [
        Breakpoint(threshold=to_decimal(b["threshold"]), percent=to_decimal(b["percent"]))
        for b in items
    ]
    return tuple(sorted(bps, key=lambda b: b.threshold))


def _common(d: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(d["id"]),
        "name": str(d.get("name") or d["id"]),
        "sort_order": int(d.get("sort_order", 0)),
        "active": bool(d.get("active", True)),
    }


# -----------------------
# rule builders (kind -> builder)
# -----------------------


def _weight_band(d: Dict[str, Any]) -> WeightBandRule:
    return WeightBandRule(
        weight_from=to_decimal(d["weight_from"]),
        weight_to=to_decimal(d.get("weight_to")),
        price=to_decimal(d["price"]),
        price_per_kg=to_decimal(d.get("price_per_kg"), D("0")),
        weight_step=to_decimal(d.get("weight_step")),
        min_price=to_decimal(d.get("min_price")),
        max_price=to_decimal(d.get("max_price")),
        **_common(d),
    )


def _dimensional(d: Dict[str, Any]) -> DimensionalRule:
    dims = _dims(d["max_dimensions_cm"])
    return DimensionalRule(
        max_length=dims.length,
        max_width=dims.width,
        max_height=dims.height,
        action=DimensionalAction(d.get("action", "reject")),
        surcharge=to_decimal(d.get("surcharge"), D("0")),
        **_common(d),
    )


def _tiered(d: Dict[str, Any]) -> TieredRule:
    return TieredRule(
        driver=TierDriver(d["driver"]),
        value_from=to_decimal(d["value_from"]),
        value_to=to_decimal(d.get("value_to")),
        price=to_decimal(d["price"]),
        price_per_unit=to_decimal(d.get("price_per_unit"), D("0")),
        **_common(d),
    )


def _progressive(d: Dict[str, Any]) -> ProgressiveDiscountRule:
    return ProgressiveDiscountRule(
        driver=ProgressiveDriver(d["driver"]),
        breakpoints=_breakpoints(d["breakpoints"]),
        **_common(d),
    )


def _seasonal(d: Dict[str, Any]) -> SeasonalRule:
    return SeasonalRule(
        starts_at=_dt(d["starts_at"]),
        ends_at=_dt(d["ends_at"]),
        multiplier=to_decimal(d.get("multiplier")),
        override_price=to_decimal(d.get("override_price")),
        **_common(d),
    )


def _volume(d: Dict[str, Any]) -> VolumeDiscountRule:
    return VolumeDiscountRule(breakpoints=_breakpoints(d["breakpoints"]), **_common(d))


_RULE_BUILDERS: Dict[RuleKind, Callable[[Dict[str, Any]], PricingRule]] = {
    RuleKind.WEIGHT_BAND: _weight_band,
    RuleKind.DIMENSIONAL: _dimensional,
    RuleKind.TIERED: _tiered,
    RuleKind.PROGRESSIVE_DISCOUNT: _progressive,
    RuleKind.SEASONAL: _seasonal,
    RuleKind.VOLUME_DISCOUNT: _volume,
}


def rule_from_dict(d: Dict[str, Any]) -> PricingRule:
    return _RULE_BUILDERS[RuleKind(d["kind"])](d)


# -----------------------
# entity builders
# -----------------------


def _zone(d: Dict[str, Any]) -> Zone:
    bounds = d.get("bounds")
    return Zone(
        code=str(d["code"]),
        name=str(d.get("name") or d["code"]),
        zone_type=ZoneType(d.get("zone_type", "national")),
        countries=_codes(d.get("countries")),
        postal_code_patterns=tuple(d.get("postal_code_patterns") or ()),
        sort_order=int(d.get("sort_order", 0)),
        active=bool(d.get("active", True)),
        bounds=GeoBounds(**bounds) if bounds else None,
        regions=tuple(GeoRegion(**r) for r in d.get("regions") or ()),
    )


def _carrier(d: Dict[str, Any]) -> Carrier:
    return Carrier(
        code=str(d["code"]),
        name=str(d.get("name") or d["code"]),
        supported_zones=frozenset(d.get("supported_zones") or ()),
        max_weight_kg=to_decimal(d.get("max_weight_kg")),
        max_dimensions_cm=_dims(d.get("max_dimensions_cm")),
        default_service_type=str(d.get("default_service_type", "standard")),
        active=bool(d.get("active", True)),
        volumetric_divisor=d.get("volumetric_divisor"),
        delivery_times={
            zone: DeliveryTime(min_days=int(t["min_days"]), max_days=int(t["max_days"]))
            for zone, t in (d.get("delivery_times") or {}).items()
        },
    )


def _table(d: Dict[str, Any], default_tax_rate: Decimal) -> PricingTable:
    return PricingTable(
        id=str(d["id"]),
        carrier_code=str(d["carrier_code"]),
        zone_code=str(d["zone_code"]),
        service_type=str(d.get("service_type", "standard")),
        currency=str(d.get("currency", "PLN")).upper(),
        version=int(d.get("version", 1)),
        tax_rate=to_decimal(d.get("tax_rate"), default_tax_rate),
        min_weight_kg=to_decimal(d.get("min_weight_kg"), D("0")),
        max_weight_kg=to_decimal(d.get("max_weight_kg")),
        max_dimensions_cm=_dims(d.get("max_dimensions_cm")),
        volumetric_divisor=d.get("volumetric_divisor"),
        effective_from=_dt(d.get("effective_from")),
        effective_until=_dt(d.get("effective_until")),
        customer_id=d.get("customer_id"),
        active=bool(d.get("active", True)),
        rules=tuple(rule_from_dict(r) for r in d.get("rules") or ()),
    )


def _service(d: Dict[str, Any]) -> AdditionalService:
    return AdditionalService(
        code=str(d["code"]).upper(),
        name=str(d.get("name") or d["code"]),
        carrier_code=str(d["carrier_code"]),
        pricing_type=ServicePricingType(d.get("pricing_type", "fixed")),
        default_price=to_decimal(d.get("default_price"), D("0")),
        percentage_rate=to_decimal(d.get("percentage_rate")),
        min_price=to_decimal(d.get("min_price")),
        max_price=to_decimal(d.get("max_price")),
        supported_zones=frozenset(d.get("supported_zones") or ()),
        active=bool(d.get("active", True)),
    )


def _service_price(table_id: str, d: Dict[str, Any]) -> AdditionalServicePrice:
    return AdditionalServicePrice(
        table_id=table_id,
        service_code=str(d["service_code"]).upper(),
        price=to_decimal(d.get("price")),
        percentage_rate=to_decimal(d.get("percentage_rate")),
        min_price=to_decimal(d.get("min_price")),
        max_price=to_decimal(d.get("max_price")),
    )


def _promotion(d: Dict[str, Any]) -> Promotion:
    return Promotion(
        code=str(d["code"]).upper(),
        name=str(d.get("name") or d["code"]),
        discount_type=DiscountType(d["discount_type"]),
        value=to_decimal(d.get("value"), D("0")),
        stackable=bool(d.get("stackable", False)),
        priority=int(d.get("priority", 100)),
        valid_from=_dt(d.get("valid_from")),
        valid_to=_dt(d.get("valid_to")),
        min_order_value=to_decimal(d.get("min_order_value")),
        max_discount=to_decimal(d.get("max_discount")),
        eligible_carriers=frozenset(d.get("eligible_carriers") or ()),
        eligible_zones=frozenset(d.get("eligible_zones") or ()),
        eligible_service_types=frozenset(d.get("eligible_service_types") or ()),
        eligible_customers=frozenset(d.get("eligible_customers") or ()),
        auto_apply=bool(d.get("auto_apply", False)),
        active=bool(d.get("active", True)),
    )


def _customer_pricing(d: Dict[str, Any]) -> CustomerPricing:
    return CustomerPricing(
        customer_id=str(d["customer_id"]),
        discount_percent=to_decimal(d["discount_percent"]),
        carrier_code=d.get("carrier_code"),
        valid_from=_dt(d.get("valid_from")),
        valid_to=_dt(d.get("valid_to")),
        active=bool(d.get("active", True)),
    )


# -----------------------
# public API
# -----------------------


def load_schema() -> Dict[str, Any]:
    with SCHEMA_PATH.open("r", encoding="utf-8") as f:
        return json.load(f)


def catalog_from_dict(
    raw: Dict[str, Any],
    *,
    validate_schema: bool = True,
    default_tax_rate: Decimal = D("23"),
) -> CatalogSnapshot:
    """
    Build + cross-validate a CatalogSnapshot from a plain dict (parsed YAML).
    Tables without tax_rate get default_tax_rate.
    Raises CatalogIntegrityError on schema or integrity problems.
    """
    if validate_schema:
        try:
            validate(instance=raw, schema=load_schema())
        except SchemaValidationError as e:
            path = "/".join(str(p) for p in e.absolute_path)
            raise CatalogIntegrityError(
                f"Catalog does not match schema: {e.message}",
                context={"path": path},
            ) from e

    zones = [_zone(z) for z in raw.get("zones") or []]
    carriers = [_carrier(c) for c in raw.get("carriers") or []]
    tables = [_table(t, default_tax_rate) for t in raw.get("tables") or []]
    services = [_service(s) for s in raw.get("services") or []]
    service_prices = [
        _service_price(str(t["id"]), p)
        for t in raw.get("tables") or []
        for p in t.get("service_prices") or []
    ]
    promotions = [_promotion(p) for p in raw.get("promotions") or []]
    customer_pricing = [_customer_pricing(c) for c in raw.get("customer_pricing") or []]

    check_catalog(zones=zones, carriers=carriers, tables=tables, promotions=promotions)

    return CatalogSnapshot(
        zones=zones,
        carriers=carriers,
        tables=tables,
        services=services,
        service_prices=service_prices,
        promotions=promotions,
        customer_pricing=customer_pricing,
        version=str(raw.get("version") or "v1"),
    )


def resolve_catalog_path(path: Optional[str | Path] = None, settings: Optional[Settings] = None) -> Path:
    """explicit path -> PRICING_CATALOG_PATH -> bundled sample catalog"""
    if path:
        return Path(path)
    configured = (settings or get_settings()).catalog_path
    return Path(configured) if configured else DEFAULT_CATALOG_PATH


def load_catalog(path: Optional[str | Path] = None, *, settings: Optional[Settings] = None) -> CatalogSnapshot:
    settings = settings or get_settings()
    catalog_path = resolve_catalog_path(path, settings)
    with catalog_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}
    snapshot = catalog_from_dict(raw, default_tax_rate=settings.default_tax_rate)
    logger.info(
        "Loaded pricing catalog %s (version=%s, tables=%d)",
        catalog_path,
        snapshot.version,
        len(snapshot.tables()),
    )
    return snapshot


@dataclass(frozen=True)
class LoadedCatalog:
    snapshot: CatalogSnapshot
    mtime_ns: int


class CatalogLoader:
    """
    Hot reload the catalog file (thread-safe).

    - Keeps last known-good snapshot active
    - get() checks mtime_ns; if changed -> reload + validate
    - If reload fails: logs error and keeps the previous snapshot
    - Callers bind the returned snapshot per batch; nothing refreshes mid-batch
    """

    def __init__(self, path: Optional[str | Path] = None, *, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.path = resolve_catalog_path(path, self.settings)
        self._lock = threading.Lock()
        self._loaded: Optional[LoadedCatalog] = None

        # eager initial load (fail-fast if missing or invalid)
        self._loaded = self._load_or_raise()

    def get(self) -> CatalogSnapshot:
        try:
            current_mtime = self._stat_mtime_ns()
        except FileNotFoundError:
            logger.warning("Catalog file missing: %s (keeping previous snapshot)", self.path)
            return self._loaded.snapshot

        loaded = self._loaded
        if current_mtime == loaded.mtime_ns:
            return loaded.snapshot

        with self._lock:
            loaded = self._loaded
            # double-check after acquiring lock
            if current_mtime == loaded.mtime_ns:
                return loaded.snapshot
            try:
                new_loaded = self._load_or_raise(expected_mtime_ns=current_mtime)
            except (CatalogIntegrityError, yaml.YAMLError, OSError, KeyError, ValueError) as e:
                logger.error("Catalog reload failed, keeping previous snapshot: %r", e)
                return loaded.snapshot

            self._loaded = new_loaded
            logger.info("Catalog reloaded (mtime_ns=%d)", new_loaded.mtime_ns)
            return new_loaded.snapshot

    def _stat_mtime_ns(self) -> int:
        return os.stat(self.path).st_mtime_ns

    def _load_or_raise(self, expected_mtime_ns: Optional[int] = None) -> LoadedCatalog:
        if expected_mtime_ns is None:
            expected_mtime_ns = self._stat_mtime_ns()
        return LoadedCatalog(snapshot=load_catalog(self.path, settings=self.settings), mtime_ns=expected_mtime_ns)
