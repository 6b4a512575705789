from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Union

import structlog

from ..catalog.snapshot import PricingCatalog
from ..core.settings import Settings, get_settings
from ..domain.errors import (
    CarrierCannotHandle,
    CurrencyMismatch,
    NoPricingTable,
    PricingError,
    UnknownCarrier,
)
from ..domain.models import Carrier, PricingTable, Zone
from ..observability.metrics import calculation_counter, calculation_latency_hist
from ..schemas.requests import PriceCalculationRequest, parse_request
from ..schemas.results import CalculationOutcome, PriceCalculationResult
from .context import PriceState, RuleContext, ServiceCharge
from .rule_engine import RuleEngine
from .services import apply_additional_services
from .zones import ZoneResolver

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _Resolved:
    carrier: Carrier
    zone: Zone
    table: PricingTable
    service_type: str
    as_of: datetime


class CarrierPriceCalculator:
    """
    One carrier, one shipment -> one quote.

    ZoneResolver -> active PricingTable -> RuleContext -> RuleEngine.
    No side effects: same request + same as_of gives the same result.
    """

    def __init__(
        self,
        catalog: PricingCatalog,
        *,
        settings: Optional[Settings] = None,
        rule_engine: Optional[RuleEngine] = None,
        zone_resolver: Optional[ZoneResolver] = None,
        clock: Clock = utc_now,
    ):
        self.catalog = catalog
        self.settings = settings or get_settings()
        self.rule_engine = rule_engine or RuleEngine()
        self.zone_resolver = zone_resolver or ZoneResolver(catalog)
        self.clock = clock

    # -----------------
    # public API
    # -----------------

    def calculate_price(
        self,
        request: Union[PriceCalculationRequest, dict],
        *,
        batch_size: Optional[int] = None,
    ) -> PriceCalculationResult:
        req = parse_request(request)
        started = time.perf_counter()
        carrier_label = req.carrier_code or "-"
        try:
            resolved = self._resolve(req)
            ctx = self._build_context(req, resolved, batch_size=batch_size)
            rule_result = self.rule_engine.apply_rules(resolved.table.rules, ctx)
        except PricingError as e:
            calculation_counter.labels(carrier=carrier_label, result=e.code).inc()
            logger.info(
                "price_calculation_failed",
                carrier_code=req.carrier_code,
                error_code=e.code,
                error=e.message,
            )
            raise
        finally:
            calculation_latency_hist.observe(time.perf_counter() - started)

        calculation_counter.labels(carrier=carrier_label, result="success").inc()
        result = PriceCalculationResult.from_rule_result(
            rule_result,
            carrier=resolved.carrier,
            zone_code=resolved.zone.code,
            service_type=resolved.service_type,
            table_id=resolved.table.id,
            as_of=resolved.as_of,
        )
        logger.debug(
            "price_calculated",
            carrier_code=result.carrier_code,
            zone_code=result.zone_code,
            total_price=str(result.total_price),
            currency=result.currency,
        )
        return result

    def try_calculate_price(
        self,
        request: Union[PriceCalculationRequest, dict],
        *,
        batch_size: Optional[int] = None,
    ) -> CalculationOutcome:
        carrier_code = request.get("carrier_code") if isinstance(request, dict) else request.carrier_code
        try:
            return CalculationOutcome.success(self.calculate_price(request, batch_size=batch_size))
        except PricingError as e:
            return CalculationOutcome.failure(e, carrier_code=carrier_code)

    def calculate_additional_services(
        self, request: Union[PriceCalculationRequest, dict]
    ) -> List[ServiceCharge]:
        req = parse_request(request)
        resolved = self._resolve(req)
        ctx = self._build_context(req, resolved)
        return apply_additional_services(ctx, PriceState(currency=ctx.currency))

    def can_carrier_handle(self, request: Union[PriceCalculationRequest, dict]) -> bool:
        try:
            self._resolve(parse_request(request))
        except PricingError:
            return False
        return True

    # -----------------
    # internals
    # -----------------

    def _resolve(self, req: PriceCalculationRequest) -> _Resolved:
        if not req.carrier_code:
            raise UnknownCarrier("carrier_code is required for a single-carrier calculation")

        carrier = self.catalog.get_carrier(req.carrier_code)
        if carrier is None or not carrier.active:
            raise UnknownCarrier(
                f"Unknown or inactive carrier {req.carrier_code}",
                context={"carrier_code": req.carrier_code},
            )

        zone = self.zone_resolver.resolve(
            zone_code=req.zone_code, postal_code=req.postal_code, country=req.country
        )
        ctx_info = {"carrier_code": carrier.code, "zone_code": zone.code}

        if not carrier.supports_zone(zone.code):
            raise CarrierCannotHandle(
                f"{carrier.code} does not serve zone {zone.code}", context=ctx_info
            )

        if carrier.max_weight_kg is not None and req.weight_kg > carrier.max_weight_kg:
            raise CarrierCannotHandle(
                f"Weight {req.weight_kg} kg exceeds {carrier.code} limit {carrier.max_weight_kg} kg",
                context={**ctx_info, "weight_kg": str(req.weight_kg), "max_weight_kg": str(carrier.max_weight_kg)},
            )

        dims = req.dimensions_cm.to_domain() if req.dimensions_cm else None
        if dims is not None and carrier.max_dimensions_cm is not None and dims.exceeds(carrier.max_dimensions_cm):
            raise CarrierCannotHandle(
                f"Dimensions exceed {carrier.code} limits",
                context={**ctx_info, "dimensions_cm": dims.as_dict(), "max_dimensions_cm": carrier.max_dimensions_cm.as_dict()},
            )

        service_type = req.service_type or carrier.default_service_type or self.settings.default_service_type
        as_of = req.as_of or self.clock()
        table = self.catalog.get_active_pricing_table(
            carrier.code, zone.code, service_type, as_of=as_of, customer_id=req.customer_id
        )
        if table is None:
            raise NoPricingTable(
                f"No active pricing table for {carrier.code}/{zone.code}/{service_type}",
                context={**ctx_info, "service_type": service_type, "as_of": as_of.isoformat()},
            )

        ctx_info["table_id"] = table.id
        if table.max_weight_kg is not None and req.weight_kg > table.max_weight_kg:
            raise CarrierCannotHandle(
                f"Weight {req.weight_kg} kg exceeds table limit {table.max_weight_kg} kg",
                context={**ctx_info, "weight_kg": str(req.weight_kg), "max_weight_kg": str(table.max_weight_kg)},
            )
        if dims is not None and table.max_dimensions_cm is not None and dims.exceeds(table.max_dimensions_cm):
            raise CarrierCannotHandle(
                "Dimensions exceed table limits",
                context={**ctx_info, "dimensions_cm": dims.as_dict(), "max_dimensions_cm": table.max_dimensions_cm.as_dict()},
            )

        currency = req.currency or self.settings.default_currency
        if currency != table.currency:
            raise CurrencyMismatch(
                f"Requested {currency} but table {table.id} prices in {table.currency}",
                context={**ctx_info, "currency": currency, "table_currency": table.currency},
            )

        return _Resolved(carrier=carrier, zone=zone, table=table, service_type=service_type, as_of=as_of)

    def _build_context(
        self,
        req: PriceCalculationRequest,
        r: _Resolved,
        *,
        batch_size: Optional[int] = None,
    ) -> RuleContext:
        divisor = (
            r.table.volumetric_divisor
            or r.carrier.volumetric_divisor
            or self.settings.default_volumetric_divisor
        )

        promotions = []
        for code in req.promotion_codes:
            promo = self.catalog.find_promotion(code)
            if promo is not None:
                promotions.append(promo)
        promotions.extend(self.catalog.auto_promotions())

        overrides = {}
        for service in self.catalog.get_additional_services_for_carrier(r.carrier.code):
            override = self.catalog.get_service_price(r.table.id, service.code)
            if override is not None:
                overrides[service.code.upper()] = override

        customer_pricing = (
            self.catalog.get_customer_pricing(req.customer_id, r.carrier.code, r.as_of)
            if req.customer_id
            else None
        )

        return RuleContext(
            carrier_code=r.carrier.code,
            zone_code=r.zone.code,
            service_type=r.service_type,
            weight_kg=req.weight_kg,
            dimensions=req.dimensions_cm.to_domain() if req.dimensions_cm else None,
            currency=r.table.currency,
            as_of=r.as_of,
            volumetric_divisor=int(divisor),
            declared_value=req.declared_value,
            customer_id=req.customer_id,
            promotion_codes=tuple(req.promotion_codes),
            additional_services=tuple(req.additional_services),
            period_shipment_count=req.period_shipment_count,
            period_order_value=req.period_order_value,
            rolling_parcel_count=req.rolling_parcel_count,
            batch_size=batch_size,
            table_id=r.table.id,
            tax_rate=Decimal(r.table.tax_rate),
            available_services=tuple(self.catalog.get_additional_services_for_carrier(r.carrier.code)),
            service_overrides=overrides,
            promotions=tuple(promotions),
            customer_pricing=customer_pricing,
        )
