from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional

from ..domain.models import AdditionalService, AdditionalServicePrice, ServicePricingType
from ..domain.money import percent_of
from .context import STAGE_SERVICES, PriceState, RuleContext, ServiceCharge


def _first(*values: Optional[Decimal]) -> Optional[Decimal]:
    for v in values:
        if v is not None:
            return v
    return None


def service_amount(
    service: AdditionalService,
    override: Optional[AdditionalServicePrice],
    declared_value: Optional[Decimal],
) -> Decimal:
    """
    fixed: table override price, else default price.
    percentage: rate * declared value; without a declared value the fixed
    default applies. Min/max clamps (override first) always apply.
    """
    o = override or AdditionalServicePrice(table_id="", service_code=service.code)
    fixed = _first(o.price, service.default_price)

    if service.pricing_type == ServicePricingType.PERCENTAGE:
        rate = _first(o.percentage_rate, service.percentage_rate)
        amount = fixed if rate is None or declared_value is None else percent_of(declared_value, rate)
    else:
        amount = fixed

    min_price = _first(o.min_price, service.min_price)
    max_price = _first(o.max_price, service.max_price)
    if min_price is not None and amount < min_price:
        amount = min_price
    if max_price is not None and amount > max_price:
        amount = max_price
    return amount


def apply_additional_services(ctx: RuleContext, state: PriceState) -> List[ServiceCharge]:
    """
    Services stage: prices every requested service code. Unknown or
    zone-unavailable codes are warned about and ignored.
    """
    available: Dict[str, AdditionalService] = {s.code.upper(): s for s in ctx.available_services}
    charges: List[ServiceCharge] = []
    seen = set()

    for raw in ctx.additional_services:
        code = str(raw).strip().upper()
        if not code or code in seen:
            continue
        seen.add(code)

        service = available.get(code)
        if service is None:
            state.warn(
                "SERVICE_NOT_FOUND",
                f"Additional service {code} not offered by {ctx.carrier_code}; ignored.",
                service_code=code,
                carrier_code=ctx.carrier_code,
            )
            continue
        if not service.available_in_zone(ctx.zone_code):
            state.warn(
                "SERVICE_NOT_AVAILABLE_IN_ZONE",
                f"Additional service {code} not available in zone {ctx.zone_code}; ignored.",
                service_code=code,
                zone_code=ctx.zone_code,
            )
            continue

        amount = service_amount(service, ctx.service_overrides.get(code), ctx.declared_value)
        charge = ServiceCharge(
            code=code,
            name=service.name,
            pricing_type=service.pricing_type.value,
            amount=amount,
        )
        charges.append(charge)
        state.service_charges.append(charge)
        state.apply(
            stage=STAGE_SERVICES,
            rule_id=f"service:{code}",
            rule_type="additional_service",
            title=service.name,
            delta=amount,
            kind="service",
            pricing_type=service.pricing_type.value,
        )
    return charges
