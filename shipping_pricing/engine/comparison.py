from __future__ import annotations

from typing import List, Optional, Union

import structlog

from ..catalog.snapshot import PricingCatalog
from ..core.settings import Settings, get_settings
from ..domain.errors import (
    AllCarrierCalculationsFailed,
    CalculationTimeoutError,
    ConcurrencyLimitReached,
    NoCarriersAvailable,
    PricingError,
)
from ..domain.models import Carrier
from ..observability.metrics import comparison_counter
from ..schemas.requests import PriceCalculationRequest, parse_request
from ..schemas.results import (
    CalculationOutcome,
    CarrierFailure,
    ComparisonResult,
    PriceCalculationResult,
    ranking_key,
)
from .calculator import CarrierPriceCalculator
from .pool import SLOT_DONE, SLOT_REJECTED, SLOT_TIMEOUT, CalculationPool, PoolSlot

logger = structlog.get_logger(__name__)


def outcome_from_slot(slot: Optional[PoolSlot], *, label: str, timeout_s: float) -> Optional[CalculationOutcome]:
    """Pool slot -> CalculationOutcome (None = never submitted)."""
    if slot is None:
        return None
    if slot.status == SLOT_DONE:
        return slot.value
    if slot.status == SLOT_TIMEOUT:
        return CalculationOutcome.failure(
            CalculationTimeoutError(
                f"Calculation for {label} exceeded {timeout_s}s",
                context={"target": label, "timeout_s": timeout_s},
            )
        )
    if slot.status == SLOT_REJECTED:
        return CalculationOutcome.failure(
            ConcurrencyLimitReached(
                f"No calculation slot available for {label}",
                context={"target": label},
            )
        )
    # SLOT_CRASHED: unexpected exception inside a calculation
    err = slot.exception
    return CalculationOutcome.failure(
        PricingError(
            f"{type(err).__name__}: {err}",
            code="INTERNAL_ERROR",
            context={"target": label},
        )
    )


class ComparisonEngine:
    """
    Fans one shipment out over every carrier serving the zone and ranks the
    quotes: total price, then shortest delivery estimate, then carrier code.
    Carrier failures are recorded, never silently dropped.
    """

    def __init__(
        self,
        catalog: PricingCatalog,
        *,
        calculator: Optional[CarrierPriceCalculator] = None,
        settings: Optional[Settings] = None,
        pool: Optional[CalculationPool] = None,
    ):
        self.catalog = catalog
        self.settings = settings or get_settings()
        self.calculator = calculator or CarrierPriceCalculator(catalog, settings=self.settings)
        self.pool = pool or CalculationPool(
            max_workers=self.settings.max_workers,
            calculation_timeout_s=self.settings.calculation_timeout_seconds,
            admission_timeout_s=self.settings.admission_timeout_seconds,
        )

    def eligible_carriers(self, req: PriceCalculationRequest, zone_code: str) -> List[Carrier]:
        carriers = self.catalog.get_carriers_supporting_zone(zone_code)
        if req.carrier_codes:
            carriers = [c for c in carriers if c.code in req.carrier_codes]
        if req.exclude_carriers:
            carriers = [c for c in carriers if c.code not in req.exclude_carriers]
        return carriers

    def compare_all_carriers(
        self, request: Union[PriceCalculationRequest, dict], *, parallel: bool = True
    ) -> ComparisonResult:
        req = parse_request(request)
        zone = self.calculator.zone_resolver.resolve(
            zone_code=req.zone_code, postal_code=req.postal_code, country=req.country
        )
        carriers = self.eligible_carriers(req, zone.code)
        if not carriers:
            comparison_counter.labels(result="no_carriers").inc()
            raise NoCarriersAvailable(
                f"No carriers available for zone {zone.code}",
                context={"zone_code": zone.code},
            )

        # pin zone + as_of so every carrier prices the same shipment at the same moment
        as_of = req.as_of or self.calculator.clock()
        per_carrier = [
            req.model_copy(update={"carrier_code": c.code, "zone_code": zone.code, "as_of": as_of})
            for c in carriers
        ]
        slots = self.pool.map(self.calculator.try_calculate_price, per_carrier, parallel=parallel)

        results: List[PriceCalculationResult] = []
        failures: List[CarrierFailure] = []
        for carrier, slot in zip(carriers, slots):
            outcome = outcome_from_slot(
                slot, label=carrier.code, timeout_s=self.pool.calculation_timeout_s
            )
            if outcome.ok:
                results.append(outcome.result)
            else:
                failures.append(CarrierFailure.from_error(carrier.code, outcome.error))

        if not results:
            comparison_counter.labels(result="all_failed").inc()
            logger.warning(
                "all_carrier_calculations_failed",
                zone_code=zone.code,
                failures=[f.error_code for f in failures],
            )
            raise AllCarrierCalculationsFailed(
                f"All {len(carriers)} carrier calculations failed for zone {zone.code}",
                failures=[f.to_dict() for f in failures],
                context={"zone_code": zone.code},
            )

        results.sort(key=ranking_key)
        comparison_counter.labels(result="success").inc()
        logger.info(
            "carriers_compared",
            zone_code=zone.code,
            checked=len(carriers),
            available=len(results),
            best=results[0].carrier_code,
        )
        return ComparisonResult(
            zone_code=zone.code,
            service_type=results[0].service_type,
            currency=results[0].currency,
            results=tuple(results),
            failures=tuple(failures),
            total_carriers_checked=len(carriers),
            as_of=as_of,
        )

    def get_best_price(
        self, request: Union[PriceCalculationRequest, dict], *, parallel: bool = True
    ) -> PriceCalculationResult:
        return self.compare_all_carriers(request, parallel=parallel).best
