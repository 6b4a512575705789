import time
from decimal import Decimal

import pytest

from shipping_pricing.catalog import CatalogSnapshot
from shipping_pricing.domain.errors import AllCarrierCalculationsFailed, NoCarriersAvailable
from shipping_pricing.domain.models import Carrier, DeliveryTime, PricingTable, Zone, ZoneType
from shipping_pricing.domain.rules import WeightBandRule
from shipping_pricing.engine.calculator import CarrierPriceCalculator
from shipping_pricing.engine.comparison import ComparisonEngine
from shipping_pricing.engine.pool import CalculationPool


def _national(**overrides):
    req = {"zone_code": "NATIONAL", "weight_kg": 2}
    req.update(overrides)
    return req


def test_results_ranked_by_total_price(comparison):
    out = comparison.compare_all_carriers(_national())

    assert [r.carrier_code for r in out.results] == ["INPOST", "DPD", "DHL", "UPS"]
    assert [r.total_price for r in out.results] == [
        Decimal("18.45"),
        Decimal("19.68"),
        Decimal("22.76"),
        Decimal("24.60"),
    ]
    assert out.best.carrier_code == "INPOST"
    assert out.most_expensive.carrier_code == "UPS"
    assert out.savings_potential == Decimal("6.15")
    assert out.total_carriers_checked == 4
    assert out.failures == ()


def test_carrier_failures_are_recorded_not_dropped(comparison):
    out = comparison.compare_all_carriers(_national(weight_kg=40))

    # DHL: 71.00 + 4 steps of 5 kg * 2.50; UPS: 40.00 + 30 * 3.50
    assert [r.carrier_code for r in out.results] == ["DHL", "UPS"]
    assert out.unavailable_carriers == ["DPD", "INPOST"]
    assert {f.error_code for f in out.failures} == {"CARRIER_CANNOT_HANDLE"}
    assert out.to_dict()["statistics"]["available_carriers"] == 2


def test_all_carriers_failing_raises(comparison):
    with pytest.raises(AllCarrierCalculationsFailed) as exc:
        comparison.compare_all_carriers(_national(weight_kg=80))

    assert len(exc.value.failures) == 4
    assert {f["error_code"] for f in exc.value.failures} == {"CARRIER_CANNOT_HANDLE"}


def test_carrier_filters(comparison):
    only = comparison.compare_all_carriers(_national(carrier_codes=["dhl", "ups"]))
    without = comparison.compare_all_carriers(_national(exclude_carriers=["INPOST"]))

    assert {r.carrier_code for r in only.results} == {"DHL", "UPS"}
    assert "INPOST" not in {r.carrier_code for r in without.results}


def test_filter_leaving_no_carriers_raises(comparison):
    with pytest.raises(NoCarriersAvailable):
        comparison.compare_all_carriers(_national(carrier_codes=["MEEST"]))


def test_get_best_price(comparison):
    assert comparison.get_best_price({"country": "PL", "postal_code": "00-950", "weight_kg": 1}).carrier_code == "INPOST"


def test_parallel_and_sequential_agree(comparison):
    req = _national(weight_kg="7.25", additional_services=["INSURANCE"], declared_value=500)

    parallel = comparison.compare_all_carriers(req)
    sequential = comparison.compare_all_carriers(req, parallel=False)

    assert parallel.to_dict() == sequential.to_dict()


# -----------------
# small in-code catalog
# -----------------


def _island_catalog(bbb_delivery=DeliveryTime(2, 4)):
    zones = [
        Zone(code="ISLAND", name="Island", zone_type=ZoneType.NATIONAL, countries=frozenset({"XX"})),
        Zone(code="EMPTY", name="Empty", zone_type=ZoneType.NATIONAL, countries=frozenset({"YY"}), sort_order=5),
        Zone(code="REST", name="Rest", zone_type=ZoneType.INTERNATIONAL, sort_order=100),
    ]
    carriers = [
        Carrier(
            code=code,
            name=code,
            supported_zones=frozenset({"ISLAND"}),
            delivery_times={"ISLAND": delivery},
        )
        for code, delivery in (("AAA", DeliveryTime(2, 4)), ("BBB", bbb_delivery))
    ]
    tables = [
        PricingTable(
            id=f"{code.lower()}-island",
            carrier_code=code,
            zone_code="ISLAND",
            service_type="standard",
            rules=(WeightBandRule(id="flat", weight_from=Decimal("0"), weight_to=None, price=Decimal("10.00")),),
        )
        for code in ("AAA", "BBB")
    ]
    return CatalogSnapshot(zones=zones, carriers=carriers, tables=tables)


def _engine(snapshot, settings, fixed_now, calculator_cls=CarrierPriceCalculator, pool=None):
    calc = calculator_cls(snapshot, settings=settings, clock=lambda: fixed_now)
    return ComparisonEngine(snapshot, calculator=calc, settings=settings, pool=pool)


def test_equal_price_equal_delivery_tie_broken_by_code(settings, fixed_now):
    out = _engine(_island_catalog(), settings, fixed_now).compare_all_carriers({"country": "XX", "weight_kg": 1})

    assert [r.carrier_code for r in out.results] == ["AAA", "BBB"]


def test_equal_price_faster_delivery_wins(settings, fixed_now):
    snapshot = _island_catalog(bbb_delivery=DeliveryTime(1, 2))
    out = _engine(snapshot, settings, fixed_now).compare_all_carriers({"country": "XX", "weight_kg": 1})

    assert [r.carrier_code for r in out.results] == ["BBB", "AAA"]


def test_zone_without_carriers_raises(settings, fixed_now):
    with pytest.raises(NoCarriersAvailable) as exc:
        _engine(_island_catalog(), settings, fixed_now).compare_all_carriers({"country": "YY", "weight_kg": 1})

    assert exc.value.context["zone_code"] == "EMPTY"


class _SlowForBBB(CarrierPriceCalculator):
    def try_calculate_price(self, request, *, batch_size=None):
        if request.carrier_code == "BBB":
            time.sleep(1.0)
        return super().try_calculate_price(request, batch_size=batch_size)


def test_slow_carrier_times_out_without_blocking_others(settings, fixed_now):
    pool = CalculationPool(max_workers=2, calculation_timeout_s=0.2, admission_timeout_s=1.0)
    engine = _engine(_island_catalog(), settings, fixed_now, calculator_cls=_SlowForBBB, pool=pool)

    out = engine.compare_all_carriers({"country": "XX", "weight_kg": 1})

    assert [r.carrier_code for r in out.results] == ["AAA"]
    assert out.failures[0].carrier_code == "BBB"
    assert out.failures[0].error_code == "CALCULATION_TIMEOUT"
    assert out.failures[0].retryable is True


def test_slow_carrier_times_out_in_sequential_mode(settings, fixed_now):
    pool = CalculationPool(max_workers=2, calculation_timeout_s=0.2, admission_timeout_s=1.0)
    engine = _engine(_island_catalog(), settings, fixed_now, calculator_cls=_SlowForBBB, pool=pool)

    out = engine.compare_all_carriers({"country": "XX", "weight_kg": 1}, parallel=False)

    assert [r.carrier_code for r in out.results] == ["AAA"]
    assert out.failures[0].error_code == "CALCULATION_TIMEOUT"
