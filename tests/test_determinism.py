from shipping_pricing.catalog import load_catalog
from shipping_pricing.engine.calculator import CarrierPriceCalculator
from shipping_pricing.engine.comparison import ComparisonEngine


def test_determinism_same_input_same_output(settings, fixed_now):
    req = {
        "carrier_code": "DHL",
        "country": "PL",
        "postal_code": "30-001",
        "weight_kg": "4.2",
        "dimensions_cm": {"length": 40, "width": 30, "height": 20},
        "declared_value": "1500",
        "additional_services": ["INSURANCE", "PRIORITY"],
        "promotion_codes": ["SPRING5", "LOYAL3"],
        "customer_id": "BIGCO",
    }

    # two independently loaded catalogs, two calculators
    out1 = CarrierPriceCalculator(load_catalog(), settings=settings, clock=lambda: fixed_now).calculate_price(req)
    out2 = CarrierPriceCalculator(load_catalog(), settings=settings, clock=lambda: fixed_now).calculate_price(req)

    assert out1 == out2
    assert out1.to_dict() == out2.to_dict()


def test_comparison_is_order_independent_of_scheduling(catalog, settings, fixed_now, pool):
    calc = CarrierPriceCalculator(catalog, settings=settings, clock=lambda: fixed_now)
    engine = ComparisonEngine(catalog, calculator=calc, settings=settings, pool=pool)
    req = {"country": "DE", "weight_kg": 3}

    runs = [engine.compare_all_carriers(req).to_dict() for _ in range(5)]

    assert all(run == runs[0] for run in runs)
