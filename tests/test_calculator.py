from datetime import datetime, timezone
from decimal import Decimal

import pytest

from shipping_pricing.domain.errors import (
    CarrierCannotHandle,
    CurrencyMismatch,
    NoPricingTable,
    NoZoneFound,
    UnknownCarrier,
    ValidationError,
)
from shipping_pricing.domain.models import DeliveryTime


def _req(**overrides):
    req = {"carrier_code": "INPOST", "zone_code": "LOCAL", "weight_kg": "0.5"}
    req.update(overrides)
    return req


def test_small_parcel_local_scenario(calculator):
    out = calculator.calculate_price(_req(dimensions_cm={"length": 10, "width": 8, "height": 6}))

    # 10 * 8 * 6 / 5000 = 0.096 kg volumetric, actual weight wins
    assert out.volumetric_weight_kg == Decimal("0.096")
    assert out.billable_weight_kg == Decimal("0.5")
    assert out.table_id == "inpost-local-standard-v1"
    assert out.net_price == Decimal("8.50")
    assert out.tax_rate == Decimal("23")
    assert out.tax_amount == Decimal("1.96")
    assert out.total_price == Decimal("10.46")
    assert out.delivery_time == DeliveryTime(min_days=1, max_days=2)


def test_twelve_kilo_via_postal_code(calculator):
    out = calculator.calculate_price(_req(zone_code=None, postal_code="00-950", country="PL", weight_kg=12))

    assert out.zone_code == "LOCAL"
    assert out.net_price == Decimal("26.00")
    assert out.applied_rule_ids == ("local-10-plus", "tax:inpost-local-standard-v1")


def test_carrier_divisor_used_when_table_has_none(calculator):
    out = calculator.calculate_price(
        _req(carrier_code="DPD", zone_code="NATIONAL", weight_kg=1, dimensions_cm={"length": 40, "width": 30, "height": 20})
    )

    # 24000 cm3 / 4000
    assert out.billable_weight_kg == Decimal("6")


def test_progressive_discount_from_period_order_value(calculator):
    out = calculator.calculate_price(_req(carrier_code="UPS", zone_code="NATIONAL", weight_kg=1, period_order_value=2500))

    # 16.90 - 7.5%
    assert out.net_price == Decimal("15.63")
    assert "ups-loyalty" in out.applied_rule_ids


def test_customer_contract_discount(calculator):
    out = calculator.calculate_price(_req(carrier_code="DHL", zone_code="NATIONAL", customer_id="ACME-001"))

    assert out.net_price == Decimal("12.60")
    assert out.discounts_total == Decimal("1.40")
    assert "customer:ACME-001" in out.applied_rule_ids


def test_auto_apply_promotion_inside_its_window(calculator):
    out = calculator.calculate_price(_req(as_of="2025-11-28T10:00:00Z"))

    assert "promotion:BLACKFRIDAY" in out.applied_rule_ids
    assert out.net_price == Decimal("6.38")
    assert out.tax_amount == Decimal("1.47")
    assert out.total_price == Decimal("7.85")


def test_requested_as_of_overrides_clock(calculator):
    out = calculator.calculate_price(_req(carrier_code="DHL", zone_code="NATIONAL", as_of="2025-12-10T08:00:00"))

    assert out.as_of == datetime(2025, 12, 10, 8, 0, tzinfo=timezone.utc)
    assert "dhl-christmas-peak" in out.applied_rule_ids
    assert out.net_price == Decimal("15.40")


def test_additional_services_priced_with_table_override(calculator):
    charges = calculator.calculate_additional_services(
        _req(additional_services=["sms", "insurance"], declared_value="100")
    )

    assert [(c.code, c.amount) for c in charges] == [("SMS", Decimal("1.00")), ("INSURANCE", Decimal("3.0"))]


def test_service_not_available_in_zone_is_a_warning(calculator):
    out = calculator.calculate_price(_req(carrier_code="DHL", zone_code="EU_WEST", additional_services=["COD"]))

    assert out.additional_services == ()
    assert any(w["code"] == "SERVICE_NOT_AVAILABLE_IN_ZONE" for w in out.warnings)


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"carrier_code": "NOPE"}, UnknownCarrier),
        ({"carrier_code": "DHL"}, CarrierCannotHandle),  # DHL does not serve LOCAL
        ({"weight_kg": 31}, CarrierCannotHandle),
        ({"dimensions_cm": {"length": 70, "width": 10, "height": 10}}, CarrierCannotHandle),
        ({"service_type": "express"}, NoPricingTable),
        ({"currency": "EUR"}, CurrencyMismatch),
        ({"zone_code": "MARS"}, NoZoneFound),
        ({"weight_kg": 0}, ValidationError),
        ({"zone_code": None}, ValidationError),
    ],
)
def test_calculation_errors(calculator, overrides, error):
    with pytest.raises(error):
        calculator.calculate_price(_req(**overrides))


def test_try_calculate_price_returns_failure_outcome(calculator):
    outcome = calculator.try_calculate_price(_req(carrier_code="NOPE"))

    assert not outcome.ok
    assert outcome.carrier_code == "NOPE"
    assert outcome.error.code == "UNKNOWN_CARRIER"


def test_can_carrier_handle(calculator):
    assert calculator.can_carrier_handle(_req())
    assert not calculator.can_carrier_handle(_req(weight_kg=45))
    assert not calculator.can_carrier_handle(_req(carrier_code="MEEST"))


def test_same_request_same_result(calculator):
    req = _req(weight_kg="3.7", additional_services=["SMS"], promotion_codes=["LOYAL3"])

    assert calculator.calculate_price(req).to_dict() == calculator.calculate_price(req).to_dict()
