from decimal import Decimal

import pytest

from shipping_pricing.domain.errors import NoMatchingRule
from shipping_pricing.domain.models import Dimensions
from shipping_pricing.domain.rules import WeightBandRule
from shipping_pricing.engine.rule_types.weight_band import WeightBandEvaluator, band_price


def _local_rules(catalog):
    return catalog.get_rules_for_table("inpost-local-standard-v1")


def test_weight_band_half_kilo_is_flat_band_price(catalog, engine, make_ctx):
    out = engine.apply_weight_rules(_local_rules(catalog), make_ctx(weight_kg=Decimal("0.5")))

    assert out.net_price == Decimal("8.50")
    assert out.applied_rule_ids == ("local-0.1-1",)


def test_weight_band_open_ended_band_adds_per_kg(catalog, engine, make_ctx):
    out = engine.apply_weight_rules(_local_rules(catalog), make_ctx(weight_kg=Decimal("12")))

    # 20.00 + (12 - 10) * 3.00
    assert out.net_price == Decimal("26.00")
    assert out.applied_rule_ids == ("local-10-plus",)


def test_weight_band_upper_bound_is_exclusive(catalog, engine, make_ctx):
    out = engine.apply_weight_rules(_local_rules(catalog), make_ctx(weight_kg=Decimal("1")))

    assert out.applied_rule_ids == ("local-1-3",)
    assert out.net_price == Decimal("10.00")


def test_weight_band_uses_volumetric_weight_when_larger(catalog, engine, make_ctx):
    # 50 * 40 * 30 / 5000 = 12 kg volumetric vs 2 kg actual
    ctx = make_ctx(
        weight_kg=Decimal("2"),
        dimensions=Dimensions(Decimal("50"), Decimal("40"), Decimal("30")),
    )
    out = engine.apply_weight_rules(_local_rules(catalog), ctx)

    assert out.billable_weight_kg == Decimal("12.000")
    assert out.net_price == Decimal("26.00")


def test_weight_band_step_bills_whole_steps(catalog, engine, make_ctx):
    rules = catalog.get_rules_for_table("dhl-national-standard-v1")
    out = engine.apply_weight_rules(rules, make_ctx(carrier_code="DHL", zone_code="NATIONAL", weight_kg=Decimal("23")))

    # 3 kg excess -> one 5 kg step -> 71.00 + 5 * 2.50
    assert out.net_price == Decimal("83.50")


def test_band_price_min_and_max_clamps():
    rule = WeightBandRule(
        id="clamped",
        weight_from=Decimal("0"),
        weight_to=None,
        price=Decimal("1.00"),
        price_per_kg=Decimal("10.00"),
        min_price=Decimal("5.00"),
        max_price=Decimal("50.00"),
    )

    assert band_price(rule, Decimal("0.1")) == Decimal("5.00")
    assert band_price(rule, Decimal("2")) == Decimal("21.00")
    assert band_price(rule, Decimal("100")) == Decimal("50.00")


def test_weight_band_below_minimum_bills_lowest_band(catalog, engine, make_ctx):
    out = engine.apply_weight_rules(_local_rules(catalog), make_ctx(weight_kg=Decimal("0.05")))

    assert out.net_price == Decimal("8.50")
    assert out.has_warning("BELOW_MINIMUM_WEIGHT")


def test_weight_band_overlap_lowest_sort_order_wins(make_ctx, state):
    rules = [
        WeightBandRule(id="b", weight_from=Decimal("0"), weight_to=Decimal("5"), price=Decimal("9"), sort_order=20),
        WeightBandRule(id="a", weight_from=Decimal("1"), weight_to=None, price=Decimal("7"), sort_order=10),
    ]
    WeightBandEvaluator().apply(rules, make_ctx(weight_kg=Decimal("2")), state)

    assert state.applied_rule_ids == ["a"]
    assert state.subtotal == Decimal("7")
    assert any(w["code"] == "OVERLAPPING_WEIGHT_BANDS" for w in state.warnings)


def test_weight_band_gap_raises_no_matching_rule(make_ctx, state):
    rules = [
        WeightBandRule(id="low", weight_from=Decimal("0"), weight_to=Decimal("1"), price=Decimal("5")),
        WeightBandRule(id="high", weight_from=Decimal("2"), weight_to=None, price=Decimal("9")),
    ]
    with pytest.raises(NoMatchingRule):
        WeightBandEvaluator().apply(rules, make_ctx(weight_kg=Decimal("1.5")), state)


def test_weight_band_empty_rule_set_raises(make_ctx, state):
    with pytest.raises(NoMatchingRule):
        WeightBandEvaluator().apply([], make_ctx(), state)
