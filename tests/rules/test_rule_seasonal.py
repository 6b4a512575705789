from datetime import datetime, timezone
from decimal import Decimal

from shipping_pricing.domain.models import AdditionalService
from shipping_pricing.domain.rules import SeasonalRule, WeightBandRule

WINDOW = dict(
    starts_at=datetime(2025, 12, 1, tzinfo=timezone.utc),
    ends_at=datetime(2025, 12, 24, tzinfo=timezone.utc),
)


def test_seasonal_multiplier_inside_window(engine, make_ctx):
    rule = SeasonalRule(id="xmas", multiplier=Decimal("1.10"), **WINDOW)
    ctx = make_ctx(as_of=datetime(2025, 12, 10, tzinfo=timezone.utc))
    out = engine.apply_seasonal_rules([rule], ctx, Decimal("20.00"))

    assert out.net_price == Decimal("22.00")
    assert out.surcharges_total == Decimal("2.00")


def test_seasonal_window_end_is_exclusive(engine, make_ctx):
    rule = SeasonalRule(id="xmas", multiplier=Decimal("1.10"), **WINDOW)
    ctx = make_ctx(as_of=datetime(2025, 12, 24, tzinfo=timezone.utc))
    out = engine.apply_seasonal_rules([rule], ctx, Decimal("20.00"))

    assert out.net_price == Decimal("20.00")
    assert out.breakdown[-1].meta["reason"] == "outside_window"


def test_seasonal_override_replaces_running_price(engine, make_ctx):
    rule = SeasonalRule(id="promo-week", override_price=Decimal("15.00"), **WINDOW)
    ctx = make_ctx(as_of=datetime(2025, 12, 2, tzinfo=timezone.utc))
    out = engine.apply_seasonal_rules([rule], ctx, Decimal("20.00"))

    assert out.net_price == Decimal("15.00")
    assert out.discounts_total == Decimal("5.00")


def _with_sms(make_ctx, as_of):
    sms = AdditionalService(code="SMS", name="SMS", carrier_code="INPOST", default_price=Decimal("5.00"))
    return make_ctx(
        as_of=as_of,
        tax_rate=Decimal("0"),
        additional_services=("SMS",),
        available_services=(sms,),
    )


def test_seasonal_override_keeps_additional_services(engine, make_ctx):
    rules = [
        WeightBandRule(id="band", weight_from=Decimal("0"), weight_to=None, price=Decimal("10.00")),
        SeasonalRule(id="promo-week", override_price=Decimal("12.00"), **WINDOW),
    ]
    out = engine.apply_rules(rules, _with_sms(make_ctx, datetime(2025, 12, 2, tzinfo=timezone.utc)))

    # shipping 10.00 -> 12.00, SMS 5.00 untouched
    assert out.services_total == Decimal("5.00")
    assert out.surcharges_total == Decimal("2.00")
    assert out.net_price == Decimal("17.00")


def test_seasonal_multiplier_does_not_scale_services(engine, make_ctx):
    rules = [
        WeightBandRule(id="band", weight_from=Decimal("0"), weight_to=None, price=Decimal("10.00")),
        SeasonalRule(id="xmas", multiplier=Decimal("1.10"), **WINDOW),
    ]
    out = engine.apply_rules(rules, _with_sms(make_ctx, datetime(2025, 12, 10, tzinfo=timezone.utc)))

    assert out.surcharges_total == Decimal("1.00")
    assert out.net_price == Decimal("16.00")
