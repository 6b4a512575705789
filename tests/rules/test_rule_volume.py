from decimal import Decimal

from shipping_pricing.domain.rules import Breakpoint, VolumeDiscountRule


def _volume():
    return VolumeDiscountRule(
        id="volume",
        breakpoints=(
            Breakpoint(Decimal("10"), Decimal("5")),
            Breakpoint(Decimal("25"), Decimal("10")),
        ),
    )


def test_volume_uses_batch_size_over_history(engine, make_ctx):
    ctx = make_ctx(batch_size=25, rolling_parcel_count=3)
    out = engine.apply_volume_based_rules([_volume()], ctx, Decimal("40.00"))

    assert out.net_price == Decimal("36.00")
    assert out.breakdown[-1].meta["source"] == "batch"


def test_volume_falls_back_to_rolling_count(engine, make_ctx):
    out = engine.apply_volume_based_rules([_volume()], make_ctx(rolling_parcel_count=12), Decimal("40.00"))

    assert out.net_price == Decimal("38.00")
    assert out.breakdown[-1].meta["source"] == "history"


def test_volume_without_any_quantity_is_skipped(engine, make_ctx):
    out = engine.apply_volume_based_rules([_volume()], make_ctx(), Decimal("40.00"))

    assert out.net_price == Decimal("40.00")
    assert out.breakdown[-1].meta["reason"] == "missing_parcel_volume"
