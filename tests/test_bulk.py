import time
from decimal import Decimal

import pytest

from shipping_pricing.domain.errors import BulkCalculationFailed, ValidationError
from shipping_pricing.engine.bulk import BulkCalculator
from shipping_pricing.engine.calculator import CarrierPriceCalculator
from shipping_pricing.engine.pool import CalculationPool
from shipping_pricing.schemas.results import ITEM_FAILED, ITEM_SKIPPED, ITEM_SUCCESS

LOCAL = {"carrier_code": "INPOST", "zone_code": "LOCAL", "weight_kg": "0.5"}
UNKNOWN = {"carrier_code": "NOPE", "zone_code": "NATIONAL", "weight_kg": 1}
DPD = {"carrier_code": "DPD", "zone_code": "NATIONAL", "weight_kg": 1}


def test_failed_item_does_not_abort_the_batch(bulk):
    out = bulk.calculate_bulk([LOCAL, UNKNOWN, DPD])

    assert out.successful_calculations == 2
    assert out.failed_calculations == 1
    assert [i.status for i in out.items] == [ITEM_SUCCESS, ITEM_FAILED, ITEM_SUCCESS]
    error = out.errors[0]
    assert error.index == 1
    assert error.error_code == "UNKNOWN_CARRIER"
    assert error.carrier_code == "NOPE"
    assert out.success_rate == Decimal("66.67")


def test_stop_on_first_error_skips_the_rest(bulk):
    out = bulk.calculate_bulk([LOCAL, UNKNOWN, DPD], {"stop_on_first_error": True})

    assert [i.status for i in out.items] == [ITEM_SUCCESS, ITEM_FAILED, ITEM_SKIPPED]
    assert out.skipped_calculations == 1


def test_malformed_item_is_a_validation_failure(bulk):
    out = bulk.calculate_bulk([LOCAL, {**LOCAL, "weight_kg": -1}])

    assert out.errors[0].index == 1
    assert out.errors[0].error_code == "VALIDATION_ERROR"
    assert out.successful_calculations == 1


def test_all_items_failing_raises_with_every_cause(bulk):
    with pytest.raises(BulkCalculationFailed) as exc:
        bulk.calculate_bulk([UNKNOWN, {**LOCAL, "weight_kg": 31}])

    assert [e["error_code"] for e in exc.value.errors] == ["UNKNOWN_CARRIER", "CARRIER_CANNOT_HANDLE"]


def test_empty_and_oversized_batches_rejected(bulk, settings):
    with pytest.raises(ValidationError):
        bulk.calculate_bulk([])

    with pytest.raises(ValidationError):
        bulk.calculate_bulk([LOCAL] * (settings.max_bulk_requests + 1))


def test_batch_size_drives_volume_discount(bulk):
    out = bulk.calculate_bulk([DPD] * 10)

    assert all("dpd-volume" in r.applied_rule_ids for r in out.results)
    # 11.50 - 5%
    assert {r.net_price for r in out.results} == {Decimal("10.93")}
    assert out.totals.total_amount == Decimal("134.40")


def test_bulk_discount_on_totals(bulk):
    out = bulk.calculate_bulk(
        [LOCAL, LOCAL, LOCAL],
        {"bulk_discount_threshold": 3, "bulk_discount_percent": 10},
    )

    assert out.totals.total_amount == Decimal("31.38")
    assert out.totals.average_price == Decimal("10.46")
    assert out.totals.bulk_discount_amount == Decimal("3.14")
    assert out.totals.total_after_discount == Decimal("28.24")


def test_bulk_discount_below_threshold_not_applied(bulk):
    out = bulk.calculate_bulk([LOCAL, LOCAL], {"bulk_discount_threshold": 3, "bulk_discount_percent": 10})

    assert out.totals.bulk_discount_amount == Decimal("0.00")
    assert out.totals.total_after_discount == out.totals.total_amount


def test_parallel_and_sequential_agree(bulk):
    requests = [LOCAL, UNKNOWN, DPD, {**DPD, "weight_kg": 12}]

    parallel = bulk.calculate_bulk(requests)
    sequential = bulk.calculate_bulk(requests, {"parallel": False})

    assert parallel.to_dict() == sequential.to_dict()


def test_by_carrier_summary(bulk):
    out = bulk.calculate_bulk([LOCAL, DPD, LOCAL])

    summary = out.by_carrier()
    assert list(summary) == ["DPD", "INPOST"]
    assert summary["INPOST"]["count"] == 2
    assert summary["INPOST"]["total_amount"] == Decimal("20.92")


class _Slow(CarrierPriceCalculator):
    def try_calculate_price(self, request, *, batch_size=None):
        time.sleep(0.5)
        return super().try_calculate_price(request, batch_size=batch_size)


def test_items_without_a_free_slot_are_rejected(catalog, settings, fixed_now):
    calc = _Slow(catalog, settings=settings, clock=lambda: fixed_now)
    pool = CalculationPool(max_workers=2, calculation_timeout_s=5.0, admission_timeout_s=0.05)
    bulk = BulkCalculator(catalog, calculator=calc, settings=settings, pool=pool)

    out = bulk.calculate_bulk([LOCAL] * 4)

    assert [i.status for i in out.items] == [ITEM_SUCCESS, ITEM_SUCCESS, ITEM_FAILED, ITEM_FAILED]
    assert {e.error_code for e in out.errors} == {"CONCURRENCY_LIMIT_REACHED"}
    assert all(e.retryable for e in out.errors)
