from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

import shipping_pricing.engine.rule_types  # noqa: F401 (register all evaluators)

from shipping_pricing.catalog import load_catalog
from shipping_pricing.core.settings import Settings
from shipping_pricing.engine.bulk import BulkCalculator
from shipping_pricing.engine.calculator import CarrierPriceCalculator
from shipping_pricing.engine.comparison import ComparisonEngine
from shipping_pricing.engine.context import PriceState, RuleContext
from shipping_pricing.engine.pool import CalculationPool
from shipping_pricing.engine.rule_engine import RuleEngine


@pytest.fixture
def fixed_now():
    return datetime(2025, 6, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def catalog():
    # seed catalog shipped with the package (also runs the integrity checks)
    return load_catalog()


@pytest.fixture
def settings():
    return Settings(
        max_workers=4,
        max_bulk_requests=20,
        calculation_timeout_seconds=5.0,
        admission_timeout_seconds=2.0,
    )


@pytest.fixture
def pool(settings):
    return CalculationPool(
        max_workers=settings.max_workers,
        calculation_timeout_s=settings.calculation_timeout_seconds,
        admission_timeout_s=settings.admission_timeout_seconds,
    )


@pytest.fixture
def engine():
    return RuleEngine()


@pytest.fixture
def calculator(catalog, settings, fixed_now):
    return CarrierPriceCalculator(catalog, settings=settings, clock=lambda: fixed_now)


@pytest.fixture
def comparison(catalog, settings, calculator, pool):
    return ComparisonEngine(catalog, calculator=calculator, settings=settings, pool=pool)


@pytest.fixture
def bulk(catalog, settings, calculator, pool):
    return BulkCalculator(catalog, calculator=calculator, settings=settings, pool=pool)


@pytest.fixture
def make_ctx(fixed_now):
    def _make(**overrides) -> RuleContext:
        values = dict(
            carrier_code="INPOST",
            zone_code="LOCAL",
            weight_kg=Decimal("1"),
            as_of=fixed_now,
            table_id="test-table",
            tax_rate=Decimal("23"),
        )
        values.update(overrides)
        return RuleContext(**values)

    return _make


@pytest.fixture
def state():
    return PriceState(currency="PLN")
