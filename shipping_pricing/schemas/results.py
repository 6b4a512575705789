# shipping_pricing/schemas/results.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..domain.errors import PricingError
from ..domain.models import Carrier, DeliveryTime
from ..domain.money import ZERO, qmoney
from ..engine.context import BreakdownLine, RuleResult, ServiceCharge


def _s(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _delivery(dt: Optional[DeliveryTime]) -> Optional[Dict[str, int]]:
    return None if dt is None else {"min_days": dt.min_days, "max_days": dt.max_days}


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (Decimal, datetime)):
        return value.isoformat() if isinstance(value, datetime) else str(value)
    return value


@dataclass(frozen=True)
class PriceCalculationResult:
    carrier_code: str
    carrier_name: str
    zone_code: str
    service_type: str
    table_id: str
    currency: str
    actual_weight_kg: Decimal
    volumetric_weight_kg: Decimal
    billable_weight_kg: Decimal
    base_price: Decimal
    surcharges_total: Decimal
    additional_services: Tuple[ServiceCharge, ...]
    additional_services_total: Decimal
    discounts_total: Decimal
    net_price: Decimal  # pre-tax
    tax_rate: Decimal
    tax_amount: Decimal
    total_price: Decimal
    applied_rules: Tuple[BreakdownLine, ...]
    applied_rule_ids: Tuple[str, ...]
    warnings: Tuple[Dict[str, Any], ...]
    delivery_time: Optional[DeliveryTime]
    as_of: datetime

    @classmethod
    def from_rule_result(
        cls,
        rr: RuleResult,
        *,
        carrier: Carrier,
        zone_code: str,
        service_type: str,
        table_id: str,
        as_of: datetime,
    ) -> "PriceCalculationResult":
        return cls(
            carrier_code=carrier.code,
            carrier_name=carrier.name,
            zone_code=zone_code,
            service_type=service_type,
            table_id=table_id,
            currency=rr.currency,
            actual_weight_kg=rr.actual_weight_kg,
            volumetric_weight_kg=rr.volumetric_weight_kg,
            billable_weight_kg=rr.billable_weight_kg,
            base_price=rr.base_price,
            surcharges_total=rr.surcharges_total,
            additional_services=rr.service_charges,
            additional_services_total=rr.services_total,
            discounts_total=rr.discounts_total,
            net_price=rr.net_price,
            tax_rate=rr.tax_rate,
            tax_amount=rr.tax_amount,
            total_price=rr.final_price,
            applied_rules=rr.breakdown,
            applied_rule_ids=rr.applied_rule_ids,
            warnings=rr.warnings,
            delivery_time=carrier.delivery_time_for(zone_code),
            as_of=as_of,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier_code": self.carrier_code,
            "carrier_name": self.carrier_name,
            "zone_code": self.zone_code,
            "service_type": self.service_type,
            "table_id": self.table_id,
            "currency": self.currency,
            "weights": {
                "actual_kg": str(self.actual_weight_kg),
                "volumetric_kg": str(self.volumetric_weight_kg),
                "billable_kg": str(self.billable_weight_kg),
            },
            "base_price": str(self.base_price),
            "surcharges_total": str(self.surcharges_total),
            "additional_services": [s.to_dict() for s in self.additional_services],
            "additional_services_total": str(self.additional_services_total),
            "discounts_total": str(self.discounts_total),
            "net_price": str(self.net_price),
            "tax_rate": str(self.tax_rate),
            "tax_amount": str(self.tax_amount),
            "total_price": str(self.total_price),
            "applied_rules": [line.to_dict() for line in self.applied_rules],
            "applied_rule_ids": list(self.applied_rule_ids),
            "warnings": _plain(list(self.warnings)),
            "delivery_time": _delivery(self.delivery_time),
            "as_of": self.as_of.isoformat(),
        }


@dataclass(frozen=True)
class CalculationOutcome:
    """Explicit result form for fan-out: a failure is data, not control flow."""

    ok: bool
    result: Optional[PriceCalculationResult] = None
    error: Optional[PricingError] = None
    carrier_code: Optional[str] = None

    @classmethod
    def success(cls, result: PriceCalculationResult) -> "CalculationOutcome":
        return cls(ok=True, result=result, carrier_code=result.carrier_code)

    @classmethod
    def failure(cls, error: PricingError, carrier_code: Optional[str] = None) -> "CalculationOutcome":
        return cls(ok=False, error=error, carrier_code=carrier_code)


@dataclass(frozen=True)
class CarrierFailure:
    carrier_code: str
    error_code: str
    message: str
    retryable: bool = False
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, carrier_code: str, error: PricingError) -> "CarrierFailure":
        return cls(
            carrier_code=carrier_code,
            error_code=error.code,
            message=error.message,
            retryable=error.retryable,
            context=error.to_dict()["context"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier_code": self.carrier_code,
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "context": dict(self.context),
        }


def _delivery_key(r: PriceCalculationResult) -> Tuple[int, int, int]:
    # unknown delivery estimate sorts last
    if r.delivery_time is None:
        return (1, 0, 0)
    return (0,) + r.delivery_time.sort_key


def ranking_key(r: PriceCalculationResult):
    """total price, then shortest stated delivery time, then carrier code"""
    return (r.total_price, _delivery_key(r), r.carrier_code)


@dataclass(frozen=True)
class ComparisonResult:
    zone_code: str
    service_type: str
    currency: str
    results: Tuple[PriceCalculationResult, ...]  # ranked
    failures: Tuple[CarrierFailure, ...]
    total_carriers_checked: int
    as_of: datetime

    @property
    def best(self) -> Optional[PriceCalculationResult]:
        return self.results[0] if self.results else None

    @property
    def cheapest(self) -> Optional[PriceCalculationResult]:
        return self.best

    @property
    def most_expensive(self) -> Optional[PriceCalculationResult]:
        return self.results[-1] if self.results else None

    @property
    def unavailable_carriers(self) -> List[str]:
        return [f.carrier_code for f in self.failures]

    @property
    def average_price(self) -> Decimal:
        if not self.results:
            return qmoney(ZERO, self.currency)
        total = sum((r.total_price for r in self.results), ZERO)
        return qmoney(total / len(self.results), self.currency)

    @property
    def savings_potential(self) -> Decimal:
        if not self.results:
            return qmoney(ZERO, self.currency)
        return self.most_expensive.total_price - self.cheapest.total_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_code": self.zone_code,
            "service_type": self.service_type,
            "currency": self.currency,
            "as_of": self.as_of.isoformat(),
            "best_carrier": self.best.carrier_code if self.best else None,
            "results": [r.to_dict() for r in self.results],
            "failures": [f.to_dict() for f in self.failures],
            "statistics": {
                "total_carriers_checked": self.total_carriers_checked,
                "available_carriers": len(self.results),
                "unavailable_carriers": self.unavailable_carriers,
                "average_price": str(self.average_price),
                "cheapest_price": _s(self.cheapest.total_price) if self.cheapest else None,
                "most_expensive_price": _s(self.most_expensive.total_price) if self.most_expensive else None,
                "savings_potential": str(self.savings_potential),
            },
        }


# -----------------------------
# Bulk
# -----------------------------

ITEM_SUCCESS = "success"
ITEM_FAILED = "failed"
ITEM_SKIPPED = "skipped"


@dataclass(frozen=True)
class BulkItemError:
    index: int
    error_code: str
    message: str
    retryable: bool = False
    carrier_code: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, index: int, error: PricingError, carrier_code: Optional[str] = None) -> "BulkItemError":
        return cls(
            index=index,
            error_code=error.code,
            message=error.message,
            retryable=error.retryable,
            carrier_code=carrier_code,
            context=error.to_dict()["context"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "carrier_code": self.carrier_code,
            "context": dict(self.context),
        }


@dataclass(frozen=True)
class BulkItem:
    index: int
    status: str  # success | failed | skipped
    result: Optional[PriceCalculationResult] = None
    error: Optional[BulkItemError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "status": self.status,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class BulkTotals:
    currency: str
    total_amount: Decimal
    total_base: Decimal
    total_additional: Decimal
    total_tax: Decimal
    average_price: Decimal
    bulk_discount_percent: Decimal
    bulk_discount_amount: Decimal
    total_after_discount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "total_amount": str(self.total_amount),
            "total_base": str(self.total_base),
            "total_additional": str(self.total_additional),
            "total_tax": str(self.total_tax),
            "average_price": str(self.average_price),
            "bulk_discount_percent": str(self.bulk_discount_percent),
            "bulk_discount_amount": str(self.bulk_discount_amount),
            "total_after_discount": str(self.total_after_discount),
        }


@dataclass(frozen=True)
class BulkResult:
    items: Tuple[BulkItem, ...]  # request order
    totals: BulkTotals
    warnings: Tuple[Dict[str, Any], ...] = ()

    @property
    def total_requests(self) -> int:
        return len(self.items)

    @property
    def results(self) -> List[PriceCalculationResult]:
        return [i.result for i in self.items if i.status == ITEM_SUCCESS]

    @property
    def errors(self) -> List[BulkItemError]:
        return [i.error for i in self.items if i.status == ITEM_FAILED]

    @property
    def successful_calculations(self) -> int:
        return sum(1 for i in self.items if i.status == ITEM_SUCCESS)

    @property
    def failed_calculations(self) -> int:
        return sum(1 for i in self.items if i.status == ITEM_FAILED)

    @property
    def skipped_calculations(self) -> int:
        return sum(1 for i in self.items if i.status == ITEM_SKIPPED)

    @property
    def success_rate(self) -> Decimal:
        if not self.items:
            return ZERO
        return (Decimal(self.successful_calculations) * 100 / len(self.items)).quantize(Decimal("0.01"))

    def by_carrier(self) -> Dict[str, Dict[str, Any]]:
        groups: Dict[str, Dict[str, Any]] = {}
        for r in self.results:
            g = groups.setdefault(r.carrier_code, {"count": 0, "total_amount": ZERO})
            g["count"] += 1
            g["total_amount"] += r.total_price
        return {k: groups[k] for k in sorted(groups)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_calculations": self.successful_calculations,
            "failed_calculations": self.failed_calculations,
            "skipped_calculations": self.skipped_calculations,
            "success_rate": str(self.success_rate),
            "totals": self.totals.to_dict(),
            "by_carrier": _plain(self.by_carrier()),
            "items": [i.to_dict() for i in self.items],
            "errors": [e.to_dict() for e in self.errors],
            "warnings": _plain(list(self.warnings)),
        }
