from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..domain.models import (
    AdditionalService,
    AdditionalServicePrice,
    CustomerPricing,
    Dimensions,
    Promotion,
)
from ..domain.money import D, ZERO, percent_of, qmoney

# Decisions (avoid string typos)
DECISION_APPLIED = "APPLIED"
DECISION_SKIPPED = "SKIPPED"

# Stages, in the fixed combination order
STAGE_BASE = "base"
STAGE_DIMENSIONAL = "dimensional"
STAGE_SERVICES = "services"
STAGE_SEASONAL = "seasonal"
STAGE_DISCOUNTS = "discounts"
STAGE_PROMOTIONS = "promotions"
STAGE_CLAMP = "clamp"
STAGE_TAX = "tax"

DEFAULT_VOLUMETRIC_DIVISOR = 5000

_WEIGHT_EXP = D("0.001")
_VOLUMETRIC_EXP = D("0.00001")


# -----------------------------
# Input (per calculation, immutable)
# -----------------------------


@dataclass(frozen=True)
class RuleContext:
    """
    Everything one carrier calculation needs. Built by the calculator from the
    request + catalog; rule evaluators only read it.
    """

    carrier_code: str
    zone_code: str
    weight_kg: Decimal
    as_of: datetime
    service_type: str = "standard"
    dimensions: Optional[Dimensions] = None
    currency: str = "PLN"
    volumetric_divisor: int = DEFAULT_VOLUMETRIC_DIVISOR
    declared_value: Optional[Decimal] = None
    customer_id: Optional[str] = None
    promotion_codes: Tuple[str, ...] = ()
    additional_services: Tuple[str, ...] = ()

    # progressive / volume drivers
    period_shipment_count: Optional[int] = None
    period_order_value: Optional[Decimal] = None
    rolling_parcel_count: Optional[int] = None
    batch_size: Optional[int] = None

    # resolved from the catalog
    table_id: Optional[str] = None
    tax_rate: Decimal = ZERO
    available_services: Tuple[AdditionalService, ...] = ()
    service_overrides: Mapping[str, AdditionalServicePrice] = field(default_factory=dict)
    promotions: Tuple[Promotion, ...] = ()
    customer_pricing: Optional[CustomerPricing] = None

    @property
    def volume_cm3(self) -> Decimal:
        return self.dimensions.volume_cm3 if self.dimensions else ZERO

    @property
    def volumetric_weight_kg(self) -> Decimal:
        return self.volume_cm3 / D(self.volumetric_divisor)

    @property
    def billable_weight_kg(self) -> Decimal:
        return max(self.weight_kg, self.volumetric_weight_kg)

    @property
    def parcel_volume(self) -> Optional[int]:
        """Batch size inside a bulk run, else the rolling historical count."""
        if self.batch_size is not None:
            return self.batch_size
        return self.rolling_parcel_count


# -----------------------------
# Trail + adjustments
# -----------------------------


@dataclass(frozen=True)
class BreakdownLine:
    stage: str
    rule_id: str
    rule_type: str
    title: str
    decision: str  # "APPLIED" | "SKIPPED"
    delta: Decimal
    subtotal_after: Decimal
    meta: Dict[str, Any] = field(default_factory=dict)

    def quantized(self, currency: str) -> "BreakdownLine":
        return BreakdownLine(
            stage=self.stage,
            rule_id=self.rule_id,
            rule_type=self.rule_type,
            title=self.title,
            decision=self.decision,
            delta=qmoney(self.delta, currency),
            subtotal_after=qmoney(self.subtotal_after, currency),
            meta=dict(self.meta),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "rule_id": self.rule_id,
            "rule_type": self.rule_type,
            "title": self.title,
            "decision": self.decision,
            "delta": str(self.delta),
            "subtotal_after": str(self.subtotal_after),
            "meta": dict(self.meta),
        }


@dataclass(frozen=True)
class Adjustment:
    source_id: str
    kind: str  # "surcharge" | "service" | "discount" | "promotion"
    amount: Decimal  # signed: discounts are negative

    def to_dict(self) -> Dict[str, Any]:
        return {"source_id": self.source_id, "kind": self.kind, "amount": str(self.amount)}


@dataclass(frozen=True)
class ServiceCharge:
    code: str
    name: str
    pricing_type: str
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "pricing_type": self.pricing_type,
            "amount": str(self.amount),
        }


# -----------------------------
# Runtime state (per calculation, mutable)
# -----------------------------


@dataclass
class PriceState:
    currency: str
    subtotal: Decimal = ZERO
    base_price: Decimal = ZERO
    surcharges_total: Decimal = ZERO
    services_total: Decimal = ZERO
    discounts_total: Decimal = ZERO  # positive magnitude
    service_charges: List[ServiceCharge] = field(default_factory=list)
    breakdown: List[BreakdownLine] = field(default_factory=list)
    adjustments: List[Adjustment] = field(default_factory=list)
    applied_rule_ids: List[str] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    def warn(self, code: str, message: str, **meta: Any) -> None:
        self.warnings.append({"code": code, "message": message, "meta": meta})

    def apply(
        self,
        *,
        stage: str,
        rule_id: str,
        rule_type: str,
        title: str,
        delta: Decimal,
        kind: str,
        **meta: Any,
    ) -> None:
        self.subtotal += delta
        if kind == "base":
            self.base_price += delta
        elif kind == "surcharge":
            self.surcharges_total += delta
        elif kind == "service":
            self.services_total += delta
        else:
            self.discounts_total -= delta

        if kind != "base":
            self.adjustments.append(Adjustment(source_id=rule_id, kind=kind, amount=delta))
        self.applied_rule_ids.append(rule_id)
        self.breakdown.append(
            BreakdownLine(
                stage=stage,
                rule_id=rule_id,
                rule_type=rule_type,
                title=title,
                decision=DECISION_APPLIED,
                delta=delta,
                subtotal_after=self.subtotal,
                meta=meta,
            )
        )

    def skip(self, *, stage: str, rule_id: str, rule_type: str, title: str, **meta: Any) -> None:
        self.breakdown.append(
            BreakdownLine(
                stage=stage,
                rule_id=rule_id,
                rule_type=rule_type,
                title=title,
                decision=DECISION_SKIPPED,
                delta=ZERO,
                subtotal_after=self.subtotal,
                meta=meta,
            )
        )

    def finalize(self, ctx: RuleContext, *, include_tax: bool = True) -> "RuleResult":
        """Single rounding point of the whole pipeline."""
        cur = self.currency
        net = qmoney(self.subtotal, cur)
        tax_rate = ctx.tax_rate if include_tax else ZERO
        tax = qmoney(percent_of(self.subtotal, tax_rate), cur) if include_tax else qmoney(ZERO, cur)

        breakdown = [line.quantized(cur) for line in self.breakdown]
        applied_rule_ids = list(self.applied_rule_ids)
        if include_tax and tax_rate > ZERO:
            tax_id = f"tax:{ctx.table_id}"
            applied_rule_ids.append(tax_id)
            breakdown.append(
                BreakdownLine(
                    stage=STAGE_TAX,
                    rule_id=tax_id,
                    rule_type="tax",
                    title=f"Tax {tax_rate}%",
                    decision=DECISION_APPLIED,
                    delta=tax,
                    subtotal_after=net + tax,
                    meta={"tax_rate": str(tax_rate)},
                )
            )

        return RuleResult(
            currency=cur,
            base_price=qmoney(self.base_price, cur),
            surcharges_total=qmoney(self.surcharges_total, cur),
            services_total=qmoney(self.services_total, cur),
            discounts_total=qmoney(self.discounts_total, cur),
            net_price=net,
            tax_rate=tax_rate,
            tax_amount=tax,
            final_price=net + tax,
            service_charges=tuple(
                ServiceCharge(s.code, s.name, s.pricing_type, qmoney(s.amount, cur))
                for s in self.service_charges
            ),
            adjustments=tuple(
                Adjustment(a.source_id, a.kind, qmoney(a.amount, cur)) for a in self.adjustments
            ),
            applied_rule_ids=tuple(applied_rule_ids),
            breakdown=tuple(breakdown),
            warnings=tuple(self.warnings),
            actual_weight_kg=ctx.weight_kg.quantize(_WEIGHT_EXP),
            volumetric_weight_kg=ctx.volumetric_weight_kg.quantize(_VOLUMETRIC_EXP),
            billable_weight_kg=ctx.billable_weight_kg.quantize(_WEIGHT_EXP),
        )


# -----------------------------
# Output
# -----------------------------


@dataclass(frozen=True)
class RuleResult:
    currency: str
    base_price: Decimal
    net_price: Decimal  # pre-tax
    tax_rate: Decimal
    tax_amount: Decimal
    final_price: Decimal  # incl. tax, always >= 0
    surcharges_total: Decimal = ZERO
    services_total: Decimal = ZERO
    discounts_total: Decimal = ZERO
    service_charges: Tuple[ServiceCharge, ...] = ()
    adjustments: Tuple[Adjustment, ...] = ()
    applied_rule_ids: Tuple[str, ...] = ()
    breakdown: Tuple[BreakdownLine, ...] = ()
    warnings: Tuple[Dict[str, Any], ...] = ()
    actual_weight_kg: Decimal = ZERO
    volumetric_weight_kg: Decimal = ZERO
    billable_weight_kg: Decimal = ZERO

    def has_warning(self, code: str) -> bool:
        return any(w["code"] == code for w in self.warnings)
