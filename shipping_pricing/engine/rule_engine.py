from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import structlog

from ..domain.money import ZERO, percent_of
from ..domain.rules import PricingRule, RuleKind
from .context import (
    STAGE_CLAMP,
    STAGE_DISCOUNTS,
    PriceState,
    RuleContext,
    RuleResult,
)
from .promotions import PromotionCombiner
from .rule_types import ensure_exhaustive, get_evaluator
from .services import apply_additional_services

logger = structlog.get_logger(__name__)


def _by_kind(rules: Iterable[PricingRule]) -> Dict[RuleKind, List[PricingRule]]:
    grouped: Dict[RuleKind, List[PricingRule]] = {k: [] for k in RuleKind}
    for r in sorted(rules, key=lambda r: (r.sort_order, r.id)):
        if r.active:
            grouped[r.kind].append(r)
    return grouped


class RuleEngine:
    """
    Deterministic pricing pipeline for one carrier/table.

    Fixed order:
      1. base (weight band + tiered)
      2. dimensional surcharge / rejection
      3. additional services
      4. seasonal
      5. progressive + volume + customer contract discounts (compounding)
      6. promotions
      7. clamp at zero
      8. tax
    Rounding happens once, in PriceState.finalize().
    """

    def __init__(self, promotion_combiner: Optional[PromotionCombiner] = None):
        ensure_exhaustive()
        self.promotion_combiner = promotion_combiner or PromotionCombiner()

    # -----------------
    # full pipeline
    # -----------------

    def apply_rules(self, rules: Iterable[PricingRule], ctx: RuleContext) -> RuleResult:
        rules = _by_kind(rules)
        state = PriceState(currency=ctx.currency)

        self._run(RuleKind.WEIGHT_BAND, rules, ctx, state)
        self._run(RuleKind.TIERED, rules, ctx, state)
        self._run(RuleKind.DIMENSIONAL, rules, ctx, state)
        apply_additional_services(ctx, state)
        self._run(RuleKind.SEASONAL, rules, ctx, state)
        self._run(RuleKind.PROGRESSIVE_DISCOUNT, rules, ctx, state)
        self._run(RuleKind.VOLUME_DISCOUNT, rules, ctx, state)
        self._apply_customer_discount(ctx, state)
        self.promotion_combiner.apply(ctx, state)
        self._clamp(ctx, state)

        result = state.finalize(ctx)
        logger.debug(
            "rules_applied",
            carrier_code=ctx.carrier_code,
            zone_code=ctx.zone_code,
            table_id=ctx.table_id,
            net_price=str(result.net_price),
            applied=list(result.applied_rule_ids),
        )
        return result

    # -----------------
    # per-kind entry points (partial pricing, no tax)
    # -----------------

    def apply_weight_rules(self, rules, ctx: RuleContext, amount=ZERO) -> RuleResult:
        return self._partial(RuleKind.WEIGHT_BAND, rules, ctx, amount)

    def apply_dimension_rules(self, rules, ctx: RuleContext, amount=ZERO) -> RuleResult:
        return self._partial(RuleKind.DIMENSIONAL, rules, ctx, amount)

    def apply_tiered_rules(self, rules, ctx: RuleContext, amount=ZERO) -> RuleResult:
        return self._partial(RuleKind.TIERED, rules, ctx, amount)

    def apply_progressive_rules(self, rules, ctx: RuleContext, amount=ZERO) -> RuleResult:
        return self._partial(RuleKind.PROGRESSIVE_DISCOUNT, rules, ctx, amount)

    def apply_seasonal_rules(self, rules, ctx: RuleContext, amount=ZERO) -> RuleResult:
        return self._partial(RuleKind.SEASONAL, rules, ctx, amount)

    def apply_volume_based_rules(self, rules, ctx: RuleContext, amount=ZERO) -> RuleResult:
        return self._partial(RuleKind.VOLUME_DISCOUNT, rules, ctx, amount)

    # -----------------
    # internals
    # -----------------

    @staticmethod
    def _run(
        kind: RuleKind,
        rules: Dict[RuleKind, List[PricingRule]],
        ctx: RuleContext,
        state: PriceState,
    ) -> None:
        # weight bands always run: an empty set is a NoMatchingRule
        if rules[kind] or kind == RuleKind.WEIGHT_BAND:
            get_evaluator(kind).apply(rules[kind], ctx, state)

    def _partial(self, kind: RuleKind, rules, ctx: RuleContext, amount) -> RuleResult:
        state = PriceState(currency=ctx.currency, subtotal=amount, base_price=amount)
        self._run(kind, _by_kind(r for r in rules if r.kind == kind), ctx, state)
        return state.finalize(ctx, include_tax=False)

    @staticmethod
    def _apply_customer_discount(ctx: RuleContext, state: PriceState) -> None:
        cp = ctx.customer_pricing
        if cp is None or cp.discount_percent <= ZERO:
            return
        state.apply(
            stage=STAGE_DISCOUNTS,
            rule_id=f"customer:{cp.customer_id}",
            rule_type="customer_pricing",
            title=f"Contract discount {cp.discount_percent}%",
            delta=-percent_of(state.subtotal, cp.discount_percent),
            kind="discount",
            percent=str(cp.discount_percent),
        )

    @staticmethod
    def _clamp(ctx: RuleContext, state: PriceState) -> None:
        if state.subtotal >= ZERO:
            return
        logger.warning(
            "price_clamped_to_zero",
            carrier_code=ctx.carrier_code,
            zone_code=ctx.zone_code,
            subtotal=str(state.subtotal),
        )
        state.warn(
            "PRICE_CLAMPED_TO_ZERO",
            f"Discounts pushed the price below zero ({state.subtotal}); clamped to 0.",
            subtotal=str(state.subtotal),
        )
        state.apply(
            stage=STAGE_CLAMP,
            rule_id="clamp:non_negative",
            rule_type="clamp",
            title="Clamp to zero",
            delta=-state.subtotal,
            kind="clamp",
        )
