from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from ...domain.money import D
from ...domain.rules import RuleKind, TierDriver, TieredRule
from ..context import STAGE_BASE, PriceState, RuleContext
from .base import RuleEvaluator, register


def driver_value(driver: TierDriver, ctx: RuleContext) -> Optional[Decimal]:
    if driver == TierDriver.DECLARED_VALUE:
        return ctx.declared_value
    if driver == TierDriver.BILLABLE_WEIGHT:
        return ctx.billable_weight_kg
    if driver == TierDriver.ACTUAL_WEIGHT:
        return ctx.weight_kg
    if driver == TierDriver.VOLUME_CM3:
        return ctx.volume_cm3 if ctx.dimensions else None
    return None


@register
class TieredEvaluator(RuleEvaluator):
    """
    Same band matching as weight bands, keyed on another scalar. One band per
    driver; the matched band's price (+ per-unit above its floor) adds to base.
    """

    kind = RuleKind.TIERED
    stage = STAGE_BASE

    def apply(self, rules: Sequence[TieredRule], ctx: RuleContext, state: PriceState) -> None:
        by_driver: Dict[TierDriver, List[TieredRule]] = {}
        for r in rules:
            by_driver.setdefault(r.driver, []).append(r)

        for driver in sorted(by_driver, key=lambda d: d.value):
            tiers = by_driver[driver]
            value = driver_value(driver, ctx)
            if value is None:
                for r in tiers:
                    state.skip(
                        stage=self.stage,
                        rule_id=r.id,
                        rule_type=self.kind.value,
                        title=r.name or r.id,
                        reason="missing_driver_value",
                        driver=driver.value,
                    )
                continue

            matches = [r for r in tiers if r.matches(value)]
            if not matches:
                state.skip(
                    stage=self.stage,
                    rule_id=tiers[0].id,
                    rule_type=self.kind.value,
                    title=tiers[0].name or tiers[0].id,
                    reason="no_matching_tier",
                    driver=driver.value,
                    value=str(value),
                )
                continue

            if len(matches) > 1:
                state.warn(
                    "OVERLAPPING_TIERS",
                    f"Several {driver.value} tiers match {value}; lowest sort_order wins.",
                    rule_ids=[r.id for r in matches],
                )

            rule = min(matches, key=lambda r: (r.sort_order, r.id))
            amount = rule.price + max(D("0"), value - rule.value_from) * rule.price_per_unit
            state.apply(
                stage=self.stage,
                rule_id=rule.id,
                rule_type=self.kind.value,
                title=rule.name or rule.id,
                delta=amount,
                kind="base",
                driver=driver.value,
                value=str(value),
            )
