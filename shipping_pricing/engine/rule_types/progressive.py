from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

from ...domain.money import D, percent_of
from ...domain.rules import (
    ProgressiveDiscountRule,
    ProgressiveDriver,
    RuleKind,
    highest_breakpoint,
)
from ..context import STAGE_DISCOUNTS, PriceState, RuleContext
from .base import RuleEvaluator, register


def driver_value(driver: ProgressiveDriver, ctx: RuleContext) -> Optional[Decimal]:
    if driver == ProgressiveDriver.PERIOD_SHIPMENT_COUNT:
        return None if ctx.period_shipment_count is None else D(ctx.period_shipment_count)
    if driver == ProgressiveDriver.PERIOD_ORDER_VALUE:
        return ctx.period_order_value
    if driver == ProgressiveDriver.DECLARED_VALUE:
        return ctx.declared_value
    return None


@register
class ProgressiveDiscountEvaluator(RuleEvaluator):
    """Step function over breakpoints: highest threshold reached wins."""

    kind = RuleKind.PROGRESSIVE_DISCOUNT
    stage = STAGE_DISCOUNTS

    def apply(
        self, rules: Sequence[ProgressiveDiscountRule], ctx: RuleContext, state: PriceState
    ) -> None:
        for rule in rules:
            title = rule.name or rule.id
            value = driver_value(rule.driver, ctx)
            if value is None:
                state.skip(
                    stage=self.stage,
                    rule_id=rule.id,
                    rule_type=self.kind.value,
                    title=title,
                    reason="missing_driver_value",
                    driver=rule.driver.value,
                )
                continue

            bp = highest_breakpoint(rule.breakpoints, value)
            if bp is None:
                state.skip(
                    stage=self.stage,
                    rule_id=rule.id,
                    rule_type=self.kind.value,
                    title=title,
                    reason="below_first_breakpoint",
                    value=str(value),
                )
                continue

            state.apply(
                stage=self.stage,
                rule_id=rule.id,
                rule_type=self.kind.value,
                title=title,
                delta=-percent_of(state.subtotal, bp.percent),
                kind="discount",
                driver=rule.driver.value,
                value=str(value),
                percent=str(bp.percent),
            )
