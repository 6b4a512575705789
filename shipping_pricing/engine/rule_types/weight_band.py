from __future__ import annotations

from decimal import ROUND_CEILING, Decimal
from typing import Sequence

import structlog

from ...domain.errors import NoMatchingRule
from ...domain.money import ZERO
from ...domain.rules import RuleKind, WeightBandRule
from ..context import STAGE_BASE, PriceState, RuleContext
from .base import RuleEvaluator, register

logger = structlog.get_logger(__name__)


def band_price(rule: WeightBandRule, weight: Decimal) -> Decimal:
    """
    price + max(0, weight - from) * per_kg; with weight_step the excess is
    billed in whole steps (ceiling). min/max clamps last.
    """
    excess = max(ZERO, weight - rule.weight_from)
    if rule.weight_step:
        steps = (excess / rule.weight_step).to_integral_value(rounding=ROUND_CEILING)
        excess = steps * rule.weight_step
    price = rule.price + excess * rule.price_per_kg

    if rule.min_price is not None and price < rule.min_price:
        price = rule.min_price
    if rule.max_price is not None and price > rule.max_price:
        price = rule.max_price
    return price


@register
class WeightBandEvaluator(RuleEvaluator):
    kind = RuleKind.WEIGHT_BAND
    stage = STAGE_BASE

    def apply(self, rules: Sequence[WeightBandRule], ctx: RuleContext, state: PriceState) -> None:
        billable = ctx.billable_weight_kg
        if not rules:
            raise NoMatchingRule(
                "No weight-band rules to price against",
                context={"carrier_code": ctx.carrier_code, "zone_code": ctx.zone_code, "table_id": ctx.table_id},
            )

        priced_weight = billable
        matches = [r for r in rules if r.matches(billable)]

        if not matches:
            floor = min(rules, key=lambda r: (r.weight_from, r.sort_order, r.id))
            if billable >= floor.weight_from:
                raise NoMatchingRule(
                    f"No weight band covers billable weight {billable} kg",
                    context={
                        "carrier_code": ctx.carrier_code,
                        "zone_code": ctx.zone_code,
                        "table_id": ctx.table_id,
                        "billable_weight_kg": str(billable),
                    },
                )
            # onder het minimum: bill at the lowest band
            state.warn(
                "BELOW_MINIMUM_WEIGHT",
                f"Billable weight {billable} kg below minimum {floor.weight_from} kg; billed at minimum.",
                rule_id=floor.id,
                billable_weight_kg=str(billable),
            )
            matches = [floor]
            priced_weight = floor.weight_from

        if len(matches) > 1:
            ids = [r.id for r in matches]
            logger.warning(
                "overlapping_weight_bands",
                table_id=ctx.table_id,
                rule_ids=ids,
                billable_weight_kg=str(billable),
            )
            state.warn(
                "OVERLAPPING_WEIGHT_BANDS",
                f"Several weight bands match {billable} kg; lowest sort_order wins.",
                rule_ids=ids,
            )

        rule = min(matches, key=lambda r: (r.sort_order, r.id))
        price = band_price(rule, priced_weight)

        state.apply(
            stage=self.stage,
            rule_id=rule.id,
            rule_type=self.kind.value,
            title=rule.name or rule.id,
            delta=price,
            kind="base",
            billable_weight_kg=str(billable),
            weight_from=str(rule.weight_from),
            weight_to=None if rule.weight_to is None else str(rule.weight_to),
            price_per_kg=str(rule.price_per_kg),
        )
