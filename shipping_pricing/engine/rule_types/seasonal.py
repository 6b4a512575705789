from __future__ import annotations

from typing import Sequence

from ...domain.money import D
from ...domain.rules import RuleKind, SeasonalRule
from ..context import STAGE_SEASONAL, PriceState, RuleContext
from .base import RuleEvaluator, register


@register
class SeasonalEvaluator(RuleEvaluator):
    kind = RuleKind.SEASONAL
    stage = STAGE_SEASONAL

    def apply(self, rules: Sequence[SeasonalRule], ctx: RuleContext, state: PriceState) -> None:
        for rule in rules:
            title = rule.name or rule.id
            if not rule.is_active_at(ctx.as_of):
                state.skip(
                    stage=self.stage,
                    rule_id=rule.id,
                    rule_type=self.kind.value,
                    title=title,
                    reason="outside_window",
                    as_of=ctx.as_of.isoformat(),
                )
                continue

            # additional services stay as charged
            shipping = state.subtotal - state.services_total
            if rule.override_price is not None:
                delta = rule.override_price - shipping
                meta = {"override_price": str(rule.override_price)}
            else:
                delta = shipping * (rule.multiplier - D("1"))
                meta = {"multiplier": str(rule.multiplier)}

            state.apply(
                stage=self.stage,
                rule_id=rule.id,
                rule_type=self.kind.value,
                title=title,
                delta=delta,
                kind="surcharge" if delta >= 0 else "discount",
                **meta,
            )
