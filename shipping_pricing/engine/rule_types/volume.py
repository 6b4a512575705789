from __future__ import annotations

from typing import Sequence

from ...domain.money import D, percent_of
from ...domain.rules import RuleKind, VolumeDiscountRule, highest_breakpoint
from ..context import STAGE_DISCOUNTS, PriceState, RuleContext
from .base import RuleEvaluator, register


@register
class VolumeDiscountEvaluator(RuleEvaluator):
    """
    Quantity = batch size when running inside a bulk calculation,
    otherwise the rolling historical parcel count.
    """

    kind = RuleKind.VOLUME_DISCOUNT
    stage = STAGE_DISCOUNTS

    def apply(self, rules: Sequence[VolumeDiscountRule], ctx: RuleContext, state: PriceState) -> None:
        quantity = ctx.parcel_volume
        source = "batch" if ctx.batch_size is not None else "history"

        for rule in rules:
            title = rule.name or rule.id
            if quantity is None:
                state.skip(
                    stage=self.stage,
                    rule_id=rule.id,
                    rule_type=self.kind.value,
                    title=title,
                    reason="missing_parcel_volume",
                )
                continue

            bp = highest_breakpoint(rule.breakpoints, D(quantity))
            if bp is None:
                state.skip(
                    stage=self.stage,
                    rule_id=rule.id,
                    rule_type=self.kind.value,
                    title=title,
                    reason="below_first_breakpoint",
                    parcels=quantity,
                    source=source,
                )
                continue

            state.apply(
                stage=self.stage,
                rule_id=rule.id,
                rule_type=self.kind.value,
                title=title,
                delta=-percent_of(state.subtotal, bp.percent),
                kind="discount",
                parcels=quantity,
                source=source,
                percent=str(bp.percent),
            )
