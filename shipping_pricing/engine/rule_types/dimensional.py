from __future__ import annotations

from typing import Sequence

from ...domain.errors import CarrierCannotHandle
from ...domain.models import Dimensions
from ...domain.rules import DimensionalAction, DimensionalRule, RuleKind
from ..context import STAGE_DIMENSIONAL, PriceState, RuleContext
from .base import RuleEvaluator, register


@register
class DimensionalEvaluator(RuleEvaluator):
    """Per-side limit check, independent of the weight bands."""

    kind = RuleKind.DIMENSIONAL
    stage = STAGE_DIMENSIONAL

    def apply(self, rules: Sequence[DimensionalRule], ctx: RuleContext, state: PriceState) -> None:
        for rule in rules:
            title = rule.name or rule.id
            if ctx.dimensions is None:
                state.skip(
                    stage=self.stage,
                    rule_id=rule.id,
                    rule_type=self.kind.value,
                    title=title,
                    reason="no_dimensions",
                )
                continue

            limit = Dimensions(rule.max_length, rule.max_width, rule.max_height)
            if not ctx.dimensions.exceeds(limit):
                state.skip(
                    stage=self.stage,
                    rule_id=rule.id,
                    rule_type=self.kind.value,
                    title=title,
                    reason="within_limits",
                )
                continue

            if rule.action == DimensionalAction.REJECT:
                raise CarrierCannotHandle(
                    f"Parcel {ctx.dimensions.as_dict()} exceeds {limit.as_dict()} cm",
                    context={
                        "carrier_code": ctx.carrier_code,
                        "zone_code": ctx.zone_code,
                        "rule_id": rule.id,
                        "dimensions_cm": ctx.dimensions.as_dict(),
                        "max_dimensions_cm": limit.as_dict(),
                    },
                )

            state.apply(
                stage=self.stage,
                rule_id=rule.id,
                rule_type=self.kind.value,
                title=title,
                delta=rule.surcharge,
                kind="surcharge",
                max_dimensions_cm=limit.as_dict(),
            )
