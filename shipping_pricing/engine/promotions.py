from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

import structlog

from ..domain.models import DiscountType, Promotion
from ..domain.money import ZERO, percent_of
from .context import STAGE_PROMOTIONS, PriceState, RuleContext, RuleResult

logger = structlog.get_logger(__name__)


class PromotionCombiner:
    """
    Merges promotion discounts into one net adjustment.

    - stackable promotions apply cumulatively, ascending priority (ties: code)
    - exclusive promotions are each evaluated against the same amount; only
      the best one is a candidate
    - exclusive = not combinable: the best exclusive applies alone when it
      beats the stackable chain, otherwise the chain applies
    - unknown / expired / ineligible codes are warnings, never errors
    """

    rule_type = "promotion"

    # -----------------
    # eligibility + discount
    # -----------------

    @staticmethod
    def ineligibility_reason(promo: Promotion, ctx: RuleContext, amount: Decimal) -> Optional[str]:
        if not promo.is_valid_at(ctx.as_of):
            return "expired_or_inactive"
        if promo.min_order_value is not None and amount < promo.min_order_value:
            return "below_min_order_value"
        if promo.eligible_carriers and ctx.carrier_code not in promo.eligible_carriers:
            return "carrier_not_eligible"
        if promo.eligible_zones and ctx.zone_code not in promo.eligible_zones:
            return "zone_not_eligible"
        if promo.eligible_service_types and ctx.service_type not in promo.eligible_service_types:
            return "service_type_not_eligible"
        if promo.eligible_customers and ctx.customer_id not in promo.eligible_customers:
            return "customer_not_eligible"
        return None

    @staticmethod
    def discount_for(promo: Promotion, amount: Decimal) -> Decimal:
        if amount <= ZERO:
            return ZERO
        if promo.discount_type == DiscountType.PERCENTAGE:
            discount = percent_of(amount, promo.value)
        elif promo.discount_type == DiscountType.FIXED_AMOUNT:
            discount = promo.value
        else:  # free shipping
            discount = amount

        if promo.max_discount is not None:
            discount = min(discount, promo.max_discount)
        # not capped at the amount: over-discount is clamped after this stage
        return discount

    # -----------------
    # candidates
    # -----------------

    def _candidates(
        self, promotions: Iterable[Promotion], ctx: RuleContext, state: PriceState
    ) -> List[Promotion]:
        by_code = {}
        for p in promotions:
            by_code.setdefault(p.code.upper(), p)

        requested = []
        for raw in ctx.promotion_codes:
            code = str(raw).strip().upper()
            if code and code not in requested:
                requested.append(code)

        for code in requested:
            if code not in by_code:
                state.warn(
                    "PROMOTION_NOT_FOUND",
                    f"Promotion code {code} does not exist; ignored.",
                    promotion_code=code,
                )

        amount = state.subtotal
        eligible: List[Promotion] = []
        for code in sorted(by_code):
            promo = by_code[code]
            if code not in requested and not promo.auto_apply:
                continue
            reason = self.ineligibility_reason(promo, ctx, amount)
            if reason is None:
                eligible.append(promo)
            elif code in requested:
                state.warn(
                    "PROMOTION_NOT_APPLICABLE",
                    f"Promotion code {code} not applicable ({reason}); ignored.",
                    promotion_code=code,
                    reason=reason,
                )
        return eligible

    # -----------------
    # combination
    # -----------------

    def _plan(self, eligible: List[Promotion], amount: Decimal) -> List[Tuple[Promotion, Decimal]]:
        stackable = sorted((p for p in eligible if p.stackable), key=lambda p: (p.priority, p.code))
        exclusive = [p for p in eligible if not p.stackable]

        chain: List[Tuple[Promotion, Decimal]] = []
        running = amount
        for p in stackable:
            d = self.discount_for(p, running)
            chain.append((p, d))
            running -= d
        chain_total = amount - running

        best: Optional[Tuple[Promotion, Decimal]] = None
        if exclusive:
            scored = [(p, self.discount_for(p, amount)) for p in exclusive]
            best = min(scored, key=lambda pd: (-pd[1], pd[0].priority, pd[0].code))

        if best is not None and best[1] > chain_total:
            return [best]
        return chain

    def apply(self, ctx: RuleContext, state: PriceState) -> None:
        """Promotions stage of the engine pipeline (mutates state)."""
        eligible = self._candidates(ctx.promotions, ctx, state)
        if not eligible:
            return

        plan = self._plan(eligible, state.subtotal)
        applied_codes = {p.code for p, _ in plan}

        for p, discount in plan:
            state.apply(
                stage=STAGE_PROMOTIONS,
                rule_id=f"promotion:{p.code}",
                rule_type=self.rule_type,
                title=p.name or p.code,
                delta=-discount,
                kind="promotion",
                discount_type=p.discount_type.value,
                stackable=p.stackable,
                priority=p.priority,
            )

        for p in eligible:
            if p.code not in applied_codes:
                state.skip(
                    stage=STAGE_PROMOTIONS,
                    rule_id=f"promotion:{p.code}",
                    rule_type=self.rule_type,
                    title=p.name or p.code,
                    reason="not_combinable",
                )

        logger.debug(
            "promotions_applied",
            carrier_code=ctx.carrier_code,
            applied=sorted(applied_codes),
            eligible=[p.code for p in eligible],
        )

    def combine_promotions(
        self, promotions: Iterable[Promotion], ctx: RuleContext, amount: Decimal
    ) -> RuleResult:
        """Standalone form: promotions against a given (pre-tax) amount."""
        promos = tuple(promotions)
        # promotions handed in directly count as requested
        codes = tuple(ctx.promotion_codes) + tuple(p.code for p in promos)
        state = PriceState(currency=ctx.currency, subtotal=amount, base_price=amount)
        self.apply(replace(ctx, promotions=promos, promotion_codes=codes), state)
        return state.finalize(ctx, include_tax=False)
