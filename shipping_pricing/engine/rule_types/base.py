from __future__ import annotations

from typing import Dict, Sequence, Type

from ...domain.rules import PricingRule, RuleKind
from ..context import PriceState, RuleContext


class RuleEvaluator:
    """
    Base class for all rule evaluators. One evaluator per RuleKind.

    apply() receives every active rule of its kind (sorted by sort_order) so
    band-style kinds can pick the single matching rule themselves.
    """

    kind: RuleKind
    stage: str = "base"

    def apply(
        self, rules: Sequence[PricingRule], ctx: RuleContext, state: PriceState
    ) -> None:
        raise NotImplementedError


# Registry: rule kind -> evaluator instance
evaluator_registry: Dict[RuleKind, RuleEvaluator] = {}


def register(evaluator_cls: Type[RuleEvaluator]) -> Type[RuleEvaluator]:
    """
    Decorator to register an evaluator by its kind.
    Fails fast on duplicate registrations (useful during dev/reload).
    """
    key = getattr(evaluator_cls, "kind", None)
    if key is None:
        raise ValueError(f"Evaluator class {evaluator_cls.__name__} has no kind")

    existing = evaluator_registry.get(key)
    if existing is not None and type(existing) is not evaluator_cls:
        raise ValueError(
            f"Duplicate evaluator registration for kind '{key.value}': "
            f"{type(existing).__name__} vs {evaluator_cls.__name__}"
        )

    evaluator_registry[key] = evaluator_cls()
    return evaluator_cls


def ensure_exhaustive() -> None:
    missing = sorted(k.value for k in RuleKind if k not in evaluator_registry)
    if missing:
        raise RuntimeError(f"No evaluator registered for rule kinds: {missing}")


def get_evaluator(kind: RuleKind) -> RuleEvaluator:
    return evaluator_registry[kind]
