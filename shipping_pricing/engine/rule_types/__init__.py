# Ensure registration happens by importing modules
from .base import RuleEvaluator, ensure_exhaustive, evaluator_registry, get_evaluator  # noqa
from . import (  # noqa
    dimensional,
    progressive,
    seasonal,
    tiered,
    volume,
    weight_band,
)
