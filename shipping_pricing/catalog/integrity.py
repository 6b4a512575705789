from __future__ import annotations

import re
from collections import Counter
from typing import Iterable, List, Sequence

from ..domain.errors import CatalogIntegrityError
from ..domain.models import Carrier, PricingTable, Promotion, Zone
from ..domain.rules import SeasonalRule, WeightBandRule


def _duplicates(values: Iterable[str]) -> List[str]:
    return sorted(k for k, n in Counter(values).items() if n > 1)


def weight_band_problems(table: PricingTable) -> List[str]:
    """
    Bands must tile [table.min_weight_kg, inf) exactly: no gap, no overlap,
    last band open-ended.
    """
    bands = sorted(
        (r for r in table.rules if isinstance(r, WeightBandRule) and r.active),
        key=lambda r: (r.weight_from, r.sort_order, r.id),
    )
    if not bands:
        return [f"table {table.id}: no weight-band rules"]

    problems: List[str] = []
    for b in bands:
        if b.weight_to is not None and b.weight_to <= b.weight_from:
            problems.append(
                f"table {table.id}: band {b.id} has weight_to <= weight_from"
            )

    first = bands[0]
    if first.weight_from > table.min_weight_kg:
        problems.append(
            f"table {table.id}: gap [{table.min_weight_kg}, {first.weight_from}) before band {first.id}"
        )
    elif first.weight_from < table.min_weight_kg:
        problems.append(
            f"table {table.id}: band {first.id} starts below table minimum {table.min_weight_kg}"
        )

    for prev, nxt in zip(bands, bands[1:]):
        if prev.weight_to is None or nxt.weight_from < prev.weight_to:
            problems.append(f"table {table.id}: bands {prev.id} and {nxt.id} overlap")
        elif nxt.weight_from > prev.weight_to:
            problems.append(
                f"table {table.id}: gap [{prev.weight_to}, {nxt.weight_from}) between {prev.id} and {nxt.id}"
            )

    if bands[-1].weight_to is not None:
        problems.append(
            f"table {table.id}: no open-ended band above {bands[-1].weight_to}"
        )
    return problems


def check_weight_bands(table: PricingTable) -> None:
    problems = weight_band_problems(table)
    if problems:
        raise CatalogIntegrityError(
            "; ".join(problems), context={"table_id": table.id, "problems": problems}
        )


def check_catalog(
    *,
    zones: Sequence[Zone],
    carriers: Sequence[Carrier],
    tables: Sequence[PricingTable],
    promotions: Sequence[Promotion] = (),
) -> None:
    """
    Cross-validation at load time. Collects every problem, then raises once.
    """
    problems: List[str] = []

    for label, ids in (
        ("zone codes", [z.code for z in zones]),
        ("carrier codes", [c.code for c in carriers]),
        ("table ids", [t.id for t in tables]),
        ("promotion codes", [p.code.upper() for p in promotions]),
    ):
        dups = _duplicates(ids)
        if dups:
            problems.append(f"duplicate {label}: {dups}")

    # exactly one "all others" zone
    fallbacks = [z.code for z in zones if z.active and z.is_fallback]
    if len(fallbacks) != 1:
        problems.append(
            f"expected exactly one fallback zone (empty country list), found {fallbacks}"
        )

    for z in zones:
        for pattern in z.postal_code_patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                problems.append(f"zone {z.code}: invalid postal pattern {pattern!r} ({e})")

    zone_codes = {z.code for z in zones}
    carrier_codes = {c.code for c in carriers}

    for c in carriers:
        unknown = sorted(set(c.supported_zones) - zone_codes)
        if unknown:
            problems.append(f"carrier {c.code}: unknown zones {unknown}")

    for t in tables:
        if t.carrier_code not in carrier_codes:
            problems.append(f"table {t.id}: unknown carrier {t.carrier_code}")
        if t.zone_code not in zone_codes:
            problems.append(f"table {t.id}: unknown zone {t.zone_code}")
        if t.tax_rate < 0:
            problems.append(f"table {t.id}: negative tax rate")

        dups = _duplicates(r.id for r in t.rules)
        if dups:
            problems.append(f"table {t.id}: duplicate rule ids {dups}")

        problems.extend(weight_band_problems(t))

        for r in t.rules:
            if isinstance(r, SeasonalRule):
                if (r.multiplier is None) == (r.override_price is None):
                    problems.append(
                        f"table {t.id}: seasonal rule {r.id} needs exactly one of multiplier/override_price"
                    )
                if r.ends_at <= r.starts_at:
                    problems.append(f"table {t.id}: seasonal rule {r.id} has empty window")

    if problems:
        raise CatalogIntegrityError(
            f"Catalog integrity check failed ({len(problems)} problem(s))",
            context={"problems": problems},
        )
