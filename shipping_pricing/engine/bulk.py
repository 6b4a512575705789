from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from ..catalog.snapshot import PricingCatalog
from ..core.settings import Settings, get_settings
from ..domain.errors import BulkCalculationFailed, ValidationError
from ..domain.money import ZERO, percent_of, qmoney
from ..observability.metrics import bulk_items_counter
from ..schemas.requests import BulkOptions, PriceCalculationRequest, parse_model, parse_request
from ..schemas.results import (
    ITEM_FAILED,
    ITEM_SKIPPED,
    ITEM_SUCCESS,
    BulkItem,
    BulkItemError,
    BulkResult,
    BulkTotals,
    CalculationOutcome,
    PriceCalculationResult,
)
from .calculator import CarrierPriceCalculator
from .comparison import outcome_from_slot
from .pool import CalculationPool

logger = structlog.get_logger(__name__)


class BulkCalculator:
    """
    Many independent single-carrier requests in one batch.

    - every item is priced with batch_size = len(requests) (volume rules)
    - failures are collected per index; successes proceed
    - stop_on_first_error: no new work after a failure; the outcome equals a
      sequential run (items after the first failed index are skipped)
    - bulk discount: one final pass over the total of the successful results
    - zero successes -> BulkCalculationFailed with every per-item cause
    """

    def __init__(
        self,
        catalog: PricingCatalog,
        *,
        calculator: Optional[CarrierPriceCalculator] = None,
        settings: Optional[Settings] = None,
        pool: Optional[CalculationPool] = None,
    ):
        self.catalog = catalog
        self.settings = settings or get_settings()
        self.calculator = calculator or CarrierPriceCalculator(catalog, settings=self.settings)
        self.pool = pool or CalculationPool(
            max_workers=self.settings.max_workers,
            calculation_timeout_s=self.settings.calculation_timeout_seconds,
            admission_timeout_s=self.settings.admission_timeout_seconds,
        )

    def _validate(self, requests: Sequence[Any]) -> None:
        if not requests:
            raise ValidationError("Bulk request contains no items")
        if len(requests) > self.settings.max_bulk_requests:
            raise ValidationError(
                f"Bulk request has {len(requests)} items; maximum is {self.settings.max_bulk_requests}",
                context={"count": len(requests), "max_bulk_requests": self.settings.max_bulk_requests},
            )

    def calculate_bulk(
        self,
        requests: Sequence[Union[PriceCalculationRequest, dict]],
        options: Union[BulkOptions, dict, None] = None,
    ) -> BulkResult:
        requests = list(requests)
        self._validate(requests)
        opts = parse_model(BulkOptions, options or {})
        batch_size = len(requests)

        # malformed items fail on their own; they never abort the batch
        outcomes: List[Optional[CalculationOutcome]] = [None] * batch_size
        valid_idx: List[int] = []
        valid_reqs: List[PriceCalculationRequest] = []
        for i, raw in enumerate(requests):
            try:
                valid_reqs.append(parse_request(raw))
                valid_idx.append(i)
            except ValidationError as e:
                outcomes[i] = CalculationOutcome.failure(e)
                if opts.stop_on_first_error:
                    break

        stop_at = self._first_failure(outcomes) if opts.stop_on_first_error else None
        if stop_at is not None:
            # cut the work list at the first malformed item
            keep = [k for k, idx in enumerate(valid_idx) if idx < stop_at]
            valid_idx = [valid_idx[k] for k in keep]
            valid_reqs = [valid_reqs[k] for k in keep]

        def _calc(req: PriceCalculationRequest) -> CalculationOutcome:
            return self.calculator.try_calculate_price(req, batch_size=batch_size)

        slots = self.pool.map(
            _calc,
            valid_reqs,
            parallel=opts.parallel,
            stop_when=(lambda o: not o.ok) if opts.stop_on_first_error else None,
        )
        for idx, slot in zip(valid_idx, slots):
            outcomes[idx] = outcome_from_slot(
                slot, label=f"item {idx}", timeout_s=self.pool.calculation_timeout_s
            )

        items = self._build_items(requests, outcomes, stop_on_first_error=opts.stop_on_first_error)
        for item in items:
            bulk_items_counter.labels(result=item.status).inc()

        if not any(i.status == ITEM_SUCCESS for i in items):
            errors = [i.error.to_dict() for i in items if i.error is not None]
            logger.error("bulk_calculation_failed", total=batch_size, errors=len(errors))
            raise BulkCalculationFailed(
                f"All {batch_size} bulk calculations failed",
                errors=errors,
                context={"total_requests": batch_size},
            )

        warnings: List[Dict[str, Any]] = []
        totals = self._totals(items, opts, batch_size, warnings)
        result = BulkResult(items=tuple(items), totals=totals, warnings=tuple(warnings))
        logger.info(
            "bulk_calculation_completed",
            total=result.total_requests,
            successful=result.successful_calculations,
            failed=result.failed_calculations,
            skipped=result.skipped_calculations,
        )
        return result

    # -----------------
    # internals
    # -----------------

    @staticmethod
    def _first_failure(outcomes: Sequence[Optional[CalculationOutcome]]) -> Optional[int]:
        for i, o in enumerate(outcomes):
            if o is not None and not o.ok:
                return i
        return None

    def _build_items(
        self,
        requests: Sequence[Any],
        outcomes: Sequence[Optional[CalculationOutcome]],
        *,
        stop_on_first_error: bool,
    ) -> List[BulkItem]:
        stop_at = self._first_failure(outcomes) if stop_on_first_error else None

        items: List[BulkItem] = []
        for i, outcome in enumerate(outcomes):
            if outcome is None or (stop_at is not None and i > stop_at):
                items.append(BulkItem(index=i, status=ITEM_SKIPPED))
            elif outcome.ok:
                items.append(BulkItem(index=i, status=ITEM_SUCCESS, result=outcome.result))
            else:
                carrier = outcome.carrier_code or _carrier_of(requests[i])
                error = BulkItemError.from_error(i, outcome.error, carrier_code=carrier)
                logger.info(
                    "bulk_item_failed",
                    request_index=i,
                    carrier_code=carrier,
                    error_code=error.error_code,
                )
                items.append(BulkItem(index=i, status=ITEM_FAILED, error=error))
        return items

    def _totals(
        self,
        items: Sequence[BulkItem],
        opts: BulkOptions,
        batch_size: int,
        warnings: List[Dict[str, Any]],
    ) -> BulkTotals:
        results: List[PriceCalculationResult] = [i.result for i in items if i.status == ITEM_SUCCESS]
        currency = results[0].currency
        same = [r for r in results if r.currency == currency]
        if len(same) != len(results):
            warnings.append(
                {
                    "code": "MIXED_CURRENCIES",
                    "message": f"Totals only include {currency} results.",
                    "meta": {"excluded": len(results) - len(same)},
                }
            )

        total_amount = sum((r.total_price for r in same), ZERO)
        pct = ZERO
        if (
            opts.bulk_discount_threshold is not None
            and opts.bulk_discount_percent is not None
            and batch_size >= opts.bulk_discount_threshold
        ):
            pct = Decimal(opts.bulk_discount_percent)
        discount = qmoney(percent_of(total_amount, pct), currency)

        return BulkTotals(
            currency=currency,
            total_amount=total_amount,
            total_base=sum((r.base_price for r in same), ZERO),
            total_additional=sum((r.additional_services_total for r in same), ZERO),
            total_tax=sum((r.tax_amount for r in same), ZERO),
            average_price=qmoney(total_amount / len(same), currency),
            bulk_discount_percent=pct,
            bulk_discount_amount=discount,
            total_after_discount=total_amount - discount,
        )


def _carrier_of(raw: Any) -> Optional[str]:
    if isinstance(raw, PriceCalculationRequest):
        return raw.carrier_code
    if isinstance(raw, dict):
        return raw.get("carrier_code")
    return None
