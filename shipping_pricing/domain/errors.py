from __future__ import annotations

from typing import Any, Dict, List, Optional


class PricingError(Exception):
    """
    Base error for everything the pricing engine raises on purpose.

    - code: stable UPPER_SNAKE identifier (used in bulk/comparison failure records)
    - message: human readable
    - context: structured payload (carrier, zone, rule ids, ...)
    """

    code: str = "PRICING_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if code is not None:
            self.code = str(code)
        self.message = str(message)
        self.context = dict(context or {})
        super().__init__(f"{self.code}: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": {k: _plain(v) for k, v in self.context.items()},
        }


def _plain(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return str(value)


class ValidationError(PricingError):
    code = "VALIDATION_ERROR"


# -----------------------------
# Catalog errors (per item; downgraded to a recorded failure in fan-out)
# -----------------------------


class CatalogError(PricingError):
    code = "CATALOG_ERROR"


class NoZoneFound(CatalogError):
    code = "NO_ZONE_FOUND"


class UnknownCarrier(CatalogError):
    code = "UNKNOWN_CARRIER"


class NoPricingTable(CatalogError):
    code = "NO_PRICING_TABLE"


class NoMatchingRule(CatalogError):
    code = "NO_MATCHING_RULE"


class CurrencyMismatch(CatalogError):
    code = "CURRENCY_MISMATCH"


class CatalogIntegrityError(CatalogError):
    code = "CATALOG_INTEGRITY_ERROR"


class CarrierCannotHandle(PricingError):
    code = "CARRIER_CANNOT_HANDLE"


# -----------------------------
# Capacity (retryable, never auto-retried by the engine)
# -----------------------------


class ConcurrencyLimitReached(PricingError):
    code = "CONCURRENCY_LIMIT_REACHED"
    retryable = True


class CalculationTimeoutError(PricingError):
    code = "CALCULATION_TIMEOUT"
    retryable = True


# -----------------------------
# Terminal fan-out errors
# -----------------------------


class NoCarriersAvailable(PricingError):
    code = "NO_CARRIERS_AVAILABLE"


class AllCarrierCalculationsFailed(PricingError):
    code = "ALL_CARRIER_CALCULATIONS_FAILED"

    def __init__(self, message: str, failures: List[Dict[str, Any]], **kwargs: Any):
        self.failures = list(failures)
        context = dict(kwargs.pop("context", None) or {})
        context.setdefault("failures", self.failures)
        super().__init__(message, context=context, **kwargs)


class BulkCalculationFailed(PricingError):
    code = "BULK_CALCULATION_FAILED"

    def __init__(self, message: str, errors: List[Dict[str, Any]], **kwargs: Any):
        self.errors = list(errors)
        context = dict(kwargs.pop("context", None) or {})
        context.setdefault("errors", self.errors)
        super().__init__(message, context=context, **kwargs)
