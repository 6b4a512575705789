# shipping_pricing/schemas/requests.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..domain.errors import ValidationError
from ..domain.models import Dimensions

Code = constr(strip_whitespace=True, to_upper=True, min_length=1)


class DimensionsIn(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    length: Decimal = Field(gt=0, le=10000)
    width: Decimal = Field(gt=0, le=10000)
    height: Decimal = Field(gt=0, le=10000)

    def to_domain(self) -> Dimensions:
        return Dimensions(length=self.length, width=self.width, height=self.height)


class PriceCalculationRequest(BaseModel):
    """
    One shipment. Zone comes from zone_code, or postal_code + country, or
    country alone. service_type/currency fall back to settings defaults.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    carrier_code: Optional[Code] = None  # type: ignore[valid-type]
    zone_code: Optional[Code] = None  # type: ignore[valid-type]
    postal_code: Optional[str] = None
    country: Optional[Code] = None  # type: ignore[valid-type]

    weight_kg: Decimal = Field(gt=0, le=10000)
    dimensions_cm: Optional[DimensionsIn] = None
    service_type: Optional[str] = None
    currency: Optional[Code] = None  # type: ignore[valid-type]

    additional_services: Tuple[str, ...] = ()
    customer_id: Optional[str] = None
    promotion_codes: Tuple[str, ...] = ()
    declared_value: Optional[Decimal] = Field(default=None, ge=0)
    as_of: Optional[datetime] = None

    # progressive / volume drivers
    period_shipment_count: Optional[int] = Field(default=None, ge=0)
    period_order_value: Optional[Decimal] = Field(default=None, ge=0)
    rolling_parcel_count: Optional[int] = Field(default=None, ge=0)

    # comparison filters
    carrier_codes: Tuple[Code, ...] = ()  # type: ignore[valid-type]
    exclude_carriers: Tuple[Code, ...] = ()  # type: ignore[valid-type]

    @field_validator("currency")
    @classmethod
    def _currency_iso(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (len(v) != 3 or not v.isalpha()):
            raise ValueError("currency must be a 3-letter ISO code")
        return v

    @field_validator("as_of")
    @classmethod
    def _as_of_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # naive = UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def _zone_source(self) -> "PriceCalculationRequest":
        if not self.zone_code and not self.country:
            raise ValueError("zone_code or country is required")
        return self


class BulkOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    stop_on_first_error: bool = False
    bulk_discount_threshold: Optional[int] = Field(default=None, gt=0)
    bulk_discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    parallel: bool = True


M = TypeVar("M", bound=BaseModel)


def parse_model(model: Type[M], data: Union[M, dict, Any]) -> M:
    """pydantic errors -> domain ValidationError (with the error list as context)."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            f"Invalid {model.__name__}: {errors[0]['loc']}: {errors[0]['msg']}" if errors else str(e),
            context={"errors": errors},
        ) from e


def parse_request(data: Union[PriceCalculationRequest, dict]) -> PriceCalculationRequest:
    return parse_model(PriceCalculationRequest, data)
