# shipping_pricing/core/settings.py
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # --- Catalog ---
    catalog_path: Optional[str] = None  # None = bundled sample catalog

    # --- Pricing defaults ---
    default_currency: str = "PLN"
    default_service_type: str = "standard"
    default_volumetric_divisor: int = Field(default=5000, gt=0)
    default_tax_rate: Decimal = Decimal("23")

    # --- Bulk / fan-out ---
    max_bulk_requests: int = Field(default=100, gt=0)
    max_workers: int = Field(default=8, gt=0)
    calculation_timeout_seconds: float = Field(default=30.0, gt=0)
    admission_timeout_seconds: float = Field(default=5.0, gt=0)

    # --- Logging ---
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_prefix="PRICING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # leest .env
