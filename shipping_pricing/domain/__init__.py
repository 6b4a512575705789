from .errors import (  # noqa
    AllCarrierCalculationsFailed,
    BulkCalculationFailed,
    CalculationTimeoutError,
    CarrierCannotHandle,
    CatalogError,
    CatalogIntegrityError,
    ConcurrencyLimitReached,
    CurrencyMismatch,
    NoCarriersAvailable,
    NoMatchingRule,
    NoPricingTable,
    NoZoneFound,
    PricingError,
    UnknownCarrier,
    ValidationError,
)
from .models import (  # noqa
    AdditionalService,
    AdditionalServicePrice,
    Carrier,
    CustomerPricing,
    DeliveryTime,
    Dimensions,
    DiscountType,
    GeoBounds,
    GeoRegion,
    PricingTable,
    Promotion,
    ServicePricingType,
    Zone,
    ZoneType,
)
from .rules import (  # noqa
    Breakpoint,
    DimensionalAction,
    DimensionalRule,
    PricingRule,
    ProgressiveDiscountRule,
    ProgressiveDriver,
    RuleKind,
    SeasonalRule,
    TierDriver,
    TieredRule,
    VolumeDiscountRule,
    WeightBandRule,
)
