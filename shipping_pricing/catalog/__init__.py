from .integrity import check_catalog, check_weight_bands  # noqa
from .loader import CatalogLoader, catalog_from_dict, load_catalog, resolve_catalog_path, rule_from_dict  # noqa
from .snapshot import CatalogSnapshot, PricingCatalog  # noqa
