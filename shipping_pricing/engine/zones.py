from __future__ import annotations

import math
from typing import List, Optional

import structlog

from ..catalog.snapshot import PricingCatalog
from ..domain.errors import NoZoneFound, ValidationError
from ..domain.models import Zone

logger = structlog.get_logger(__name__)

EARTH_RADIUS_KM = 6371.0


def normalize_postal_code(code: str) -> str:
    return " ".join(str(code).strip().upper().split())


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class ZoneResolver:
    """
    Maps postal code / country (or coordinates, diagnostic only) to a Zone.

    Priority = ascending sort_order, then zone code. Resolution order:
      1. postal pattern of a zone that lists the country
      2. country membership (zones without postal patterns first)
      3. the single "all others" zone (empty country list)
    """

    def __init__(self, catalog: PricingCatalog):
        self.catalog = catalog

    def _active_zones(self) -> List[Zone]:
        return [z for z in self.catalog.zones() if z.active]

    def fallback_zone(self) -> Optional[Zone]:
        for z in self._active_zones():
            if z.is_fallback:
                return z
        return None

    def resolve_by_country(self, country: str) -> Optional[Zone]:
        country = str(country or "").strip().upper()
        if country:
            covering = [z for z in self._active_zones() if z.covers_country(country)]
            # a pattern-restricted zone only wins through its patterns
            general = [z for z in covering if not z.postal_code_patterns]
            if general or covering:
                return (general or covering)[0]
        return self.fallback_zone()

    def resolve_by_postal_code(self, postal_code: str, country: str) -> Optional[Zone]:
        country = str(country or "").strip().upper()
        code = normalize_postal_code(postal_code or "")

        if code and country:
            for z in self._active_zones():
                if z.postal_code_patterns and z.covers_country(country) and z.matches_postal_code(code):
                    return z
        return self.resolve_by_country(country)

    def resolve_by_coordinates(self, lat: float, lng: float) -> Optional[Zone]:
        """Diagnostic only; never used for cost calculation."""
        zones = self._active_zones()
        for z in zones:
            for region in z.regions:
                if haversine_km(lat, lng, region.lat, region.lng) <= region.radius_km:
                    return z
        for z in zones:
            if z.bounds is not None and z.bounds.contains(lat, lng):
                return z
        return self.fallback_zone()

    def resolve(
        self,
        *,
        zone_code: Optional[str] = None,
        postal_code: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Zone:
        """Calculator entry point; raises NoZoneFound instead of returning None."""
        if zone_code:
            zone = self.catalog.get_zone(zone_code)
            if zone is None or not zone.active:
                raise NoZoneFound(
                    f"Unknown zone {zone_code}", context={"zone_code": zone_code}
                )
            return zone

        if not country:
            raise ValidationError(
                "Either zone_code or country is required to resolve a zone",
                context={"postal_code": postal_code},
            )

        if postal_code:
            zone = self.resolve_by_postal_code(postal_code, country)
        else:
            zone = self.resolve_by_country(country)

        if zone is None:
            logger.warning("no_zone_found", postal_code=postal_code, country=country)
            raise NoZoneFound(
                f"No zone for postal code {postal_code!r} / country {country!r}",
                context={"postal_code": postal_code, "country": country},
            )
        return zone
