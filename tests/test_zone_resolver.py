import pytest

from shipping_pricing.catalog import CatalogSnapshot
from shipping_pricing.domain.errors import NoZoneFound, ValidationError
from shipping_pricing.domain.models import Zone, ZoneType
from shipping_pricing.engine.zones import ZoneResolver, haversine_km, normalize_postal_code


@pytest.fixture
def resolver(catalog):
    return ZoneResolver(catalog)


def test_postal_pattern_beats_country_membership(resolver):
    assert resolver.resolve_by_postal_code("00-950", "PL").code == "LOCAL"


def test_postal_without_pattern_match_falls_back_to_country_zone(resolver):
    assert resolver.resolve_by_postal_code("30-001", "PL").code == "NATIONAL"


def test_postal_code_is_normalized_and_compact_form_matches(resolver):
    assert normalize_postal_code("  01-234 ") == "01-234"
    assert resolver.resolve_by_postal_code(" 01-234 ", "pl").code == "LOCAL"


def test_country_resolution(resolver):
    assert resolver.resolve_by_country("DE").code == "EU_WEST"
    assert resolver.resolve_by_country("cz").code == "EU_EAST"
    assert resolver.resolve_by_country("SE").code == "EU_NORTH"


def test_unlisted_country_goes_to_fallback_zone(resolver):
    assert resolver.resolve_by_country("US").code == "WORLDWIDE"
    assert resolver.resolve(country="JP").code == "WORLDWIDE"


def test_resolve_with_explicit_zone_code(resolver):
    assert resolver.resolve(zone_code="EU_WEST").code == "EU_WEST"

    with pytest.raises(NoZoneFound):
        resolver.resolve(zone_code="MARS")


def test_resolve_requires_a_country_without_zone_code(resolver):
    with pytest.raises(ValidationError):
        resolver.resolve(postal_code="00-950")


def test_coordinates_region_then_bounds_then_fallback(resolver):
    assert resolver.resolve_by_coordinates(52.23, 21.01).code == "LOCAL"  # Warsaw
    assert resolver.resolve_by_coordinates(51.25, 22.57).code == "NATIONAL"  # Lublin
    assert resolver.resolve_by_coordinates(40.71, -74.0).code == "WORLDWIDE"


def test_haversine_warsaw_krakow():
    assert 250 < haversine_km(52.2297, 21.0122, 50.0647, 19.9450) < 260


def _snapshot(zones):
    return CatalogSnapshot(zones=zones, carriers=[], tables=[])


def test_no_zone_found_without_fallback():
    resolver = ZoneResolver(
        _snapshot([Zone(code="PL", name="Poland", zone_type=ZoneType.NATIONAL, countries=frozenset({"PL"}))])
    )

    with pytest.raises(NoZoneFound):
        resolver.resolve(country="US", postal_code="10001")


def test_pattern_priority_follows_sort_order():
    zones = [
        Zone(
            code="B_WIDE",
            name="b",
            zone_type=ZoneType.NATIONAL,
            countries=frozenset({"PL"}),
            postal_code_patterns=(r"^\d{2}-\d{3}$",),
            sort_order=20,
        ),
        Zone(
            code="A_NARROW",
            name="a",
            zone_type=ZoneType.LOCAL,
            countries=frozenset({"PL"}),
            postal_code_patterns=(r"^00-\d{3}$",),
            sort_order=10,
        ),
        Zone(code="REST", name="rest", zone_type=ZoneType.INTERNATIONAL),
    ]
    resolver = ZoneResolver(_snapshot(zones))

    assert resolver.resolve_by_postal_code("00-001", "PL").code == "A_NARROW"
    assert resolver.resolve_by_postal_code("44-100", "PL").code == "B_WIDE"
