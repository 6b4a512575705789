from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from ..domain.models import (
    AdditionalService,
    AdditionalServicePrice,
    Carrier,
    CustomerPricing,
    PricingTable,
    Promotion,
    Zone,
)
from ..domain.rules import PricingRule


class PricingCatalog(Protocol):
    """Read-only catalog contract the engine consumes."""

    def zones(self) -> List[Zone]: ...

    def get_zone(self, code: str) -> Optional[Zone]: ...

    def get_carrier(self, code: str) -> Optional[Carrier]: ...

    def get_active_pricing_table(
        self,
        carrier_code: str,
        zone_code: str,
        service_type: str,
        *,
        as_of: Optional[datetime] = None,
        customer_id: Optional[str] = None,
    ) -> Optional[PricingTable]: ...

    def get_rules_for_table(self, table_id: str) -> Tuple[PricingRule, ...]: ...

    def get_carriers_supporting_zone(self, zone_code: str) -> List[Carrier]: ...

    def get_additional_services_for_carrier(
        self, carrier_code: str
    ) -> List[AdditionalService]: ...

    def get_service_price(
        self, table_id: str, service_code: str
    ) -> Optional[AdditionalServicePrice]: ...

    def find_promotion(self, code: str) -> Optional[Promotion]: ...

    def auto_promotions(self) -> List[Promotion]: ...

    def get_customer_pricing(
        self, customer_id: str, carrier_code: str, as_of: datetime
    ) -> Optional[CustomerPricing]: ...


class CatalogSnapshot:
    """
    Immutable in-memory catalog. All indexes are built up-front; a snapshot is
    bound to calculators at construction so a batch never sees a refresh.
    """

    def __init__(
        self,
        *,
        zones: Iterable[Zone],
        carriers: Iterable[Carrier],
        tables: Iterable[PricingTable],
        services: Iterable[AdditionalService] = (),
        service_prices: Iterable[AdditionalServicePrice] = (),
        promotions: Iterable[Promotion] = (),
        customer_pricing: Iterable[CustomerPricing] = (),
        version: str = "v1",
    ):
        self.version = version
        self._zones: Dict[str, Zone] = {z.code: z for z in zones}
        self._carriers: Dict[str, Carrier] = {c.code: c for c in carriers}
        self._tables: Dict[str, PricingTable] = {t.id: t for t in tables}
        self._services: Tuple[AdditionalService, ...] = tuple(services)
        self._service_prices: Dict[Tuple[str, str], AdditionalServicePrice] = {
            (p.table_id, p.service_code.upper()): p for p in service_prices
        }
        self._promotions: Dict[str, Promotion] = {
            p.code.upper(): p for p in promotions
        }
        self._customer_pricing: Tuple[CustomerPricing, ...] = tuple(customer_pricing)

        self._rules: Dict[str, Tuple[PricingRule, ...]] = {
            t.id: tuple(sorted(t.rules, key=lambda r: (r.sort_order, r.id)))
            for t in self._tables.values()
        }

    # -----------------
    # zones / carriers
    # -----------------

    def zones(self) -> List[Zone]:
        return sorted(self._zones.values(), key=lambda z: (z.sort_order, z.code))

    def get_zone(self, code: str) -> Optional[Zone]:
        return self._zones.get(code)

    def carriers(self) -> List[Carrier]:
        return sorted(self._carriers.values(), key=lambda c: c.code)

    def get_carrier(self, code: str) -> Optional[Carrier]:
        return self._carriers.get(code)

    def get_carriers_supporting_zone(self, zone_code: str) -> List[Carrier]:
        return [c for c in self.carriers() if c.active and c.supports_zone(zone_code)]

    # -----------------
    # tables / rules
    # -----------------

    def tables(self) -> List[PricingTable]:
        return sorted(self._tables.values(), key=lambda t: t.id)

    def get_active_pricing_table(
        self,
        carrier_code: str,
        zone_code: str,
        service_type: str,
        *,
        as_of: Optional[datetime] = None,
        customer_id: Optional[str] = None,
    ) -> Optional[PricingTable]:
        candidates = [
            t
            for t in self._tables.values()
            if t.carrier_code == carrier_code
            and t.zone_code == zone_code
            and t.service_type == service_type
            and t.is_effective(as_of)
            and (t.customer_id is None or t.customer_id == customer_id)
        ]
        if not candidates:
            return None

        # customer-scoped first, then highest version, then smallest id
        candidates.sort(key=lambda t: (t.customer_id is None, -t.version, t.id))
        return candidates[0]

    def get_rules_for_table(self, table_id: str) -> Tuple[PricingRule, ...]:
        return self._rules.get(table_id, ())

    # -----------------
    # services / promotions / customers
    # -----------------

    def get_additional_services_for_carrier(
        self, carrier_code: str
    ) -> List[AdditionalService]:
        return [
            s for s in self._services if s.carrier_code == carrier_code and s.active
        ]

    def get_service_price(
        self, table_id: str, service_code: str
    ) -> Optional[AdditionalServicePrice]:
        return self._service_prices.get((table_id, service_code.upper()))

    def promotions(self) -> List[Promotion]:
        return sorted(self._promotions.values(), key=lambda p: p.code)

    def find_promotion(self, code: str) -> Optional[Promotion]:
        return self._promotions.get(code.strip().upper())

    def auto_promotions(self) -> List[Promotion]:
        return [p for p in self.promotions() if p.auto_apply]

    def get_customer_pricing(
        self, customer_id: str, carrier_code: str, as_of: datetime
    ) -> Optional[CustomerPricing]:
        matches = [
            cp
            for cp in self._customer_pricing
            if cp.customer_id == customer_id and cp.applies_to(carrier_code, as_of)
        ]
        if not matches:
            return None
        # carrier-specific contract beats a blanket one
        matches.sort(key=lambda cp: (cp.carrier_code is None, -cp.discount_percent))
        return matches[0]
