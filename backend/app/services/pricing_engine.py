"""
PricingEngine — money for resolved line items, derived on demand (never stored).

Covers:
  - Effective purchase price: local override → location factor price → catalog price
  - Markup (percent): local override → global markup
  - Labor cost per role with session wage overrides
  - Aggregation per item, category within instance, instance, package,
    protection devices and grand total (grand = packages + protection)
  - Quote summary with travel costs

All monetary values are in EUR.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from app.config import PROTECTION_PACKAGE_ID, ROLES, TRAVEL_COST_PCT
from app.models.configurator_schema import ProductPrice
from app.services.line_item_engine import LineItem

logger = logging.getLogger("elektro-pricing")


@dataclass(frozen=True)
class PriceResolution:
    price: float
    source: str                  # override | entity | catalog
    missing_price: bool = False
    missing_column: bool = False


class EntityPricing:
    """
    Per-product base price with a multiplicative factor per location name.

    Backed by a DataFrame indexed by product_id: one ``base_price`` column and
    one column per location name.
    """

    BASE_COLUMN = "base_price"

    def __init__(self, prices: Iterable[ProductPrice] = ()) -> None:
        records: List[Dict[str, Any]] = []
        for p in prices:
            record: Dict[str, Any] = {"product_id": p.product_id, self.BASE_COLUMN: p.base_price}
            for location, factor in p.factors.items():
                if location not in ("product_id", self.BASE_COLUMN):
                    record[location] = factor
            records.append(record)

        if records:
            df = pd.DataFrame.from_records(records)
            df[self.BASE_COLUMN] = pd.to_numeric(df[self.BASE_COLUMN], errors="coerce")
            self._df = df.drop_duplicates("product_id", keep="last").set_index("product_id")
        else:
            self._df = pd.DataFrame(columns=[self.BASE_COLUMN])

    def __len__(self) -> int:
        return len(self._df)

    def resolve(self, product_id: str, location_name: Optional[str]) -> Optional[PriceResolution]:
        """None when the product has no entity pricing row at all."""
        if product_id not in self._df.index:
            return None
        row = self._df.loc[product_id]

        base = row[self.BASE_COLUMN]
        if pd.isna(base):
            logger.warning(f"Missing base price for {product_id}")
            return PriceResolution(price=0.0, source="entity", missing_price=True)

        factor = 1.0
        missing_column = True
        if location_name and location_name in self._df.columns:
            raw = pd.to_numeric(row[location_name], errors="coerce")
            if not pd.isna(raw):
                factor = float(raw)
                missing_column = False
        if missing_column:
            logger.debug(f"No factor for {product_id} at {location_name}; using 1.0")

        return PriceResolution(
            price=float(base) * factor,
            source="entity",
            missing_column=missing_column,
        )


def _empty_totals() -> Dict[str, Any]:
    return {
        "item_count": 0,
        "material_purchase": 0.0,
        "material_sales": 0.0,
        "hours": {role: 0.0 for role in ROLES},
        "total_hours": 0.0,
        "labor_cost": 0.0,
        "total": 0.0,
    }


def _accumulate(acc: Dict[str, Any], part: Mapping[str, Any]) -> Dict[str, Any]:
    acc["item_count"] += part.get("item_count", 1)
    acc["material_purchase"] += part["material_purchase"]
    acc["material_sales"] += part["material_sales"]
    for role in ROLES:
        acc["hours"][role] += part["hours"][role]
    acc["total_hours"] += part["total_hours"]
    acc["labor_cost"] += part["labor_cost"]
    acc["total"] += part["total"]
    return acc


class PricingEngine:

    def __init__(
        self,
        entity_pricing: Optional[EntityPricing] = None,
        location_name: Optional[str] = None,
        global_markup_pct: float = 0.0,
        wages: Optional[Mapping[str, float]] = None,
    ) -> None:
        self.entity_pricing = entity_pricing or EntityPricing()
        self.location_name = location_name
        self.global_markup_pct = float(global_markup_pct)
        self.wages: Dict[str, float] = {role: float((wages or {}).get(role, 0.0)) for role in ROLES}

    # ------------------------------------------------------------------
    # Per item
    # ------------------------------------------------------------------

    def purchase_price(self, item: LineItem) -> PriceResolution:
        if item.local_price is not None:
            return PriceResolution(price=float(item.local_price), source="override")
        resolved = self.entity_pricing.resolve(item.product_id, self.location_name)
        if resolved is not None:
            return resolved
        return PriceResolution(price=float(item.unit_price or 0.0), source="catalog")

    def markup_pct(self, item: LineItem) -> float:
        if item.local_markup is not None:
            return float(item.local_markup)
        return self.global_markup_pct

    def sales_price_per_unit(self, item: LineItem) -> float:
        return self.purchase_price(item).price * (1 + self.markup_pct(item) / 100)

    def labor_cost(self, item: LineItem) -> float:
        return sum(item.hours_total.get(role, 0.0) * self.wages[role] for role in ROLES)

    def item_totals(self, item: LineItem) -> Dict[str, Any]:
        price = self.purchase_price(item)
        sales_unit = self.sales_price_per_unit(item)
        labor = self.labor_cost(item)
        hours = {role: item.hours_total.get(role, 0.0) for role in ROLES}
        material_sales = sales_unit * item.quantity
        return {
            "item_id": item.id,
            "item_count": 1,
            "quantity": item.quantity,
            "purchase_price": price.price,
            "price_source": price.source,
            "missing_price": price.missing_price,
            "missing_column": price.missing_column,
            "markup_pct": self.markup_pct(item),
            "sales_price_per_unit": sales_unit,
            "material_purchase": price.price * item.quantity,
            "material_sales": material_sales,
            "hours": hours,
            "total_hours": sum(hours.values()),
            "labor_cost": labor,
            "total": material_sales + labor,
        }

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def sum_items(self, items: Iterable[LineItem]) -> Dict[str, Any]:
        acc = _empty_totals()
        for item in items:
            _accumulate(acc, self.item_totals(item))
        return acc

    def category_totals(self, items: Iterable[LineItem], instance_id: str) -> Dict[str, Dict[str, Any]]:
        by_category: Dict[str, Dict[str, Any]] = {}
        for item in items:
            if item.instance_id != instance_id:
                continue
            category = item.category or "Sonstiges"
            acc = by_category.setdefault(category, _empty_totals())
            _accumulate(acc, self.item_totals(item))
        return by_category

    def instance_totals(self, items: Iterable[LineItem], instance_id: str) -> Dict[str, Any]:
        return self.sum_items(i for i in items if i.instance_id == instance_id)

    def package_totals(self, items: Iterable[LineItem], package_id: int) -> Dict[str, Any]:
        return self.sum_items(i for i in items if i.package_id == package_id)

    def protection_totals(self, items: Iterable[LineItem]) -> Dict[str, Any]:
        return self.sum_items(i for i in items if i.package_id == PROTECTION_PACKAGE_ID)

    def grand_totals(self, items: Iterable[LineItem]) -> Dict[str, Any]:
        """
        Grand total built from the package totals plus the protection-device
        total, so the levels tie out exactly.
        """
        items = list(items)
        package_ids: List[int] = []
        for item in items:
            if item.package_id != PROTECTION_PACKAGE_ID and item.package_id not in package_ids:
                package_ids.append(item.package_id)

        packages = {pid: self.package_totals(items, pid) for pid in package_ids}
        protection = self.protection_totals(items)

        grand = _empty_totals()
        for pid in package_ids:
            _accumulate(grand, packages[pid])
        _accumulate(grand, protection)
        grand["packages"] = packages
        grand["protection"] = protection
        return grand

    def quote_summary(
        self,
        items: Iterable[LineItem],
        travel_cost_pct: float = TRAVEL_COST_PCT,
        subsidy: float = 0.0,
    ) -> Dict[str, Any]:
        """
        Customer-facing figures rounded to cents:
        material + labor + travel (share of both) - subsidy.
        """
        grand = self.grand_totals(items)
        material = grand["material_sales"]
        labor = grand["labor_cost"]
        travel = (material + labor) * travel_cost_pct / 100
        subtotal = material + labor + travel
        total = subtotal - subsidy
        return {
            "materialCosts": round(material, 2),
            "laborCosts": round(labor, 2),
            "travelCosts": round(travel, 2),
            "subtotal": round(subtotal, 2),
            "subsidy": round(subsidy, 2),
            "total": round(total, 2),
            "hours": {role: round(h, 2) for role, h in grand["hours"].items()},
        }
