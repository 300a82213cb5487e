"""
Data providers consumed by the configurator session.

The core never touches a database or the network itself; it awaits these
narrow interfaces once per session load / location change and caches the
results in memory. ``InMemoryProvider`` serves fixtures and tests; the
SQLAlchemy-backed implementation lives in ``app.db.catalog_repository``.
"""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union


class CatalogProvider(Protocol):
    async def get_packages(self) -> List[Dict[str, Any]]: ...
    async def get_package_items(self) -> List[Dict[str, Any]]: ...
    async def get_product_groups(self) -> List[Dict[str, Any]]: ...
    async def get_products(self) -> List[Dict[str, Any]]: ...
    async def get_parameter_definitions(self) -> List[Dict[str, Any]]: ...
    async def get_parameter_links(self) -> List[Dict[str, Any]]: ...


class RatesProvider(Protocol):
    async def get_labor_rates(self) -> List[Dict[str, Any]]: ...
    async def get_global_markup(self) -> float: ...


class PriceProvider(Protocol):
    async def get_product_prices(self) -> List[Dict[str, Any]]: ...


class LocationProvider(Protocol):
    async def get_locations(self) -> List[Dict[str, Any]]: ...
    async def get_current_location_id(self) -> Optional[str]: ...


class InMemoryProvider:
    """All four providers over plain row dicts."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        data = data or {}
        self.packages: List[Dict[str, Any]] = list(data.get("packages", []))
        self.package_items: List[Dict[str, Any]] = list(data.get("package_items", []))
        self.product_groups: List[Dict[str, Any]] = list(data.get("product_groups", []))
        self.products: List[Dict[str, Any]] = list(data.get("products", []))
        self.parameter_definitions: List[Dict[str, Any]] = list(data.get("parameter_definitions", []))
        self.parameter_links: List[Dict[str, Any]] = list(data.get("parameter_links", []))
        self.labor_rates: List[Dict[str, Any]] = list(data.get("labor_rates", []))
        self.global_markup: float = float(data.get("global_markup_pct", 0.0))
        self.product_prices: List[Dict[str, Any]] = list(data.get("product_prices", []))
        self.locations: List[Dict[str, Any]] = list(data.get("locations", []))
        self.current_location_id: Optional[str] = data.get("current_location_id")

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "InMemoryProvider":
        with open(path, "r", encoding="utf-8") as f:
            return cls(json.load(f))

    async def get_packages(self) -> List[Dict[str, Any]]:
        return self.packages

    async def get_package_items(self) -> List[Dict[str, Any]]:
        return self.package_items

    async def get_product_groups(self) -> List[Dict[str, Any]]:
        return self.product_groups

    async def get_products(self) -> List[Dict[str, Any]]:
        return self.products

    async def get_parameter_definitions(self) -> List[Dict[str, Any]]:
        return self.parameter_definitions

    async def get_parameter_links(self) -> List[Dict[str, Any]]:
        return self.parameter_links

    async def get_labor_rates(self) -> List[Dict[str, Any]]:
        return self.labor_rates

    async def get_global_markup(self) -> float:
        return self.global_markup

    async def get_product_prices(self) -> List[Dict[str, Any]]:
        return self.product_prices

    async def get_locations(self) -> List[Dict[str, Any]]:
        return self.locations

    async def get_current_location_id(self) -> Optional[str]:
        return self.current_location_id
