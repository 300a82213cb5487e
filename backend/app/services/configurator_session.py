"""
ConfiguratorSession — application-level controller for one Elektrosanierung
configuration.

Owns the single source of truth (selected instances, global parameters,
location) and the user override overlay (local prices, markups, manual
hours, quantities, product swaps, removals). Every mutation re-runs the full
pure pipeline under a lock and re-applies the overlay by line-item id.
"""
import asyncio
import copy
import logging
import math
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from app.config import (
    DEFAULT_LOCATION_ID,
    MARKUP_PCT_MAX,
    MARKUP_PCT_MIN,
    ROLES,
    TRAVEL_COST_PCT,
)
from app.models.configurator_schema import (
    InstanceState,
    LaborRates,
    Location,
    Product,
    ProductPrice,
    SessionState,
)
from app.services.catalog_engine import Catalog, ConfigurationUnavailable, is_available, validate_rows
from app.services.configurator_engine import ConfiguratorInputs, resolve
from app.services.diagnostics import MISSING_RATES, Diagnostic, report
from app.services.line_item_engine import (
    LineItem,
    line_item_id,
    merge_line_items,
    with_product,
    with_quantity,
)
from app.services.pricing_engine import EntityPricing, PricingEngine
from app.services.product_selector import alternatives_for
from app.services.providers import CatalogProvider, LocationProvider, PriceProvider, RatesProvider
from app.services.quantity_engine import PackageInstance

logger = logging.getLogger("elektro-session")


class InvalidParameterError(ValueError):
    pass


class InvalidOverrideError(ValueError):
    pass


class UnknownPackageError(ValueError):
    pass


class UnknownInstanceError(KeyError):
    pass


class UnknownItemError(KeyError):
    pass


def parse_override_number(value: Any, what: str = "value") -> float:
    """
    Committed numeric value of a user override. Accepts numbers and strings
    with ',' or '.' as decimal separator; rejects bools, blanks and non-finite.
    """
    if value is None or isinstance(value, bool):
        raise InvalidOverrideError(f"{what} must be a number, got {value!r}")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().replace(",", "."))
        except ValueError:
            raise InvalidOverrideError(f"{what} must be a number, got {value!r}")
    else:
        raise InvalidOverrideError(f"{what} must be a number, got {value!r}")
    if not math.isfinite(number):
        raise InvalidOverrideError(f"{what} must be finite")
    return number


def _non_negative(value: Any, what: str) -> float:
    number = parse_override_number(value, what)
    if number < 0:
        raise InvalidOverrideError(f"{what} must not be negative")
    return round(number, 2)


def clean_price(value: Any) -> float:
    return _non_negative(value, "Purchase price")


def clean_hours(value: Any) -> float:
    return _non_negative(value, "Hours")


def clean_wage(value: Any) -> float:
    return _non_negative(value, "Wage")


def clean_markup(value: Any) -> float:
    number = parse_override_number(value, "Markup")
    if not MARKUP_PCT_MIN <= number <= MARKUP_PCT_MAX:
        raise InvalidOverrideError(f"Markup must be between {MARKUP_PCT_MIN} and {MARKUP_PCT_MAX} %")
    return round(number, 2)


def clean_quantity(value: Any) -> int:
    number = parse_override_number(value, "Quantity")
    if number < 1 or not number.is_integer():
        raise InvalidOverrideError("Quantity must be a whole number of at least 1")
    return int(number)


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


class ConfiguratorSession:

    def __init__(
        self,
        catalog: Catalog,
        locations: Optional[List[Location]] = None,
        labor_rates: Optional[List[LaborRates]] = None,
        global_markup_pct: float = 0.0,
        entity_pricing: Optional[EntityPricing] = None,
        location_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.session_id = session_id or uuid4().hex
        self.catalog = catalog
        self.locations: Dict[str, Location] = {loc.loc_id: loc for loc in locations or []}
        self.labor_rates: Dict[str, LaborRates] = {r.loc_id: r for r in labor_rates or []}
        self.global_markup_pct = float(global_markup_pct)
        self.entity_pricing = entity_pricing or EntityPricing()

        self._lock = threading.RLock()
        self._instances: Dict[str, PackageInstance] = {}
        self._global_params: Dict[str, Any] = catalog.default_global_params()

        # overlay keyed by line-item id
        self._local_prices: Dict[str, float] = {}
        self._local_markups: Dict[str, float] = {}
        self._manual_hours: Dict[str, Dict[str, float]] = {}
        self._quantities: Dict[str, int] = {}
        self._swaps: Dict[str, str] = {}
        self._removed: set = set()
        self._wage_overrides: Dict[str, float] = {}

        self._line_items: List[LineItem] = []
        self._protection_items: List[LineItem] = []
        self.diagnostics: List[Diagnostic] = []
        self._location_diagnostics: List[Diagnostic] = []

        self.location_id = self._initial_location(location_id)
        self._check_rates()
        self._recalculate()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    async def load(
        cls,
        catalog_provider: CatalogProvider,
        rates_provider: Optional[RatesProvider] = None,
        price_provider: Optional[PriceProvider] = None,
        location_provider: Optional[LocationProvider] = None,
        location_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> "ConfiguratorSession":
        """Fetch all reference data once and build a session around it."""
        rates_provider = rates_provider or catalog_provider
        price_provider = price_provider or catalog_provider
        location_provider = location_provider or catalog_provider

        try:
            packages, items, groups, products, params, links = await asyncio.gather(
                catalog_provider.get_packages(),
                catalog_provider.get_package_items(),
                catalog_provider.get_product_groups(),
                catalog_provider.get_products(),
                catalog_provider.get_parameter_definitions(),
                catalog_provider.get_parameter_links(),
            )
        except Exception as e:
            logger.error(f"Catalog load failed: {e}")
            raise ConfigurationUnavailable(f"Catalog load failed: {e}") from e

        catalog = Catalog.from_rows(packages, items, products, groups, params, links)

        rates = validate_rows(LaborRates, await rates_provider.get_labor_rates(), "labor rates")
        markup = await rates_provider.get_global_markup()
        prices = validate_rows(ProductPrice, await price_provider.get_product_prices(), "product price")
        locations = validate_rows(Location, await location_provider.get_locations(), "location")
        if location_id is None:
            location_id = await location_provider.get_current_location_id()

        return cls(
            catalog,
            locations=locations,
            labor_rates=rates,
            global_markup_pct=markup if markup is not None else 0.0,
            entity_pricing=EntityPricing(prices),
            location_id=location_id,
            session_id=session_id,
        )

    def _initial_location(self, location_id: Optional[str]) -> Optional[str]:
        if location_id and location_id in self.locations:
            return location_id
        if location_id:
            logger.warning(f"Unknown location {location_id}; falling back to default")
        if DEFAULT_LOCATION_ID in self.locations:
            return DEFAULT_LOCATION_ID
        return next(iter(self.locations), None)

    def _check_rates(self) -> None:
        self._location_diagnostics = []
        if self.location_id not in self.labor_rates:
            report(
                logger, self._location_diagnostics, MISSING_RATES,
                f"No labor rates for location {self.location_id}; wages default to 0",
                location_id=self.location_id,
            )

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def location_name(self) -> Optional[str]:
        location = self.locations.get(self.location_id) if self.location_id else None
        return location.name if location else None

    @property
    def global_params(self) -> Dict[str, Any]:
        return dict(self._global_params)

    def _inputs(self) -> ConfiguratorInputs:
        return ConfiguratorInputs(
            instances=[
                PackageInstance(i.instance_id, i.package_id, dict(i.params))
                for i in self._instances.values()
            ],
            global_params=dict(self._global_params),
            location_name=self.location_name,
        )

    def _recalculate(self) -> None:
        with self._lock:
            result = resolve(self._inputs(), self.catalog, structure=self._apply_structure)
            self._line_items = [self._apply_values(i) for i in result.line_items]
            self._protection_items = [self._apply_values(i) for i in result.protection_items]
            self.diagnostics = self._location_diagnostics + result.diagnostics

        logger.debug(
            f"Recalculated: {len(self._line_items)} items, {len(self._protection_items)} protection items",
            extra={"session_id": self.session_id},
        )

    def _apply_structure(self, items: List[LineItem]) -> List[LineItem]:
        """
        Removals, product swaps and manual quantities. A swap onto a product
        the instance already has merges both rows into one.
        """
        result: Dict[Tuple[str, str], LineItem] = {}
        for item in items:
            if item.id in self._removed:
                continue
            swap_id = self._swaps.get(item.id)
            if swap_id and swap_id != item.product_id:
                product = self.catalog.product(swap_id)
                if self._is_valid_alternative(item, product):
                    item = with_product(item, product)
                else:
                    logger.debug(f"Swap {item.id} -> {swap_id} no longer valid; ignored")
            quantity = self._quantities.get(item.id)
            if quantity is not None:
                item = with_quantity(item, quantity)

            key = (item.instance_id, item.product_id)
            existing = result.get(key)
            if existing is None:
                result[key] = item
                continue
            target, other = (item, existing) if item.id == line_item_id(*key) else (existing, item)
            logger.info(
                f"{other.id} now uses {item.product_id}; merged into {target.id}",
                extra={"session_id": self.session_id, "instance_id": item.instance_id},
            )
            result[key] = merge_line_items(target, other)
        return list(result.values())

    def _apply_values(self, item: LineItem) -> LineItem:
        """Local price, markup and manual hours."""
        manual = dict(self._manual_hours.get(item.id, {}))
        hours_total = dict(item.hours_total)
        hours_total.update(manual)
        return replace(
            item,
            local_price=self._local_prices.get(item.id),
            local_markup=self._local_markups.get(item.id),
            manual_hours=manual,
            hours_total=hours_total,
        )

    def _is_valid_alternative(self, item: LineItem, product: Optional[Product]) -> bool:
        return (
            product is not None
            and product.produkt_gruppe == item.produkt_gruppe
            and is_available(product, self.location_name)
        )

    def _find_item(self, item_id: str) -> LineItem:
        for item in self._line_items + self._protection_items:
            if item.id == item_id:
                return item
        raise UnknownItemError(item_id)

    def _drop_overlay(self, prefix: str) -> None:
        for overlay in (self._local_prices, self._local_markups, self._manual_hours,
                        self._quantities, self._swaps):
            for key in [k for k in overlay if k.startswith(prefix)]:
                del overlay[key]
        self._removed = {k for k in self._removed if not k.startswith(prefix)}

    # ------------------------------------------------------------------
    # Selection & parameters
    # ------------------------------------------------------------------

    def select_package(self, package_id: int) -> str:
        package = self.catalog.package(package_id)
        if package is None:
            raise UnknownPackageError(f"Unknown package {package_id}")
        with self._lock:
            instance_id = f"{package_id}-{uuid4().hex[:8]}"
            self._instances[instance_id] = PackageInstance(
                instance_id=instance_id,
                package_id=package_id,
                params=self.catalog.default_instance_params(package_id),
            )
            self._recalculate()
        logger.info(f"Added package '{package.name}' as {instance_id}", extra={"session_id": self.session_id})
        return instance_id

    def remove_instance(self, instance_id: str) -> None:
        with self._lock:
            if instance_id not in self._instances:
                raise UnknownInstanceError(instance_id)
            del self._instances[instance_id]
            self._drop_overlay(f"{instance_id}-")
            self._recalculate()

    def instances(self) -> List[PackageInstance]:
        return [
            PackageInstance(i.instance_id, i.package_id, dict(i.params))
            for i in self._instances.values()
        ]

    def set_global_param(self, key: str, value: Any) -> None:
        try:
            coerced = self.catalog.coerce_global(key, value)
        except ValueError as e:
            raise InvalidParameterError(str(e)) from e
        with self._lock:
            self._global_params[key] = coerced
            self._recalculate()

    def set_instance_param(self, instance_id: str, key: str, value: Any) -> None:
        with self._lock:
            instance = self._instances.get(instance_id)
            if instance is None:
                raise UnknownInstanceError(instance_id)
            try:
                coerced = self.catalog.coerce_local(instance.package_id, key, value)
            except ValueError as e:
                raise InvalidParameterError(str(e)) from e
            instance.params[key] = coerced
            self._recalculate()

    def set_location(self, location_id: str) -> None:
        if location_id not in self.locations:
            raise InvalidParameterError(f"Unknown location {location_id}")
        with self._lock:
            self.location_id = location_id
            self._check_rates()
            self._recalculate()

    # ------------------------------------------------------------------
    # Resolved state
    # ------------------------------------------------------------------

    def get_line_items(self) -> List[LineItem]:
        return copy.deepcopy(self._line_items)

    def get_protection_device_items(self) -> List[LineItem]:
        return copy.deepcopy(self._protection_items)

    def get_alternatives(self, item_id: str) -> List[Product]:
        with self._lock:
            item = self._find_item(item_id)
            return alternatives_for(self.catalog, item.produkt_gruppe, self.location_name)

    # ------------------------------------------------------------------
    # Override overlay
    # ------------------------------------------------------------------

    def set_local_price(self, item_id: str, price: Union[float, str, None]) -> None:
        with self._lock:
            self._find_item(item_id)
            if _is_blank(price):
                self._local_prices.pop(item_id, None)
            else:
                self._local_prices[item_id] = clean_price(price)
            self._recalculate()

    def set_local_markup(self, item_id: str, markup_pct: Union[float, str, None]) -> None:
        with self._lock:
            self._find_item(item_id)
            if _is_blank(markup_pct):
                self._local_markups.pop(item_id, None)
            else:
                self._local_markups[item_id] = clean_markup(markup_pct)
            self._recalculate()

    def reset_markup(self, item_id: str) -> None:
        self.set_local_markup(item_id, None)

    def set_manual_hours(self, item_id: str, role: str, total_hours: Union[float, str, None]) -> None:
        if role not in ROLES:
            raise InvalidOverrideError(f"Unknown role {role!r}; expected one of {list(ROLES)}")
        with self._lock:
            self._find_item(item_id)
            if _is_blank(total_hours):
                hours = self._manual_hours.get(item_id, {})
                hours.pop(role, None)
                if not hours:
                    self._manual_hours.pop(item_id, None)
            else:
                self._manual_hours.setdefault(item_id, {})[role] = clean_hours(total_hours)
            self._recalculate()

    def set_quantity(self, item_id: str, quantity: Union[int, str]) -> None:
        value = clean_quantity(quantity)
        with self._lock:
            self._find_item(item_id)
            self._quantities[item_id] = value
            self._recalculate()

    def swap_product(self, item_id: str, product_id: str) -> None:
        with self._lock:
            item = self._find_item(item_id)
            product = self.catalog.product(product_id)
            if not self._is_valid_alternative(item, product):
                raise InvalidOverrideError(
                    f"Product {product_id} is not an available alternative in group {item.produkt_gruppe}"
                )
            clash = next(
                (
                    other for other in self._line_items + self._protection_items
                    if other.id != item_id
                    and other.instance_id == item.instance_id
                    and other.product_id == product_id
                ),
                None,
            )
            if clash is not None:
                raise InvalidOverrideError(
                    f"{item.instance_id} already contains {product_id} as {clash.id}; "
                    f"change its quantity instead"
                )
            self._swaps[item_id] = product_id
            self._recalculate()

    def remove_item(self, item_id: str) -> None:
        with self._lock:
            self._find_item(item_id)
            self._removed.add(item_id)
            self._recalculate()

    def set_wage_override(self, role: str, wage: Union[float, str, None]) -> None:
        if role not in ROLES:
            raise InvalidOverrideError(f"Unknown role {role!r}; expected one of {list(ROLES)}")
        with self._lock:
            if _is_blank(wage):
                self._wage_overrides.pop(role, None)
            else:
                self._wage_overrides[role] = clean_wage(wage)

    # ------------------------------------------------------------------
    # Money
    # ------------------------------------------------------------------

    def effective_wages(self) -> Dict[str, float]:
        rates = self.labor_rates.get(self.location_id) if self.location_id else None
        return {
            role: self._wage_overrides.get(role, rates.wage_for(role) if rates else 0.0)
            for role in ROLES
        }

    def pricing(self) -> PricingEngine:
        return PricingEngine(
            entity_pricing=self.entity_pricing,
            location_name=self.location_name,
            global_markup_pct=self.global_markup_pct,
            wages=self.effective_wages(),
        )

    def get_totals(self, scope: str = "global", key: Any = None) -> Dict[str, Any]:
        """
        Aggregated figures for one scope:
        item (key=item id), category (key=instance id, per category),
        instance (key=instance id), package (key=package id),
        protection, global.
        """
        pricing = self.pricing()
        items = self._line_items + self._protection_items
        if scope == "item":
            return pricing.item_totals(self._find_item(key))
        if scope == "category":
            if key not in self._instances:
                raise UnknownInstanceError(key)
            return pricing.category_totals(items, key)
        if scope == "instance":
            if key not in self._instances:
                raise UnknownInstanceError(key)
            return pricing.instance_totals(items, key)
        if scope == "package":
            try:
                package_id = int(key)
            except (TypeError, ValueError):
                raise ValueError(f"Package totals need a numeric package id, got {key!r}")
            return pricing.package_totals(items, package_id)
        if scope == "protection":
            return pricing.protection_totals(items)
        if scope == "global":
            return pricing.grand_totals(items)
        raise ValueError(f"Unknown totals scope '{scope}'")

    def get_quote_summary(self, travel_cost_pct: float = TRAVEL_COST_PCT) -> Dict[str, Any]:
        return self.pricing().quote_summary(self._line_items + self._protection_items, travel_cost_pct)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_state(self) -> SessionState:
        with self._lock:
            return SessionState(
                location_id=self.location_id,
                global_params=dict(self._global_params),
                instances=[
                    InstanceState(instance_id=i.instance_id, package_id=i.package_id, params=dict(i.params))
                    for i in self._instances.values()
                ],
                local_prices=dict(self._local_prices),
                local_markups=dict(self._local_markups),
                manual_hours={k: dict(v) for k, v in self._manual_hours.items()},
                quantities=dict(self._quantities),
                swaps=dict(self._swaps),
                removed=sorted(self._removed),
                wage_overrides=dict(self._wage_overrides),
            )

    def apply_state(self, state: Union[SessionState, Dict[str, Any]]) -> None:
        """Restore a saved state; entries that no longer fit the catalog are dropped."""
        if not isinstance(state, SessionState):
            state = SessionState.model_validate(state)

        with self._lock:
            if state.location_id and state.location_id in self.locations:
                self.location_id = state.location_id
                self._check_rates()

            global_params = self.catalog.default_global_params()
            for key, value in state.global_params.items():
                try:
                    global_params[key] = self.catalog.coerce_global(key, value)
                except ValueError as e:
                    logger.warning(f"Dropping saved global parameter: {e}")
            self._global_params = global_params

            self._instances = {}
            for saved in state.instances:
                if self.catalog.package(saved.package_id) is None:
                    logger.warning(f"Dropping saved instance {saved.instance_id}: unknown package")
                    continue
                params = self.catalog.default_instance_params(saved.package_id)
                for key, value in saved.params.items():
                    try:
                        params[key] = self.catalog.coerce_local(saved.package_id, key, value)
                    except ValueError as e:
                        logger.warning(f"Dropping saved parameter of {saved.instance_id}: {e}")
                self._instances[saved.instance_id] = PackageInstance(
                    saved.instance_id, saved.package_id, params
                )

            self._local_prices = _restore(state.local_prices, clean_price, "price")
            self._local_markups = _restore(state.local_markups, clean_markup, "markup")
            self._quantities = _restore(state.quantities, clean_quantity, "quantity")
            self._manual_hours = {}
            for item_id, roles in state.manual_hours.items():
                hours = _restore(
                    {role: value for role, value in roles.items() if _known_role(role)},
                    clean_hours, f"hours of {item_id}",
                )
                if hours:
                    self._manual_hours[item_id] = hours
            self._wage_overrides = _restore(
                {role: value for role, value in state.wage_overrides.items() if _known_role(role)},
                clean_wage, "wage",
            )
            self._swaps = {}
            for item_id, product_id in state.swaps.items():
                if self.catalog.product(product_id) is None:
                    logger.warning(f"Dropping saved swap of {item_id}: unknown product {product_id}")
                    continue
                self._swaps[item_id] = product_id
            self._removed = set(state.removed)
            self._recalculate()


def _known_role(role: str) -> bool:
    if role in ROLES:
        return True
    logger.warning(f"Dropping saved override for unknown role {role!r}")
    return False


def _restore(saved: Dict[str, Any], clean: Callable[[Any], Any], what: str) -> Dict[str, Any]:
    """Saved overrides that pass the same checks as the interactive setters."""
    restored: Dict[str, Any] = {}
    for key, value in saved.items():
        try:
            restored[key] = clean(value)
        except InvalidOverrideError as e:
            logger.warning(f"Dropping saved {what} of {key}: {e}")
    return restored
