"""
Catalog Engine — immutable, indexed snapshot of the configurator reference data.

Raw provider rows are validated into the pydantic schemas once per session
load; formula specs and product selectors are normalized here so that the
resolution pipeline never re-sniffs shapes on recalculation.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from app.config import GLOBAL_QUALITY_PARAM, QUALITY_LEVELS
from app.models.configurator_schema import (
    Package,
    PackageItemRule,
    ParameterDefinition,
    ParameterLink,
    Product,
    ProductGroup,
)
from app.services.formula_engine import FormulaEntry, parse_formula_spec

logger = logging.getLogger("elektro-catalog")

M = TypeVar("M", bound=BaseModel)

_TRUE_STRINGS = {"true", "1", "ja", "yes", "on", "wahr"}
_FALSE_STRINGS = {"false", "0", "nein", "no", "off", "falsch", ""}


class ConfigurationUnavailable(RuntimeError):
    """Catalog could not be loaded (no packages or no products)."""


# ---------------------------------------------------------------------------
# Product selector normalization
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SelectorSpec:
    # (max, product_id) in listed order; max None matches any quantity
    quantity_rules: Tuple[Tuple[Optional[float], str], ...] = ()
    static_product_id: Optional[str] = None


def parse_product_selector(raw: Any) -> SelectorSpec:
    """
    Accepted shapes::

        {"based_on": "calculated_quantity", "rules": [{"max": 8, "product_id": "P1"}, ...]}
        {"calculated_quantity": [{"max": 8, "product_id": "P1"}, {"product_id": "P2"}]}
        {"selected_product_id": "P3"}
    """
    if not isinstance(raw, dict):
        return SelectorSpec()

    rule_list = None
    if isinstance(raw.get("calculated_quantity"), list):
        rule_list = raw["calculated_quantity"]
    elif raw.get("based_on") == "calculated_quantity" and isinstance(raw.get("rules"), list):
        rule_list = raw["rules"]

    quantity_rules: List[Tuple[Optional[float], str]] = []
    for entry in rule_list or []:
        if not isinstance(entry, dict):
            continue
        product_id = entry.get("product_id") or entry.get("selected_product_id")
        if not product_id:
            continue
        max_value = entry.get("max")
        if max_value is not None:
            try:
                max_value = float(max_value)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring non-numeric selector max: {max_value!r}")
                max_value = None
        quantity_rules.append((max_value, str(product_id)))

    static_id = raw.get("selected_product_id")
    return SelectorSpec(
        quantity_rules=tuple(quantity_rules),
        static_product_id=str(static_id) if static_id else None,
    )


@dataclass(frozen=True)
class CatalogRule:
    rule: PackageItemRule
    material: Tuple[FormulaEntry, ...]
    hours: Tuple[FormulaEntry, ...]
    selector: SelectorSpec = field(default_factory=SelectorSpec)

    @property
    def id(self) -> int:
        return self.rule.id

    @property
    def package_id(self) -> int:
        return self.rule.package_id

    @property
    def group_id(self) -> str:
        return self.rule.produkt_gruppe_id

    @property
    def quantity_base(self) -> float:
        return self.rule.quantity_base or 0.0

    @classmethod
    def from_rule(cls, rule: PackageItemRule) -> "CatalogRule":
        return cls(
            rule=rule,
            material=tuple(parse_formula_spec(rule.multipliers_material)),
            hours=tuple(parse_formula_spec(rule.multipliers_hours)),
            selector=parse_product_selector(rule.product_selector),
        )


# ---------------------------------------------------------------------------
# Parameter coercion
# ---------------------------------------------------------------------------

def coerce_param_value(definition: ParameterDefinition, value: Any) -> Any:
    """
    Validate ``value`` against the definition's param_type.
    Raises ValueError when the value cannot be represented.
    """
    ptype = definition.param_type
    key = definition.param_key

    if ptype == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
        raise ValueError(f"Parameter '{key}' expects a boolean, got {value!r}")

    if ptype == "number":
        if isinstance(value, bool) or value is None:
            raise ValueError(f"Parameter '{key}' expects a number, got {value!r}")
        if isinstance(value, (int, float)):
            number = value
        else:
            try:
                number = float(str(value).strip().replace(",", "."))
            except ValueError:
                raise ValueError(f"Parameter '{key}' expects a number, got {value!r}")
        if not math.isfinite(float(number)):
            raise ValueError(f"Parameter '{key}' must be finite")
        if isinstance(number, float) and number.is_integer():
            return int(number)
        return number

    if value is None:
        raise ValueError(f"Parameter '{key}' must not be empty")
    text = str(value)
    if ptype == "select" and definition.options and text not in definition.options:
        raise ValueError(f"Parameter '{key}' must be one of {definition.options}, got {text!r}")
    return text


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------

def is_available(product: Product, location_name: Optional[str]) -> bool:
    """Untagged products are available everywhere; tagged ones only at listed locations."""
    if not product.availability:
        return True
    return location_name is not None and location_name in product.availability


# ---------------------------------------------------------------------------
# Catalog snapshot
# ---------------------------------------------------------------------------

def validate_rows(model: Type[M], rows: Iterable[Any], kind: str) -> List[M]:
    """Validate raw rows into ``model``; invalid rows are logged and skipped."""
    result: List[M] = []
    for row in rows or []:
        if isinstance(row, model):
            result.append(row)
            continue
        try:
            result.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning(f"Skipping invalid {kind} row: {e.errors()[:1]}")
    return result


class Catalog:
    """Read-only reference data for one session load."""

    def __init__(
        self,
        packages: List[Package],
        rules: List[PackageItemRule],
        products: List[Product],
        groups: Optional[List[ProductGroup]] = None,
        parameters: Optional[List[ParameterDefinition]] = None,
        links: Optional[List[ParameterLink]] = None,
    ) -> None:
        self.packages: Dict[int, Package] = {p.id: p for p in packages}
        self.products: List[Product] = list(products)
        self.products_by_id: Dict[str, Product] = {}
        for product in self.products:
            self.products_by_id.setdefault(product.product_id, product)
        self.groups: Dict[str, ProductGroup] = {g.group_id: g for g in groups or []}
        self.parameters: Dict[str, ParameterDefinition] = {d.param_key: d for d in parameters or []}

        self._rules_by_package: Dict[int, List[CatalogRule]] = {}
        for rule in rules:
            self._rules_by_package.setdefault(rule.package_id, []).append(CatalogRule.from_rule(rule))

        self._links_by_package: Dict[int, List[str]] = {}
        for link in links or []:
            keys = self._links_by_package.setdefault(link.package_id, [])
            if link.param_key not in keys:
                keys.append(link.param_key)

    @classmethod
    def from_rows(
        cls,
        packages: Iterable[Any],
        rules: Iterable[Any],
        products: Iterable[Any],
        groups: Iterable[Any] = (),
        parameters: Iterable[Any] = (),
        links: Iterable[Any] = (),
    ) -> "Catalog":
        catalog = cls(
            packages=validate_rows(Package, packages, "package"),
            rules=validate_rows(PackageItemRule, rules, "package item"),
            products=validate_rows(Product, products, "product"),
            groups=validate_rows(ProductGroup, groups, "product group"),
            parameters=validate_rows(ParameterDefinition, parameters, "parameter definition"),
            links=validate_rows(ParameterLink, links, "parameter link"),
        )
        if catalog.is_empty:
            raise ConfigurationUnavailable(
                f"Catalog incomplete: {len(catalog.packages)} packages, {len(catalog.products)} products"
            )
        logger.info(
            f"Catalog loaded: {len(catalog.packages)} packages, "
            f"{sum(len(r) for r in catalog._rules_by_package.values())} rules, "
            f"{len(catalog.products)} products"
        )
        return catalog

    @property
    def is_empty(self) -> bool:
        return not self.packages or not self.products

    def package(self, package_id: int) -> Optional[Package]:
        return self.packages.get(package_id)

    def rules_for(self, package_id: int) -> List[CatalogRule]:
        return self._rules_by_package.get(package_id, [])

    def product(self, product_id: str) -> Optional[Product]:
        return self.products_by_id.get(product_id)

    def products_in_group(self, group_id: str, location_name: Optional[str] = None,
                          filter_location: bool = True) -> List[Product]:
        return [
            p for p in self.products
            if p.produkt_gruppe == group_id
            and (not filter_location or is_available(p, location_name))
        ]

    # ── parameters ──────────────────────────────────────────────────────────

    def local_parameter_keys(self, package_id: int) -> List[str]:
        return list(self._links_by_package.get(package_id, []))

    def global_parameters(self) -> List[ParameterDefinition]:
        return [d for d in self.parameters.values() if d.is_global]

    def _defaults(self, definitions: Iterable[ParameterDefinition]) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for definition in definitions:
            if definition.default_value is None:
                continue
            try:
                values[definition.param_key] = coerce_param_value(definition, definition.default_value)
            except ValueError as e:
                logger.warning(f"Ignoring default for '{definition.param_key}': {e}")
        return values

    def default_global_params(self) -> Dict[str, Any]:
        return self._defaults(self.global_parameters())

    def default_instance_params(self, package_id: int) -> Dict[str, Any]:
        definitions = [
            self.parameters[k] for k in self.local_parameter_keys(package_id) if k in self.parameters
        ]
        return self._defaults(definitions)

    def coerce_global(self, key: str, value: Any) -> Any:
        definition = self.parameters.get(key)
        if definition is None:
            if key == GLOBAL_QUALITY_PARAM:
                if value not in QUALITY_LEVELS:
                    raise ValueError(f"Quality level must be one of {QUALITY_LEVELS}, got {value!r}")
                return value
            raise ValueError(f"Unknown parameter '{key}'")
        if not definition.is_global:
            raise ValueError(f"Parameter '{key}' is not a global parameter")
        return coerce_param_value(definition, value)

    def coerce_local(self, package_id: int, key: str, value: Any) -> Any:
        if key not in self.local_parameter_keys(package_id) or key not in self.parameters:
            raise ValueError(f"Parameter '{key}' is not exposed by package {package_id}")
        return coerce_param_value(self.parameters[key], value)
