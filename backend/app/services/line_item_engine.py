"""
Line Item Engine — turns resolved rules into deduplicated, priceable line items.

One line item per (package instance, product): a product resolved by several
rules of the same instance accumulates quantity and hours instead of
producing a second row.
"""
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from app.config import PROTECTION_GROUPS, ROLES
from app.models.configurator_schema import Product
from app.services.catalog_engine import Catalog
from app.services.diagnostics import NO_PRODUCT, Diagnostic, report
from app.services.formula_engine import hours_multiplier
from app.services.product_selector import select_product
from app.services.quantity_engine import QuantityResolution

logger = logging.getLogger("elektro-lineitems")


@dataclass
class LineItem:
    id: str
    instance_id: str
    package_id: int
    package_name: str
    product_id: str
    name: str
    unit: str
    quantity: int
    unit_price: float = 0.0
    category: Optional[str] = None
    produkt_gruppe: Optional[str] = None
    qualitaetsstufe: Optional[str] = None
    hours_multiplier: float = 1.0
    hours_per_unit: Dict[str, float] = field(default_factory=dict)
    hours_total: Dict[str, float] = field(default_factory=dict)
    calculated_quantity: float = 0.0
    rule_ids: List[int] = field(default_factory=list)
    is_protection_device: bool = False
    # user overlay, re-applied after every recalculation
    local_price: Optional[float] = None
    local_markup: Optional[float] = None
    manual_hours: Dict[str, float] = field(default_factory=dict)

    @property
    def total_hours(self) -> float:
        return sum(self.hours_total.get(role, 0.0) for role in ROLES)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "package_id": self.package_id,
            "package_name": self.package_name,
            "product_id": self.product_id,
            "name": self.name,
            "unit": self.unit,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "category": self.category,
            "produkt_gruppe": self.produkt_gruppe,
            "qualitaetsstufe": self.qualitaetsstufe,
            "hours_per_unit": dict(self.hours_per_unit),
            "hours_total": dict(self.hours_total),
            "calculated_quantity": self.calculated_quantity,
            "is_protection_device": self.is_protection_device,
            "local_price": self.local_price,
            "local_markup": self.local_markup,
            "manual_hours": dict(self.manual_hours),
        }


def line_item_id(instance_id: str, product_id: str) -> str:
    return f"{instance_id}-{product_id}"


def round_quantity(quantity: float) -> int:
    """Whole units, half rounded up; at least 1 for any positive quantity."""
    if quantity <= 0:
        return 0
    return max(1, int(math.floor(quantity + 0.5)))


def make_line_item(
    instance_id: str,
    package_id: int,
    package_name: str,
    product: Product,
    quantity: int,
    multiplier: float = 1.0,
    calculated_quantity: Optional[float] = None,
    is_protection_device: bool = False,
) -> LineItem:
    per_unit = {role: product.hours_for(role) * multiplier for role in ROLES}
    return LineItem(
        id=line_item_id(instance_id, product.product_id),
        instance_id=instance_id,
        package_id=package_id,
        package_name=package_name,
        product_id=product.product_id,
        name=product.name,
        unit=product.unit,
        quantity=quantity,
        unit_price=product.unit_price,
        category=product.category,
        produkt_gruppe=product.produkt_gruppe,
        qualitaetsstufe=product.qualitaetsstufe,
        hours_multiplier=multiplier,
        hours_per_unit=per_unit,
        hours_total={role: per_unit[role] * quantity for role in ROLES},
        calculated_quantity=float(quantity if calculated_quantity is None else calculated_quantity),
        is_protection_device=is_protection_device,
    )


def with_product(item: LineItem, product: Product) -> LineItem:
    """Copy of ``item`` switched to ``product``; id, quantity and multiplier are kept."""
    per_unit = {role: product.hours_for(role) * item.hours_multiplier for role in ROLES}
    return replace(
        item,
        product_id=product.product_id,
        name=product.name,
        unit=product.unit,
        unit_price=product.unit_price,
        category=product.category,
        produkt_gruppe=product.produkt_gruppe,
        qualitaetsstufe=product.qualitaetsstufe,
        hours_per_unit=per_unit,
        hours_total={role: per_unit[role] * item.quantity for role in ROLES},
    )


def with_quantity(item: LineItem, quantity: int) -> LineItem:
    """Copy of ``item`` with a new quantity; hours follow the per-unit rates."""
    return replace(
        item,
        quantity=quantity,
        hours_total={role: item.hours_per_unit.get(role, 0.0) * quantity for role in ROLES},
    )


def merge_line_items(target: LineItem, other: LineItem) -> LineItem:
    """
    Copy of ``target`` absorbing ``other`` (same instance and product):
    quantities and hours add up, per-unit hours become the blended rate.
    """
    quantity = target.quantity + other.quantity
    hours_total = {
        role: target.hours_total.get(role, 0.0) + other.hours_total.get(role, 0.0)
        for role in ROLES
    }
    return replace(
        target,
        quantity=quantity,
        calculated_quantity=target.calculated_quantity + other.calculated_quantity,
        rule_ids=target.rule_ids + other.rule_ids,
        hours_per_unit={role: hours_total[role] / quantity if quantity else 0.0 for role in ROLES},
        hours_total=hours_total,
    )


class LineItemBuilder:

    def __init__(
        self,
        catalog: Catalog,
        global_quality: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> None:
        self.catalog = catalog
        self.global_quality = global_quality
        self.location_name = location_name

    def build(self, resolution: QuantityResolution) -> Tuple[List[LineItem], List[Diagnostic]]:
        """
        Build line items for every resolved rule with a positive quantity.

        Protection-device groups are skipped here; they are derived from the
        consumer counts afterwards.
        """
        items: Dict[str, LineItem] = {}
        diagnostics: List[Diagnostic] = []

        for resolved in resolution.rules:
            rule = resolved.rule
            if rule.group_id in PROTECTION_GROUPS:
                logger.debug(f"Rule {rule.id} targets protection group {rule.group_id}; derived later")
                continue
            if resolved.quantity <= 0:
                continue

            package = self.catalog.package(resolved.package_id)
            product = select_product(
                rule,
                resolved.quantity,
                self.catalog,
                package_quality=package.quality_level if package else None,
                global_quality=self.global_quality,
                location_name=self.location_name,
            )
            if product is None:
                report(
                    logger, diagnostics, NO_PRODUCT,
                    f"No product for group {rule.group_id} (rule {rule.id}) at any quality level",
                    rule_id=rule.id, group_id=rule.group_id, instance_id=resolved.instance_id,
                )
                continue

            quantity = round_quantity(resolved.quantity)
            multiplier = hours_multiplier(list(rule.hours), resolved.env)
            key = line_item_id(resolved.instance_id, product.product_id)

            item = make_line_item(
                resolved.instance_id,
                resolved.package_id,
                package.name if package else "",
                product,
                quantity,
                multiplier=multiplier,
                calculated_quantity=resolved.quantity,
            )
            item.rule_ids.append(rule.id)
            existing = items.get(key)
            items[key] = item if existing is None else merge_line_items(existing, item)

        return list(items.values()), diagnostics
