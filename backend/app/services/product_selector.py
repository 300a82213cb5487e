"""
Product Selector — picks the concrete product variant for a resolved rule.

Resolution order (first match wins):
  1. quantity-bucketed selector rules (first rule whose max >= quantity, else the last rule)
  2. static selected_product_id from the selector metadata
  3. group + requested global quality
  4. group + package quality level
  5. group + "Standard"
  6. group + "Basic"
Every step is filtered by location availability.
"""
import logging
from typing import Iterable, List, Optional

from app.config import QUALITY_FALLBACK
from app.models.configurator_schema import Product
from app.services.catalog_engine import Catalog, CatalogRule, SelectorSpec, is_available

logger = logging.getLogger("elektro-selector")


def quality_chain(*requested: Optional[str]) -> List[str]:
    """Requested tiers followed by the fallback tiers, without blanks or repeats."""
    chain: List[str] = []
    for level in list(requested) + QUALITY_FALLBACK:
        if level and level not in chain:
            chain.append(level)
    return chain


def bucket_product_id(selector: SelectorSpec, calculated_quantity: float) -> Optional[str]:
    if not selector.quantity_rules:
        return None
    for max_value, product_id in selector.quantity_rules:
        if max_value is None or max_value >= calculated_quantity:
            return product_id
    return selector.quantity_rules[-1][1]


def select_by_quality(
    catalog: Catalog,
    group_id: str,
    qualities: Iterable[str],
    location_name: Optional[str],
) -> Optional[Product]:
    candidates = catalog.products_in_group(group_id, location_name)
    for quality in qualities:
        for product in candidates:
            if product.qualitaetsstufe == quality:
                return product
    return None


def _available_by_id(catalog: Catalog, product_id: str, location_name: Optional[str]) -> Optional[Product]:
    product = catalog.product(product_id)
    if product is None:
        logger.debug(f"Selector product {product_id} not in catalog")
        return None
    if not is_available(product, location_name):
        logger.debug(f"Selector product {product_id} not available at {location_name}")
        return None
    return product


def select_product(
    rule: CatalogRule,
    calculated_quantity: float,
    catalog: Catalog,
    package_quality: Optional[str] = None,
    global_quality: Optional[str] = None,
    location_name: Optional[str] = None,
) -> Optional[Product]:
    selector = rule.selector

    bucket_id = bucket_product_id(selector, calculated_quantity)
    if bucket_id:
        product = _available_by_id(catalog, bucket_id, location_name)
        if product is not None:
            return product

    if selector.static_product_id:
        product = _available_by_id(catalog, selector.static_product_id, location_name)
        if product is not None:
            return product

    return select_by_quality(
        catalog,
        rule.group_id,
        quality_chain(global_quality, package_quality),
        location_name,
    )


def alternatives_for(catalog: Catalog, group_id: Optional[str], location_name: Optional[str]) -> List[Product]:
    """Location-available products of a group, in catalog order."""
    if not group_id:
        return []
    return catalog.products_in_group(group_id, location_name)
