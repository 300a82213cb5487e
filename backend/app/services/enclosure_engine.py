"""
Enclosure Engine — sizes the distribution enclosure (Unterverteiler) from the
derived protection devices.

  slots = breakers × 1 + 1 (surge protection) + ceil(breakers / 6) × 3

The smallest tier of the 12/24/36/48/60 module ladder that fits is chosen.
An existing enclosure line item is switched to that tier's product; no
enclosure is ever created from nothing.
"""
import logging
import math
from typing import List, Optional, Tuple

from app.config import (
    BREAKER_GROUPS,
    BREAKER_SLOTS,
    BREAKERS_PER_RCD,
    ENCLOSURE_SLOT_LADDER,
    GROUP_ENCLOSURE,
    RCD_SLOTS,
    SURGE_PROTECTION_SLOTS,
)
from app.models.configurator_schema import Product
from app.services.catalog_engine import Catalog
from app.services.diagnostics import NO_ENCLOSURE_PRODUCT, Diagnostic, report
from app.services.line_item_engine import LineItem, with_product
from app.services.product_selector import quality_chain

logger = logging.getLogger("elektro-enclosure")


def count_breakers(protection_items: List[LineItem]) -> int:
    return sum(item.quantity for item in protection_items if item.produkt_gruppe in BREAKER_GROUPS)


def required_slots(total_breakers: int) -> int:
    if total_breakers <= 0:
        return 0
    rcd_count = math.ceil(total_breakers / BREAKERS_PER_RCD)
    return total_breakers * BREAKER_SLOTS + SURGE_PROTECTION_SLOTS + rcd_count * RCD_SLOTS


def select_tier(slots: int) -> int:
    for capacity in ENCLOSURE_SLOT_LADDER:
        if slots <= capacity:
            return capacity
    largest = ENCLOSURE_SLOT_LADDER[-1]
    logger.warning(f"{slots} module slots exceed the largest enclosure ({largest}); using {largest}")
    return largest


class EnclosureSizer:

    def __init__(
        self,
        catalog: Catalog,
        global_quality: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> None:
        self.catalog = catalog
        self.global_quality = global_quality
        self.location_name = location_name

    def _product_for_tier(self, tier: int, current_quality: Optional[str]) -> Optional[Product]:
        candidates = [
            p for p in self.catalog.products_in_group(GROUP_ENCLOSURE, self.location_name)
            if p.module_slots == tier
        ]
        for quality in quality_chain(current_quality, self.global_quality):
            for product in candidates:
                if product.qualitaetsstufe == quality:
                    return product
        return candidates[0] if candidates else None

    def resize(
        self,
        line_items: List[LineItem],
        protection_items: List[LineItem],
    ) -> Tuple[Optional[LineItem], List[Diagnostic]]:
        """
        Returns the resized copy of the first enclosure line item, or None when
        nothing changes (no breakers, no enclosure item, already the right size).
        """
        diagnostics: List[Diagnostic] = []
        total_breakers = count_breakers(protection_items)
        if total_breakers == 0:
            return None, diagnostics

        enclosure = next((i for i in line_items if i.produkt_gruppe == GROUP_ENCLOSURE), None)
        if enclosure is None:
            return None, diagnostics

        slots = required_slots(total_breakers)
        tier = select_tier(slots)
        product = self._product_for_tier(tier, enclosure.qualitaetsstufe)
        if product is None:
            report(
                logger, diagnostics, NO_ENCLOSURE_PRODUCT,
                f"No {tier}-module enclosure product for {slots} slots; enclosure left unchanged",
                slots=slots, tier=tier, item_id=enclosure.id,
            )
            return None, diagnostics

        if product.product_id == enclosure.product_id:
            return None, diagnostics

        logger.info(
            f"Enclosure {enclosure.id}: {total_breakers} breakers, {slots} slots -> "
            f"{tier} modules ({enclosure.product_id} -> {product.product_id})"
        )
        return with_product(enclosure, product), diagnostics
