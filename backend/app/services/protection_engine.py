"""
Protection Engine — derives Schutzorgane (breakers, RCDs, disconnect switch)
from the consumer counts of the resolved line items.

Engineering ratios (ceiling division):
  - 1-pole 16 A breaker per 8 sockets (double sockets count 2)
  - 1-pole 10 A breaker per 10 lights
  - 3-pole 16 A breaker per stove connection
  - RCD 40 A per 6 breakers
  - one main disconnect switch when any breaker is required
"""
import logging
import math
from typing import Dict, List, Optional, Tuple

from app.config import (
    BREAKERS_PER_RCD,
    GROUP_LIGHT_SWITCH,
    GROUP_LTS_35A,
    GROUP_MCB_B10,
    GROUP_MCB_B16,
    GROUP_MCB_B16_3P,
    GROUP_RCD_40A,
    GROUP_STOVE,
    LIGHTS_PER_BREAKER,
    PROTECTION_ID_PREFIX,
    PROTECTION_PACKAGE_ID,
    PROTECTION_PACKAGE_NAME,
    SOCKET_WEIGHTS,
    SOCKETS_PER_BREAKER,
)
from app.services.catalog_engine import Catalog
from app.services.diagnostics import NO_PROTECTION_PRODUCT, Diagnostic, report
from app.services.line_item_engine import LineItem, make_line_item, merge_line_items
from app.services.product_selector import quality_chain, select_by_quality

logger = logging.getLogger("elektro-protection")


def count_consumers(line_items: List[LineItem]) -> Dict[str, int]:
    counts = {"sockets": 0, "lights": 0, "stoves": 0}
    for item in line_items:
        if item.is_protection_device:
            continue
        group = item.produkt_gruppe
        if group in SOCKET_WEIGHTS:
            counts["sockets"] += item.quantity * SOCKET_WEIGHTS[group]
        elif group == GROUP_LIGHT_SWITCH:
            counts["lights"] += item.quantity
        elif group == GROUP_STOVE:
            counts["stoves"] += item.quantity
    return counts


def required_protection_devices(counts: Dict[str, int]) -> Dict[str, int]:
    """Quantity per protection group; groups with zero quantity are omitted."""
    ls_sockets = math.ceil(counts.get("sockets", 0) / SOCKETS_PER_BREAKER)
    ls_lights = math.ceil(counts.get("lights", 0) / LIGHTS_PER_BREAKER)
    ls_stoves = counts.get("stoves", 0)
    total_ls = ls_sockets + ls_lights + ls_stoves

    devices = {
        GROUP_MCB_B16: ls_sockets,
        GROUP_MCB_B10: ls_lights,
        GROUP_MCB_B16_3P: ls_stoves,
        GROUP_RCD_40A: math.ceil(total_ls / BREAKERS_PER_RCD),
        GROUP_LTS_35A: 1 if total_ls > 0 else 0,
    }
    return {group: qty for group, qty in devices.items() if qty > 0}


class ProtectionDeviceDeriver:
    """Pure derivation of protection-device line items from consumer line items."""

    def __init__(
        self,
        catalog: Catalog,
        global_quality: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> None:
        self.catalog = catalog
        self.global_quality = global_quality
        self.location_name = location_name

    def derive(self, line_items: List[LineItem]) -> Tuple[List[LineItem], List[Diagnostic]]:
        counts = count_consumers(line_items)
        devices = required_protection_devices(counts)
        logger.debug(f"Consumer counts {counts} -> protection devices {devices}")

        items: Dict[str, LineItem] = {}
        diagnostics: List[Diagnostic] = []
        qualities = quality_chain(self.global_quality)

        for group_id, quantity in devices.items():
            product = select_by_quality(self.catalog, group_id, qualities, self.location_name)
            if product is None:
                report(
                    logger, diagnostics, NO_PROTECTION_PRODUCT,
                    f"No product for protection group {group_id}; {quantity} units skipped",
                    group_id=group_id, quantity=quantity,
                )
                continue
            item = make_line_item(
                PROTECTION_ID_PREFIX,
                PROTECTION_PACKAGE_ID,
                PROTECTION_PACKAGE_NAME,
                product,
                quantity,
                is_protection_device=True,
            )
            existing = items.get(item.id)
            # two groups may resolve to the same product
            items[item.id] = item if existing is None else merge_line_items(existing, item)

        return list(items.values()), diagnostics
