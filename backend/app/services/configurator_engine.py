"""
Configurator pipeline — pure resolution of (instances, parameters, catalog)
into line items.

    quantities → product selection → line items
        → protection devices → enclosure resize

``resolve`` runs the stages back to back, with an optional hook where the session
overlay (removals, swaps, quantities) is merged in between stages. Nothing
here performs I/O or keeps state between calls.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.config import GLOBAL_QUALITY_PARAM
from app.services.catalog_engine import Catalog
from app.services.diagnostics import Diagnostic
from app.services.enclosure_engine import EnclosureSizer
from app.services.line_item_engine import LineItem, LineItemBuilder
from app.services.protection_engine import ProtectionDeviceDeriver
from app.services.quantity_engine import PackageInstance, QuantityResolution, QuantityResolver

logger = logging.getLogger("elektro-pipeline")


@dataclass
class ConfiguratorInputs:
    instances: List[PackageInstance] = field(default_factory=list)
    global_params: Dict[str, Any] = field(default_factory=dict)
    location_name: Optional[str] = None

    @property
    def global_quality(self) -> Optional[str]:
        value = self.global_params.get(GLOBAL_QUALITY_PARAM)
        return str(value) if value else None


@dataclass
class ConfiguratorResult:
    line_items: List[LineItem]
    protection_items: List[LineItem]
    quantities: QuantityResolution
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def all_items(self) -> List[LineItem]:
        return self.line_items + self.protection_items


def resolve_line_items(
    inputs: ConfiguratorInputs, catalog: Catalog
) -> Tuple[List[LineItem], QuantityResolution, List[Diagnostic]]:
    resolution = QuantityResolver(catalog).resolve_all(inputs.instances, inputs.global_params)
    builder = LineItemBuilder(catalog, inputs.global_quality, inputs.location_name)
    items, diagnostics = builder.build(resolution)
    return items, resolution, resolution.diagnostics + diagnostics


def derive_protection_items(
    line_items: List[LineItem], inputs: ConfiguratorInputs, catalog: Catalog
) -> Tuple[List[LineItem], List[Diagnostic]]:
    deriver = ProtectionDeviceDeriver(catalog, inputs.global_quality, inputs.location_name)
    return deriver.derive(line_items)


def resize_enclosure(
    line_items: List[LineItem],
    protection_items: List[LineItem],
    inputs: ConfiguratorInputs,
    catalog: Catalog,
) -> Tuple[List[LineItem], List[Diagnostic]]:
    """Line items with the enclosure item replaced by its resized copy, if any."""
    sizer = EnclosureSizer(catalog, inputs.global_quality, inputs.location_name)
    resized, diagnostics = sizer.resize(line_items, protection_items)
    if resized is None:
        return line_items, diagnostics
    return [resized if item.id == resized.id else item for item in line_items], diagnostics


def resolve(
    inputs: ConfiguratorInputs,
    catalog: Catalog,
    structure: Optional[Callable[[List[LineItem]], List[LineItem]]] = None,
) -> ConfiguratorResult:
    """
    Full resolution pass. ``structure`` (removals, swaps, manual quantities)
    is applied to the consumer items before protection devices are derived,
    and to the protection items before the enclosure is sized.
    """
    line_items, resolution, diagnostics = resolve_line_items(inputs, catalog)
    if structure is not None:
        line_items = structure(line_items)
    protection_items, protection_diag = derive_protection_items(line_items, inputs, catalog)
    if structure is not None:
        protection_items = structure(protection_items)
    line_items, enclosure_diag = resize_enclosure(line_items, protection_items, inputs, catalog)
    diagnostics = diagnostics + protection_diag + enclosure_diag
    logger.debug(
        f"Resolved {len(line_items)} line items, {len(protection_items)} protection items, "
        f"{len(diagnostics)} diagnostics"
    )
    return ConfiguratorResult(
        line_items=line_items,
        protection_items=protection_items,
        quantities=resolution,
        diagnostics=diagnostics,
    )
