"""
conftest.py — Shared pytest fixtures for the Elektro configurator test suite.

No database or external service fixtures are defined here. The sample
catalog is served through ``InMemoryProvider``; every test gets a fresh deep
copy so mutations never leak between tests.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import asyncio
import copy
import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Sample catalog
#
# Package 1 "Badezimmer Sanierung" with default parameters
# (raumgroesse = 10, baujahr_klasse = 1960_1990) resolves to:
#   GRP-SOC-SKT  2 + 0.3 × 10            = 5   -> SKT-STD
#   GRP-SWI-AUS  2                        = 2   -> SWI-BAS (only Basic exists)
#   GRP-DOSE     0.5 × pass-1 sockets (5) = 2.5 -> 3 × DOSE-STD
# Protection: 5 sockets -> 1 × B16, 2 lights -> 1 × B10, 1 × RCD, 1 × LTS.
#
# Package 3 "Unterverteilung" adds one enclosure (UV-12 via static selector).
# ---------------------------------------------------------------------------

def _enclosure(slots: int, price: float) -> dict:
    return {
        "product_id": f"UV-{slots}",
        "name": f"Unterverteiler {slots} TE",
        "unit_price": price,
        "produkt_gruppe": "GRP-VERT-UV",
        "qualitaetsstufe": "Standard",
        "stunden_meister": 1.0,
        "category": "Verteilung",
        "module_slots": slots,
    }


SAMPLE_CATALOG = {
    "packages": [
        {"id": 1, "name": "Badezimmer Sanierung", "category": "Sanierung"},
        {"id": 2, "name": "Wohnzimmer Premium", "category": "Sanierung", "quality_level": "Premium"},
        {"id": 3, "name": "Unterverteilung", "category": "Verteilung"},
    ],
    "package_items": [
        {
            "id": 1, "package_id": 1, "produkt_gruppe_id": "GRP-SOC-SKT", "quantity_base": 2,
            "multipliers_material": {"raumgroesse": 0.3},
            "multipliers_hours": [{"baujahr_klasse": {"vor_1960": 0.5}}, {"floor": 1.0}],
        },
        {"id": 2, "package_id": 1, "produkt_gruppe_id": "GRP-SWI-AUS", "quantity_base": 2},
        {
            "id": 3, "package_id": 1, "produkt_gruppe_id": "GRP-DOSE", "quantity_base": 0,
            "multipliers_material": [{"type": "group_ref", "group_id": "GRP-SOC-SKT", "factor": 0.5}],
        },
        {"id": 4, "package_id": 2, "produkt_gruppe_id": "GRP-SOC-SKT", "quantity_base": 4},
        {
            "id": 5, "package_id": 3, "produkt_gruppe_id": "GRP-VERT-UV", "quantity_base": 1,
            "product_selector": {"selected_product_id": "UV-12"},
        },
    ],
    "product_groups": [
        {"group_id": "GRP-SOC-SKT", "description": "Steckdose"},
        {"group_id": "GRP-SWI-AUS", "description": "Ausschalter"},
        {"group_id": "GRP-DOSE", "description": "Abzweigdose"},
        {"group_id": "GRP-VERT-UV", "description": "Unterverteiler"},
    ],
    "products": [
        {"product_id": "SKT-STD", "name": "Steckdose Standard", "unit_price": 5.0,
         "produkt_gruppe": "GRP-SOC-SKT", "qualitaetsstufe": "Standard",
         "stunden_geselle": 0.25, "category": "Installation"},
        {"product_id": "SKT-PRE", "name": "Steckdose Premium", "unit_price": 12.0,
         "produkt_gruppe": "GRP-SOC-SKT", "qualitaetsstufe": "Premium",
         "stunden_geselle": 0.25, "category": "Installation"},
        {"product_id": "SWI-BAS", "name": "Ausschalter Basic", "unit_price": 4.0,
         "produkt_gruppe": "GRP-SWI-AUS", "qualitaetsstufe": "Basic",
         "stunden_monteur": 0.2, "category": "Installation"},
        {"product_id": "DOSE-STD", "name": "Abzweigdose", "unit_price": 1.5,
         "produkt_gruppe": "GRP-DOSE", "qualitaetsstufe": "Standard", "category": "Material"},
        {"product_id": "MCB16-STD", "name": "LS-Schalter B16", "unit_price": 8.0,
         "produkt_gruppe": "GRP-MCB-B16", "qualitaetsstufe": "Standard",
         "stunden_meister": 0.1, "category": "Schutzorgane"},
        {"product_id": "MCB10-STD", "name": "LS-Schalter B10", "unit_price": 7.5,
         "produkt_gruppe": "GRP-MCB-B10", "qualitaetsstufe": "Standard", "category": "Schutzorgane"},
        {"product_id": "MCB16-3P-STD", "name": "LS-Schalter B16 3-polig", "unit_price": 25.0,
         "produkt_gruppe": "GRP-MCB-B16-3P", "qualitaetsstufe": "Standard", "category": "Schutzorgane"},
        {"product_id": "RCD-STD", "name": "FI-Schutzschalter 40A", "unit_price": 45.0,
         "produkt_gruppe": "GRP-RCD-40A", "qualitaetsstufe": "Standard", "category": "Schutzorgane"},
        {"product_id": "LTS-STD", "name": "Lasttrennschalter 35A", "unit_price": 30.0,
         "produkt_gruppe": "GRP-LTS-35A", "qualitaetsstufe": "Standard", "category": "Schutzorgane"},
        _enclosure(12, 60.0),
        _enclosure(24, 90.0),
        _enclosure(36, 120.0),
        _enclosure(48, 150.0),
        _enclosure(60, 180.0),
    ],
    "parameter_definitions": [
        {"param_key": "qualitaetsstufe", "label": "Qualitätsstufe", "param_type": "select",
         "default_value": "Standard", "is_global": True, "options": ["Basic", "Standard", "Premium"]},
        {"param_key": "baujahr_klasse", "label": "Baujahr", "param_type": "select",
         "default_value": "1960_1990", "is_global": True,
         "options": ["vor_1960", "1960_1990", "nach_1990"]},
        {"param_key": "raumgroesse", "label": "Raumgröße", "param_type": "number",
         "unit": "m²", "default_value": "10"},
        {"param_key": "unterputz", "label": "Unterputz", "param_type": "boolean",
         "default_value": "true", "label_true": "Unterputz", "label_false": "Aufputz"},
    ],
    "parameter_links": [
        {"package_id": 1, "param_key": "raumgroesse"},
        {"package_id": 1, "param_key": "unterputz"},
        {"package_id": 2, "param_key": "raumgroesse"},
    ],
    "labor_rates": [
        {"loc_id": "1", "stundensatz_meister": 80.0, "stundensatz_geselle": 60.0,
         "stundensatz_monteur": 45.0},
    ],
    "global_markup_pct": 40.0,
    "product_prices": [
        {"product_id": "SKT-STD", "base_price": 6.0, "factors": {"Hamburg": 1.1, "München": 1.25}},
        {"product_id": "MCB16-STD", "base_price": 9.0, "factors": {}},
    ],
    "locations": [
        {"loc_id": "1", "name": "Hamburg"},
        {"loc_id": "2", "name": "München"},
    ],
    "current_location_id": "1",
}


@pytest.fixture
def catalog_data():
    """Fresh deep copy of the sample catalog rows."""
    return copy.deepcopy(SAMPLE_CATALOG)


@pytest.fixture
def catalog(catalog_data):
    from app.services.catalog_engine import Catalog
    return Catalog.from_rows(
        catalog_data["packages"],
        catalog_data["package_items"],
        catalog_data["products"],
        catalog_data["product_groups"],
        catalog_data["parameter_definitions"],
        catalog_data["parameter_links"],
    )


@pytest.fixture
def provider(catalog_data):
    from app.services.providers import InMemoryProvider
    return InMemoryProvider(catalog_data)


@pytest.fixture
def session(provider):
    """ConfiguratorSession loaded from the sample catalog at Hamburg (loc 1)."""
    from app.services.configurator_session import ConfiguratorSession
    return asyncio.run(ConfiguratorSession.load(provider))
