"""
test_catalog_repository.py — Mapping tests for the offers_* ORM models and
the row conversion used by SqlCatalogProvider.

Only in-memory ORM instances are used; no database connection is made.
"""

from decimal import Decimal

from app.db import Base
from app.db.catalog_repository import (
    SqlCatalogProvider,
    parameter_row,
    parse_markup,
    price_row,
    product_row,
    row_to_dict,
)
from app.models.configurator_schema import PackageItemRule, ParameterDefinition, Product, ProductPrice
from app.models.orm_models import (
    OfferPackageItem,
    OfferParameterDefinition,
    OfferProduct,
    OfferProductPrice,
)
from app.services.catalog_engine import CatalogRule


class TestTables:

    def test_offers_tables_registered(self):
        expected = {
            "offers_packages",
            "offers_package_items",
            "offers_product_groups",
            "offers_products",
            "offers_package_parameter_definitions",
            "offers_package_parameter_links",
            "offers_locations",
            "offers_labor_rates",
            "offers_product_prices",
            "offers_settings",
        }
        assert expected <= set(Base.metadata.tables)


class TestRowConversion:

    def test_product_row_validates(self):
        row = OfferProduct(
            product_id="SKT-STD", name="Steckdose", unit="Stk", unit_price=Decimal("5.20"),
            produkt_gruppe="GRP-SOC-SKT", qualitaetsstufe="Standard",
            stunden_meister=Decimal("0"), stunden_geselle=Decimal("0.250"), stunden_monteur=Decimal("0"),
            category="Installation", availability=None, module_slots=None,
        )
        data = product_row(row)
        assert data["unit_price"] == 5.2
        assert isinstance(data["stunden_geselle"], float)
        assert data["availability"] == []
        product = Product.model_validate(data)
        assert product.hours_for("geselle") == 0.25

    def test_package_item_json_specs_survive(self):
        row = OfferPackageItem(
            id=1, package_id=1, produkt_gruppe_id="GRP-DOSE", quantity_base=Decimal("0"),
            multipliers_material=[{"type": "group_ref", "group_id": "GRP-SOC-SKT", "factor": 0.5}],
            multipliers_hours={"floor": 1.0},
            product_selector={"selected_product_id": "DOSE-STD"},
        )
        rule = CatalogRule.from_rule(PackageItemRule.model_validate(row_to_dict(row)))
        assert len(rule.material) == 1
        assert rule.selector.static_product_id == "DOSE-STD"

    def test_parameter_row_options(self):
        row = OfferParameterDefinition(
            param_key="baujahr_klasse", label="Baujahr", param_type="select",
            default_value="1960_1990", is_global=True, options=["vor_1960", "1960_1990"],
        )
        definition = ParameterDefinition.model_validate(parameter_row(row))
        assert definition.options == ["vor_1960", "1960_1990"]
        assert definition.is_global

    def test_price_row_factors(self):
        row = OfferProductPrice(
            product_id="SKT-STD", base_price=Decimal("6.00"), factors={"Hamburg": 1.1, "Berlin": None},
        )
        price = ProductPrice.model_validate(price_row(row))
        assert price.base_price == 6.0
        assert price.factors == {"Hamburg": 1.1}


class TestMarkupSetting:

    def test_parse_markup(self):
        assert parse_markup("40") == 40.0
        assert parse_markup("37,5") == 37.5
        assert parse_markup(None) == 0.0
        assert parse_markup("viel") == 0.0


class TestProviderShape:

    def test_implements_all_provider_methods(self):
        provider = SqlCatalogProvider(session_factory=None)
        for name in (
            "get_packages", "get_package_items", "get_product_groups", "get_products",
            "get_parameter_definitions", "get_parameter_links", "get_labor_rates",
            "get_global_markup", "get_product_prices", "get_locations", "get_current_location_id",
        ):
            assert callable(getattr(provider, name))

    def test_api_provider_is_only_database_entry_point(self):
        import app.db as db
        from app.api.configurator_routes import get_provider
        provider = get_provider()
        assert isinstance(provider, SqlCatalogProvider)
        assert provider.session_factory is db.AsyncSessionLocal
        assert not hasattr(db, "get_db")
