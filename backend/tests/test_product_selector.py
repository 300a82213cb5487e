"""
test_product_selector.py — Unit tests for product variant selection.

Tests cover:
  - quantity-bucketed selector rules (first max >= quantity, else last rule)
  - static selected_product_id
  - quality fallback chain: global -> package -> Standard -> Basic
  - location availability filtering at every step
"""

from app.services.catalog_engine import Catalog, CatalogRule, parse_product_selector
from app.models.configurator_schema import PackageItemRule
from app.services.product_selector import (
    alternatives_for,
    bucket_product_id,
    quality_chain,
    select_product,
)


def _product(pid, quality, group="G", availability=None):
    return {
        "product_id": pid, "name": pid, "produkt_gruppe": group,
        "qualitaetsstufe": quality, "availability": availability or [],
    }


def _catalog(products):
    return Catalog.from_rows(packages=[{"id": 1, "name": "P"}], rules=[], products=products)


def _rule(selector=None, group="G"):
    return CatalogRule.from_rule(PackageItemRule(
        id=1, package_id=1, produkt_gruppe_id=group, product_selector=selector,
    ))


class TestQualityChain:

    def test_requested_then_fallback(self):
        assert quality_chain("Premium", None) == ["Premium", "Standard", "Basic"]

    def test_no_duplicates(self):
        assert quality_chain("Standard", "Standard") == ["Standard", "Basic"]
        assert quality_chain("Basic", "Premium") == ["Basic", "Premium", "Standard"]


class TestSelectorParsing:

    def test_based_on_shape(self):
        spec = parse_product_selector({
            "based_on": "calculated_quantity",
            "rules": [{"max": 8, "product_id": "S"}, {"product_id": "L"}],
        })
        assert spec.quantity_rules == ((8.0, "S"), (None, "L"))

    def test_keyed_shape(self):
        spec = parse_product_selector({"calculated_quantity": [{"max": "4", "product_id": "S"}]})
        assert spec.quantity_rules == ((4.0, "S"),)

    def test_static_shape(self):
        spec = parse_product_selector({"selected_product_id": "X"})
        assert spec.static_product_id == "X"
        assert spec.quantity_rules == ()

    def test_bucket_falls_back_to_last_rule(self):
        spec = parse_product_selector({"calculated_quantity": [
            {"max": 4, "product_id": "S"}, {"max": 8, "product_id": "M"},
        ]})
        assert bucket_product_id(spec, 3) == "S"
        assert bucket_product_id(spec, 8) == "M"
        assert bucket_product_id(spec, 20) == "M"


class TestSelectProduct:

    def test_bucket_rule_wins(self):
        catalog = _catalog([_product("S", "Standard"), _product("L", "Standard")])
        rule = _rule({"calculated_quantity": [{"max": 5, "product_id": "S"}, {"product_id": "L"}]})
        assert select_product(rule, 3, catalog).product_id == "S"
        assert select_product(rule, 6, catalog).product_id == "L"

    def test_static_id(self):
        catalog = _catalog([_product("A", "Standard"), _product("B", "Standard")])
        assert select_product(_rule({"selected_product_id": "B"}), 1, catalog).product_id == "B"

    def test_unavailable_static_falls_through_to_quality(self):
        catalog = _catalog([
            _product("A", "Standard"),
            _product("B", "Standard", availability=["München"]),
        ])
        product = select_product(_rule({"selected_product_id": "B"}), 1, catalog, location_name="Hamburg")
        assert product.product_id == "A"

    def test_unknown_static_falls_through(self):
        catalog = _catalog([_product("A", "Basic")])
        assert select_product(_rule({"selected_product_id": "ZZZ"}), 1, catalog).product_id == "A"

    def test_basic_only_selected_under_premium(self):
        """Premium and Standard both miss; Basic is still selected."""
        catalog = _catalog([_product("B", "Basic")])
        product = select_product(_rule(), 1, catalog, global_quality="Premium")
        assert product.product_id == "B"

    def test_global_quality_before_package_quality(self):
        catalog = _catalog([_product("S", "Standard"), _product("P", "Premium"), _product("B", "Basic")])
        assert select_product(_rule(), 1, catalog, package_quality="Premium",
                              global_quality="Basic").product_id == "B"
        assert select_product(_rule(), 1, catalog, package_quality="Premium").product_id == "P"
        assert select_product(_rule(), 1, catalog).product_id == "S"

    def test_location_filter(self):
        catalog = _catalog([
            _product("MUC", "Standard", availability=["München"]),
            _product("ALL", "Standard"),
        ])
        assert select_product(_rule(), 1, catalog, location_name="München").product_id == "MUC"
        assert select_product(_rule(), 1, catalog, location_name="Hamburg").product_id == "ALL"

    def test_no_product(self):
        catalog = _catalog([_product("X", "Standard", group="OTHER")])
        assert select_product(_rule(), 1, catalog) is None

    def test_unknown_quality_only_not_selected(self):
        catalog = _catalog([_product("X", "Luxus")])
        assert select_product(_rule(), 1, catalog) is None


class TestAlternatives:

    def test_alternatives_in_catalog_order(self):
        catalog = _catalog([
            _product("A", "Standard"), _product("B", "Premium"),
            _product("C", "Basic", availability=["München"]),
        ])
        ids = [p.product_id for p in alternatives_for(catalog, "G", "Hamburg")]
        assert ids == ["A", "B"]
        assert alternatives_for(catalog, None, "Hamburg") == []
