"""
test_quantity_engine.py — Unit tests for two-pass quantity resolution.

Tests cover:
  - base + parameter contributions, global/local parameter merge
  - group references against pass-1 totals, independent of rule order
  - negative direct quantities clamped to 0 in group totals
  - cyclic group references ignored and reported
  - unknown package instances reported and skipped
"""

import pytest

from app.services.catalog_engine import Catalog
from app.services.diagnostics import GROUP_REF_CYCLE, UNKNOWN_PACKAGE
from app.services.quantity_engine import (
    PackageInstance,
    QuantityResolver,
    find_cyclic_edges,
    merge_env,
)


def _catalog(rules):
    return Catalog.from_rows(
        packages=[{"id": 1, "name": "Test"}],
        rules=rules,
        products=[{"product_id": "P", "name": "P", "produkt_gruppe": "A"}],
    )


def _quantities(resolution):
    return {r.rule.id: r.quantity for r in resolution.rules}


class TestMergeEnv:

    def test_local_overrides_global(self):
        env = merge_env({"raumgroesse": 10, "qualitaetsstufe": "Standard"}, {"raumgroesse": 20})
        assert env == {"raumgroesse": 20, "qualitaetsstufe": "Standard"}


class TestDirectQuantities:

    def test_sample_package_defaults(self, catalog):
        instance = PackageInstance("i1", 1, catalog.default_instance_params(1))
        resolution = QuantityResolver(catalog).resolve_all([instance], catalog.default_global_params())
        q = _quantities(resolution)
        assert q[1] == pytest.approx(5.0)    # 2 + 0.3 × 10
        assert q[2] == pytest.approx(2.0)
        assert q[3] == pytest.approx(2.5)    # 0.5 × 5

    def test_scenario_raumgroesse_20(self, catalog):
        """Rule base 2, {raumgroesse: 0.3}, raumgroesse = 20 -> 8."""
        instance = PackageInstance("i1", 1, {"raumgroesse": 20})
        resolution = QuantityResolver(catalog).resolve_all([instance], {"qualitaetsstufe": "Standard"})
        assert _quantities(resolution)[1] == pytest.approx(8.0)

    def test_group_totals_sum_over_instances(self, catalog):
        instances = [
            PackageInstance("i1", 1, {"raumgroesse": 10}),
            PackageInstance("i2", 1, {"raumgroesse": 20}),
        ]
        resolution = QuantityResolver(catalog).resolve_all(instances, {})
        assert resolution.quantity_for("GRP-SOC-SKT") == pytest.approx(5.0 + 8.0)
        # each junction-box rule reads the combined pass-1 socket total
        assert resolution.quantity_for("GRP-DOSE") == pytest.approx(2 * 0.5 * 13.0)


class TestGroupReferences:

    RULE_A = {"id": 10, "package_id": 1, "produkt_gruppe_id": "A", "quantity_base": 10}
    RULE_B = {
        "id": 11, "package_id": 1, "produkt_gruppe_id": "B", "quantity_base": 1,
        "multipliers_material": [{"type": "group_ref", "group_id": "A", "factor": 0.5}],
    }

    @pytest.mark.parametrize("order", [("a", "b"), ("b", "a")])
    def test_order_independent(self, order):
        """B = base_B + 0.5 × 10 = 6 regardless of rule iteration order."""
        rules = {"a": self.RULE_A, "b": self.RULE_B}
        catalog = _catalog([rules[k] for k in order])
        resolution = QuantityResolver(catalog).resolve_all([PackageInstance("i", 1)], {})
        assert _quantities(resolution)[11] == pytest.approx(6.0)
        assert resolution.reference_totals["A"] == pytest.approx(10.0)

    def test_negative_direct_quantity_clamped_in_totals(self):
        rules = [
            {"id": 1, "package_id": 1, "produkt_gruppe_id": "A", "quantity_base": 1,
             "multipliers_material": {"abzug": -1}},
            {"id": 2, "package_id": 1, "produkt_gruppe_id": "B", "quantity_base": 0,
             "multipliers_material": [{"type": "group_ref", "group_id": "A", "factor": 1}]},
        ]
        resolution = QuantityResolver(_catalog(rules)).resolve_all(
            [PackageInstance("i", 1, {"abzug": 5})], {}
        )
        assert resolution.rules[0].quantity == pytest.approx(-4.0)
        assert resolution.reference_totals["A"] == 0.0
        assert resolution.quantity_for("B") == 0.0

    def test_cycle_is_reported_and_ignored(self):
        rules = [
            {"id": 1, "package_id": 1, "produkt_gruppe_id": "A", "quantity_base": 2,
             "multipliers_material": [{"type": "group_ref", "group_id": "B", "factor": 1}]},
            {"id": 2, "package_id": 1, "produkt_gruppe_id": "B", "quantity_base": 3,
             "multipliers_material": [{"type": "group_ref", "group_id": "A", "factor": 1}]},
        ]
        resolution = QuantityResolver(_catalog(rules)).resolve_all([PackageInstance("i", 1)], {})
        assert _quantities(resolution) == {1: 2.0, 2: 3.0}
        codes = [d.code for d in resolution.diagnostics]
        assert codes.count(GROUP_REF_CYCLE) == 2

    def test_find_cyclic_edges(self):
        edges = {("A", "B"), ("B", "A"), ("C", "A"), ("D", "D")}
        assert find_cyclic_edges(edges) == {("A", "B"), ("B", "A"), ("D", "D")}


class TestUnknownPackage:

    def test_unknown_package_is_skipped(self, catalog):
        resolution = QuantityResolver(catalog).resolve_all([PackageInstance("x", 99)], {})
        assert resolution.rules == []
        assert [d.code for d in resolution.diagnostics] == [UNKNOWN_PACKAGE]

    def test_deterministic(self, catalog):
        instances = [PackageInstance("i1", 1, {"raumgroesse": 14}), PackageInstance("i2", 2, {})]
        first = QuantityResolver(catalog).resolve_all(instances, {})
        second = QuantityResolver(catalog).resolve_all(instances, {})
        assert _quantities(first) == _quantities(second)
        assert first.group_totals == second.group_totals
