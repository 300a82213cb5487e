"""
Quantity Engine — resolves package-item rules into calculated quantities.

Two passes over every rule of every selected package instance:

  1. base + parameter terms; max(0, q) accumulated per product group
  2. same again plus group-reference terms read from the pass-1 totals

Pass 2 is the quantity used for line items. Group-reference terms that close
a cycle in the reference graph contribute 0 and are reported.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Set, Tuple

from app.services.catalog_engine import Catalog, CatalogRule
from app.services.diagnostics import GROUP_REF_CYCLE, UNKNOWN_PACKAGE, Diagnostic, report
from app.services.formula_engine import FormulaEntry, GroupRefEntry, group_refs, material_quantity

logger = logging.getLogger("elektro-quantity")


@dataclass
class PackageInstance:
    instance_id: str
    package_id: int
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResolvedRule:
    instance_id: str
    package_id: int
    rule: CatalogRule
    env: Dict[str, Any]
    direct_quantity: float      # pass 1 (no group references)
    quantity: float             # pass 2


@dataclass
class QuantityResolution:
    rules: List[ResolvedRule] = field(default_factory=list)
    reference_totals: Dict[str, float] = field(default_factory=dict)
    group_totals: Dict[str, float] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def quantity_for(self, group_id: str) -> float:
        return self.group_totals.get(group_id, 0.0)


def merge_env(global_params: Mapping[str, Any], instance_params: Mapping[str, Any]) -> Dict[str, Any]:
    """Global parameters overlaid with the instance's local parameters."""
    env = dict(global_params)
    env.update(instance_params)
    return env


def find_cyclic_edges(edges: Set[Tuple[str, str]]) -> Set[Tuple[str, str]]:
    """Edges (a -> b) where a is reachable again from b, self-references included."""
    graph: Dict[str, Set[str]] = {}
    for a, b in edges:
        graph.setdefault(a, set()).add(b)

    def reachable(start: str) -> Set[str]:
        seen: Set[str] = set()
        stack = [start]
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(graph.get(node, ()))
        return seen

    return {(a, b) for a, b in edges if a in reachable(b)}


class QuantityResolver:
    """Deterministic two-pass quantity resolution over a fixed catalog snapshot."""

    def __init__(self, catalog: Catalog) -> None:
        self.catalog = catalog

    def resolve_all(
        self,
        instances: List[PackageInstance],
        global_params: Mapping[str, Any],
    ) -> QuantityResolution:
        resolution = QuantityResolution()

        selected: List[Tuple[PackageInstance, CatalogRule, Dict[str, Any]]] = []
        for instance in instances:
            if self.catalog.package(instance.package_id) is None:
                report(
                    logger, resolution.diagnostics, UNKNOWN_PACKAGE,
                    f"Instance {instance.instance_id} references unknown package {instance.package_id}",
                    instance_id=instance.instance_id, package_id=instance.package_id,
                )
                continue
            env = merge_env(global_params, instance.params)
            for rule in self.catalog.rules_for(instance.package_id):
                selected.append((instance, rule, env))

        entries_by_rule = self._break_cycles(selected, resolution.diagnostics)

        # Pass 1: direct parameters only
        direct: List[float] = []
        for instance, rule, env in selected:
            q = material_quantity(rule.quantity_base, list(rule.material), env)
            direct.append(q)
            totals = resolution.reference_totals
            totals[rule.group_id] = totals.get(rule.group_id, 0.0) + max(0.0, q)

        # Pass 2: group references read from pass-1 totals
        for (instance, rule, env), q1 in zip(selected, direct):
            entries = entries_by_rule.get(rule.id, list(rule.material))
            q2 = material_quantity(rule.quantity_base, entries, env, resolution.reference_totals)
            resolution.rules.append(ResolvedRule(
                instance_id=instance.instance_id,
                package_id=instance.package_id,
                rule=rule,
                env=env,
                direct_quantity=q1,
                quantity=q2,
            ))
            totals = resolution.group_totals
            totals[rule.group_id] = totals.get(rule.group_id, 0.0) + max(0.0, q2)

        logger.debug(
            f"Resolved {len(resolution.rules)} rules across {len(instances)} instances, "
            f"{len(resolution.group_totals)} groups"
        )
        return resolution

    def _break_cycles(
        self,
        selected: List[Tuple[PackageInstance, CatalogRule, Dict[str, Any]]],
        diagnostics: List[Diagnostic],
    ) -> Dict[int, List[FormulaEntry]]:
        """Material entries per rule id with cyclic group references removed."""
        edges: Set[Tuple[str, str]] = set()
        for _, rule, _ in selected:
            for ref_group in group_refs(list(rule.material)):
                edges.add((rule.group_id, ref_group))
        if not edges:
            return {}

        cyclic = find_cyclic_edges(edges)
        for a, b in sorted(cyclic):
            report(
                logger, diagnostics, GROUP_REF_CYCLE,
                f"Group reference {a} -> {b} is part of a cycle; term ignored",
                group_id=a, referenced_group_id=b,
            )

        entries_by_rule: Dict[int, List[FormulaEntry]] = {}
        for _, rule, _ in selected:
            if rule.id in entries_by_rule:
                continue
            entries_by_rule[rule.id] = [
                e for e in rule.material
                if not (isinstance(e, GroupRefEntry) and (rule.group_id, e.group_id) in cyclic)
            ]
        return entries_by_rule
