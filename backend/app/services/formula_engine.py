"""
Formula Engine — normalizes and evaluates multiplier formula specs.

A formula spec (``multipliers_material`` / ``multipliers_hours``) arrives as
an object or an array of objects with mixed entry kinds:

  - lookup entry       {"baujahr_klasse": {"vor_1960": 4, "1960_1990": 2}}
  - product entry      {"raumgroesse*unterputz": 0.3}
  - group reference    {"type": "group_ref", "group_id": "GRP-SOC-SKT", "factor": 0.5}
  - floor (hours only) {"floor": 1.0}

Specs are parsed once at catalog-load time into the tagged entries below;
evaluation never raises and malformed entries contribute nothing.
"""
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger("elektro-formula")


@dataclass(frozen=True)
class LookupEntry:
    param: str
    table: Tuple[Tuple[str, float], ...]

    def delta_for(self, key: str) -> float:
        for k, v in self.table:
            if k == key:
                return v
        return 0.0


@dataclass(frozen=True)
class ProductTermEntry:
    params: Tuple[str, ...]
    coefficient: float


@dataclass(frozen=True)
class GroupRefEntry:
    group_id: str
    factor: float


@dataclass(frozen=True)
class FloorEntry:
    minimum: float


FormulaEntry = Union[LookupEntry, ProductTermEntry, GroupRefEntry, FloorEntry]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _as_number(value: Any) -> Optional[float]:
    """Numeric value of a coefficient; bools and non-finite values are rejected."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
        return f if math.isfinite(f) else None
    if isinstance(value, str):
        try:
            f = float(value.strip().replace(",", "."))
        except ValueError:
            return None
        return f if math.isfinite(f) else None
    return None


def _parse_object(obj: Mapping[str, Any]) -> List[FormulaEntry]:
    if obj.get("type") == "group_ref":
        group_id = obj.get("group_id")
        factor = _as_number(obj.get("factor", 1.0))
        if not isinstance(group_id, str) or not group_id or factor is None:
            logger.debug(f"Skipping malformed group_ref entry: {obj!r}")
            return []
        return [GroupRefEntry(group_id=group_id, factor=factor)]

    entries: List[FormulaEntry] = []
    for key, value in obj.items():
        if not isinstance(key, str) or not key.strip():
            continue
        if key == "floor":
            minimum = _as_number(value)
            if minimum is not None:
                entries.append(FloorEntry(minimum=minimum))
            continue
        if isinstance(value, Mapping):
            table = []
            for raw_key, raw_delta in value.items():
                delta = _as_number(raw_delta)
                if delta is not None:
                    table.append((str(raw_key), delta))
            entries.append(LookupEntry(param=key.strip(), table=tuple(table)))
            continue
        coefficient = _as_number(value)
        if coefficient is None:
            logger.debug(f"Skipping malformed formula entry {key!r}: {value!r}")
            continue
        params = tuple(p.strip() for p in key.split("*") if p.strip())
        if params:
            entries.append(ProductTermEntry(params=params, coefficient=coefficient))
    return entries


def parse_formula_spec(spec: Any) -> List[FormulaEntry]:
    """
    Normalize a raw formula spec (dict, list of dicts, JSON string or None)
    into a flat list of tagged entries. Anything unrecognised is dropped.
    """
    if spec is None:
        return []
    if isinstance(spec, str):
        try:
            spec = json.loads(spec)
        except ValueError:
            logger.debug(f"Formula spec is not valid JSON: {spec!r}")
            return []
    if isinstance(spec, Mapping):
        return _parse_object(spec)
    if isinstance(spec, (list, tuple)):
        entries: List[FormulaEntry] = []
        for element in spec:
            if isinstance(element, Mapping):
                entries.extend(_parse_object(element))
        return entries
    return []


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def stringify_param(value: Any) -> str:
    """Lookup-table key of a parameter value: true/false, integral floats without '.0'."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _factor_value(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    return _as_number(value)


def evaluate(
    entry: FormulaEntry,
    env: Mapping[str, Any],
    group_totals: Optional[Mapping[str, float]] = None,
) -> float:
    """Contribution of one entry under a parameter environment."""
    if isinstance(entry, LookupEntry):
        value = env.get(entry.param)
        if value is None:
            return 0.0
        return entry.delta_for(stringify_param(value))

    if isinstance(entry, ProductTermEntry):
        product = entry.coefficient
        for name in entry.params:
            factor = _factor_value(env.get(name))
            if factor is None:
                return 0.0
            product *= factor
        return product

    if isinstance(entry, GroupRefEntry):
        if group_totals is None:
            return 0.0
        return entry.factor * float(group_totals.get(entry.group_id, 0.0))

    return 0.0


def material_quantity(
    base: float,
    entries: List[FormulaEntry],
    env: Mapping[str, Any],
    group_totals: Optional[Mapping[str, float]] = None,
) -> float:
    """
    base + all parameter contributions; group references are only added when
    ``group_totals`` is given (second resolution pass).
    """
    quantity = float(base or 0.0)
    for entry in entries:
        if isinstance(entry, GroupRefEntry):
            if group_totals is not None:
                quantity += evaluate(entry, env, group_totals)
        elif not isinstance(entry, FloorEntry):
            quantity += evaluate(entry, env)
    return quantity


def hours_multiplier(entries: List[FormulaEntry], env: Mapping[str, Any]) -> float:
    """1.0 plus lookup/product contributions, then clamped up to the largest floor."""
    multiplier = 1.0
    floors: List[float] = []
    for entry in entries:
        if isinstance(entry, FloorEntry):
            floors.append(entry.minimum)
        elif isinstance(entry, (LookupEntry, ProductTermEntry)):
            multiplier += evaluate(entry, env)
    if floors:
        multiplier = max(multiplier, max(floors))
    return multiplier


def group_refs(entries: List[FormulaEntry]) -> Dict[str, float]:
    """Referenced group ids mapped to their summed factors."""
    refs: Dict[str, float] = {}
    for entry in entries:
        if isinstance(entry, GroupRefEntry):
            refs[entry.group_id] = refs.get(entry.group_id, 0.0) + entry.factor
    return refs
