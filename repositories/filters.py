"""
Closed set of query conditions.

Every lookup in the repository layer is expressed as a sequence of these
frozen dataclasses. The same conditions compile to a MongoDB query document
(to_mongo_query) and evaluate against plain dicts (matches), which is what
in-memory stores and per-event webhook filters use.

Field names may be dotted (``usage_stats.total_requests``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Union, assert_never


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class Ne:
    field: str
    value: Any


@dataclass(frozen=True)
class In:
    field: str
    values: tuple


@dataclass(frozen=True)
class Contains:
    """Array field contains ``value``."""

    field: str
    value: Any


@dataclass(frozen=True)
class Gt:
    field: str
    value: Any


@dataclass(frozen=True)
class Gte:
    field: str
    value: Any


@dataclass(frozen=True)
class Lt:
    field: str
    value: Any


@dataclass(frozen=True)
class Lte:
    field: str
    value: Any


@dataclass(frozen=True)
class Exists:
    field: str
    present: bool = True


Filter = Union[Eq, Ne, In, Contains, Gt, Gte, Lt, Lte, Exists]

_MISSING = object()


def _condition(f: Filter) -> tuple[str, Any]:
    match f:
        case Eq(field=field, value=value):
            return field, {"$eq": value}
        case Ne(field=field, value=value):
            return field, {"$ne": value}
        case In(field=field, values=values):
            return field, {"$in": list(values)}
        case Contains(field=field, value=value):
            # Equality against an array field matches any element
            return field, {"$elemMatch": {"$eq": value}}
        case Gt(field=field, value=value):
            return field, {"$gt": value}
        case Gte(field=field, value=value):
            return field, {"$gte": value}
        case Lt(field=field, value=value):
            return field, {"$lt": value}
        case Lte(field=field, value=value):
            return field, {"$lte": value}
        case Exists(field=field, present=present):
            return field, {"$exists": present}
        case _:
            assert_never(f)


def to_mongo_query(filters: Sequence[Filter]) -> dict[str, Any]:
    """Compile *filters* (AND-ed) into a MongoDB query document.

    A field constrained by a single Eq compiles to a plain equality so upserts
    copy it into the inserted document.
    """
    by_field: dict[str, dict[str, Any]] = {}
    for f in filters:
        field, cond = _condition(f)
        by_field.setdefault(field, {}).update(cond)
    return {
        field: cond["$eq"] if list(cond) == ["$eq"] else cond
        for field, cond in by_field.items()
    }


def get_field(doc: Mapping[str, Any], dotted: str) -> Any:
    current: Any = doc
    for part in dotted.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _compare(actual: Any, expected: Any, op) -> bool:
    if actual is _MISSING or actual is None:
        return False
    try:
        return bool(op(actual, expected))
    except TypeError:
        return False


def matches_one(doc: Mapping[str, Any], f: Filter) -> bool:
    """Evaluate a single condition against *doc*."""
    match f:
        case Eq(field=field, value=value):
            return get_field(doc, field) == value
        case Ne(field=field, value=value):
            return get_field(doc, field) != value
        case In(field=field, values=values):
            return get_field(doc, field) in values
        case Contains(field=field, value=value):
            actual = get_field(doc, field)
            return isinstance(actual, (list, tuple)) and value in actual
        case Gt(field=field, value=value):
            return _compare(get_field(doc, field), value, lambda a, b: a > b)
        case Gte(field=field, value=value):
            return _compare(get_field(doc, field), value, lambda a, b: a >= b)
        case Lt(field=field, value=value):
            return _compare(get_field(doc, field), value, lambda a, b: a < b)
        case Lte(field=field, value=value):
            return _compare(get_field(doc, field), value, lambda a, b: a <= b)
        case Exists(field=field, present=present):
            return (get_field(doc, field) is not _MISSING) is present
        case _:
            assert_never(f)


def matches(doc: Mapping[str, Any], filters: Sequence[Filter]) -> bool:
    """True when *doc* satisfies every condition in *filters*."""
    return all(matches_one(doc, f) for f in filters)


_OPERATORS = {
    "eq": Eq,
    "ne": Ne,
    "contains": Contains,
    "gt": Gt,
    "gte": Gte,
    "lt": Lt,
    "lte": Lte,
}


def parse_filter(spec: Mapping[str, Any]) -> Filter:
    """Build a Filter from a stored spec such as
    ``{"op": "gte", "field": "severity_score", "value": 0.8}``.

    Raises:
        ValueError: unknown operator or missing keys.
    """
    op = spec.get("op")
    field = spec.get("field")
    if not isinstance(field, str) or not field:
        raise ValueError("filter requires a non-empty 'field'")
    if op == "in":
        values = spec.get("values")
        if not isinstance(values, (list, tuple)):
            raise ValueError("'in' filter requires a 'values' list")
        return In(field, tuple(values))
    if op == "exists":
        return Exists(field, bool(spec.get("value", True)))
    if op not in _OPERATORS:
        raise ValueError(f"unknown filter operator: {op!r}")
    if "value" not in spec:
        raise ValueError(f"'{op}' filter requires a 'value'")
    return _OPERATORS[op](field, spec["value"])
