"""
Storage-neutral row predicates.

A compiled row filter is a small boolean tree over record fields. It is
evaluated in memory by ``evaluate`` and translated to SQL by
``scopeguard.db.predicates.to_sql``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class MatchAll:
    pass


@dataclass(frozen=True)
class MatchNone:
    pass


@dataclass(frozen=True)
class FieldEquals:
    field: str
    value: Any


@dataclass(frozen=True)
class FieldIn:
    field: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class And:
    children: tuple[Predicate, ...]


@dataclass(frozen=True)
class Or:
    children: tuple[Predicate, ...]


Predicate = Union[MatchAll, MatchNone, FieldEquals, FieldIn, And, Or]

MATCH_ALL = MatchAll()
MATCH_NONE = MatchNone()


def and_(*children: Predicate) -> Predicate:
    """Conjunction with MatchAll dropped and MatchNone short-circuiting."""
    kept: list[Predicate] = []
    for child in children:
        if isinstance(child, MatchNone):
            return MATCH_NONE
        if isinstance(child, MatchAll):
            continue
        kept.append(child)
    if not kept:
        return MATCH_ALL
    if len(kept) == 1:
        return kept[0]
    return And(tuple(kept))


def or_(*children: Predicate) -> Predicate:
    """Disjunction with MatchNone dropped and MatchAll short-circuiting."""
    kept: list[Predicate] = []
    for child in children:
        if isinstance(child, MatchAll):
            return MATCH_ALL
        if isinstance(child, MatchNone):
            continue
        kept.append(child)
    if not kept:
        return MATCH_NONE
    if len(kept) == 1:
        return kept[0]
    return Or(tuple(kept))


def field_in(field: str, values: Iterable[Any]) -> Predicate:
    unique = tuple(dict.fromkeys(values))
    if not unique:
        return MATCH_NONE
    if len(unique) == 1:
        return FieldEquals(field, unique[0])
    return FieldIn(field, unique)


def evaluate(predicate: Predicate, record: Mapping[str, Any]) -> bool:
    """
    Evaluate a predicate against an in-memory record.

    A field missing from the record never matches.
    """
    if isinstance(predicate, MatchAll):
        return True
    if isinstance(predicate, MatchNone):
        return False
    if isinstance(predicate, FieldEquals):
        return predicate.field in record and record[predicate.field] == predicate.value
    if isinstance(predicate, FieldIn):
        return predicate.field in record and record[predicate.field] in predicate.values
    if isinstance(predicate, And):
        return all(evaluate(c, record) for c in predicate.children)
    if isinstance(predicate, Or):
        return any(evaluate(c, record) for c in predicate.children)
    raise TypeError(f"Unsupported predicate: {predicate!r}")


def to_dict(predicate: Predicate) -> dict[str, Any]:
    if isinstance(predicate, MatchAll):
        return {"match": "all"}
    if isinstance(predicate, MatchNone):
        return {"match": "none"}
    if isinstance(predicate, FieldEquals):
        return {"field": predicate.field, "equals": predicate.value}
    if isinstance(predicate, FieldIn):
        return {"field": predicate.field, "in": list(predicate.values)}
    if isinstance(predicate, And):
        return {"and": [to_dict(c) for c in predicate.children]}
    if isinstance(predicate, Or):
        return {"or": [to_dict(c) for c in predicate.children]}
    raise TypeError(f"Unsupported predicate: {predicate!r}")


def predicate_from_dict(raw: Mapping[str, Any]) -> Predicate:
    """
    Parse the document form produced by ``to_dict``.

    Raises ``ValueError`` for anything it does not recognise.
    """
    if not isinstance(raw, Mapping):
        raise ValueError(f"Predicate must be a mapping, got {type(raw).__name__}")

    if "match" in raw:
        if raw["match"] == "all":
            return MATCH_ALL
        if raw["match"] == "none":
            return MATCH_NONE
        raise ValueError(f"Unknown match value: {raw['match']!r}")
    if "and" in raw:
        return and_(*(predicate_from_dict(c) for c in _children(raw["and"])))
    if "or" in raw:
        return or_(*(predicate_from_dict(c) for c in _children(raw["or"])))
    if "field" in raw:
        field = str(raw["field"])
        if "equals" in raw:
            return FieldEquals(field, raw["equals"])
        if "in" in raw:
            return field_in(field, _children(raw["in"]))
    raise ValueError(f"Unrecognised predicate document: {dict(raw)!r}")


def _children(value: Any) -> list[Any]:
    if not isinstance(value, list):
        raise ValueError("Predicate operands must be a list")
    return value
