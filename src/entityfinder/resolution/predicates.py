"""Backend-neutral boolean predicate trees and their bool-query serialization."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple, Union

from entityfinder.resolution.values import Value

LEAF_OPS = ("match", "ids", "exists")


@dataclass(frozen=True, slots=True)
class Leaf:
    """A single comparison against one field.

    ``op`` is ``match`` (a rendered matcher clause comparing ``value``),
    ``ids`` (document id membership, ``value`` is a tuple of ids) or
    ``exists`` (the field holds any value).
    """

    field: str
    op: str
    value: Any = None
    tag: Optional[str] = None
    clause: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if self.op not in LEAF_OPS:
            raise ValueError(f"Unsupported leaf operation: {self.op}")


@dataclass(frozen=True, slots=True)
class And:
    children: Tuple["Predicate", ...]
    tag: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Or:
    children: Tuple["Predicate", ...]
    tag: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Not:
    """Matches when none of the children match."""

    children: Tuple["Predicate", ...]
    tag: Optional[str] = None


Predicate = Union[Leaf, And, Or, Not]


def _present(children: Iterable[Optional[Predicate]]) -> Tuple[Predicate, ...]:
    return tuple(child for child in children if child is not None)


def all_of(children: Iterable[Optional[Predicate]]) -> Optional[Predicate]:
    """Conjunction of the non-empty children, ``None`` when there are none."""
    present = _present(children)
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return And(present)


def any_of(children: Iterable[Optional[Predicate]]) -> Optional[Predicate]:
    """Disjunction of the non-empty children, ``None`` when there are none."""
    present = _present(children)
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return Or(present)


def none_of(children: Iterable[Optional[Predicate]]) -> Optional[Predicate]:
    present = _present(children)
    if not present:
        return None
    return Not(present)


def iter_tags(predicate: Optional[Predicate]) -> Iterator[str]:
    """Yield every provenance tag in the tree, depth first."""
    if predicate is None:
        return
    if predicate.tag is not None:
        yield predicate.tag
    if isinstance(predicate, Leaf):
        return
    for child in predicate.children:
        yield from iter_tags(child)


def _named(body: Dict[str, Any], tag: Optional[str]) -> Dict[str, Any]:
    if tag is None:
        return body
    return {"bool": {"_name": tag, "filter": body}}


def compile_bool_query(predicate: Optional[Predicate]) -> Dict[str, Any]:
    """Serialize a predicate tree as an Elasticsearch-style bool query."""
    if predicate is None:
        return {"match_all": {}}
    if isinstance(predicate, Leaf):
        if predicate.op == "ids":
            body: Dict[str, Any] = {"ids": {"values": list(predicate.value)}}
        elif predicate.op == "exists":
            body = {"exists": {"field": predicate.field}}
        elif predicate.clause is not None:
            body = predicate.clause
        else:
            value = predicate.value.to_json() if isinstance(predicate.value, Value) else predicate.value
            body = {"term": {predicate.field: value}}
        return _named(body, predicate.tag)
    children = [compile_bool_query(child) for child in predicate.children]
    if isinstance(predicate, And):
        body = {"bool": {"filter": children}}
    elif isinstance(predicate, Or):
        body = {"bool": {"should": children}}
    else:
        body = {"bool": {"must_not": children}}
    return _named(body, predicate.tag)
