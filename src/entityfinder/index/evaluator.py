"""In-process evaluation of predicate trees against JSON documents."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Set, Tuple

from entityfinder.errors import BackendError
from entityfinder.resolution.job import extract_values
from entityfinder.resolution.predicates import And, Leaf, Not, Predicate
from entityfinder.utils.text import as_text, tokenize


def field_values(source: Mapping[str, Any], field_name: str) -> List[Any]:
    """Values at a dotted field path; multi-field names fall back to their parent."""
    path = field_name.split(".")
    values = extract_values(source, path)
    if not values and len(path) > 1:
        values = extract_values(source, path[:-1])
    return values


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_equal(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return float(left) == float(right)
    return as_text(left) == as_text(right)


def _compare(left: Any, right: Any) -> int:
    if _is_number(left) and _is_number(right):
        a, b = float(left), float(right)
    else:
        try:
            a, b = float(as_text(left)), float(as_text(right))
        except ValueError:
            a, b = as_text(left), as_text(right)  # type: ignore[assignment]
    return (a > b) - (a < b)


def _single(body: Any, kind: str) -> Tuple[str, Any]:
    if not isinstance(body, Mapping) or len(body) != 1:
        raise BackendError(f"'{kind}' clause must name exactly one field")
    return next(iter(body.items()))


def _match_term(source: Mapping[str, Any], body: Any) -> bool:
    field_name, expected = _single(body, "term")
    if isinstance(expected, Mapping):
        expected = expected.get("value")
    return any(values_equal(actual, expected) for actual in field_values(source, field_name))


def _match_text(source: Mapping[str, Any], body: Any) -> bool:
    field_name, query = _single(body, "match")
    operator = "or"
    if isinstance(query, Mapping):
        operator = str(query.get("operator", "or")).lower()
        query = query.get("query")
    wanted = set(tokenize(as_text(query)))
    if not wanted:
        return False
    for actual in field_values(source, field_name):
        tokens = set(tokenize(as_text(actual)))
        if (wanted <= tokens) if operator == "and" else bool(wanted & tokens):
            return True
    return False


def _match_prefix(source: Mapping[str, Any], body: Any) -> bool:
    field_name, prefix = _single(body, "prefix")
    if isinstance(prefix, Mapping):
        prefix = prefix.get("value")
    return any(as_text(actual).startswith(as_text(prefix)) for actual in field_values(source, field_name))


def _match_range(source: Mapping[str, Any], body: Any) -> bool:
    field_name, bounds = _single(body, "range")
    if not isinstance(bounds, Mapping):
        raise BackendError("'range' clause bounds must be an object")
    checks = {
        "gt": lambda c: c > 0,
        "gte": lambda c: c >= 0,
        "lt": lambda c: c < 0,
        "lte": lambda c: c <= 0,
    }
    for actual in field_values(source, field_name):
        if all(check(_compare(actual, bounds[op])) for op, check in checks.items() if op in bounds):
            return True
    return False


def _match_bool(source: Mapping[str, Any], body: Any) -> bool:
    if not isinstance(body, Mapping):
        raise BackendError("'bool' clause must be an object")

    def listed(key: str) -> List[Any]:
        clauses = body.get(key, [])
        return clauses if isinstance(clauses, list) else [clauses]

    required = listed("must") + listed("filter")
    if not all(match_clause(source, clause) for clause in required):
        return False
    if any(match_clause(source, clause) for clause in listed("must_not")):
        return False
    should = listed("should")
    if should and not required:
        return any(match_clause(source, clause) for clause in should)
    return True


_CLAUSES = {
    "term": _match_term,
    "match": _match_text,
    "prefix": _match_prefix,
    "range": _match_range,
    "bool": _match_bool,
}


def match_clause(source: Mapping[str, Any], clause: Mapping[str, Any]) -> bool:
    """Evaluate a rendered matcher clause against a document source."""
    if "field" in clause and "eq" in clause:
        return any(values_equal(actual, clause["eq"]) for actual in field_values(source, str(clause["field"])))
    if len(clause) != 1:
        raise BackendError(f"Unsupported matcher clause: {clause}")
    kind, body = next(iter(clause.items()))
    handler = _CLAUSES.get(kind)
    if handler is None:
        raise BackendError(f"Unsupported matcher clause type: {kind}")
    return handler(source, body)


def _evaluate_leaf(leaf: Leaf, doc_id: str, source: Mapping[str, Any]) -> bool:
    if leaf.op == "ids":
        return doc_id in leaf.value
    if leaf.op == "exists":
        return any(value is not None for value in field_values(source, leaf.field))
    if leaf.clause is not None:
        return match_clause(source, leaf.clause)
    return any(values_equal(actual, leaf.value.to_json()) for actual in field_values(source, leaf.field))


def evaluate(predicate: Predicate, doc_id: str, source: Mapping[str, Any]) -> Tuple[bool, Set[str]]:
    """Return whether the document matches and the tags of every matching node.

    Every branch is evaluated so that tags are reported even when a sibling
    already decided the result. Tags under a ``Not`` are never reported.
    """
    tags: Set[str] = set()
    matched = _evaluate(predicate, doc_id, source, tags, collect=True)
    return matched, tags


def _evaluate(predicate: Predicate, doc_id: str, source: Mapping[str, Any], tags: Set[str], collect: bool) -> bool:
    if isinstance(predicate, Leaf):
        matched = _evaluate_leaf(predicate, doc_id, source)
    elif isinstance(predicate, Not):
        matched = not any([_evaluate(child, doc_id, source, tags, False) for child in predicate.children])
    else:
        results = [_evaluate(child, doc_id, source, tags, collect) for child in predicate.children]
        matched = all(results) if isinstance(predicate, And) else any(results)
    if matched and collect and predicate.tag is not None:
        tags.add(predicate.tag)
    return matched


def filter_documents(
    predicate: Predicate, documents: List[Tuple[str, Dict[str, Any]]], size: int
) -> List[Tuple[str, Dict[str, Any], Set[str]]]:
    """Documents that match, in input order, up to ``size``."""
    hits = []
    for doc_id, source in documents:
        if len(hits) >= size:
            break
        matched, tags = evaluate(predicate, doc_id, source)
        if matched:
            hits.append((doc_id, source, tags))
    return hits
