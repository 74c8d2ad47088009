"""Compile resolvers, frontier values and scope into one predicate per collection."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from entityfinder.errors import TypeCoercionError
from entityfinder.models import EntityModel, Index
from entityfinder.resolution.explanation import encode_tag
from entityfinder.resolution.inputs import InputAttribute, Scope
from entityfinder.resolution.predicates import Leaf, Predicate, all_of, any_of, none_of
from entityfinder.resolution.templating import build_value_leaf, merged_params
from entityfinder.resolution.values import coerce_term, usable_format

LOGGER = logging.getLogger(__name__)

Frontier = Mapping[str, InputAttribute]


class TagCounter:
    """Sequence source for the provenance tags of one compiled query."""

    def __init__(self) -> None:
        self._next = 0

    def next(self) -> int:
        value = self._next
        self._next += 1
        return value

    @property
    def issued(self) -> int:
        return self._next


def index_field_has_matcher(model: EntityModel, index_name: str, field_name: str) -> bool:
    index_field = model.indices[index_name].fields.get(field_name)
    return index_field is not None and index_field.matcher is not None and index_field.matcher in model.matchers


def can_query_resolver(model: EntityModel, index_name: str, resolver_name: str, frontier: Frontier) -> bool:
    """A resolver is queryable when each of its attributes has a value and a matcher-bearing field."""
    attribute_fields = model.indices[index_name].attribute_fields
    for attribute_name in model.resolvers[resolver_name].attributes:
        supplied = frontier.get(attribute_name)
        if supplied is None or not supplied.values:
            return False
        fields = attribute_fields.get(attribute_name)
        if not fields:
            return False
        if not any(index_field_has_matcher(model, index_name, name) for name in fields):
            return False
    return True


def count_attributes(model: EntityModel, resolver_names: Iterable[str]) -> Counter:
    counts: Counter = Counter()
    for name in resolver_names:
        counts.update(model.resolvers[name].attributes)
    return counts


def sort_resolver_attributes(model: EntityModel, resolver_names: Sequence[str], counts: Mapping[str, int]) -> Dict[str, List[str]]:
    """Order each resolver's attributes by usage count descending, then by name."""
    return {
        name: sorted(model.resolvers[name].attributes, key=lambda attribute: (-counts[attribute], attribute))
        for name in resolver_names
    }


@dataclass(slots=True)
class ResolverTrie:
    """Node of the shared-prefix tree of resolver attribute sequences."""

    attribute: Optional[str] = None
    children: Dict[str, "ResolverTrie"] = field(default_factory=dict)
    terminal: bool = False

    def insert(self, attributes: Sequence[str]) -> None:
        node = self
        for attribute in attributes:
            node = node.children.setdefault(attribute, ResolverTrie(attribute))
        node.terminal = True

    def sorted_children(self) -> List["ResolverTrie"]:
        return [self.children[name] for name in sorted(self.children)]

    def to_dict(self) -> Dict[str, Any]:
        return {child.attribute: child.to_dict() for child in self.sorted_children()}


def build_trie(sorted_attributes: Mapping[str, Sequence[str]]) -> ResolverTrie:
    root = ResolverTrie()
    for name in sorted(sorted_attributes):
        root.insert(sorted_attributes[name])
    return root


def attribute_predicate(
    model: EntityModel,
    index: Index,
    attributes: Frontier,
    attribute_name: str,
    *,
    combine: str = "any",
    tags: Optional[TagCounter] = None,
) -> Optional[Predicate]:
    """Predicate over every matcher-bearing field of the attribute and every known value.

    Fields and values are combined with OR (``combine="any"``) or AND
    (``combine="all"``). Returns ``None`` when nothing can be rendered.
    """
    supplied = attributes.get(attribute_name)
    if supplied is None:
        return None
    model_attribute = model.attributes.get(attribute_name)
    combiner = any_of if combine == "any" else all_of
    field_predicates: List[Optional[Predicate]] = []
    for field_name, index_field in index.attribute_fields.get(attribute_name, {}).items():
        if not index_field_has_matcher(model, index.name, field_name):
            continue
        matcher = model.matchers[index_field.matcher]
        params = merged_params(matcher, model_attribute, supplied.params)
        leaves = []
        for value in supplied.sorted_values():
            tag = None
            if tags is not None and not value.is_blank:
                tag = encode_tag(attribute_name, field_name, matcher.name, value, tags.next())
            leaves.append(build_value_leaf(matcher, field_name, value, params, tag))
        field_predicates.append(combiner(leaves))
    return combiner(field_predicates)


def trie_predicate(
    node: ResolverTrie,
    model: EntityModel,
    index: Index,
    attributes: Frontier,
    tags: Optional[TagCounter] = None,
) -> Optional[Predicate]:
    """``own AND any(children)`` for inner nodes, ``any(children)`` at the root.

    A node where some resolver ends is satisfied by its own predicate alone.
    Its deeper branch is ORed in with a freshly built copy of the node's
    predicate, so every tag stays unique within the query.
    """
    children = any_of(trie_predicate(child, model, index, attributes, tags) for child in node.sorted_children())
    if node.attribute is None:
        return children
    own = attribute_predicate(model, index, attributes, node.attribute, tags=tags)
    if own is None:
        return None
    if children is None:
        return own if node.terminal else None
    if not node.terminal:
        return all_of([own, children])
    again = attribute_predicate(model, index, attributes, node.attribute, tags=tags)
    return any_of([own, all_of([again, children])])


def group_by_weight(model: EntityModel, resolver_names: Iterable[str]) -> List[Tuple[int, List[str]]]:
    """Resolver names grouped by weight, highest weight first."""
    groups: Dict[int, List[str]] = {}
    for name in sorted(resolver_names):
        groups.setdefault(model.resolvers[name].weight, []).append(name)
    return sorted(groups.items(), key=lambda item: -item[0])


def resolver_tree(
    model: EntityModel,
    index: Index,
    attributes: Frontier,
    resolver_names: Sequence[str],
    tags: Optional[TagCounter] = None,
) -> Tuple[ResolverTrie, Optional[Predicate]]:
    counts = count_attributes(model, resolver_names)
    trie = build_trie(sort_resolver_attributes(model, resolver_names, counts))
    return trie, trie_predicate(trie, model, index, attributes, tags)


def resolver_gate(
    model: EntityModel,
    index: Index,
    attributes: Frontier,
    resolver_name: str,
    tags: Optional[TagCounter] = None,
) -> Optional[Predicate]:
    """``(some attribute of the resolver is absent) OR (the resolver matches)``."""
    absent: List[Optional[Predicate]] = []
    attribute_fields = index.attribute_fields
    for attribute_name in model.resolvers[resolver_name].attributes:
        exists = [
            Leaf(field=field_name, op="exists")
            for field_name in attribute_fields.get(attribute_name, {})
            if index_field_has_matcher(model, index.name, field_name)
        ]
        absent.append(none_of(exists))
    _, matches = resolver_tree(model, index, attributes, [resolver_name], tags)
    return any_of([*absent, matches])


@dataclass(slots=True)
class Tier:
    weight: int
    resolvers: List[str]
    trie: ResolverTrie
    predicate: Optional[Predicate]


def resolvers_predicate(
    model: EntityModel,
    index: Index,
    attributes: Frontier,
    resolver_names: Sequence[str],
    tags: Optional[TagCounter] = None,
) -> Tuple[Optional[Predicate], List[Tier]]:
    """Build one tree per weight tier and gate each tier on the tiers above it.

    A document reached through a lower tier must not contradict any
    queryable resolver of a higher tier: either one of that resolver's
    attributes is absent from the document or the resolver matches too.
    """
    tiers: List[Tier] = []
    clauses: List[Optional[Predicate]] = []
    higher: List[str] = []
    for weight, names in group_by_weight(model, resolver_names):
        trie, tree = resolver_tree(model, index, attributes, names, tags)
        if tree is not None and higher:
            gates = [resolver_gate(model, index, attributes, name, tags) for name in higher]
            tree = all_of([tree, *gates])
        tiers.append(Tier(weight, names, trie, tree))
        clauses.append(tree)
        higher.extend(names)
    return any_of(clauses), tiers


def _term_formats(model: EntityModel, index: Index, attribute_name: str, supplied: Optional[InputAttribute]) -> List[str]:
    formats: List[str] = []
    candidates: List[Any] = []
    if supplied is not None:
        candidates.append(supplied.params.get("format"))
    model_attribute = model.attributes.get(attribute_name)
    if model_attribute is not None:
        candidates.append(model_attribute.params.get("format"))
    for index_field in index.attribute_fields.get(attribute_name, {}).values():
        matcher = model.matchers.get(index_field.matcher) if index_field.matcher else None
        if matcher is not None:
            candidates.append(matcher.params.get("format"))
    for candidate in candidates:
        usable = usable_format(candidate)
        if usable is not None and usable not in formats:
            formats.append(usable)
    return formats


def term_attributes(model: EntityModel, index: Index, terms: Sequence[str], attributes: Frontier) -> Dict[str, InputAttribute]:
    """Coerce every term to every attribute the collection's resolvers use.

    Known values are merged in. Terms that do not fit an attribute type are
    dropped for that attribute.
    """
    attribute_fields = index.attribute_fields
    names: Set[str] = set()
    for resolver in model.resolvers.values():
        names.update(name for name in resolver.attributes if name in attribute_fields)
    merged: Dict[str, InputAttribute] = {name: attribute.copy() for name, attribute in attributes.items()}
    for attribute_name in sorted(names):
        model_attribute = model.attributes[attribute_name]
        supplied = attributes.get(attribute_name)
        formats = _term_formats(model, index, attribute_name, supplied) if model_attribute.type == "date" else []
        for term in terms:
            try:
                value = coerce_term(term, model_attribute.type, formats)
            except TypeCoercionError:
                continue
            target = merged.setdefault(attribute_name, InputAttribute(attribute_name, model_attribute.type))
            target.values.add(value)
    return merged


@dataclass(slots=True)
class QueryPlan:
    """Everything known about one compiled query."""

    collection: str
    number: int
    hop: int
    predicate: Predicate
    resolvers: List[str] = field(default_factory=list)
    term_resolvers: List[str] = field(default_factory=list)
    tiers: List[Tier] = field(default_factory=list)
    term_trie: Optional[ResolverTrie] = None
    tags_issued: int = 0

    def summary(self) -> Dict[str, Any]:
        """Resolver lists and tries, as logged with the query."""
        summary: Dict[str, Any] = {
            "resolvers": {
                "list": list(self.resolvers),
                "tiers": [
                    {"weight": tier.weight, "list": list(tier.resolvers), "tree": tier.trie.to_dict()}
                    for tier in self.tiers
                ],
            }
        }
        if self.term_trie is not None:
            summary["terms"] = {"list": list(self.term_resolvers), "tree": self.term_trie.to_dict()}
        return summary


def _scope_predicates(model: EntityModel, index: Index, scope_attributes: Frontier, combine: str) -> List[Optional[Predicate]]:
    attribute_fields = index.attribute_fields
    return [
        attribute_predicate(model, index, scope_attributes, name, combine=combine)
        for name in sorted(scope_attributes)
        if name in attribute_fields
    ]


def plan_query(
    model: EntityModel,
    collection: str,
    attributes: Frontier,
    *,
    hop: int = 0,
    number: int = 0,
    seen_ids: Iterable[str] = (),
    seed_ids: Iterable[str] = (),
    terms: Sequence[str] = (),
    scope: Optional[Scope] = None,
    explain: bool = False,
) -> Optional[QueryPlan]:
    """Assemble the predicate for one collection and hop.

    Returns ``None`` when the collection has nothing to query: no seed ids,
    no queryable resolver and no usable terms.
    """
    index = model.indices[collection]
    scope = scope or Scope()
    tags = TagCounter() if explain else None

    seen = sorted(seen_ids)
    exclusions: List[Optional[Predicate]] = []
    if seen:
        exclusions.append(Leaf(field="_id", op="ids", value=tuple(seen)))
    exclusions.extend(_scope_predicates(model, index, scope.exclude.attributes, "any"))
    include = all_of(_scope_predicates(model, index, scope.include.attributes, "all"))

    ids_predicate = None
    seeds = sorted(seed_ids) if hop == 0 else []
    if seeds:
        ids_predicate = Leaf(field="_id", op="ids", value=tuple(seeds))

    resolvers = [name for name in sorted(model.resolvers) if can_query_resolver(model, collection, name, attributes)]
    resolvers_tree, tiers = resolvers_predicate(model, index, attributes, resolvers, tags) if resolvers else (None, [])

    term_tree = None
    term_trie = None
    term_resolvers: List[str] = []
    if hop == 0 and terms:
        candidates = term_attributes(model, index, terms, attributes)
        term_resolvers = [
            name for name in sorted(model.resolvers) if can_query_resolver(model, collection, name, candidates)
        ]
        if term_resolvers:
            term_trie, term_tree = resolver_tree(model, index, candidates, term_resolvers, tags)

    matching = any_of([ids_predicate, all_of([resolvers_tree, term_tree])])
    if matching is None:
        LOGGER.debug("Nothing to query in collection '%s' at hop %d", collection, hop)
        return None

    predicate = all_of([matching, none_of(exclusions), include])
    return QueryPlan(
        collection=collection,
        number=number,
        hop=hop,
        predicate=predicate,
        resolvers=resolvers,
        term_resolvers=term_resolvers,
        tiers=tiers,
        term_trie=term_trie,
        tags_issued=tags.issued if tags else 0,
    )
