"""Provenance tags and reconstruction of why a document matched."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple

from entityfinder.models import EntityModel
from entityfinder.resolution.inputs import InputAttribute
from entityfinder.resolution.templating import merged_params
from entityfinder.resolution.values import Value, from_serialized


class TagParts(NamedTuple):
    attribute: str
    field: str
    matcher: str
    value: str
    sequence: int | None = None


def encode_tag(attribute: str, field_name: str, matcher: str, value: Value, sequence: int) -> str:
    """Build ``attribute:field:matcher:base64(value):sequence``."""
    encoded = base64.b64encode(value.serialized.encode("utf-8")).decode("ascii")
    return f"{attribute}:{field_name}:{matcher}:{encoded}:{sequence}"


def strip_sequence(tag: str) -> str:
    head, sep, tail = tag.rpartition(":")
    if sep and tail.isdigit():
        return head
    return tag


def decode_tag(tag: str) -> TagParts:
    """Split a tag with or without its trailing sequence.

    Field names may contain colons, so the attribute is taken from the left
    and the matcher and value from the right.
    """
    sequence = None
    stripped = strip_sequence(tag)
    if stripped != tag:
        sequence = int(tag.rpartition(":")[2])
    head, matcher, encoded = stripped.rsplit(":", 2)
    attribute, _, field_name = head.partition(":")
    value = base64.b64decode(encoded.encode("ascii")).decode("utf-8")
    return TagParts(attribute, field_name, matcher, value, sequence)


@dataclass(slots=True)
class MatchRecord:
    attribute: str
    target_field: str
    target_value: Any
    input_value: Any
    input_matcher: str
    input_matcher_params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "target_field": self.target_field,
            "target_value": self.target_value,
            "input_value": self.input_value,
            "input_matcher": self.input_matcher,
            "input_matcher_params": dict(self.input_matcher_params),
        }


@dataclass(slots=True)
class Explanation:
    resolvers: Dict[str, List[str]] = field(default_factory=dict)
    matches: List[MatchRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resolvers": {name: {"attributes": list(attrs)} for name, attrs in self.resolvers.items()},
            "matches": [match.to_dict() for match in self.matches],
        }


def explain_hit(
    model: EntityModel,
    matched_tags: Iterable[str],
    target_values: Mapping[str, Any],
    input_attributes: Mapping[str, InputAttribute] | None = None,
) -> Explanation:
    """Turn the tags a document matched into match records and explained resolvers.

    ``target_values`` maps index field names to the values harvested from
    the document. A resolver is explained when every one of its attributes
    appears among the matches.
    """
    input_attributes = input_attributes or {}
    explanation = Explanation()
    matched_attributes = set()
    for tag in sorted({strip_sequence(tag) for tag in matched_tags}):
        parts = decode_tag(tag)
        attribute = model.attributes.get(parts.attribute)
        matcher = model.matchers.get(parts.matcher)
        attribute_type = attribute.type if attribute is not None else "string"
        supplied = input_attributes.get(parts.attribute)
        params: Dict[str, Any] = {}
        if matcher is not None:
            params = merged_params(matcher, attribute, supplied.params if supplied else None)
        explanation.matches.append(
            MatchRecord(
                attribute=parts.attribute,
                target_field=parts.field,
                target_value=target_values.get(parts.field),
                input_value=from_serialized(attribute_type, parts.value).to_json(),
                input_matcher=parts.matcher,
                input_matcher_params=params,
            )
        )
        matched_attributes.add(parts.attribute)
    for name in sorted(model.resolvers):
        resolver = model.resolvers[name]
        if matched_attributes.issuperset(resolver.attributes):
            explanation.resolvers[name] = list(resolver.attributes)
    return explanation
