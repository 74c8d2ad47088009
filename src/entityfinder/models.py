"""Core EntityFinder data models: attributes, matchers, indices and resolvers."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping

from entityfinder.errors import ValidationError

ATTRIBUTE_TYPES = ("boolean", "date", "number", "string")

VARIABLE_PATTERN = re.compile(r"\{\{\s*([^\s{}]+)\s*}}")
_INVALID_NAME_CHARS = set('\\/*?"<>| ,#:')


def validate_name(name: Any, kind: str) -> str:
    """Reject names the resolution engine cannot carry in provenance tags."""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(f"'{kind}' has an entry with an empty name.")
    if any(char in _INVALID_NAME_CHARS for char in name):
        raise ValidationError(f"Invalid name [{name}], must not contain any of {sorted(_INVALID_NAME_CHARS)}")
    if name[0] in "_-+":
        raise ValidationError(f"Invalid name [{name}], must not start with '_', '-', or '+'")
    return name


def _params(value: Any, where: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"'{where}.params' must be an object.")
    return dict(value)


def _check_keys(data: Any, where: str, allowed: tuple[str, ...], required: tuple[str, ...] = ()) -> None:
    if not isinstance(data, Mapping):
        raise ValidationError(f"'{where}' must be an object.")
    for key in required:
        if key not in data:
            raise ValidationError(f"'{where}' is missing required field '{key}'.")
    for key in data:
        if key not in allowed:
            raise ValidationError(f"'{where}.{key}' is not a recognized field.")


@dataclass(slots=True)
class Attribute:
    """A named, typed identifying property of an entity."""

    name: str
    type: str = "string"
    params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.type not in ATTRIBUTE_TYPES:
            raise ValidationError(
                f"'attributes.{self.name}.type' has an unrecognized type '{self.type}'."
            )

    @property
    def name_fields(self) -> List[str]:
        return self.name.split(".")

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "Attribute":
        where = f"attributes.{name}"
        _check_keys(data, where, ("type", "params", "score"))
        for part in validate_name(name, "attributes").split("."):
            validate_name(part, "attributes")
        kind = data.get("type", "string")
        if not isinstance(kind, str):
            raise ValidationError(f"'{where}.type' must be a string.")
        return cls(name=name, type=kind, params=_params(data.get("params"), where))


@dataclass(slots=True)
class Matcher:
    """A clause template describing how a value is compared against a field."""

    name: str
    clause: Dict[str, Any]
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def variables(self) -> List[str]:
        """Variable names referenced by the template, sorted and distinct."""
        text = json.dumps(self.clause)
        return sorted(set(VARIABLE_PATTERN.findall(text)))

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "Matcher":
        where = f"matchers.{name}"
        validate_name(name, "matchers")
        _check_keys(data, where, ("clause", "params", "quality"), required=("clause",))
        clause = data["clause"]
        if not isinstance(clause, Mapping) or not clause:
            raise ValidationError(f"'{where}.clause' must be a non-empty object.")
        return cls(name=name, clause=dict(clause), params=_params(data.get("params"), where))


@dataclass(slots=True)
class IndexField:
    """Maps a field of a collection to an attribute and, optionally, a matcher."""

    index: str
    name: str
    attribute: str
    matcher: str | None = None

    @property
    def path(self) -> List[str]:
        return self.name.split(".")

    @property
    def parent_path(self) -> List[str]:
        """Path without its last segment, used for multi-field mappings."""
        return self.path[:-1]


@dataclass(slots=True)
class Index:
    """A searchable collection and its field mappings."""

    name: str
    fields: Dict[str, IndexField] = field(default_factory=dict)

    @property
    def attribute_fields(self) -> Dict[str, Dict[str, IndexField]]:
        """For each attribute, the index fields mapped to it, sorted by field name."""
        mapping: Dict[str, Dict[str, IndexField]] = {}
        for field_name in sorted(self.fields):
            index_field = self.fields[field_name]
            mapping.setdefault(index_field.attribute, {})[field_name] = index_field
        return dict(sorted(mapping.items()))

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "Index":
        where = f"indices.{name}"
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("'indices' has an index with an empty name.")
        _check_keys(data, where, ("fields",), required=("fields",))
        raw_fields = data["fields"]
        if not isinstance(raw_fields, Mapping):
            raise ValidationError(f"'{where}.fields' must be an object.")
        fields: Dict[str, IndexField] = {}
        for field_name, field_data in raw_fields.items():
            if not field_name:
                raise ValidationError(f"'{where}.fields' has a field with an empty name.")
            field_where = f"{where}.fields.{field_name}"
            _check_keys(field_data, field_where, ("attribute", "matcher", "quality"), required=("attribute",))
            attribute = field_data["attribute"]
            if not isinstance(attribute, str) or not attribute.strip():
                raise ValidationError(f"'{field_where}.attribute' must be a non-empty string.")
            matcher = field_data.get("matcher")
            if matcher is not None and (not isinstance(matcher, str) or not matcher.strip()):
                raise ValidationError(f"'{field_where}.matcher' must be a non-empty string.")
            fields[field_name] = IndexField(index=name, name=field_name, attribute=attribute, matcher=matcher)
        return cls(name=name, fields=fields)


@dataclass(slots=True)
class Resolver:
    """A set of attributes that together identify an entity, with a confidence weight."""

    name: str
    attributes: List[str]
    weight: int = 0

    def __post_init__(self) -> None:
        if not self.attributes:
            raise ValidationError(f"'resolvers.{self.name}.attributes' must not be empty.")
        self.attributes = sorted(set(self.attributes))

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "Resolver":
        where = f"resolvers.{name}"
        validate_name(name, "resolvers")
        _check_keys(data, where, ("attributes", "weight"), required=("attributes",))
        attributes = data["attributes"]
        if not isinstance(attributes, list) or not all(isinstance(a, str) and a.strip() for a in attributes):
            raise ValidationError(f"'{where}.attributes' must be an array of non-empty strings.")
        weight = data.get("weight", 0)
        if weight is None:
            weight = 0
        if isinstance(weight, bool) or not isinstance(weight, (int, float)) or float(weight) % 1 != 0:
            raise ValidationError(f"'{where}.weight' must be an integer.")
        return cls(name=name, attributes=list(attributes), weight=int(weight))


@dataclass(slots=True)
class EntityModel:
    """Validated, in-memory entity model."""

    attributes: Dict[str, Attribute] = field(default_factory=dict)
    resolvers: Dict[str, Resolver] = field(default_factory=dict)
    matchers: Dict[str, Matcher] = field(default_factory=dict)
    indices: Dict[str, Index] = field(default_factory=dict)

    def copy(self) -> "EntityModel":
        """Shallow copy whose name maps can be narrowed without touching this model."""
        return EntityModel(
            attributes=dict(self.attributes),
            resolvers=dict(self.resolvers),
            matchers=dict(self.matchers),
            indices=dict(self.indices),
        )

    def validate_references(self) -> None:
        """Ensure resolvers and index fields only reference known names."""
        for resolver in self.resolvers.values():
            for attribute_name in resolver.attributes:
                if attribute_name not in self.attributes:
                    raise ValidationError(
                        f"'resolvers.{resolver.name}' references unknown attribute '{attribute_name}'."
                    )
        for index in self.indices.values():
            for index_field in index.fields.values():
                if index_field.attribute not in self.attributes:
                    raise ValidationError(
                        f"'indices.{index.name}.fields.{index_field.name}' references unknown "
                        f"attribute '{index_field.attribute}'."
                    )
                if index_field.matcher is not None and index_field.matcher not in self.matchers:
                    raise ValidationError(
                        f"'indices.{index.name}.fields.{index_field.name}' references unknown "
                        f"matcher '{index_field.matcher}'."
                    )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EntityModel":
        _check_keys(data, "model", ("attributes", "resolvers", "matchers", "indices"))
        sections = {key: data.get(key) or {} for key in ("attributes", "resolvers", "matchers", "indices")}
        for key, value in sections.items():
            if not isinstance(value, Mapping):
                raise ValidationError(f"'{key}' must be an object.")
        model = cls(
            attributes={n: Attribute.from_dict(n, v) for n, v in sorted(sections["attributes"].items())},
            resolvers={n: Resolver.from_dict(n, v) for n, v in sorted(sections["resolvers"].items())},
            matchers={n: Matcher.from_dict(n, v) for n, v in sorted(sections["matchers"].items())},
            indices={n: Index.from_dict(n, v) for n, v in sorted(sections["indices"].items())},
        )
        model.validate_references()
        return model


def load_model(path: Path) -> EntityModel:
    """Load an entity model from a JSON file."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Entity model is not valid JSON: {exc}") from exc
    return EntityModel.from_dict(data)
