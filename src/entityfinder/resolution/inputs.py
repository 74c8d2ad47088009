"""Resolution job input: seed attributes, ids, terms and scope."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Set

from entityfinder.errors import TypeCoercionError, ValidationError
from entityfinder.models import EntityModel
from entityfinder.resolution.values import Value, create_value, sorted_values, usable_format

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class InputAttribute:
    """Known values of one attribute plus the params supplied with them."""

    name: str
    type: str
    values: Set[Value] = field(default_factory=set)
    params: Dict[str, Any] = field(default_factory=dict)

    def copy(self) -> "InputAttribute":
        return InputAttribute(self.name, self.type, set(self.values), dict(self.params))

    def sorted_values(self) -> List[Value]:
        return sorted_values(self.values)


@dataclass(slots=True)
class ScopeField:
    attributes: Dict[str, InputAttribute] = field(default_factory=dict)
    indices: Set[str] = field(default_factory=set)
    resolvers: Set[str] = field(default_factory=set)


@dataclass(slots=True)
class Scope:
    include: ScopeField = field(default_factory=ScopeField)
    exclude: ScopeField = field(default_factory=ScopeField)


@dataclass(slots=True)
class ResolutionInput:
    """Parsed input of one resolution job, bound to its (scoped) entity model."""

    model: EntityModel
    attributes: Dict[str, InputAttribute] = field(default_factory=dict)
    ids: Dict[str, Set[str]] = field(default_factory=dict)
    terms: List[str] = field(default_factory=list)
    scope: Scope = field(default_factory=Scope)

    def copy_attributes(self) -> Dict[str, InputAttribute]:
        return {name: attribute.copy() for name, attribute in sorted(self.attributes.items())}


def parse_attribute(name: str, attribute_type: str, data: Any, where: str = "attributes") -> InputAttribute:
    """Parse ``[v, ...]`` or ``{"values": [...], "params": {...}}`` into an attribute.

    Values that do not match the attribute type are skipped.
    """
    attribute = InputAttribute(name=name, type=attribute_type)
    if data is None:
        return attribute
    if isinstance(data, list):
        raw_values: Any = data
    elif isinstance(data, Mapping):
        raw_values = data.get("values", [])
        if not isinstance(raw_values, list):
            raise ValidationError(f"'{where}.{name}.values' must be an array.")
        params = data.get("params", {})
        if not isinstance(params, Mapping):
            raise ValidationError(f"'{where}.{name}.params' must be an object.")
        attribute.params = dict(params)
    else:
        raise ValidationError(f"'{where}.{name}' must be an object or array.")
    for raw in raw_values:
        try:
            attribute.values.add(create_value(attribute_type, raw))
        except TypeCoercionError as exc:
            LOGGER.warning("Skipping value of '%s.%s': %s", where, name, exc)
    return attribute


def _parse_attributes(data: Any, model: EntityModel, where: str) -> Dict[str, InputAttribute]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValidationError(f"'{where}' must be an object.")
    attributes: Dict[str, InputAttribute] = {}
    for name in sorted(data):
        if name not in model.attributes:
            raise ValidationError(f"'{where}.{name}' is not defined in the entity model.")
        if data[name] is None:
            continue
        attributes[name] = parse_attribute(name, model.attributes[name].type, data[name], where)
    return attributes


def _parse_names(data: Any, where: str) -> Set[str]:
    if data is None:
        return set()
    if isinstance(data, str):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise ValidationError(f"'{where}' must be a string or an array of strings.")
    if any(not item for item in data):
        raise ValidationError(f"'{where}' must not have empty strings.")
    return set(data)


def _parse_scope_field(data: Any, model: EntityModel, where: str) -> ScopeField:
    if data is None:
        return ScopeField()
    if not isinstance(data, Mapping):
        raise ValidationError(f"'{where}' must be an object.")
    for key in data:
        if key not in ("attributes", "indices", "resolvers"):
            raise ValidationError(f"'{where}.{key}' is not a recognized field.")
    return ScopeField(
        attributes=_parse_attributes(data.get("attributes"), model, f"{where}.attributes"),
        indices=_parse_names(data.get("indices"), f"{where}.indices"),
        resolvers=_parse_names(data.get("resolvers"), f"{where}.resolvers"),
    )


def _parse_ids(data: Any, model: EntityModel) -> Dict[str, Set[str]]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValidationError("'ids' must be an object.")
    ids: Dict[str, Set[str]] = {}
    for index_name, values in data.items():
        if index_name not in model.indices:
            raise ValidationError(f"'ids.{index_name}' is not defined in the entity model.")
        if values is None:
            values = []
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise ValidationError(f"'ids.{index_name}' must be an array of strings.")
        if any(not v.strip() for v in values):
            raise ValidationError(f"'ids.{index_name}' must be an array of non-empty strings.")
        ids[index_name] = set(values)
    return ids


def _parse_terms(data: Any) -> List[str]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValidationError("'terms' must be an array of strings.")
    terms: List[str] = []
    for term in data:
        if not isinstance(term, str):
            raise ValidationError("'terms' must be an array of strings.")
        if not term.strip():
            raise ValidationError("A term must be a non-empty string.")
        if term not in terms:
            terms.append(term)
    return sorted(terms)


def _narrow(names: Mapping[str, Any], selected: Set[str], where: str, keep: bool) -> Dict[str, Any]:
    for name in selected:
        if name not in names:
            raise ValidationError(f"'{name}' is not in the '{where}' field of the entity model.")
    return {name: value for name, value in names.items() if (name in selected) == keep}


def apply_scope(model: EntityModel, scope: Scope) -> EntityModel:
    """Return a copy of the model limited to the scoped indices and resolvers."""
    scoped = model.copy()
    if scope.include.resolvers:
        scoped.resolvers = _narrow(scoped.resolvers, scope.include.resolvers, "resolvers", keep=True)
    if scope.include.indices:
        scoped.indices = _narrow(scoped.indices, scope.include.indices, "indices", keep=True)
    if scope.exclude.indices:
        scoped.indices = _narrow(scoped.indices, scope.exclude.indices, "indices", keep=False)
    if scope.exclude.resolvers:
        scoped.resolvers = _narrow(scoped.resolvers, scope.exclude.resolvers, "resolvers", keep=False)
    return scoped


def _validate_date_formats(inputs: ResolutionInput) -> None:
    """Every date attribute mapped to an index needs a ``format`` somewhere."""
    model = inputs.model
    for index in model.indices.values():
        for attribute_name, fields in index.attribute_fields.items():
            attribute = model.attributes.get(attribute_name)
            if attribute is None or attribute.type != "date":
                continue
            supplied = inputs.attributes.get(attribute_name)
            if supplied is not None and usable_format(supplied.params.get("format")):
                continue
            if usable_format(attribute.params.get("format")):
                continue
            for index_field in fields.values():
                matcher = model.matchers.get(index_field.matcher) if index_field.matcher else None
                if matcher is None or not usable_format(matcher.params.get("format")):
                    raise ValidationError(
                        f"'attributes.{attribute_name}' is a 'date' which requires a 'format' "
                        "to be specified in the params."
                    )


def parse_input(payload: Any, model: EntityModel | None = None) -> ResolutionInput:
    """Parse the JSON body of a resolution request.

    Either ``model`` is given or the payload embeds one under ``"model"``.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Input must be an object.")
    for key in payload:
        if key not in ("attributes", "ids", "model", "scope", "terms"):
            raise ValidationError(f"'{key}' is not a recognized field.")
    if model is None:
        if "model" not in payload:
            raise ValidationError("You must specify either an entity type or an entity model.")
        model = EntityModel.from_dict(payload["model"])
    elif "model" in payload:
        raise ValidationError("You must specify either an entity type or an entity model, not both.")

    attributes = _parse_attributes(payload.get("attributes"), model, "attributes")
    terms = _parse_terms(payload.get("terms"))
    ids = _parse_ids(payload.get("ids"), model)
    if not attributes and not terms and not ids:
        raise ValidationError(
            "The 'attributes', 'terms', and 'ids' fields are missing from the request body. "
            "At least one must exist."
        )

    scope_data = payload.get("scope")
    if scope_data is not None and not isinstance(scope_data, Mapping):
        raise ValidationError("'scope' must be an object.")
    scope = Scope()
    if scope_data:
        for key in scope_data:
            if key not in ("include", "exclude"):
                raise ValidationError(f"'scope.{key}' is not a recognized field.")
        scope = Scope(
            include=_parse_scope_field(scope_data.get("include"), model, "scope.include"),
            exclude=_parse_scope_field(scope_data.get("exclude"), model, "scope.exclude"),
        )

    inputs = ResolutionInput(
        model=apply_scope(model, scope),
        attributes=attributes,
        ids=ids,
        terms=terms,
        scope=scope,
    )
    _validate_date_formats(inputs)
    return inputs
