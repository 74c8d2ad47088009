"""Rendering of matcher clause templates into predicate leaves."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from entityfinder.errors import MissingParameterError
from entityfinder.models import VARIABLE_PATTERN, Attribute, Matcher
from entityfinder.resolution.predicates import Leaf
from entityfinder.resolution.values import Value

LOGGER = logging.getLogger(__name__)


def merged_params(
    matcher: Matcher,
    model_attribute: Optional[Attribute] = None,
    input_params: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Matcher defaults, overridden by model attribute params, overridden by input params."""
    params: Dict[str, Any] = dict(matcher.params)
    if model_attribute is not None:
        params.update(model_attribute.params)
    if input_params:
        params.update(input_params)
    return params


def _resolve(variable: str, matcher: Matcher, field: str, value: Value, params: Mapping[str, Any]) -> Any:
    if variable == "field":
        return field
    if variable == "value":
        return value.to_json()
    if variable.startswith("params."):
        name = variable[len("params.") :]
        if name not in params:
            raise MissingParameterError(matcher.name, variable)
        return params[name]
    # Unknown variables are left in place.
    return "{{ " + variable + " }}"


def _as_text(variable: str, matcher: Matcher, field: str, value: Value, params: Mapping[str, Any]) -> str:
    if variable == "value":
        return value.serialized
    resolved = _resolve(variable, matcher, field, value, params)
    if isinstance(resolved, bool):
        return "true" if resolved else "false"
    return str(resolved)


def _render(node: Any, matcher: Matcher, field: str, value: Value, params: Mapping[str, Any]) -> Any:
    if isinstance(node, dict):
        return {
            _render_text(key, matcher, field, value, params): _render(child, matcher, field, value, params)
            for key, child in node.items()
        }
    if isinstance(node, list):
        return [_render(child, matcher, field, value, params) for child in node]
    if isinstance(node, str):
        whole = VARIABLE_PATTERN.fullmatch(node.strip())
        if whole is not None:
            return _resolve(whole.group(1), matcher, field, value, params)
        return _render_text(node, matcher, field, value, params)
    return node


def _render_text(text: str, matcher: Matcher, field: str, value: Value, params: Mapping[str, Any]) -> str:
    return VARIABLE_PATTERN.sub(
        lambda m: _as_text(m.group(1), matcher, field, value, params),
        text,
    )


def render_clause(matcher: Matcher, field: str, value: Value, params: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Substitute ``field``, ``value`` and ``params.*`` into the matcher clause.

    A string that consists of a single variable takes the typed value, so
    numbers and booleans stay unquoted while strings and dates stay quoted.
    Variables embedded in longer strings are substituted as text. Blank or
    null values render nothing and return ``None``.
    """
    if value.is_blank:
        return None
    return _render(matcher.clause, matcher, field, value, params)


def build_value_leaf(
    matcher: Matcher,
    field: str,
    value: Value,
    params: Mapping[str, Any],
    tag: Optional[str] = None,
) -> Optional[Leaf]:
    """Render the matcher for one (field, value) pair as a predicate leaf."""
    clause = render_clause(matcher, field, value, params)
    if clause is None:
        LOGGER.debug("Skipping blank value for field '%s'", field)
        return None
    return Leaf(field=field, op="match", value=value, tag=tag, clause=clause)
