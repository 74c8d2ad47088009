"""Multi-hop resolution job: query, harvest, expand until nothing new appears."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Set

from entityfinder.errors import (
    BackendError,
    CollectionNotFoundError,
    EntityFinderError,
    JobAlreadyRanError,
    TypeCoercionError,
)
from entityfinder.models import EntityModel
from entityfinder.resolution.explanation import Explanation, explain_hit
from entityfinder.resolution.inputs import InputAttribute, ResolutionInput
from entityfinder.resolution.planner import QueryPlan, plan_query
from entityfinder.resolution.predicates import Predicate, compile_bool_query
from entityfinder.resolution.values import Value, create_value, sorted_values

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class JobOptions:
    max_hops: int = 100
    max_docs_per_query: int = 1000
    include_attributes: bool = True
    include_explanation: bool = False
    include_hits: bool = True
    include_queries: bool = False
    include_source: bool = True
    profile: bool = False


@dataclass(slots=True)
class SearchHit:
    """One document returned by a search backend."""

    id: str
    source: Dict[str, Any] = field(default_factory=dict)
    fields: Dict[str, Any] = field(default_factory=dict)
    matched_tags: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SearchResponse:
    hits: List[SearchHit] = field(default_factory=list)
    took_ms: int = 0
    profile: Optional[Dict[str, Any]] = None


class SearchBackend(Protocol):
    def search(self, collection: str, predicate: Predicate, size: int, profile: bool = False) -> SearchResponse:
        ...


@dataclass(frozen=True, slots=True)
class Hit:
    collection: str
    id: str
    hop: int
    query: int
    attributes: Optional[Dict[str, Any]] = None
    explanation: Optional[Explanation] = None
    source: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"_index": self.collection, "_id": self.id, "_hop": self.hop, "_query": self.query}
        if self.attributes is not None:
            data["_attributes"] = self.attributes
        if self.explanation is not None:
            data["_explanation"] = self.explanation.to_dict()
        if self.source is not None:
            data["_source"] = self.source
        return data


@dataclass(slots=True)
class JobResult:
    took_ms: int
    hits: List[Hit] = field(default_factory=list)
    hops: int = 0
    queries: Optional[List[Dict[str, Any]]] = None
    include_hits: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"took": self.took_ms}
        if self.include_hits:
            data["hits"] = {"total": len(self.hits), "hits": [hit.to_dict() for hit in self.hits]}
        if self.queries is not None:
            data["queries"] = self.queries
        return data


def extract_values(node: Any, path: Sequence[str]) -> List[Any]:
    """Collect the values found at ``path`` in a JSON document.

    Keys may themselves contain dots, so each prefix of the remaining path
    is tried as a key. Arrays are flattened along the way.
    """
    if isinstance(node, list):
        values: List[Any] = []
        for item in node:
            values.extend(extract_values(item, path))
        return values
    if isinstance(node, Mapping):
        for end in range(1, len(path) + 1):
            key = ".".join(path[:end])
            if key in node:
                return extract_values(node[key], path[end:])
        return []
    if path or node is None:
        return []
    return [node]


def nest_attributes(model: EntityModel, values: Mapping[str, Set[Value]]) -> Dict[str, Any]:
    """Attribute excerpt of a hit; dotted attribute names become nested objects."""
    nested: Dict[str, Any] = {}
    for name in sorted(values):
        parts = model.attributes[name].name_fields
        target = nested
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = [value.to_json() for value in sorted_values(values[name])]
    return nested


class Job:
    """Breadth-first expansion over every collection of the entity model."""

    def __init__(
        self,
        inputs: ResolutionInput,
        backend: SearchBackend,
        options: JobOptions | None = None,
    ) -> None:
        self.inputs = inputs
        self.backend = backend
        self.options = options or JobOptions()
        self.reset()

    @property
    def model(self) -> EntityModel:
        return self.inputs.model

    def reset(self) -> None:
        """Clear all traversal state and re-seed the frontier from the input."""
        self.attributes: Dict[str, InputAttribute] = self.inputs.copy_attributes()
        self.seen_ids: Dict[str, Set[str]] = {name: set() for name in self.model.indices}
        self.missing_collections: Set[str] = set()
        self.hits: List[Hit] = []
        self.queries: List[Dict[str, Any]] = []
        self.hop = 0
        self.state = "idle"
        self._query_number = 0

    def run(self) -> JobResult:
        if self.state != "idle":
            raise JobAlreadyRanError()
        self.state = "running"
        started = time.perf_counter()
        try:
            self._traverse()
        except Exception:
            self.state = "failed"
            raise
        self.state = "done"
        took_ms = int((time.perf_counter() - started) * 1000)
        LOGGER.info("Resolution finished after %d hop(s) with %d hit(s) in %d ms", self.hop + 1, len(self.hits), took_ms)
        return JobResult(
            took_ms=took_ms,
            hits=list(self.hits),
            hops=self.hop,
            queries=list(self.queries) if self.options.include_queries else None,
            include_hits=self.options.include_hits,
        )

    def _collections(self) -> List[str]:
        return [name for name in sorted(self.model.indices) if name not in self.missing_collections]

    def _traverse(self) -> None:
        while True:
            staged: Dict[str, InputAttribute] = {}
            for collection in self._collections():
                self._query_collection(collection, staged)
            productive = self._merge(staged)
            if self.options.max_hops > -1 and self.hop >= self.options.max_hops:
                LOGGER.debug("Hop limit %d reached", self.options.max_hops)
                return
            if not productive:
                LOGGER.debug("No new values at hop %d", self.hop)
                return
            self.hop += 1

    def _query_collection(self, collection: str, staged: Dict[str, InputAttribute]) -> None:
        plan = plan_query(
            self.model,
            collection,
            self.attributes,
            hop=self.hop,
            number=self._query_number,
            seen_ids=self.seen_ids[collection],
            seed_ids=self.inputs.ids.get(collection, ()),
            terms=self.inputs.terms,
            scope=self.inputs.scope,
            explain=self.options.include_explanation,
        )
        if plan is None:
            return
        self._query_number += 1
        try:
            response = self.backend.search(
                collection, plan.predicate, self.options.max_docs_per_query, self.options.profile
            )
        except CollectionNotFoundError as exc:
            LOGGER.warning("Collection '%s' not found, skipping it for the rest of the job", collection)
            self.missing_collections.add(collection)
            self._log_query(plan, None, error=str(exc))
            return
        except EntityFinderError:
            raise
        except Exception as exc:
            raise BackendError(f"Search failed on collection '{collection}': {exc}") from exc
        if not isinstance(response, SearchResponse):
            raise BackendError(f"Malformed response from collection '{collection}'")
        self._log_query(plan, response)
        for search_hit in response.hits:
            self._harvest(plan, search_hit, staged)

    def _field_values(self, collection: str, field_name: str, search_hit: SearchHit) -> List[Any]:
        if field_name in search_hit.fields:
            raw = search_hit.fields[field_name]
            return [item for item in (raw if isinstance(raw, list) else [raw]) if item is not None]
        index_field = self.model.indices[collection].fields[field_name]
        values = extract_values(search_hit.source, index_field.path)
        if not values and index_field.parent_path:
            values = extract_values(search_hit.source, index_field.parent_path)
        return values

    def _harvest(self, plan: QueryPlan, search_hit: SearchHit, staged: Dict[str, InputAttribute]) -> None:
        collection = plan.collection
        seen = self.seen_ids[collection]
        if search_hit.id in seen:
            return
        seen.add(search_hit.id)

        doc_values: Dict[str, Set[Value]] = {}
        target_values: Dict[str, Any] = {}
        for field_name, index_field in sorted(self.model.indices[collection].fields.items()):
            attribute = self.model.attributes.get(index_field.attribute)
            if attribute is None:
                continue
            raw_values = self._field_values(collection, field_name, search_hit)
            if not raw_values:
                continue
            for raw in raw_values:
                try:
                    value = create_value(attribute.type, raw)
                except TypeCoercionError as exc:
                    LOGGER.warning("Skipping value of '%s' in %s/%s: %s", field_name, collection, search_hit.id, exc)
                    continue
                doc_values.setdefault(attribute.name, set()).add(value)
                if value.is_blank:
                    continue
                staged.setdefault(attribute.name, InputAttribute(attribute.name, attribute.type)).values.add(value)
            target_values[field_name] = raw_values[0] if len(raw_values) == 1 else raw_values

        explanation = None
        if self.options.include_explanation and search_hit.matched_tags:
            explanation = explain_hit(self.model, search_hit.matched_tags, target_values, self.inputs.attributes)
        self.hits.append(
            Hit(
                collection=collection,
                id=search_hit.id,
                hop=self.hop,
                query=plan.number,
                attributes=nest_attributes(self.model, doc_values) if self.options.include_attributes else None,
                explanation=explanation,
                source=search_hit.source if self.options.include_source else None,
            )
        )

    def _merge(self, staged: Mapping[str, InputAttribute]) -> bool:
        """Add staged values to the frontier; return True if any was new."""
        productive = False
        for name, candidate in staged.items():
            known = self.attributes.get(name)
            if known is None:
                known = self.attributes[name] = InputAttribute(name, candidate.type)
            new_values = candidate.values - known.values
            if new_values:
                known.values.update(new_values)
                productive = True
        return productive

    def _log_query(self, plan: QueryPlan, response: Optional[SearchResponse], error: Optional[str] = None) -> None:
        if not (self.options.include_queries or self.options.profile):
            return
        if response is None:
            search_response: Dict[str, Any] = {"error": error}
        else:
            search_response = {"took": response.took_ms, "hits": {"total": len(response.hits)}}
            if response.profile is not None:
                search_response["profile"] = response.profile
        entry: Dict[str, Any] = {"_hop": self.hop, "_query": plan.number, "_index": plan.collection}
        entry.update(plan.summary())
        entry["search"] = {"request": {"query": compile_bool_query(plan.predicate)}, "response": search_response}
        self.queries.append(entry)
