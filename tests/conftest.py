"""Shared fixtures: a small people model and an in-memory search backend."""

from __future__ import annotations

import copy
from typing import Any, Dict, List

import pytest

from entityfinder.errors import CollectionNotFoundError
from entityfinder.index.evaluator import filter_documents
from entityfinder.models import EntityModel
from entityfinder.resolution.job import SearchHit, SearchResponse


PEOPLE_MODEL: Dict[str, Any] = {
    "attributes": {
        "email": {"type": "string"},
        "phone": {"type": "string"},
        "name": {"type": "string"},
        "dob": {"type": "date", "params": {"format": "yyyy-MM-dd"}},
    },
    "resolvers": {
        "email": {"attributes": ["email"]},
        "phone": {"attributes": ["phone"]},
        "name_dob": {"attributes": ["name", "dob"]},
    },
    "matchers": {
        "exact": {"clause": {"term": {"{{ field }}": "{{ value }}"}}},
        "text": {
            "clause": {"match": {"{{ field }}": {"query": "{{ value }}", "operator": "{{ params.operator }}"}}},
            "params": {"operator": "and"},
        },
    },
    "indices": {
        "people": {
            "fields": {
                "email": {"attribute": "email", "matcher": "exact"},
                "phone": {"attribute": "phone", "matcher": "exact"},
                "name": {"attribute": "name", "matcher": "text"},
                "dob": {"attribute": "dob", "matcher": "exact"},
            }
        }
    },
}

PEOPLE_DOCS: List[tuple] = [
    ("p1", {"email": "a@x.org", "phone": "111", "name": "Ann Lee"}),
    ("p2", {"email": "b@x.org", "phone": "111", "name": "Ann B Lee"}),
    ("p3", {"email": "b@x.org", "phone": "222"}),
    ("p4", {"email": "z@x.org", "phone": "999", "name": "Zed"}),
]


class FakeBackend:
    """Evaluates predicates over in-memory documents and records every call."""

    def __init__(self, collections: Dict[str, List[tuple]]) -> None:
        self.collections = collections
        self.calls: List[Dict[str, Any]] = []

    def search(self, collection, predicate, size, profile=False):
        self.calls.append({"collection": collection, "predicate": predicate, "size": size})
        if collection not in self.collections:
            raise CollectionNotFoundError(collection)
        matches = filter_documents(predicate, self.collections[collection], size)
        return SearchResponse(
            hits=[SearchHit(id=doc_id, source=source, matched_tags=sorted(tags)) for doc_id, source, tags in matches],
            took_ms=1,
        )


@pytest.fixture
def model_data() -> Dict[str, Any]:
    return copy.deepcopy(PEOPLE_MODEL)


@pytest.fixture
def people_model(model_data) -> EntityModel:
    return EntityModel.from_dict(model_data)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend({"people": list(PEOPLE_DOCS)})
