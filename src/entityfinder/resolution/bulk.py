"""Bulk resolution: many jobs from one NDJSON request."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional

from entityfinder.errors import ValidationError
from entityfinder.models import EntityModel
from entityfinder.resolution.inputs import parse_input
from entityfinder.resolution.job import Job, JobOptions, SearchBackend
from entityfinder.utils.batch import BatchRunner

LOGGER = logging.getLogger(__name__)

MAX_CONCURRENT_JOBS = 100


@dataclass(slots=True)
class BulkEntry:
    params: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)


def parse_bulk_entries(body: str) -> List[BulkEntry]:
    """Split an NDJSON body into (params, payload) pairs on alternating lines."""
    lines = [line for line in body.splitlines() if line.strip()]
    if not lines or len(lines) % 2 != 0:
        raise ValidationError("Bulk request must have repeating pairs of params and payloads on separate lines.")
    entries: List[BulkEntry] = []
    for number in range(0, len(lines), 2):
        params, payload = (_parse_line(lines[i], i + 1) for i in (number, number + 1))
        entries.append(BulkEntry(params=params, payload=payload))
    return entries


def _parse_line(line: str, number: int) -> Dict[str, Any]:
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Bulk line {number} is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"Bulk line {number} must be a JSON object.")
    return data


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValidationError(f"Failed to parse parameter [{name}] with value [{value}]")


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Failed to parse parameter [{name}] with value [{value}]")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Failed to parse parameter [{name}] with value [{value}]") from None


def options_from_params(params: Mapping[str, Any], base: Optional[JobOptions] = None) -> JobOptions:
    """Override job options with request parameters such as ``max_hops`` or ``include_queries``."""
    base = base or JobOptions()
    known = {option.name: option for option in fields(JobOptions)}
    changes: Dict[str, Any] = {}
    for name, value in params.items():
        if name not in known:
            raise ValidationError(f"'{name}' is not a recognized parameter.")
        if isinstance(getattr(base, name), bool):
            changes[name] = _as_bool(name, value)
        else:
            changes[name] = _as_int(name, value)
    return replace(base, **changes)


def resolve_bulk(
    entries: List[BulkEntry],
    backend: SearchBackend,
    *,
    model: Optional[EntityModel] = None,
    options: Optional[JobOptions] = None,
    concurrency: int = MAX_CONCURRENT_JOBS,
    fail_fast: bool = False,
) -> Dict[str, Any]:
    """Run one resolution job per entry and return ``{took, errors, items}``.

    Each entry's params override ``options``. A failed job becomes an
    ``{"error": ...}`` item without affecting its siblings unless
    ``fail_fast`` is set.
    """

    def run_entry(entry: BulkEntry) -> Dict[str, Any]:
        job_options = options_from_params(entry.params, options)
        inputs = parse_input(entry.payload, model)
        return Job(inputs, backend, job_options).run().to_dict()

    runner = BatchRunner(entries, run_entry, min(concurrency, MAX_CONCURRENT_JOBS), fail_fast=fail_fast)
    result = runner.run()
    items: List[Dict[str, Any]] = []
    for item in result.items:
        if item.error is not None:
            LOGGER.warning("Bulk job failed: %s", item.error)
            items.append({"took": item.took_ms, "error": {"type": type(item.error).__name__, "reason": str(item.error)}})
        else:
            items.append(item.result)
    return {"took": result.took_ms, "errors": result.errors, "items": items}
