"""Utility helpers for reading documents from JSON files."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator

from entityfinder.errors import ValidationError

DOCUMENT_SUFFIXES = (".json", ".jsonl", ".ndjson")


def iter_document_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield JSON and NDJSON paths from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_document_paths(
                sorted(child for child in item.rglob("*") if child.suffix.lower() in DOCUMENT_SUFFIXES)
            )
        elif item.is_file() and item.suffix.lower() in DOCUMENT_SUFFIXES:
            yield item


def load_documents(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield the JSON objects stored in a file.

    ``.json`` files hold one object or an array of objects; ``.jsonl`` and
    ``.ndjson`` files hold one object per line.
    """
    if path.suffix.lower() == ".json":
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{path} is not valid JSON: {exc.msg}") from exc
        records = data if isinstance(data, list) else [data]
        for record in records:
            if not isinstance(record, dict):
                raise ValidationError(f"{path} must contain JSON objects.")
            yield record
        return

    with path.open("r", encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"{path}:{number} is not valid JSON: {exc.msg}") from exc
            if not isinstance(record, dict):
                raise ValidationError(f"{path}:{number} must be a JSON object.")
            yield record


def compute_sha256(document: Dict[str, Any]) -> str:
    """Compute SHA256 hash of a document's canonical JSON form."""
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def document_id(document: Dict[str, Any], id_field: str | None = None) -> str:
    """Take the id from ``id_field`` when present, else derive it from the content."""
    if id_field and document.get(id_field) not in (None, ""):
        return str(document[id_field])
    return compute_sha256(document)[:20]
