"""FastAPI application exposing entity resolution over HTTP."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from entityfinder import __version__
from entityfinder.config import AppConfig
from entityfinder.errors import BackendError, EntityFinderError, StateError, ValidationError
from entityfinder.index.storage import SQLiteDocumentStore
from entityfinder.models import EntityModel, load_model
from entityfinder.resolution.bulk import options_from_params, parse_bulk_entries, resolve_bulk
from entityfinder.resolution.inputs import parse_input
from entityfinder.resolution.job import Job
from entityfinder.utils.files import document_id

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="EntityFinder Web", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Query parameters handled here rather than as job options.
_LOCATION_PARAMS = ("db", "model")


class IndexPayload(BaseModel):
    documents: List[Dict[str, Any]]
    id_field: str | None = None


class CollectionInfo(BaseModel):
    name: str
    document_count: int
    created_at: str | None = None


def _config() -> AppConfig:
    return getattr(app.state, "config", None) or AppConfig()


def _resolve_db_path(db: Path | None) -> Path:
    defaults = _config()
    config = AppConfig(db_path=db if db is not None else defaults.db_path)
    return config.resolve_db_path(Path.cwd())


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _open_existing_store(db: Path | None) -> SQLiteDocumentStore:
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        raise HTTPException(
            status_code=404,
            detail=f"Database not found at {resolved_db}. Index some documents first.",
        )
    return SQLiteDocumentStore(resolved_db)


def _load_model(model: Path | None) -> EntityModel | None:
    model_path = model if model is not None else _config().model_path
    if model_path is None:
        return None
    if not Path(model_path).exists():
        raise HTTPException(status_code=404, detail=f"Entity model not found: {model_path}")
    return load_model(Path(model_path))


def _http_error(exc: EntityFinderError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, BackendError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, StateError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _job_params(request: Request) -> Dict[str, str]:
    return {key: value for key, value in request.query_params.items() if key not in _LOCATION_PARAMS}


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


def _run_resolution(
    payload: Dict[str, Any], params: Dict[str, str], db: Path | None, model: Path | None
) -> Dict[str, Any]:
    entity_model = _load_model(model)
    options = options_from_params(params, _config().job_options())
    inputs = parse_input(payload, entity_model)
    store = _open_existing_store(db)
    try:
        return Job(inputs, store, options).run().to_dict()
    finally:
        store.close()


@app.post("/resolution")
async def resolve_entity(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    db: Path | None = None,
    model: Path | None = None,
) -> Dict[str, Any]:
    """Resolve one entity. Query parameters such as ``max_hops`` override job options."""
    try:
        return await asyncio.to_thread(_run_resolution, payload, _job_params(request), db, model)
    except EntityFinderError as exc:
        LOGGER.warning("Resolution failed: %s", exc)
        raise _http_error(exc) from exc


def _run_bulk(body: str, params: Dict[str, str], db: Path | None, model: Path | None) -> Dict[str, Any]:
    entity_model = _load_model(model)
    options = options_from_params(params, _config().job_options())
    entries = parse_bulk_entries(body)
    store = _open_existing_store(db)
    try:
        return resolve_bulk(entries, store, model=entity_model, options=options, concurrency=_config().concurrency)
    finally:
        store.close()


@app.post("/resolution/_bulk")
async def resolve_bulk_entities(request: Request, db: Path | None = None, model: Path | None = None) -> Dict[str, Any]:
    """Run NDJSON params/payload pairs as concurrent resolution jobs."""
    body = (await request.body()).decode("utf-8")
    if not body.strip():
        raise HTTPException(status_code=400, detail="Request body is missing.")
    try:
        return await asyncio.to_thread(_run_bulk, body, _job_params(request), db, model)
    except EntityFinderError as exc:
        LOGGER.warning("Bulk resolution failed: %s", exc)
        raise _http_error(exc) from exc


@app.get("/collections")
async def list_collections(db: Path | None = None) -> Dict[str, Any]:
    """List all indexed collections."""
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        return {"collections": [], "stats": {"collection_count": 0, "document_count": 0}}

    store = SQLiteDocumentStore(resolved_db)
    try:
        collections = [CollectionInfo(**row) for row in store.list_collections()]
        stats = store.get_stats()
    finally:
        store.close()

    return {"collections": collections, "stats": stats}


@app.post("/collections/{name}/documents")
async def index_documents(name: str, payload: IndexPayload, db: Path | None = None) -> Dict[str, Any]:
    """Insert or replace documents in a collection."""
    if not payload.documents:
        raise HTTPException(status_code=400, detail="No documents provided")

    resolved_db = _resolve_db_path(db)
    _ensure_db_parent(resolved_db)
    store = SQLiteDocumentStore(resolved_db)
    try:
        documents = [(document_id(document, payload.id_field), document) for document in payload.documents]
        stats = await asyncio.to_thread(store.upsert_documents, name, documents)
    finally:
        store.close()

    return {"status": "ok", "collection": name, "stats": stats}


@app.delete("/collections/{name}")
async def drop_collection(name: str, db: Path | None = None) -> Dict[str, Any]:
    """Delete a collection and its documents."""
    store = _open_existing_store(db)
    try:
        deleted = store.drop_collection(name)
    finally:
        store.close()

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Collection not found: {name}")

    return {"status": "ok", "deleted": name}
