"""Command line interface for EntityFinder."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from entityfinder.config import AppConfig
from entityfinder.errors import EntityFinderError, TypeCoercionError, ValidationError
from entityfinder.index.storage import SQLiteDocumentStore
from entityfinder.models import EntityModel, load_model
from entityfinder.resolution.bulk import parse_bulk_entries, resolve_bulk
from entityfinder.resolution.inputs import parse_input
from entityfinder.resolution.job import Job, JobResult
from entityfinder.resolution.values import coerce_term
from entityfinder.utils.files import document_id, iter_document_paths, load_documents
from entityfinder.web.app import app as web_app


console = Console()
app = typer.Typer(help="EntityFinder - rule-driven entity resolution over JSON collections")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _open_store(db: Optional[Path], *, must_exist: bool = True) -> SQLiteDocumentStore:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())
    if must_exist and not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    _ensure_db_parent(resolved_db)
    return SQLiteDocumentStore(resolved_db)


def _load_model(model: Optional[Path]) -> Optional[EntityModel]:
    if model is None:
        return None
    if not model.exists():
        raise typer.BadParameter(f"Entity model not found: {model}")
    try:
        return load_model(model)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{path} is not valid JSON: {exc.msg}") from exc


def _attribute_payload(entity_model: Optional[EntityModel], pairs: List[str]) -> Dict[str, List[Any]]:
    """Turn ``name=value`` options into typed input attribute values."""
    attributes: Dict[str, List[Any]] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected NAME=VALUE, got '{pair}'")
        attribute_type = "string"
        if entity_model is not None and name in entity_model.attributes:
            attribute_type = entity_model.attributes[name].type
        if attribute_type in ("number", "boolean"):
            try:
                value: Any = coerce_term(raw, attribute_type).value
            except TypeCoercionError as exc:
                raise typer.BadParameter(str(exc)) from exc
        else:
            value = raw
        attributes.setdefault(name, []).append(value)
    return attributes


def _print_hits(result: JobResult) -> None:
    if not result.hits:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Hop")
    table.add_column("Collection")
    table.add_column("ID")
    table.add_column("Attributes")

    for hit in result.hits:
        attributes = json.dumps(hit.attributes or {}, ensure_ascii=False)
        table.add_row(str(hit.hop), hit.collection, hit.id, attributes[:180])

    console.print(table)
    console.print(f"{len(result.hits)} hit(s) in {result.took_ms} ms")


@app.command()
def index(
    collection: str = typer.Argument(..., help="Collection to index into."),
    inputs: List[Path] = typer.Argument(
        ..., help="JSON or NDJSON files (or directories) with documents.", resolve_path=True
    ),
    id_field: Optional[str] = typer.Option(None, "--id-field", help="Document field holding the id"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index JSON documents into a collection."""
    _setup_logging(verbose)
    store = _open_store(db, must_exist=False)

    console.print(f"Indexing into [bold]{store.db_path}[/bold]...")
    paths = list(iter_document_paths(inputs))
    if not paths:
        console.print("[yellow]No JSON documents found.[/yellow]")
        store.close()
        return

    try:
        documents = [
            (document_id(document, id_field), document) for path in paths for document in load_documents(path)
        ]
        stats = store.upsert_documents(collection, documents)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        store.close()
    console.print(
        f"Inserted: {stats['inserted']}, updated: {stats['updated']}, skipped: {stats['skipped']}"
    )


@app.command()
def resolve(
    input_file: Optional[Path] = typer.Argument(None, help="Resolution input JSON file."),
    model: Optional[Path] = typer.Option(None, "--model", "-m", help="Entity model JSON file"),
    attr: List[str] = typer.Option([], "--attr", "-a", help="Seed attribute as NAME=VALUE"),
    term: List[str] = typer.Option([], "--term", "-t", help="Free-form seed term"),
    max_hops: int = typer.Option(AppConfig().max_hops, help="Maximum hops (-1 for no limit)"),
    max_docs: int = typer.Option(AppConfig().max_docs_per_query, help="Maximum documents per query"),
    explain: bool = typer.Option(False, "--explain", help="Include match explanations"),
    queries: bool = typer.Option(False, "--queries", help="Include the compiled queries"),
    as_json: bool = typer.Option(False, "--json", help="Print the full JSON result"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Resolve an entity across every indexed collection."""
    _setup_logging(verbose)
    entity_model = _load_model(model)
    payload: Dict[str, Any] = _read_json(input_file) if input_file is not None else {}
    if not isinstance(payload, dict):
        raise typer.BadParameter("Resolution input must be a JSON object.")
    if attr:
        payload.setdefault("attributes", {}).update(_attribute_payload(entity_model, attr))
    if term:
        payload["terms"] = list(payload.get("terms", [])) + list(term)

    config = AppConfig(db_path=db if db is not None else AppConfig().db_path, max_hops=max_hops, max_docs_per_query=max_docs)
    store = _open_store(config.db_path)
    try:
        inputs = parse_input(payload, entity_model)
        options = config.job_options(include_explanation=explain, include_queries=queries)
        result = Job(inputs, store, options).run()
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except EntityFinderError as exc:
        console.print(f"[red]Resolution failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()

    if as_json:
        console.print_json(data=result.to_dict())
    else:
        _print_hits(result)


@app.command()
def bulk(
    requests_file: Path = typer.Argument(..., help="NDJSON file of params/payload line pairs."),
    model: Optional[Path] = typer.Option(None, "--model", "-m", help="Entity model JSON file"),
    concurrency: int = typer.Option(AppConfig().concurrency, help="Jobs to run at once"),
    fail_fast: bool = typer.Option(False, "--fail-fast", help="Stop at the first failed job"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run many resolution jobs concurrently."""
    _setup_logging(verbose)
    entity_model = _load_model(model)
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path, concurrency=concurrency)
    store = _open_store(config.db_path)
    try:
        entries = parse_bulk_entries(requests_file.read_text(encoding="utf-8"))
        result = resolve_bulk(
            entries,
            store,
            model=entity_model,
            options=config.job_options(),
            concurrency=config.concurrency,
            fail_fast=fail_fast,
        )
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except EntityFinderError as exc:
        console.print(f"[red]Bulk resolution failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    console.print_json(data=result)


@app.command()
def collections(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List indexed collections."""
    store = _open_store(db)
    try:
        rows = store.list_collections()
    finally:
        store.close()

    if not rows:
        console.print("[yellow]No collections found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Collection")
    table.add_column("Documents")
    table.add_column("Created")
    for row in rows:
        table.add_row(row["name"], str(row["document_count"]), str(row["created_at"]))
    console.print(table)


@app.command()
def drop(
    name: str = typer.Argument(..., help="Collection to delete."),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Delete a collection and all of its documents."""
    store = _open_store(db)
    try:
        deleted = store.drop_collection(name)
    finally:
        store.close()
    if not deleted:
        console.print(f"[yellow]Collection not found: {name}[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"Dropped collection {name}.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: Optional[Path] = typer.Option(None, "--model", "-m", help="Default entity model JSON file"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    config = AppConfig(db_path=db if db is not None else AppConfig().db_path, model_path=model)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, resolutions might fail.[/yellow]")
    web_app.state.config = config

    console.print(
        f"Starting web interface on http://{host}:{port} (database: {resolved_db})"
    )
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
