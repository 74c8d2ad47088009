"""Tests for CLI commands."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
import typer
from typer.testing import CliRunner

from entityfinder.cli import _attribute_payload, _ensure_db_parent, _setup_logging, app
from entityfinder.index.storage import SQLiteDocumentStore
from entityfinder.web.app import app as web_app

from conftest import PEOPLE_DOCS, PEOPLE_MODEL


runner = CliRunner()


@pytest.fixture
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "model.json"
    path.write_text(json.dumps(PEOPLE_MODEL))
    return path


@pytest.fixture
def people_db(tmp_path: Path) -> Path:
    db_path = tmp_path / "people.db"
    store = SQLiteDocumentStore(db_path)
    store.upsert_documents("people", PEOPLE_DOCS)
    store.close()
    return db_path


class TestSetupLogging:
    """Tests for _setup_logging helper."""

    def test_setup_logging_verbose(self) -> None:
        """Verbose mode sets DEBUG level."""
        with patch("entityfinder.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=True)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.DEBUG

    def test_setup_logging_normal(self) -> None:
        """Normal mode sets INFO level."""
        with patch("entityfinder.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=False)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.INFO


class TestEnsureDbParent:
    """Tests for _ensure_db_parent helper."""

    def test_ensure_db_parent_creates_directory(self, tmp_path: Path) -> None:
        """Creates parent directory if it doesn't exist."""
        db_path = tmp_path / "subdir" / "test.db"
        assert not db_path.parent.exists()
        _ensure_db_parent(db_path)
        assert db_path.parent.exists()


class TestAttributePayload:
    """Tests for NAME=VALUE attribute options."""

    def test_typed_values(self, people_model) -> None:
        """Coerces values to the attribute type of the model."""
        people_model.attributes["phone"].type = "number"

        payload = _attribute_payload(people_model, ["phone=111", "email=a@x.org", "email=b@x.org"])

        assert payload == {"phone": [111], "email": ["a@x.org", "b@x.org"]}

    def test_malformed_pair(self) -> None:
        """Rejects options without a value."""
        with pytest.raises(typer.BadParameter):
            _attribute_payload(None, ["email"])


class TestIndexCommand:
    """Tests for the index command."""

    def test_index_no_documents_found(self, tmp_path: Path) -> None:
        """Shows warning when no JSON files are found."""
        empty_dir = tmp_path / "empty"
        empty_dir.mkdir()
        db_path = tmp_path / "test.db"

        result = runner.invoke(app, ["index", "people", str(empty_dir), "--db", str(db_path)])
        assert result.exit_code == 0
        assert "No JSON documents found" in result.stdout

    def test_index_documents(self, tmp_path: Path) -> None:
        """Indexes documents using the id field."""
        source = tmp_path / "people.json"
        source.write_text(json.dumps([{"uid": "p1", "email": "a@x.org"}, {"uid": "p2", "email": "b@x.org"}]))
        db_path = tmp_path / "data" / "test.db"

        result = runner.invoke(app, ["index", "people", str(source), "--id-field", "uid", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "Inserted: 2" in result.stdout

        store = SQLiteDocumentStore(db_path)
        try:
            assert store.get_document("people", "p2") == {"uid": "p2", "email": "b@x.org"}
        finally:
            store.close()

    def test_index_invalid_file(self, tmp_path: Path) -> None:
        """Fails on malformed JSON."""
        source = tmp_path / "broken.ndjson"
        source.write_text("{nope\n")

        result = runner.invoke(app, ["index", "people", str(source), "--db", str(tmp_path / "test.db")])
        assert result.exit_code != 0


class TestResolveCommand:
    """Tests for the resolve command."""

    def test_resolve_database_not_found(self, tmp_path: Path, model_file: Path) -> None:
        """Raises error when database doesn't exist."""
        db_path = tmp_path / "nonexistent.db"
        result = runner.invoke(
            app, ["resolve", "--model", str(model_file), "--attr", "email=a@x.org", "--db", str(db_path)]
        )
        assert result.exit_code == 2

    def test_resolve_prints_hits(self, people_db: Path, model_file: Path) -> None:
        """Displays the resolved documents in a table."""
        result = runner.invoke(
            app, ["resolve", "--model", str(model_file), "--attr", "email=a@x.org", "--db", str(people_db)]
        )
        assert result.exit_code == 0
        assert "3 hit(s)" in result.stdout

    def test_resolve_json(self, people_db: Path, model_file: Path) -> None:
        """Prints the full JSON result."""
        result = runner.invoke(
            app,
            [
                "resolve",
                "--model",
                str(model_file),
                "--attr",
                "email=a@x.org",
                "--max-hops",
                "0",
                "--json",
                "--db",
                str(people_db),
            ],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["hits"]["total"] == 1
        assert data["hits"]["hits"][0]["_id"] == "p1"

    def test_resolve_input_file(self, tmp_path: Path, people_db: Path, model_file: Path) -> None:
        """Reads the resolution input from a file."""
        input_file = tmp_path / "input.json"
        input_file.write_text(json.dumps({"ids": {"people": ["p4"]}}))

        result = runner.invoke(
            app, ["resolve", str(input_file), "--model", str(model_file), "--db", str(people_db)]
        )
        assert result.exit_code == 0
        assert "1 hit(s)" in result.stdout

    def test_resolve_no_results(self, people_db: Path, model_file: Path) -> None:
        """Shows message when nothing matches."""
        result = runner.invoke(
            app, ["resolve", "--model", str(model_file), "--attr", "email=nobody@x.org", "--db", str(people_db)]
        )
        assert result.exit_code == 0
        assert "No matches found" in result.stdout

    def test_resolve_invalid_input(self, people_db: Path, model_file: Path) -> None:
        """Rejects attributes missing from the model."""
        result = runner.invoke(
            app, ["resolve", "--model", str(model_file), "--attr", "ssn=1", "--db", str(people_db)]
        )
        assert result.exit_code == 2

    def test_resolve_missing_model(self, tmp_path: Path, people_db: Path) -> None:
        """Rejects a model path that does not exist."""
        result = runner.invoke(
            app,
            ["resolve", "--model", str(tmp_path / "none.json"), "--attr", "email=a", "--db", str(people_db)],
        )
        assert result.exit_code == 2


class TestBulkCommand:
    """Tests for the bulk command."""

    def test_bulk(self, tmp_path: Path, people_db: Path, model_file: Path) -> None:
        """Runs every request of the file."""
        requests_file = tmp_path / "requests.ndjson"
        requests_file.write_text(
            "\n".join(
                json.dumps(line)
                for line in (
                    {"max_hops": 0},
                    {"attributes": {"email": ["a@x.org"]}},
                    {"max_hops": 0},
                    {"attributes": {"email": ["z@x.org"]}},
                )
            )
        )

        result = runner.invoke(
            app, ["bulk", str(requests_file), "--model", str(model_file), "--db", str(people_db)]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["errors"] is False
        assert [item["hits"]["total"] for item in data["items"]] == [1, 1]

    def test_bulk_odd_lines(self, tmp_path: Path, people_db: Path, model_file: Path) -> None:
        """Rejects a file without params/payload pairs."""
        requests_file = tmp_path / "requests.ndjson"
        requests_file.write_text("{}\n")

        result = runner.invoke(
            app, ["bulk", str(requests_file), "--model", str(model_file), "--db", str(people_db)]
        )
        assert result.exit_code == 2


class TestCollectionCommands:
    """Tests for the collections and drop commands."""

    def test_collections(self, people_db: Path) -> None:
        """Lists collections with their document counts."""
        result = runner.invoke(app, ["collections", "--db", str(people_db)])
        assert result.exit_code == 0
        assert "people" in result.stdout
        assert "4" in result.stdout

    def test_collections_empty(self, tmp_path: Path) -> None:
        """Shows message when no collections exist."""
        db_path = tmp_path / "empty.db"
        SQLiteDocumentStore(db_path).close()

        result = runner.invoke(app, ["collections", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "No collections found" in result.stdout

    def test_drop(self, people_db: Path) -> None:
        """Deletes a collection."""
        result = runner.invoke(app, ["drop", "people", "--db", str(people_db)])
        assert result.exit_code == 0
        assert "Dropped collection people" in result.stdout

    def test_drop_unknown(self, people_db: Path) -> None:
        """Exits with an error for unknown collections."""
        result = runner.invoke(app, ["drop", "companies", "--db", str(people_db)])
        assert result.exit_code == 1
        assert "Collection not found" in result.stdout


class TestWebCommand:
    """Tests for the web command."""

    def test_web_starts_server(self, tmp_path: Path) -> None:
        """Starts uvicorn server with correct parameters."""
        db_path = tmp_path / "test.db"
        db_path.touch()

        with patch("uvicorn.run") as mock_uvicorn_run:
            result = runner.invoke(
                app, ["web", "--host", "0.0.0.0", "--port", "9000", "--db", str(db_path)]
            )
            assert result.exit_code == 0
            mock_uvicorn_run.assert_called_once()
            call_kwargs = mock_uvicorn_run.call_args[1]
            assert call_kwargs["host"] == "0.0.0.0"
            assert call_kwargs["port"] == 9000
        assert web_app.state.config.db_path == db_path
        del web_app.state.config

    def test_web_warns_missing_database(self, tmp_path: Path) -> None:
        """Shows warning when database doesn't exist."""
        db_path = tmp_path / "nonexistent.db"
        with patch("uvicorn.run"):
            result = runner.invoke(app, ["web", "--db", str(db_path)])
            assert result.exit_code == 0
            assert "database not found" in result.stdout.lower()
        del web_app.state.config
