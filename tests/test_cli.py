"""CLI smoke tests for the commands that need no running Ollama server."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from rich.console import Console
from typer.testing import CliRunner

from incident_rag import main

runner = CliRunner()


@pytest.fixture(autouse=True)
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "config.yaml").write_text(
        "storage:\n  root: store\nlogging:\n  level: ERROR\n  file: null\n",
        encoding="utf-8",
    )
    for name in ("INCIDENT_RAG_STORE_ROOT", "INCIDENT_RAG_OLLAMA_URL", "INCIDENT_RAG_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(main, "console", Console(force_terminal=False, no_color=True, width=200))
    return tmp_path


def _json(*args: str):
    result = runner.invoke(main.app, [*args, "--json"])
    return result, json.loads(result.stdout)


def test_add_build_and_list_chunks() -> None:
    result, source = _json("add-source", "--type", "freeform_text", "--label", "notes", "--text", "Outage on Jan 5.")
    assert result.exit_code == 0
    assert source["origin"] == {"kind": "paste", "path": None}

    result, built = _json("build-chunks")
    assert result.exit_code == 0
    assert built["chunk_count"] == 1

    result, rows = _json("chunks")
    assert [r["source_id"] for r in rows] == [source["source_id"]]

    result, chunk = _json("chunk", rows[0]["chunk_id"])
    assert chunk["text"] == "Outage on Jan 5."


def test_unknown_chunk_reports_error_code() -> None:
    result, payload = _json("chunk", "does-not-exist")
    assert result.exit_code == 1
    assert payload["error"]["code"] == "AI_EVIDENCE_NOT_FOUND"
    assert payload["error"]["retryable"] is False


def test_status_of_empty_store() -> None:
    result, status = _json("status")
    assert result.exit_code == 0
    assert status["ready"] is False
    assert status["chunk_count"] == 0


def test_draft_without_chunks_is_rejected() -> None:
    result, payload = _json("draft", "--section", "exec_summary", "--quarter", "Q1 2026")
    assert result.exit_code == 1
    assert payload["error"]["code"] == "AI_CITATION_REQUIRED"


def test_remote_ollama_url_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INCIDENT_RAG_OLLAMA_URL", "http://ollama.example.com:11434")
    result, payload = _json("health")
    assert result.exit_code == 1
    assert payload["error"]["code"] == "AI_REMOTE_NOT_ALLOWED"


def test_drafts_empty_ledger() -> None:
    result, rows = _json("drafts")
    assert result.exit_code == 0
    assert rows == []
