"""
Incident Review RAG - CLI Entry Point
--------------------------------------
Exposes Typer commands for each stage of the evidence pipeline.

Usage:
    python -m incident_rag.main add-source --type freeform_text --label notes --text "..."
    python -m incident_rag.main build-chunks            # Chunk every source
    python -m incident_rag.main index --rebuild-chunks  # Chunk + embed + index
    python -m incident_rag.main query "vendor outage"   # Ranked evidence hits
    python -m incident_rag.main draft --section exec_summary --quarter "Q1 2026" --chunk <id>
    python -m incident_rag.main status                  # Index status
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from incident_rag.config import DEFAULT_CONFIG_PATH, load_config
from incident_rag.embedding.embedder import OllamaEmbedder
from incident_rag.embedding.index_store import IndexStore
from incident_rag.embedding.pipeline import build_index_with_progress, rebuild_evidence
from incident_rag.errors import RagError
from incident_rag.evidence.store import EvidenceStore
from incident_rag.generation.artifacts import DraftArtifactStore
from incident_rag.generation.drafter import SectionDrafter
from incident_rag.generation.generator import OllamaGenerator
from incident_rag.providers.ollama import OllamaClient
from incident_rag.retrieval.retriever import EvidenceRetriever
from incident_rag.schemas import (
    AiDraftSectionRequest,
    EvidenceAddSourceInput,
    EvidenceOrigin,
    EvidenceSourceType,
    IndexBuildInput,
    OriginKind,
    SectionId,
)
from incident_rag.utils.logger import setup_logger_from_config

app = typer.Typer(
    name="incident-rag",
    help="Incident Review RAG - evidence, retrieval and grounded drafting CLI",
    add_completion=False,
)
console = Console()

ConfigOption = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML")
JsonOption = typer.Option(False, "--json", help="Print structured JSON output")


# --- Helpers ------------------------------------------------------------------

def _now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _setup(config_path: str) -> dict:
    cfg = load_config(config_path if Path(config_path).exists() else None)
    setup_logger_from_config(cfg)
    return cfg


def _emit(data: Any) -> None:
    console.print_json(data=data)


@contextmanager
def _handle_errors(json_out: bool) -> Iterator[None]:
    """Print a RagError as code + message and exit 1."""
    try:
        yield
    except RagError as exc:
        logger.debug(f"[CLI] {exc}")
        if json_out:
            _emit({"error": exc.to_dict()})
        else:
            console.print(f"[red]{exc.code.value}[/red] {exc.message}")
            if exc.details:
                console.print(f"[dim]{exc.details}[/dim]")
        raise typer.Exit(1)


def _summary_table(rows, title: str) -> Table:
    table = Table("Chunk ID", "Source", "Ord", "Chars", "Snippet", title=title, box=box.SIMPLE, header_style="bold dim")
    for s in rows:
        table.add_row(s.chunk_id[:16], s.source_id[:12], str(s.ordinal), str(s.token_count_est), s.snippet[:70])
    return table


# --- Sources & Chunks ---------------------------------------------------------

@app.command("add-source")
def add_source(
    source_type: EvidenceSourceType = typer.Option(..., "--type", "-t", help="Evidence source type"),
    label: str = typer.Option(..., "--label", "-l", help="Human-readable label"),
    path: Optional[str] = typer.Option(None, "--path", "-p", help="File or sanitized-export directory"),
    text: Optional[str] = typer.Option(None, "--text", help="Pasted evidence text"),
    config: str = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """Register an evidence source (file, directory or pasted text)."""
    cfg = _setup(config)
    if text is not None:
        origin = EvidenceOrigin(kind=OriginKind.PASTE.value)
    elif path and Path(path).is_dir():
        origin = EvidenceOrigin(kind=OriginKind.DIRECTORY.value, path=str(Path(path).resolve()))
    else:
        origin = EvidenceOrigin(kind=OriginKind.FILE.value, path=str(Path(path).resolve()) if path else None)

    with _handle_errors(json_out):
        source = EvidenceStore.from_config(cfg).add_source(
            EvidenceAddSourceInput(type=source_type, origin=origin, label=label, created_at=_now(), text=text)
        )
    if json_out:
        _emit(source.model_dump(mode="json"))
    else:
        console.print(f"[green][OK] Source added[/green] {source.source_id}")


@app.command()
def sources(config: str = ConfigOption, json_out: bool = JsonOption) -> None:
    """List registered evidence sources."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        rows = EvidenceStore.from_config(cfg).list_sources()
    if json_out:
        _emit([s.model_dump(mode="json") for s in rows])
        return
    table = Table("Source ID", "Type", "Origin", "Label", "Created", box=box.SIMPLE, header_style="bold dim")
    for s in rows:
        origin = s.origin.kind + (f": {s.origin.path}" if s.origin.path else "")
        table.add_row(s.source_id[:16], s.type.value, origin, s.label, s.created_at)
    console.print(table)


@app.command("build-chunks")
def build_chunks(
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Limit to one source_id"),
    config: str = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """Chunk one source, or every registered source."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        result = EvidenceStore.from_config(cfg).build_chunks(source, updated_at=_now())
    if json_out:
        _emit(result.model_dump(mode="json"))
    else:
        console.print(f"[green][OK] {result.chunk_count} chunk(s) built[/green]")


@app.command()
def chunks(
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Limit to one source_id"),
    config: str = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """List chunk summaries ordered by source and ordinal."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        rows = EvidenceStore.from_config(cfg).list_chunks(source)
    if json_out:
        _emit([s.model_dump(mode="json") for s in rows])
    else:
        console.print(_summary_table(rows, f"{len(rows)} chunk(s)"))


@app.command()
def chunk(
    chunk_id: str = typer.Argument(..., help="Chunk ID"),
    config: str = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """Show one chunk with its full text."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        c = EvidenceStore.from_config(cfg).get_chunk(chunk_id)
    if json_out:
        _emit(c.model_dump(mode="json"))
        return
    console.print(
        Panel(
            c.text,
            title=f"[bold]{c.chunk_id[:16]}[/bold] ordinal={c.ordinal}",
            subtitle=f"source={c.source_id[:12]} kind={c.meta.kind}",
            border_style="cyan",
        )
    )


@app.command()
def context(
    chunk_id: str = typer.Argument(..., help="Center chunk ID"),
    window: int = typer.Option(1, "--window", "-w", help="Neighbours on each side"),
    config: str = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """Show a chunk with its neighbours from the same source."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        resp = EvidenceStore.from_config(cfg).get_context(chunk_id, window)
    if json_out:
        _emit(resp.model_dump(mode="json"))
    else:
        console.print(_summary_table(resp.chunks, f"Context around {resp.center_chunk_id[:16]}"))


# --- Index & Retrieval --------------------------------------------------------

@app.command()
def index(
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Scope the index to one source_id"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Embedding model (default from config)"),
    rebuild_chunks: bool = typer.Option(False, "--rebuild-chunks", help="Re-chunk sources before indexing"),
    config: str = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """Embed new or changed chunks and update the vector index."""
    cfg = _setup(config)
    model = model or cfg["models"]["embedding"]
    out = Console(quiet=True) if json_out else console
    with _handle_errors(json_out):
        evidence = EvidenceStore.from_config(cfg)
        store = IndexStore.from_config(cfg)
        embedder = OllamaEmbedder.from_config(cfg)
        if rebuild_chunks:
            status = rebuild_evidence(
                evidence, store, embedder, model, updated_at=_now(), source_id=source, console=out
            )
        else:
            status = build_index_with_progress(
                store,
                evidence,
                embedder,
                IndexBuildInput(model=model, source_id=source, updated_at=_now()),
                console=out,
            )
    if json_out:
        _emit(status.model_dump(mode="json"))
    elif not rebuild_chunks:
        console.print(
            f"[green][OK] Index ready[/green] | {status.chunk_count}/{status.chunks_total} vectors "
            f"| dims={status.dims} | model={status.model}"
        )


@app.command()
def status(config: str = ConfigOption, json_out: bool = JsonOption) -> None:
    """Show the current index status."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        st = IndexStore.from_config(cfg).status()
    if json_out:
        _emit(st.model_dump(mode="json"))
        return
    console.print()
    console.print("[bold]Evidence Index[/bold]")
    console.print(f"  Ready     : {'[green]yes[/green]' if st.ready else '[yellow]no[/yellow]'}")
    console.print(f"  Model     : {st.model or '-'}")
    console.print(f"  Dims      : {st.dims or '-'}")
    console.print(f"  Vectors   : {st.chunk_count} / {st.chunks_total}")
    console.print(f"  Scope     : {st.source_id or 'all sources'}")
    console.print(f"  Updated   : {st.updated_at or '-'}")


@app.command()
def query(
    text: str = typer.Argument(..., help="Free-text query"),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", help="Hits to return (1-50)"),
    source: Optional[list[str]] = typer.Option(None, "--source", "-s", help="Restrict to source_id (repeatable)"),
    config: str = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """Rank evidence chunks against a query by cosine similarity."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        retriever = EvidenceRetriever(
            EvidenceStore.from_config(cfg),
            IndexStore.from_config(cfg),
            OllamaEmbedder.from_config(cfg),
            top_k=cfg.get("retrieval", {}).get("top_k", 8),
        )
        resp = retriever.query(text, top_k=top_k, source_filter=source or None)
    if json_out:
        _emit(resp.model_dump(mode="json"))
        return
    table = Table("No.", "Score", "Chunk ID", "Source", "Snippet", box=box.SIMPLE, header_style="bold dim")
    for i, hit in enumerate(resp.hits, start=1):
        table.add_row(str(i), f"{hit.score:.4f}", hit.chunk_id[:16], hit.source_id[:12], hit.snippet[:70])
    console.print(table)


# --- Drafting -----------------------------------------------------------------

@app.command()
def draft(
    section: SectionId = typer.Option(..., "--section", help="Section to draft"),
    quarter: str = typer.Option(..., "--quarter", "-q", help="Quarter label, e.g. 'Q1 2026'"),
    chunk_ids: Optional[list[str]] = typer.Option(None, "--chunk", help="Approved chunk_id (repeatable)"),
    prompt: str = typer.Option("", "--prompt", help="Extra drafting instructions"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Generation model (default from config)"),
    save: bool = typer.Option(False, "--save", help="Record the accepted draft in the draft ledger"),
    config: str = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """Draft one report section grounded in the approved chunks."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        evidence = EvidenceStore.from_config(cfg)
        generator = OllamaGenerator.from_config(cfg)
        drafter = SectionDrafter(
            evidence,
            generator,
            model=model or cfg["models"]["generation"],
            endpoint=generator.endpoint,
        )
        request = AiDraftSectionRequest(
            section_id=section,
            quarter_label=quarter,
            prompt=prompt,
            citation_chunk_ids=chunk_ids or [],
        )
        with console.status("[cyan]Drafting...[/cyan]"):
            resp = drafter.draft(request)
        artifact = DraftArtifactStore.from_config(cfg).save(resp, quarter, _now()) if save else None

    if json_out:
        out = resp.model_dump(mode="json")
        if artifact is not None:
            out["artifact_hash"] = artifact.artifact_hash
        _emit(out)
        return
    console.print(
        Panel(
            Markdown(resp.markdown),
            title=f"[bold green]{section.value}[/bold green]",
            border_style="green",
            expand=True,
        )
    )
    console.print(
        f"[dim]citations={len(resp.citations)}  model={resp.model_name}  "
        f"template={resp.prompt_template_version}[/dim]"
    )
    if artifact is not None:
        console.print(f"[green][OK] Saved[/green] {artifact.artifact_hash}")


@app.command()
def drafts(
    quarter: Optional[str] = typer.Option(None, "--quarter", "-q", help="Filter by quarter label"),
    config: str = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """List saved draft artifacts."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        rows = DraftArtifactStore.from_config(cfg).list(quarter)
    if json_out:
        _emit([a.model_dump(mode="json") for a in rows])
        return
    table = Table("Hash", "Quarter", "Section", "Citations", "Model", "Created", box=box.SIMPLE, header_style="bold dim")
    for a in rows:
        table.add_row(
            a.artifact_hash[:16], a.quarter_label, a.section_id.value,
            str(len(a.citation_chunk_ids)), a.model_name, a.created_at,
        )
    console.print(table)


@app.command()
def health(config: str = ConfigOption, json_out: bool = JsonOption) -> None:
    """Check that the loopback Ollama server is reachable."""
    cfg = _setup(config)
    with _handle_errors(json_out):
        client = OllamaClient.from_config(cfg)
        client.health_check()
    if json_out:
        _emit({"ok": True, "base_url": client.base_url})
    else:
        console.print(f"[green][OK] Ollama healthy[/green] at {client.base_url}")


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
