"""
Evidence Pipeline - Chunk, Embed, Index
-----------------------------------------
Rebuilds the chunk set for one source (or all sources) and brings the
vector index up to date in a single step, with rich progress output.

Only chunks whose text changed are re-embedded; a no-change run makes
zero embedding calls.
"""
from __future__ import annotations

from typing import Optional

from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from incident_rag.embedding.embedder import Embedder
from incident_rag.embedding.index_store import IndexStore
from incident_rag.evidence.store import EvidenceStore
from incident_rag.schemas import IndexBuildInput, IndexStatus


def build_index_with_progress(
    index: IndexStore,
    evidence: EvidenceStore,
    embedder: Embedder,
    build_input: IndexBuildInput,
    console: Optional[Console] = None,
) -> IndexStatus:
    """Run IndexStore.build() behind a rich progress bar."""
    console = console or Console()
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("[cyan]Embedding changed chunks...[/cyan]", total=None)

        def _advance(done: int, total: int) -> None:
            progress.update(task, completed=done, total=total)

        return index.build(evidence, embedder, build_input, on_progress=_advance)


def rebuild_evidence(
    evidence: EvidenceStore,
    index: IndexStore,
    embedder: Embedder,
    model: str,
    updated_at: str,
    source_id: Optional[str] = None,
    console: Optional[Console] = None,
) -> IndexStatus:
    """
    Execute the full evidence pipeline:
      1. Re-chunk the source(s) in scope
      2. Embed new or changed chunks
      3. Persist vectors, hashes and status

    Returns:
        The new index status.
    """
    console = console or Console()
    scope = source_id or "all sources"

    console.print(f"\n[bold cyan]Step 1 / 2 - Chunking {scope}[/bold cyan]")
    built = evidence.build_chunks(source_id, updated_at=updated_at)
    console.print(f"[green][OK] {built.chunk_count} chunk(s) built[/green]")

    console.print(f"\n[bold cyan]Step 2 / 2 - Indexing with {model}[/bold cyan]")
    status = build_index_with_progress(
        index,
        evidence,
        embedder,
        IndexBuildInput(model=model, source_id=source_id, updated_at=updated_at),
        console=console,
    )

    console.print(
        Panel(
            "[bold green]Evidence index ready[/bold green]\n\n"
            f"  Scope   : {scope}\n"
            f"  Model   : {status.model}\n"
            f"  Dims    : {status.dims}\n"
            f"  Vectors : {status.chunk_count} / {status.chunks_total}",
            box=box.DOUBLE_EDGE,
            border_style="green",
            expand=False,
        )
    )
    logger.info(f"[Pipeline] Rebuilt {scope} | {status.chunk_count}/{status.chunks_total} vectors")
    return status
