"""
Incremental Vector Index
-------------------------
Persists one embedding per chunk, keyed by chunk_id, plus the text hash
each vector was computed from.  A rebuild only re-embeds chunks whose text
changed (or that have no vector yet).

Persistence (under <store root>/index/):
  - index_vectors.json -> {chunk_id: [float, ...]}
  - index_hashes.json  -> {chunk_id: text_sha256}
  - index_status.json  -> IndexStatus

Each file is replaced atomically, vectors first, then hashes, then status,
so a status file never advertises vectors that were not written.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional

import orjson
from loguru import logger
from pydantic import ValidationError

from incident_rag.embedding.embedder import Embedder
from incident_rag.errors import ErrorCode, RagError
from incident_rag.evidence.store import EvidenceStore
from incident_rag.schemas import IndexBuildInput, IndexStatus
from incident_rag.utils.helpers import ensure_dirs, load_json, save_json


ProgressCallback = Callable[[int, int], None]


class IndexStore:
    """
    Embedding index for one evidence store.

    The index covers a single scope: an embedding model plus either one
    source or all sources.  Building with a different scope discards the
    previous vectors.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    @classmethod
    def from_config(cls, config: dict) -> "IndexStore":
        return cls(config.get("storage", {}).get("root", "data/evidence"))

    @property
    def index_dir(self) -> Path:
        return self.root / "index"

    @property
    def status_path(self) -> Path:
        return self.index_dir / "index_status.json"

    @property
    def vectors_path(self) -> Path:
        return self.index_dir / "index_vectors.json"

    @property
    def hashes_path(self) -> Path:
        return self.index_dir / "index_hashes.json"

    # --- Persistence ----------------------------------------------------------

    def _read(self, path: Path, what: str, default: Any, parse: Callable[[Any], Any]) -> Any:
        if not path.exists():
            return default
        try:
            return parse(load_json(path))
        except (OSError, orjson.JSONDecodeError, ValidationError, TypeError, ValueError, AttributeError) as exc:
            raise RagError(
                ErrorCode.INDEX_BUILD_FAILED,
                f"Failed to decode {what}",
                details=f"path={path}; err={exc}",
            ) from exc

    def _write(self, path: Path, data: Any, what: str) -> None:
        try:
            save_json(data, path)
        except (OSError, TypeError) as exc:
            raise RagError(
                ErrorCode.INDEX_BUILD_FAILED,
                f"Failed to write {what}",
                details=f"path={path}; err={exc}",
            ) from exc

    def status(self) -> IndexStatus:
        """Current index status; an index that was never built is not ready."""
        return self._read(self.status_path, "index status", IndexStatus(), IndexStatus.model_validate)

    def read_vectors(self) -> dict[str, list[float]]:
        return self._read(
            self.vectors_path,
            "index vectors",
            {},
            lambda data: {str(k): [float(x) for x in v] for k, v in data.items()},
        )

    def read_hashes(self) -> dict[str, str]:
        return self._read(
            self.hashes_path,
            "index hashes",
            {},
            lambda data: {str(k): str(v) for k, v in data.items()},
        )

    # --- Build ----------------------------------------------------------------

    def build(
        self,
        evidence: EvidenceStore,
        embedder: Embedder,
        input: IndexBuildInput,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IndexStatus:
        """
        Bring the index up to date with the chunks currently in scope.

        Nothing is written unless every required embedding succeeds.

        Args:
            evidence: Store providing chunk summaries and texts.
            embedder: Any object implementing the Embedder protocol.
            input: Model, optional source scope, and the status timestamp.
            on_progress: Called with (done, total) after each embedding.
        """
        summaries = evidence.list_chunks(input.source_id)
        if not summaries:
            raise RagError(
                ErrorCode.INDEX_NOT_READY,
                "No chunks available; build chunks before building the index",
            )

        current = self.status()
        compatible = (
            current.ready
            and current.model == input.model
            and current.source_id == input.source_id
        )
        vectors = self.read_vectors() if compatible else {}
        hashes = self.read_hashes() if compatible else {}

        wanted = {s.chunk_id for s in summaries}
        vectors = {k: v for k, v in vectors.items() if k in wanted}
        hashes = {k: h for k, h in hashes.items() if k in wanted}

        to_embed = sorted(
            s.chunk_id
            for s in summaries
            if hashes.get(s.chunk_id) != s.text_sha256 or s.chunk_id not in vectors
        )
        logger.info(
            f"[IndexStore] Scope model={input.model} source={input.source_id or 'all'} | "
            f"{len(summaries)} chunk(s) | {len(to_embed)} to embed | "
            f"{'incremental' if compatible else 'full rebuild'}"
        )

        dims: Optional[int] = current.dims if compatible else None
        for done, chunk_id in enumerate(to_embed, start=1):
            chunk = evidence.get_chunk(chunk_id)
            try:
                vector = embedder.embed(input.model, chunk.text)
            except RagError as exc:
                raise RagError(
                    ErrorCode.EMBEDDINGS_FAILED,
                    "Failed to compute embeddings",
                    details=f"chunk_id={chunk_id}; err={exc}",
                    retryable=exc.retryable,
                ) from exc

            if dims is None:
                dims = len(vector)
            elif len(vector) != dims:
                raise RagError(
                    ErrorCode.INDEX_BUILD_FAILED,
                    "Embedding dimension mismatch across chunks",
                    details=f"expected={dims}; got={len(vector)}; chunk_id={chunk_id}",
                )
            vectors[chunk_id] = [float(x) for x in vector]
            logger.debug(f"[IndexStore] Embedded {chunk_id[:12]} ({done}/{len(to_embed)})")
            if on_progress is not None:
                on_progress(done, len(to_embed))

        for s in summaries:
            hashes[s.chunk_id] = s.text_sha256

        try:
            ensure_dirs(self.index_dir)
        except OSError as exc:
            raise RagError(
                ErrorCode.INDEX_BUILD_FAILED,
                "Failed to create index directory",
                details=f"path={self.index_dir}; err={exc}",
            ) from exc

        self._write(self.vectors_path, {k: vectors[k] for k in sorted(vectors)}, "index vectors")
        self._write(self.hashes_path, {k: hashes[k] for k in sorted(hashes)}, "index hashes")

        status = IndexStatus(
            ready=True,
            model=input.model,
            dims=dims,
            chunk_count=len(vectors),
            chunks_total=len(summaries),
            source_id=input.source_id,
            updated_at=input.updated_at,
        )
        self._write(self.status_path, status.model_dump(mode="json"), "index status")

        logger.info(
            f"[IndexStore] Ready | {status.chunk_count}/{status.chunks_total} vectors | dims={dims}"
        )
        return status
