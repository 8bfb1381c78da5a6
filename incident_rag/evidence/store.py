"""
Evidence Store
---------------
File-backed, content-addressed store for evidence sources and chunks.

Layout under the store root:
  - sources.json                 -> all source records, sorted by source_id
  - sources/<source_id>.txt      -> normalised paste bodies
  - chunks/<chunk_id>.json       -> full chunk documents
  - chunk_summaries/<id>.json    -> text-free projections + snippet
  - chunks_by_source.json        -> source_id -> [chunk_id, ...]

Every document is committed with a temp-file-then-rename write.  The store
is not lock-protected: callers must serialise writers per root.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import orjson
from loguru import logger
from pydantic import ValidationError

from incident_rag.chunking.chunker import MAX_CHARS, PARAGRAPH_SOURCE_TYPES, EvidenceChunker
from incident_rag.chunking.schemas import ChunkDraft, EvidenceChunk, EvidenceChunkSummary
from incident_rag.errors import ErrorCode, RagError
from incident_rag.schemas import (
    BuildChunksResult,
    Citation,
    CitationLocator,
    EvidenceAddSourceInput,
    EvidenceContextResponse,
    EvidenceSource,
    EvidenceSourceRecord,
    OriginKind,
)
from incident_rag.utils.helpers import (
    atomic_write_bytes,
    canonical_hash,
    canonical_json,
    ensure_dirs,
    load_json,
    normalize_text,
    save_json,
    sha256_hex,
    snippet,
)

MAX_CONTEXT_WINDOW = 50
CHUNK_ID_VERSION = "v1"

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")

T = TypeVar("T")


def source_id_for(input: EvidenceAddSourceInput) -> str:
    """Hash of the minimal descriptor: type + origin kind + origin path."""
    descriptor = {
        "type": input.type.value,
        "origin": {"kind": input.origin.kind, "path": input.origin.path},
    }
    return sha256_hex(canonical_json(descriptor))


def chunk_from_draft(source_id: str, draft: ChunkDraft) -> EvidenceChunk:
    text = normalize_text(draft.text)
    text_sha256 = sha256_hex(text)
    meta_sha256 = canonical_hash(draft.meta.model_dump(mode="json"))
    chunk_id = sha256_hex(
        f"{CHUNK_ID_VERSION}|{source_id}|{draft.ordinal}|{text_sha256}|{meta_sha256}"
    )
    return EvidenceChunk(
        chunk_id=chunk_id,
        source_id=source_id,
        ordinal=draft.ordinal,
        text=text,
        text_sha256=text_sha256,
        token_count_est=draft.token_count_est,
        meta=draft.meta,
    )


def _sort_key(summary: EvidenceChunkSummary) -> tuple[str, int, str]:
    return (summary.source_id, summary.ordinal, summary.chunk_id)


class EvidenceStore:
    """
    Owns evidence sources and their chunks.

    Usage:
        store = EvidenceStore(Path("data/evidence"))
        source = store.add_source(EvidenceAddSourceInput(...))
        store.build_chunks(source.source_id, updated_at="2026-01-01T00:00:00Z")
    """

    def __init__(
        self,
        root: str | Path,
        max_chunk_chars: int = MAX_CHARS,
        max_context_window: int = MAX_CONTEXT_WINDOW,
    ) -> None:
        self.root = Path(root)
        self.chunker = EvidenceChunker(max_chars=max_chunk_chars)
        self.max_context_window = max_context_window

    @classmethod
    def from_config(cls, config: dict) -> "EvidenceStore":
        return cls(
            root=config.get("storage", {}).get("root", "data/evidence"),
            max_chunk_chars=config.get("chunking", {}).get("max_chars", MAX_CHARS),
            max_context_window=config.get("evidence", {}).get("max_context_window", MAX_CONTEXT_WINDOW),
        )

    # --- Paths ----------------------------------------------------------------

    @property
    def sources_path(self) -> Path:
        return self.root / "sources.json"

    @property
    def sources_dir(self) -> Path:
        return self.root / "sources"

    @property
    def chunks_dir(self) -> Path:
        return self.root / "chunks"

    @property
    def chunk_summaries_dir(self) -> Path:
        return self.root / "chunk_summaries"

    @property
    def chunks_by_source_path(self) -> Path:
        return self.root / "chunks_by_source.json"

    def chunk_path(self, chunk_id: str) -> Path:
        return self.chunks_dir / f"{chunk_id}.json"

    def chunk_summary_path(self, chunk_id: str) -> Path:
        return self.chunk_summaries_dir / f"{chunk_id}.json"

    def ensure_dirs(self) -> None:
        try:
            ensure_dirs(self.root, self.sources_dir, self.chunks_dir, self.chunk_summaries_dir)
        except OSError as exc:
            raise RagError(
                ErrorCode.EVIDENCE_STORE_FAILED,
                "Failed to create evidence store directories",
                details=f"path={self.root}; err={exc}",
            ) from exc

    # --- Document I/O ---------------------------------------------------------

    def _read_doc(self, path: Path, what: str, default: Callable[[], T], parse: Callable[[Any], T]) -> T:
        if not path.exists():
            return default()
        try:
            return parse(load_json(path))
        except (OSError, orjson.JSONDecodeError, ValidationError) as exc:
            raise RagError(
                ErrorCode.EVIDENCE_STORE_FAILED,
                f"Failed to decode {what}",
                details=f"path={path}; err={exc}",
            ) from exc

    def _write_doc(self, path: Path, data: Any, what: str) -> None:
        try:
            save_json(data, path)
        except (OSError, TypeError) as exc:
            raise RagError(
                ErrorCode.EVIDENCE_STORE_FAILED,
                f"Failed to write {what}",
                details=f"path={path}; err={exc}",
            ) from exc

    def _read_sources(self) -> list[EvidenceSourceRecord]:
        return self._read_doc(
            self.sources_path,
            "evidence sources",
            list,
            lambda rows: [EvidenceSourceRecord.model_validate(r) for r in rows],
        )

    def _write_sources(self, records: list[EvidenceSourceRecord]) -> None:
        records = sorted(records, key=lambda r: r.source.source_id)
        self._write_doc(
            self.sources_path,
            [r.model_dump(mode="json") for r in records],
            "evidence sources",
        )

    def _read_chunks_by_source(self) -> dict[str, list[str]]:
        return self._read_doc(
            self.chunks_by_source_path,
            "chunks_by_source mapping",
            dict,
            lambda data: {str(k): [str(c) for c in v] for k, v in data.items()},
        )

    def _write_chunks_by_source(self, mapping: dict[str, list[str]]) -> None:
        self._write_doc(
            self.chunks_by_source_path,
            {k: mapping[k] for k in sorted(mapping)},
            "chunks_by_source mapping",
        )

    # --- Sources --------------------------------------------------------------

    def add_source(self, input: EvidenceAddSourceInput) -> EvidenceSource:
        """
        Register a source.  Re-adding an identical descriptor (type, origin
        kind, origin path) replaces the record under the same source_id.
        """
        if not input.label.strip():
            raise RagError(ErrorCode.EVIDENCE_SOURCE_INVALID, "Evidence source label is required")

        kinds = {k.value for k in OriginKind}
        if input.origin.kind not in kinds:
            raise RagError(
                ErrorCode.EVIDENCE_SOURCE_INVALID,
                "Evidence origin kind must be file, directory, or paste",
                details=f"kind={input.origin.kind}",
            )
        if input.origin.kind in (OriginKind.FILE.value, OriginKind.DIRECTORY.value) and not input.origin.path:
            raise RagError(
                ErrorCode.EVIDENCE_SOURCE_INVALID,
                "Evidence origin path is required for file/directory sources",
            )
        is_paste = input.origin.kind == OriginKind.PASTE.value
        if is_paste and not (input.text or "").strip():
            raise RagError(ErrorCode.EVIDENCE_SOURCE_INVALID, "Evidence paste text is required")

        self.ensure_dirs()
        source_id = source_id_for(input)
        source = EvidenceSource(
            source_id=source_id,
            type=input.type,
            origin=input.origin,
            label=input.label,
            created_at=input.created_at,
        )

        content_rel_path: Optional[str] = None
        if is_paste:
            content_rel_path = f"sources/{source_id}.txt"
            body_path = self.root / content_rel_path
            try:
                atomic_write_bytes(body_path, normalize_text(input.text or "").encode("utf-8"))
            except OSError as exc:
                raise RagError(
                    ErrorCode.EVIDENCE_STORE_FAILED,
                    "Failed to write paste evidence content",
                    details=f"path={body_path}; err={exc}",
                ) from exc

        records = [r for r in self._read_sources() if r.source.source_id != source_id]
        records.append(EvidenceSourceRecord(source=source, content_rel_path=content_rel_path))
        self._write_sources(records)

        logger.info(f"[EvidenceStore] Source {source_id[:12]} | {input.type.value} | label={input.label!r}")
        return source

    def list_sources(self) -> list[EvidenceSource]:
        records = sorted(self._read_sources(), key=lambda r: r.source.source_id)
        return [r.source for r in records]

    def get_source(self, source_id: str) -> EvidenceSource:
        return self._read_source_record(source_id).source

    def _read_source_record(self, source_id: str) -> EvidenceSourceRecord:
        for rec in self._read_sources():
            if rec.source.source_id == source_id:
                return rec
        raise RagError(
            ErrorCode.EVIDENCE_SOURCE_INVALID,
            "Evidence source not found",
            details=f"source_id={source_id}",
        )

    def _read_source_text(self, rec: EvidenceSourceRecord) -> str:
        """Raw text for paragraph-packed sources: paste body or file contents."""
        if rec.source.origin.kind == OriginKind.PASTE.value:
            if not rec.content_rel_path:
                raise RagError(
                    ErrorCode.EVIDENCE_SOURCE_INVALID,
                    "Paste evidence missing persisted content",
                    details=f"source_id={rec.source.source_id}",
                )
            body_path = self.root / rec.content_rel_path
            try:
                return body_path.read_text(encoding="utf-8")
            except OSError as exc:
                raise RagError(
                    ErrorCode.EVIDENCE_STORE_FAILED,
                    "Failed to read paste evidence content",
                    details=f"path={body_path}; err={exc}",
                ) from exc

        if not rec.source.origin.path:
            raise RagError(ErrorCode.EVIDENCE_SOURCE_INVALID, "Evidence source path missing")
        path = Path(rec.source.origin.path)
        if not path.exists():
            raise RagError(
                ErrorCode.EVIDENCE_SOURCE_INVALID,
                "Evidence source path does not exist",
                details=f"path={path}",
            )
        if path.is_dir():
            raise RagError(
                ErrorCode.EVIDENCE_SOURCE_INVALID,
                "Evidence text source must be a file",
                details=f"path={path}",
            )
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise RagError(
                ErrorCode.EVIDENCE_SOURCE_INVALID,
                "Failed to read evidence file",
                details=f"path={path}; err={exc}",
            ) from exc

    def _drafts_for(self, rec: EvidenceSourceRecord) -> list[ChunkDraft]:
        if rec.source.type in PARAGRAPH_SOURCE_TYPES:
            return self.chunker.chunk_source(rec.source, self._read_source_text(rec))
        return self.chunker.chunk_source(rec.source)

    # --- Chunks ---------------------------------------------------------------

    def build_chunks(self, source_id: Optional[str] = None, updated_at: str = "") -> BuildChunksResult:
        """
        Regenerate the chunk set of one source, or of every source.

        All sources in scope are chunked before anything is deleted or
        written, so a chunker failure leaves the previous chunk sets intact.
        """
        self.ensure_dirs()
        if source_id is not None:
            records = [self._read_source_record(source_id)]
        else:
            records = self._read_sources()
        if not records:
            raise RagError(ErrorCode.EVIDENCE_EMPTY, "No evidence sources available")

        planned = [
            (rec, [chunk_from_draft(rec.source.source_id, d) for d in self._drafts_for(rec)])
            for rec in records
        ]

        chunks_by_source = self._read_chunks_by_source()
        total = 0
        for rec, chunks in planned:
            sid = rec.source.source_id
            self._delete_chunks(chunks_by_source.get(sid, []))
            for chunk in chunks:
                self._write_chunk(chunk)
            chunks_by_source[sid] = [c.chunk_id for c in chunks]
            total += len(chunks)
            logger.debug(f"[EvidenceStore] Source {sid[:12]} -> {len(chunks)} chunk(s)")

        self._write_chunks_by_source(chunks_by_source)
        logger.info(f"[EvidenceStore] Built {total} chunk(s) across {len(planned)} source(s)")
        return BuildChunksResult(source_id=source_id, chunk_count=total, updated_at=updated_at)

    def _write_chunk(self, chunk: EvidenceChunk) -> None:
        self._write_doc(self.chunk_path(chunk.chunk_id), chunk.model_dump(mode="json"), "evidence chunk")
        self._write_summary(chunk)

    def _write_summary(self, chunk: EvidenceChunk) -> EvidenceChunkSummary:
        summary = EvidenceChunkSummary.from_chunk(chunk, snippet(chunk.text))
        self._write_doc(
            self.chunk_summary_path(chunk.chunk_id),
            summary.model_dump(mode="json"),
            "evidence chunk summary",
        )
        return summary

    def _delete_chunks(self, chunk_ids: list[str]) -> None:
        for chunk_id in chunk_ids:
            for path in (self.chunk_path(chunk_id), self.chunk_summary_path(chunk_id)):
                try:
                    path.unlink(missing_ok=True)
                except OSError as exc:
                    raise RagError(
                        ErrorCode.EVIDENCE_STORE_FAILED,
                        "Failed to delete chunk file",
                        details=f"path={path}; err={exc}",
                    ) from exc

    def get_chunk(self, chunk_id: str) -> EvidenceChunk:
        """Exact lookup; a missing chunk is AI_EVIDENCE_NOT_FOUND."""
        path = self.chunk_path(chunk_id)
        if not _SAFE_ID.match(chunk_id) or not path.is_file():
            raise RagError(ErrorCode.EVIDENCE_NOT_FOUND, "Evidence chunk not found", details=f"id={chunk_id}")
        return self._read_doc(path, "evidence chunk", dict, EvidenceChunk.model_validate)

    def get_chunk_summary(self, chunk_id: str) -> EvidenceChunkSummary:
        if not _SAFE_ID.match(chunk_id):
            raise RagError(ErrorCode.EVIDENCE_NOT_FOUND, "Evidence chunk not found", details=f"id={chunk_id}")
        path = self.chunk_summary_path(chunk_id)
        if path.is_file():
            return self._read_doc(path, "evidence chunk summary", dict, EvidenceChunkSummary.model_validate)
        # Summary not written yet: derive it from the chunk document.
        return self._write_summary(self.get_chunk(chunk_id))

    def get_chunk_snippet(self, chunk_id: str) -> str:
        return self.get_chunk_summary(chunk_id).snippet

    def get_context(self, chunk_id: str, window: int) -> EvidenceContextResponse:
        """Center chunk plus up to `window` neighbours each side, same source only."""
        if window < 0 or window > self.max_context_window:
            raise RagError(
                ErrorCode.EVIDENCE_CONTEXT_INVALID,
                "Context window out of range",
                details=f"window={window}; max={self.max_context_window}",
            )

        center = self.get_chunk_summary(chunk_id)
        ids = self._read_chunks_by_source().get(center.source_id)
        if not ids or chunk_id not in ids:
            raise RagError(
                ErrorCode.EVIDENCE_NOT_FOUND,
                "Evidence chunk not found",
                details=f"id={chunk_id}; source_id={center.source_id}",
            )

        ordered = sorted((self.get_chunk_summary(cid) for cid in ids), key=_sort_key)
        pos = next(i for i, s in enumerate(ordered) if s.chunk_id == chunk_id)
        start = max(0, pos - window)
        return EvidenceContextResponse(
            center_chunk_id=center.chunk_id,
            chunks=ordered[start:pos + window + 1],
        )

    def list_chunks(self, source_id: Optional[str] = None) -> list[EvidenceChunkSummary]:
        """Chunk summaries ordered by (source_id, ordinal, chunk_id)."""
        mapping = self._read_chunks_by_source()
        source_ids = [source_id] if source_id is not None else list(mapping)
        out = [
            self.get_chunk_summary(cid)
            for sid in source_ids
            for cid in mapping.get(sid, [])
        ]
        out.sort(key=_sort_key)
        return out

    # --- Citations ------------------------------------------------------------

    @staticmethod
    def citation_for_chunk(chunk: EvidenceChunk | EvidenceChunkSummary) -> Citation:
        return Citation(
            chunk_id=chunk.chunk_id,
            locator=CitationLocator(
                source_id=chunk.source_id,
                ordinal=chunk.ordinal,
                text_sha256=chunk.text_sha256,
            ),
        )

    def validate_citations(self, citations: list[Citation]) -> None:
        """Every locator must equal the one re-derived from the live chunk."""
        if not citations:
            raise RagError(ErrorCode.CITATION_REQUIRED, "At least one citation is required")
        for citation in citations:
            expected = self.citation_for_chunk(self.get_chunk(citation.chunk_id))
            if expected.locator != citation.locator:
                raise RagError(
                    ErrorCode.CITATION_INVALID,
                    "Citation locator does not match stored chunk metadata",
                    details=(
                        f"chunk_id={citation.chunk_id}; "
                        f"expected={expected.locator.model_dump()}; got={citation.locator.model_dump()}"
                    ),
                )
